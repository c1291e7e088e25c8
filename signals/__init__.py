"""
signals package

Implements a pairs-trading signal engine for two correlated instruments:
- Rolling log-space hedge ratio with role inversion on negative slopes
- Hedge-adjusted spread and its rolling z-score
- Per-pair state machine (FLAT/LONG_SPREAD/SHORT_SPREAD) producing entry/exit intents
"""
