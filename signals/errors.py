"""
Error taxonomy for the pairs signal engine.

Recoverable kinds (the cycle becomes a no-op that still records telemetry):
  DataUnavailable, InsufficientHistory, DegenerateDistribution, ExecutionRejected

Stop-the-world kinds (operator intervention required):
  InvalidConfiguration, PartialExecutionFailure, TradingHalted
"""
from __future__ import annotations

from typing import Sequence


class PairsTradingError(Exception):
    """Base class for every error raised by the signal engine."""


class InvalidConfiguration(PairsTradingError, ValueError):
    """Configuration rejected at startup, before any cycle runs."""


class DataUnavailable(PairsTradingError):
    """A price quote failed or was invalid; skip the whole cycle."""


class InsufficientHistory(PairsTradingError):
    """A buffer or window is not yet full (expected during warm-up)."""


class DegenerateDistribution(PairsTradingError):
    """Zero variance where a spread or regression needs some."""


class ExecutionRejected(PairsTradingError):
    """The first leg of an intent failed, so nothing was filled."""


class TradingHalted(PairsTradingError):
    """Automatic trading is stopped until the pair is reconciled."""


class PartialExecutionFailure(PairsTradingError):
    """
    Some legs of an open/close intent were acknowledged, others failed.

    The real exposure no longer matches the tracked position, so the engine
    refuses to guess and halts until an operator reconciles the pair.
    """

    def __init__(self, message: str, *, acked: Sequence = (), failed: Sequence = ()):
        super().__init__(message)
        self.acked = tuple(acked)
        self.failed = tuple(failed)
