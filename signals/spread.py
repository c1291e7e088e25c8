from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from signals.buffer import RollingWindow
from signals.errors import DegenerateDistribution, InsufficientHistory
from signals.hedge import HedgeEstimate

# Relative tolerance under which a spread window counts as constant
_ZERO_STD_RTOL = 1e-12


@dataclass(frozen=True)
class SpreadStats:
    mean: float
    std: float


def compute_spread(price_y: float, price_x: float, hedge: HedgeEstimate) -> float:
    """spread = Y' - beta_used * X', with Y'/X' taken under the hedge's roles."""
    py, px = hedge.roles.assign(price_y, price_x)
    return float(py - hedge.beta_used * px)


class SpreadTracker:
    """Rolling window of spreads; statistics exist only once the window is full."""

    def __init__(self, capacity: int):
        self._window = RollingWindow(capacity)

    @property
    def is_full(self) -> bool:
        return self._window.is_full

    def __len__(self) -> int:
        return len(self._window)

    def update(self, spread: float) -> None:
        self._window.push(spread)

    def values(self):
        return self._window.values()

    def snapshot(self) -> "SpreadTracker":
        clone = SpreadTracker(self._window.capacity)
        clone._window = self._window.copy()
        return clone

    def stats(self) -> SpreadStats:
        """Mean and population standard deviation over the full window."""
        if not self._window.is_full:
            raise InsufficientHistory(
                f"spread window holds {len(self._window)}/{self._window.capacity} values"
            )
        values = self._window.values()
        return SpreadStats(mean=float(np.mean(values)), std=float(np.std(values)))


def compute_zscore(spread: float, stats: SpreadStats) -> float:
    """
    Deviation of the current spread from its rolling distribution, in std units.

    A (numerically) zero standard deviation means there is no distribution to
    score against: raises DegenerateDistribution instead of dividing.
    """
    if stats.std <= _ZERO_STD_RTOL * max(1.0, abs(stats.mean)):
        raise DegenerateDistribution(f"spread std is zero (mean={stats.mean:.6g})")
    return float((spread - stats.mean) / stats.std)
