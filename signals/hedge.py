"""
Rolling hedge ratio in log space.

Regress log(Y) on log(X) with an intercept (discarded); the slope is the hedge
ratio. A negative slope swaps the roles of the two instruments so the spread
formula always uses a non-negative coefficient:

    NORMAL:   Y' = Y, X' = X, beta_used =  beta_raw
    INVERTED: Y' = X, X' = Y, beta_used = -beta_raw
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, TypeVar

import numpy as np

from signals.errors import DegenerateDistribution

T = TypeVar("T")


class HedgeRoles(str, Enum):
    NORMAL = "normal"
    INVERTED = "inverted"

    def assign(self, y: T, x: T) -> Tuple[T, T]:
        """Map a (Y, X) pair of anything (prices, markets) onto (Y', X')."""
        if self is HedgeRoles.INVERTED:
            return x, y
        return y, x


@dataclass(frozen=True)
class HedgeEstimate:
    beta_raw: float
    beta_used: float
    roles: HedgeRoles

    @property
    def inverted(self) -> bool:
        return self.roles is HedgeRoles.INVERTED

    @classmethod
    def from_slope(cls, beta_raw: float) -> "HedgeEstimate":
        beta_raw = float(beta_raw)
        if beta_raw < 0:
            return cls(beta_raw=beta_raw, beta_used=-beta_raw, roles=HedgeRoles.INVERTED)
        return cls(beta_raw=beta_raw, beta_used=beta_raw, roles=HedgeRoles.NORMAL)


def log_ols_slope(window_y: np.ndarray, window_x: np.ndarray) -> float:
    """OLS slope of log(y) on log(x). Raises DegenerateDistribution if log(x) is constant."""
    ly = np.log(np.asarray(window_y, dtype=float))
    lx = np.log(np.asarray(window_x, dtype=float))
    if ly.shape != lx.shape or ly.ndim != 1:
        raise ValueError(f"windows must be 1-d and equally long, got {ly.shape} and {lx.shape}")
    if ly.size < 2:
        raise ValueError(f"need at least 2 samples for a regression, got {ly.size}")

    dx = lx - lx.mean()
    sxx = float(np.dot(dx, dx))
    if sxx == 0.0:
        raise DegenerateDistribution("log(X) is constant over the window; hedge ratio undefined")
    return float(np.dot(dx, ly - ly.mean()) / sxx)


def estimate_hedge(window_y: np.ndarray, window_x: np.ndarray) -> HedgeEstimate:
    """Recompute the hedge from scratch over the given windows (no streaming update)."""
    return HedgeEstimate.from_slope(log_ols_slope(window_y, window_x))
