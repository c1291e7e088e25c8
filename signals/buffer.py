"""
Bounded price history for the two instruments of a pair.

RollingWindow is a fixed-capacity ring buffer over a preallocated numpy array
(head index + count); pushing past capacity evicts the oldest value.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import numpy as np

from signals.errors import InsufficientHistory


@dataclass(frozen=True)
class PriceSample:
    timestamp: datetime
    price_y: float
    price_x: float

    def __post_init__(self) -> None:
        for name in ("price_y", "price_x"):
            px = getattr(self, name)
            if px is None or not math.isfinite(px) or px <= 0:
                raise ValueError(f"{name} must be a finite positive price, got {px!r}")


class RollingWindow:
    """Fixed-capacity FIFO window of floats."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._data = np.empty(capacity, dtype=float)
        self._head = 0      # slot the next push writes to
        self._count = 0

    @property
    def capacity(self) -> int:
        return int(self._data.shape[0])

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def __len__(self) -> int:
        return self._count

    def push(self, value: float) -> None:
        self._data[self._head] = value
        self._head = (self._head + 1) % self.capacity
        if self._count < self.capacity:
            self._count += 1

    def values(self) -> np.ndarray:
        """Copy of the contents, oldest first."""
        if self._count < self.capacity:
            return self._data[: self._count].copy()
        return np.concatenate((self._data[self._head:], self._data[: self._head]))

    def last(self, n: int) -> np.ndarray:
        if n > self._count:
            raise InsufficientHistory(f"requested {n} values, window holds {self._count}")
        return self.values()[self._count - n:]

    def copy(self) -> "RollingWindow":
        clone = RollingWindow(self.capacity)
        clone._data = self._data.copy()
        clone._head = self._head
        clone._count = self._count
        return clone


class SampleBuffer:
    """
    Price history of the Y and X instruments.

    Samples must arrive in strictly increasing timestamp order. `total` counts
    every accepted sample, including those already evicted from the windows.
    """

    def __init__(self, capacity: int):
        self._y = RollingWindow(capacity)
        self._x = RollingWindow(capacity)
        self._last_ts: Optional[datetime] = None
        self.total = 0

    @property
    def capacity(self) -> int:
        return self._y.capacity

    @property
    def is_full(self) -> bool:
        return self._y.is_full

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self._last_ts

    def __len__(self) -> int:
        return len(self._y)

    def append(self, sample: PriceSample) -> None:
        if self._last_ts is not None and sample.timestamp <= self._last_ts:
            raise ValueError(
                f"sample timestamp {sample.timestamp.isoformat()} is not after "
                f"{self._last_ts.isoformat()}"
            )
        self._y.push(sample.price_y)
        self._x.push(sample.price_x)
        self._last_ts = sample.timestamp
        self.total += 1

    def recent(self, n: int) -> Tuple[np.ndarray, np.ndarray]:
        """Last n prices of Y and X, oldest first. Raises InsufficientHistory."""
        return self._y.last(n), self._x.last(n)
