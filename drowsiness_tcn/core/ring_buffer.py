"""
Fixed-capacity ring structures backed by numpy arrays.
"""

from collections import deque
from dataclasses import dataclass
from typing import Iterator

import numpy as np


class RollingAverage:
    """Circular buffer of scalar samples with a running sum.

    ``mean()`` is always the mean of the samples currently resident; once
    ``capacity`` samples have been pushed the oldest is overwritten.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self._buf = np.zeros(self.capacity, dtype=np.float64)
        self._sum = 0.0
        self._count = 0
        self._pos = 0

    def push(self, value: float) -> None:
        if self._count == self.capacity:
            self._sum -= self._buf[self._pos]
        else:
            self._count += 1
        self._buf[self._pos] = value
        self._sum += value
        self._pos = (self._pos + 1) % self.capacity

    def mean(self) -> float:
        return self._sum / self._count if self._count else 0.0

    @property
    def sum(self) -> float:
        return self._sum

    def __len__(self) -> int:
        return self._count

    def values(self) -> np.ndarray:
        """Resident samples, oldest first."""
        if self._count < self.capacity:
            return self._buf[:self._count].copy()
        return np.concatenate((self._buf[self._pos:], self._buf[:self._pos]))

    def reset(self) -> None:
        self._buf.fill(0.0)
        self._sum = 0.0
        self._count = 0
        self._pos = 0


class VectorRing:
    """FIFO of fixed-width float vectors with O(1) append.

    Appending to a full ring evicts the oldest row.
    """

    def __init__(self, capacity: int, width: int):
        if capacity <= 0 or width <= 0:
            raise ValueError("capacity and width must be positive")
        self.capacity = int(capacity)
        self.width = int(width)
        self._rows = np.zeros((self.capacity, self.width), dtype=np.float64)
        self._count = 0
        self._pos = 0  # next slot to write

    def append(self, row) -> None:
        row = np.asarray(row, dtype=np.float64)
        if row.shape != (self.width,):
            raise ValueError(f"expected a vector of width {self.width}, got shape {row.shape}")
        self._rows[self._pos] = row
        self._pos = (self._pos + 1) % self.capacity
        if self._count < self.capacity:
            self._count += 1

    def __len__(self) -> int:
        return self._count

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def oldest(self) -> np.ndarray:
        if not self._count:
            raise IndexError("ring is empty")
        start = (self._pos - self._count) % self.capacity
        return self._rows[start].copy()

    def newest(self) -> np.ndarray:
        if not self._count:
            raise IndexError("ring is empty")
        return self._rows[(self._pos - 1) % self.capacity].copy()

    def to_array(self) -> np.ndarray:
        """Resident rows in chronological order, shape (len, width)."""
        if self._count < self.capacity:
            return self._rows[:self._count].copy()
        return np.concatenate((self._rows[self._pos:], self._rows[:self._pos]), axis=0)

    def clear(self) -> None:
        self._rows.fill(0.0)
        self._count = 0
        self._pos = 0


@dataclass(frozen=True)
class Run:
    """One completed eye-closure or mouth-opening episode."""
    end_time: float
    length_frames: int
    duration_s: float


class RunHistory:
    """Bounded, time-evicted list of completed runs, oldest first."""

    def __init__(self, horizon_s: float, capacity: int):
        self.horizon_s = float(horizon_s)
        self._runs = deque(maxlen=int(capacity))

    def append(self, run: Run) -> None:
        self._runs.append(run)
        self.evict(run.end_time)

    def evict(self, now: float) -> None:
        """Drop runs that ended before ``now - horizon_s``."""
        cutoff = now - self.horizon_s
        while self._runs and self._runs[0].end_time < cutoff:
            self._runs.popleft()

    def ended_since(self, cutoff: float) -> Iterator[Run]:
        return (run for run in self._runs if run.end_time >= cutoff)

    def __iter__(self) -> Iterator[Run]:
        return iter(self._runs)

    def __len__(self) -> int:
        return len(self._runs)

    def clear(self) -> None:
        self._runs.clear()
