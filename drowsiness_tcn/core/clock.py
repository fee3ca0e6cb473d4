"""
Tick clock.

Defines the fixed tick duration used by every time-based computation and
hands out monotonically increasing ``Tick`` records.
"""

import time
from dataclasses import dataclass
from typing import Optional


class TickOrderError(ValueError):
    """Raised when a tick timestamp goes backwards."""


@dataclass(frozen=True)
class Tick:
    """One processed frame: its index within the session and timestamp (s)."""
    index: int
    timestamp: float


class Clock:
    """Fixed-rate tick source.

    Ticks may be skipped (timestamps further apart than ``dt``) but are never
    reordered.
    """

    def __init__(self, fps: float = 15.0):
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = float(fps)
        self.dt = 1.0 / self.fps
        self._index = -1
        self._last_timestamp: Optional[float] = None

    @staticmethod
    def now() -> float:
        """Monotonic timestamp in seconds."""
        return time.monotonic()

    @property
    def index(self) -> int:
        """Index of the most recent tick (-1 before the first one)."""
        return self._index

    def advance(self, timestamp: Optional[float] = None) -> Tick:
        """Advance to the next tick, stamping it with ``timestamp`` or now()."""
        if timestamp is None:
            timestamp = self.now()
        timestamp = float(timestamp)
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            raise TickOrderError(
                f"tick timestamp {timestamp:.6f} precedes previous {self._last_timestamp:.6f}"
            )
        self._index += 1
        self._last_timestamp = timestamp
        return Tick(self._index, timestamp)

    def reset(self) -> None:
        self._index = -1
        self._last_timestamp = None
