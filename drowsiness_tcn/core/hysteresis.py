"""Dead-band hysteresis latch."""

import math


class HysteresisLatch:
    """Boolean state with distinct enter and exit thresholds.

    Turns on once the value reaches ``on_threshold``, off once it falls to
    ``off_threshold``; anything in between holds the previous state.
    """

    def __init__(self, on_threshold: float, off_threshold: float, initial: bool = False):
        if off_threshold >= on_threshold:
            raise ValueError("off_threshold must be below on_threshold")
        self.on_threshold = on_threshold
        self.off_threshold = off_threshold
        self._initial = initial
        self.active = initial

    def update(self, value: float) -> bool:
        if value is None or not math.isfinite(value):
            return self.active
        if not self.active and value >= self.on_threshold:
            self.active = True
        elif self.active and value <= self.off_threshold:
            self.active = False
        return self.active

    def reset(self) -> None:
        self.active = self._initial
