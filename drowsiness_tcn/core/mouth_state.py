"""
Mouth State Machine Module

Smooths a per-tick yawn probability and tracks mouth openings with a
dead-banded open/close hysteresis, prolonged-yawn detection and a rolling
rate of short openings.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .clock import Tick
from .eye_state import ema_alpha
from .hysteresis import HysteresisLatch
from .ring_buffer import Run, RunHistory
from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MouthObservation:
    """Per-tick output of the mouth state machine."""
    yawn_ema: float
    open: bool
    yawn_event: bool
    yawn_prolonged: bool
    open_run_s: float
    open_rate_30s: float
    time_since_last_yawn_s: float


class MouthStateMachine:
    """Yawn tracker driven by a 1 s EMA of the yawn probability."""

    def __init__(self, cfg: Optional[Config] = None):
        cfg = cfg or default_config
        mouth = cfg.mouth
        self.dt = cfg.dt
        self.alpha = ema_alpha(self.dt, mouth.ema_tau)
        self.prolonged_s = mouth.prolonged_seconds
        self.short_min_s = mouth.short_open_min_seconds
        self.short_max_s = mouth.short_open_max_seconds
        self.rate_window_s = mouth.rate_window_seconds
        self.time_cap_s = mouth.time_since_cap_seconds
        self.latch = HysteresisLatch(mouth.open_threshold, mouth.close_threshold)
        self.runs = RunHistory(self.rate_window_s, capacity=max(1, cfg.frames(self.rate_window_s)))
        self.reset()

    def reset(self) -> None:
        self.ema: Optional[float] = None
        self.latch.reset()
        self.run_frames = 0
        self.prolonged = False
        self._yawn_pulse = 0
        self.last_yawn_time: Optional[float] = None
        self.runs.clear()

    @property
    def is_open(self) -> bool:
        return self.latch.active

    def smooth(self, prob: Optional[float]) -> Optional[float]:
        """Fold one probability into the yawn EMA (NaN/None holds it)."""
        prob = float('nan') if prob is None else float(prob)
        if self.ema is None:
            if math.isfinite(prob):
                self.ema = prob
        elif math.isfinite(prob):
            self.ema += self.alpha * (prob - self.ema)
        return self.ema

    def update(self, prob: Optional[float], tick: Tick) -> MouthObservation:
        """Consume one raw yawn probability."""
        return self.advance(self.smooth(prob), tick)

    def advance(self, ema: Optional[float], tick: Tick) -> MouthObservation:
        """Step the open/closed hysteresis with an already-smoothed value."""
        if ema is not None:
            self.ema = ema
        was_open = self.latch.active
        is_open = self.latch.update(self.ema)

        if was_open and not is_open:
            duration = self.run_frames * self.dt
            self.runs.append(Run(tick.timestamp, self.run_frames, duration))
            if duration >= self.prolonged_s:
                self._yawn_pulse = 1
                self.last_yawn_time = tick.timestamp
                logger.log_event("yawn", tick.index, tick.timestamp, duration_s=duration)
            self.run_frames = 0
            self.prolonged = False
        elif was_open:
            self.run_frames += 1
            if not self.prolonged and self.run_frames * self.dt >= self.prolonged_s:
                self.prolonged = True
                logger.log_event("yawn_prolonged", tick.index, tick.timestamp)
        elif is_open:
            self.run_frames = 1
            self.prolonged = False

        yawn_event = not is_open and self._yawn_pulse > 0
        if self._yawn_pulse > 0:
            self._yawn_pulse -= 1

        self.runs.evict(tick.timestamp)
        cutoff = tick.timestamp - self.rate_window_s
        short_openings = sum(
            1 for run in self.runs.ended_since(cutoff)
            if self.short_min_s <= run.duration_s <= self.short_max_s
        )

        if self.last_yawn_time is None:
            since_yawn = self.time_cap_s
        else:
            since_yawn = min(max(0.0, tick.timestamp - self.last_yawn_time), self.time_cap_s)

        return MouthObservation(
            yawn_ema=self.ema if self.ema is not None else float('nan'),
            open=is_open,
            yawn_event=yawn_event,
            yawn_prolonged=self.prolonged,
            open_run_s=self.run_frames * self.dt if is_open else 0.0,
            open_rate_30s=short_openings / self.rate_window_s,
            time_since_last_yawn_s=since_yawn,
        )
