"""
Eye State Machine Module

Debounced open/closed classification of a per-tick eye-openness
probability, blink-run detection, prolonged-closure detection and rolling
PERCLOS / blink-rate statistics.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .clock import Tick
from .ring_buffer import RollingAverage, Run, RunHistory
from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)


def ema_alpha(dt: float, tau: float) -> float:
    """EMA coefficient for time constant ``tau`` at tick spacing ``dt``."""
    return 1.0 - math.exp(-dt / tau)


def unify_eye_probabilities(left: Optional[float], right: Optional[float],
                            yaw_deg: float, max_yaw_deg: float = 20.0) -> float:
    """Combine per-eye openness probabilities into one value.

    The eye turned away from the camera is down-weighted in proportion to
    |yaw| (never below 0.1). A missing side is dropped; with both sides
    missing the result is NaN.
    """
    left_ok = left is not None and math.isfinite(left)
    right_ok = right is not None and math.isfinite(right)
    if not left_ok and not right_ok:
        return float('nan')
    if not right_ok:
        return float(left)
    if not left_ok:
        return float(right)

    yaw = yaw_deg if math.isfinite(yaw_deg) else 0.0
    yaw_clamped = min(abs(yaw), max_yaw_deg)
    turned = max(0.1, 1.0 - yaw_clamped / max_yaw_deg)
    w_left = 1.0 if yaw >= 0 else turned
    w_right = 1.0 if yaw <= 0 else turned
    return (left * w_left + right * w_right) / (w_left + w_right)


@dataclass(frozen=True)
class EyeObservation:
    """Per-tick output of the eye state machine."""
    eye_open: float
    raw_closed: bool
    closed: bool
    blink: bool
    prolonged: bool
    run_length_frames: int
    close_duration_s: float
    perclos_30s: float
    blink_rate_30s: float
    max_close_run_10s: float
    time_since_last_blink_s: float
    ema_1s: float
    ema_5s: float
    trend: float


class EyeStateMachine:
    """Debounced eye closure tracker with blink and prolonged-closure events."""

    def __init__(self, cfg: Optional[Config] = None):
        cfg = cfg or default_config
        eye = cfg.eye
        self.dt = cfg.dt
        self.close_threshold = eye.close_threshold
        self.debounce_on = eye.debounce_on_frames
        self.debounce_off = eye.debounce_off_frames
        self.blink_min = eye.blink_min_frames
        self.blink_max = eye.blink_max_frames
        self.prolonged_frames = cfg.frames(eye.prolonged_close_seconds)
        self.prolonged_lockout = cfg.frames(eye.prolonged_lockout_seconds)
        self.blink_window_s = eye.blink_rate_window_seconds
        self.max_close_window_s = eye.max_close_window_seconds
        self.time_cap_s = eye.time_since_cap_seconds
        self.alpha_short = ema_alpha(self.dt, eye.ema_short_tau)
        self.alpha_long = ema_alpha(self.dt, eye.ema_long_tau)

        self.closed_samples = RollingAverage(cfg.frames(eye.perclos_window_seconds))
        horizon = max(self.blink_window_s, self.max_close_window_s)
        self.runs = RunHistory(horizon, capacity=max(1, cfg.frames(horizon)))
        self.reset()

    def reset(self) -> None:
        self.closed = False
        self._deb_on = 0
        self._deb_off = 0
        self.run_length = 0
        self.prolonged = False
        self._last_prolonged_start: Optional[int] = None
        self._blink_pulse = 0
        self.last_blink_time: Optional[float] = None
        self.ema_short: Optional[float] = None
        self.ema_long: Optional[float] = None
        self.closed_samples.reset()
        self.runs.clear()

    def _update_emas(self, prob: float) -> None:
        if self.ema_short is None:
            if math.isfinite(prob):
                self.ema_short = prob
                self.ema_long = prob
            return
        v = prob if math.isfinite(prob) else self.ema_short
        self.ema_short += self.alpha_short * (v - self.ema_short)
        self.ema_long += self.alpha_long * (v - self.ema_long)

    def _debounce(self, raw_closed: bool, tick: Tick) -> None:
        if raw_closed:
            self._deb_on += 1
            self._deb_off = 0
            if not self.closed and self._deb_on >= self.debounce_on:
                self.closed = True
                self.run_length = 0
            return

        self._deb_off += 1
        self._deb_on = 0
        if self.closed and self._deb_off >= self.debounce_off:
            run = Run(tick.timestamp, self.run_length, self.run_length * self.dt)
            self.runs.append(run)
            if self.is_blink(run):
                self.last_blink_time = tick.timestamp
                self._blink_pulse = 1
                logger.log_event("blink", tick.index, tick.timestamp, frames=run.length_frames)
            self.closed = False
            self.run_length = 0

    def is_blink(self, run: Run) -> bool:
        return self.blink_min <= run.length_frames <= self.blink_max

    def update(self, prob: Optional[float], tick: Tick) -> EyeObservation:
        """Consume one eye-openness probability (NaN/None allowed)."""
        prob = float('nan') if prob is None else float(prob)
        raw_closed = math.isfinite(prob) and prob < self.close_threshold

        self.closed_samples.push(1.0 if raw_closed else 0.0)
        self._update_emas(prob)
        self._debounce(raw_closed, tick)

        if self.closed:
            self.run_length += 1
            lockout_over = (self._last_prolonged_start is None
                            or tick.index - self._last_prolonged_start >= self.prolonged_lockout)
            if not self.prolonged and self.run_length >= self.prolonged_frames and lockout_over:
                self.prolonged = True
                self._last_prolonged_start = tick.index
                logger.log_event("prolonged_eye_closure", tick.index, tick.timestamp,
                                 frames=self.run_length)
        else:
            self.prolonged = False

        blink = self._blink_pulse > 0 and not self.closed
        if self._blink_pulse > 0:
            self._blink_pulse -= 1

        self.runs.evict(tick.timestamp)
        blink_cut = tick.timestamp - self.blink_window_s
        close_cut = tick.timestamp - self.max_close_window_s
        blinks = 0
        max_close_run = 0.0
        for run in self.runs:
            if run.end_time >= blink_cut and self.is_blink(run):
                blinks += 1
            if run.end_time >= close_cut and run.duration_s > max_close_run:
                max_close_run = run.duration_s

        if self.last_blink_time is None:
            since_blink = self.time_cap_s
        else:
            since_blink = min(max(0.0, tick.timestamp - self.last_blink_time), self.time_cap_s)

        ema_short = self.ema_short if self.ema_short is not None else float('nan')
        ema_long = self.ema_long if self.ema_long is not None else float('nan')
        return EyeObservation(
            eye_open=prob,
            raw_closed=raw_closed,
            closed=self.closed,
            blink=blink,
            prolonged=self.prolonged,
            run_length_frames=self.run_length,
            close_duration_s=self.run_length * self.dt if self.closed else 0.0,
            perclos_30s=self.closed_samples.mean(),
            blink_rate_30s=blinks / self.blink_window_s,
            max_close_run_10s=max_close_run,
            time_since_last_blink_s=since_blink,
            ema_1s=ema_short,
            ema_5s=ema_long,
            trend=ema_short - ema_long,
        )
