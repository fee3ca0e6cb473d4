"""
Feature Assembly Module

Builds the fixed-order 20-element feature vector consumed by the temporal
classifier. The order below must match the classifier's training schema.
"""

import math
import numpy as np
from dataclasses import dataclass, fields, astuple
from typing import Dict, List

from .eye_state import EyeObservation
from .mouth_state import MouthObservation
from .pose_smoothing import PoseSample


class SchemaMismatchError(ValueError):
    """Raised when a classifier's input shape disagrees with the feature schema."""


@dataclass(frozen=True)
class FeatureVector:
    """
    Model-ready feature vector.
    Field order is the schema order.
    """
    yaw_adj: float
    pitch_adj: float
    roll_adj: float
    dyaw_adj_per_s: float
    dpitch_adj_per_s: float
    droll_adj_per_s: float
    eye_open_unified: float
    ema_eye_open_1s: float
    ema_eye_open_5s: float
    eye_open_trend_3s: float
    eye_close_dur_s: float
    eye_run_len_frames: float
    perclos_30s: float
    blink_rate_30s: float
    max_close_run_10s: float
    time_since_last_blink_s: float
    yawn_prob_ema_1s: float
    mouth_open_run_s: float
    mouth_open_rate_30s: float
    time_since_last_yawn_s: float

    def as_list(self) -> List[float]:
        return [float(v) for v in astuple(self)]

    def as_array(self) -> np.ndarray:
        return np.array(astuple(self), dtype=np.float64)

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(FEATURE_ORDER, self.as_list()))


FEATURE_ORDER = tuple(f.name for f in fields(FeatureVector))
NUM_FEATURES = len(FEATURE_ORDER)

# Openness-like signals fall back to "undecided"; everything else to zero
OPENNESS_FEATURES = ("eye_open_unified", "ema_eye_open_1s", "ema_eye_open_5s")
FEATURE_DEFAULTS = {name: (0.5 if name in OPENNESS_FEATURES else 0.0) for name in FEATURE_ORDER}


def finite_or(value, default: float) -> float:
    """Return ``value`` as float if finite, else ``default``."""
    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def check_classifier_schema(n_features, window_length, expected_window: int) -> None:
    """Fail fast when a classifier's declared input shape does not fit."""
    if n_features is not None and int(n_features) != NUM_FEATURES:
        raise SchemaMismatchError(
            f"Classifier expects {n_features} features but the schema has {NUM_FEATURES}"
        )
    if window_length is not None and int(window_length) != expected_window:
        raise SchemaMismatchError(
            f"Classifier expects a window of {window_length} ticks, configured {expected_window}"
        )


class FeatureAssembler:
    """Composes a FeatureVector from the per-tick component outputs."""

    def assemble(self, pose: PoseSample, eye: EyeObservation, mouth: MouthObservation) -> FeatureVector:
        raw = {
            'yaw_adj': pose.yaw,
            'pitch_adj': pose.pitch,
            'roll_adj': pose.roll,
            'dyaw_adj_per_s': pose.d_yaw,
            'dpitch_adj_per_s': pose.d_pitch,
            'droll_adj_per_s': pose.d_roll,
            'eye_open_unified': eye.eye_open,
            'ema_eye_open_1s': eye.ema_1s,
            'ema_eye_open_5s': eye.ema_5s,
            'eye_open_trend_3s': eye.trend,
            'eye_close_dur_s': eye.close_duration_s,
            'eye_run_len_frames': eye.run_length_frames,
            'perclos_30s': eye.perclos_30s,
            'blink_rate_30s': eye.blink_rate_30s,
            'max_close_run_10s': eye.max_close_run_10s,
            'time_since_last_blink_s': eye.time_since_last_blink_s,
            'yawn_prob_ema_1s': mouth.yawn_ema,
            'mouth_open_run_s': mouth.open_run_s,
            'mouth_open_rate_30s': mouth.open_rate_30s,
            'time_since_last_yawn_s': mouth.time_since_last_yawn_s,
        }
        return self.from_mapping(raw)

    @staticmethod
    def from_mapping(raw: Dict[str, float]) -> FeatureVector:
        """Build a vector from a name -> value mapping, defaulting bad entries."""
        return FeatureVector(**{
            name: finite_or(raw.get(name), FEATURE_DEFAULTS[name]) for name in FEATURE_ORDER
        })
