"""
Head Pose Smoothing Module

Turns per-tick yaw/pitch/roll angles into angle + angular-rate signals,
and re-expresses face axes relative to a per-session baseline orientation.
"""

import math
import numpy as np
from collections import deque
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)

AXES = ("yaw", "pitch", "roll")

# FaceMesh landmark indices used to build the face frame
LANDMARK_INDEX = {
    'right_eye_outer': 33,
    'left_eye_outer': 263,
    'chin': 152,
    'forehead': 10,
}

Axes = Tuple[np.ndarray, np.ndarray, np.ndarray]


@dataclass(frozen=True)
class PoseSample:
    """Adjusted head angles (degrees) and their smoothed rates (degrees/s)."""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0
    d_yaw: float = 0.0
    d_pitch: float = 0.0
    d_roll: float = 0.0


class PoseSmoother:
    """Per-axis short history, derivative estimate and rate EMA."""

    def __init__(self, cfg: Optional[Config] = None):
        cfg = cfg or default_config
        self.dt = cfg.dt
        self.history_size = cfg.pose.history_size
        self.k = cfg.pose.rate_smoothing
        self._history: Dict[str, deque] = {}
        self._rate_ema: Dict[str, float] = {}
        self.reset()

    def reset(self) -> None:
        self._history = {axis: deque(maxlen=self.history_size) for axis in AXES}
        self._rate_ema = {axis: 0.0 for axis in AXES}

    def smooth_rate(self, axis: str, angle: float) -> float:
        """Push ``angle`` into the axis history and return the smoothed rate.

        A non-finite angle repeats the last finite one (0.0 on an empty
        history). Unknown axis names raise KeyError.
        """
        history = self._history[axis]
        if not math.isfinite(angle):
            angle = history[-1] if history else 0.0
        history.append(float(angle))

        n = len(history)
        if n >= 3:
            d = (history[-1] - history[-3]) / (2.0 * self.dt)
        elif n == 2:
            d = (history[-1] - history[-2]) / self.dt
        else:
            d = 0.0

        self._rate_ema[axis] = self._rate_ema[axis] * (1.0 - self.k) + d * self.k
        return self._rate_ema[axis]

    def last_angle(self, axis: str) -> float:
        history = self._history[axis]
        return history[-1] if history else 0.0

    def update(self, yaw: float, pitch: float, roll: float) -> PoseSample:
        """Process one tick of angles."""
        d_yaw = self.smooth_rate("yaw", yaw)
        d_pitch = self.smooth_rate("pitch", pitch)
        d_roll = self.smooth_rate("roll", roll)
        return PoseSample(
            yaw=self.last_angle("yaw"),
            pitch=self.last_angle("pitch"),
            roll=self.last_angle("roll"),
            d_yaw=d_yaw,
            d_pitch=d_pitch,
            d_roll=d_roll,
        )


def _unit(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / (n if n > 0 else 1e-8)


def _as_vec3(v) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64).reshape(-1)
    if arr.size == 2:
        arr = np.append(arr, 0.0)
    return arr[:3]


class BaselineCalibrator:
    """Captures a reference face frame and expresses later frames in it."""

    def __init__(self):
        self._reference: Optional[np.ndarray] = None

    @property
    def is_captured(self) -> bool:
        return self._reference is not None

    @property
    def reference(self) -> Optional[np.ndarray]:
        return None if self._reference is None else self._reference.copy()

    def reset(self) -> None:
        self._reference = None

    def capture(self, x_axis, y_axis, z_axis=None) -> np.ndarray:
        """Store an orthonormal right-handed rotation built from the axes.

        Z is rebuilt from X and Y, so ``z_axis`` only documents the call
        shape and may be omitted.
        """
        x = _unit(_as_vec3(x_axis))
        z = _unit(np.cross(x, _as_vec3(y_axis)))
        y = _unit(np.cross(z, x))
        self._reference = np.column_stack((x, y, z))
        logger.debug(f"Baseline axes captured: {np.round(self._reference, 4).tolist()}")
        return self._reference.copy()

    def apply(self, x_axis, y_axis, z_axis) -> Axes:
        """Rotate the axes into the reference frame (identity when unset)."""
        if self._reference is None:
            return _as_vec3(x_axis), _as_vec3(y_axis), _as_vec3(z_axis)
        rt = self._reference.T
        return (
            _unit(rt @ _as_vec3(x_axis)),
            _unit(rt @ _as_vec3(y_axis)),
            _unit(rt @ _as_vec3(z_axis)),
        )


def _landmark_point(landmarks, index: int) -> np.ndarray:
    lm = landmarks[index]
    if hasattr(lm, 'x'):
        return np.array([lm.x, lm.y, getattr(lm, 'z', 0.0) or 0.0], dtype=np.float64)
    return _as_vec3(lm)


def face_axes_from_landmarks(landmarks: Sequence) -> Axes:
    """Build an orthonormal face frame from FaceMesh landmarks.

    X runs from the right to the left outer eye corner, Y from forehead to
    chin, Z = X x Y.
    """
    right = _landmark_point(landmarks, LANDMARK_INDEX['right_eye_outer'])
    left = _landmark_point(landmarks, LANDMARK_INDEX['left_eye_outer'])
    chin = _landmark_point(landmarks, LANDMARK_INDEX['chin'])
    forehead = _landmark_point(landmarks, LANDMARK_INDEX['forehead'])

    x = _unit(left - right)
    y = _unit(chin - forehead)
    z = _unit(np.cross(x, y))
    y = _unit(np.cross(z, x))
    return x, y, z


def euler_from_axes(x_axis, y_axis, z_axis) -> Tuple[float, float, float]:
    """Return (yaw, pitch, roll) in degrees for a face frame."""
    x = _as_vec3(x_axis)
    z = _as_vec3(z_axis)
    yaw = math.atan2(z[0], z[2])
    pitch = math.atan2(z[1], z[2])
    roll = math.atan2(x[1], x[0])
    return math.degrees(yaw), math.degrees(pitch), math.degrees(roll)


def dominant_eye_from_yaw(yaw_deg: float, threshold_deg: float = 10.0) -> str:
    """Eye best facing the camera for a given raw yaw."""
    if yaw_deg > threshold_deg:
        return "right"
    if yaw_deg < -threshold_deg:
        return "left"
    return "both"
