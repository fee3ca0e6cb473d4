"""
Drowsiness Session Module

One processing context per monitoring session. ``process_tick`` runs the
whole per-tick chain: pose smoothing and baseline calibration, eye and mouth
state machines, nod rule, feature assembly, optional baseline
normalization and the temporal classifier window.
"""

import json
import math
import time
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .clock import Clock, Tick
from .eye_state import EyeObservation, EyeStateMachine, unify_eye_probabilities
from .features import NUM_FEATURES, FeatureAssembler, FeatureVector
from .mouth_state import MouthObservation, MouthStateMachine
from .nod_detection import NodDetector
from .normalization import BaselineNormalizer, NormalizationStatus
from .pose_smoothing import (
    BaselineCalibrator, PoseSample, PoseSmoother,
    dominant_eye_from_yaw, euler_from_axes, face_axes_from_landmarks,
)
from .temporal_window import ClassifierOutput, TemporalClassifier, TemporalWindow
from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger, log_function_call, log_performance_metrics

logger = get_logger(__name__)


@dataclass
class FrameInput:
    """Raw per-frame signals from the external estimators.

    Angles are in degrees. When ``axes`` (X, Y, Z face axes) are given they
    take precedence over the angles: they are expressed relative to the
    session baseline and converted to yaw/pitch/roll. The eye probability
    may instead be supplied per eye and is then unified by yaw.
    """
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0
    eye_open_prob: Optional[float] = None
    yawn_prob: Optional[float] = None
    left_eye_prob: Optional[float] = None
    right_eye_prob: Optional[float] = None
    axes: Optional[Sequence] = None

    @classmethod
    def from_landmarks(cls, landmarks: Sequence, **kwargs) -> "FrameInput":
        """Build an input whose pose comes from FaceMesh landmarks."""
        return cls(axes=face_axes_from_landmarks(landmarks), **kwargs)


@dataclass
class TickResult:
    """Everything the engine exposes for one tick."""
    tick: Tick
    pose: PoseSample
    eye: EyeObservation
    mouth: MouthObservation
    nod_active: bool
    features: FeatureVector
    normalized: np.ndarray
    classifier: ClassifierOutput
    normalization_status: NormalizationStatus
    dominant_eye: str = "both"

    @property
    def eye_closed(self) -> bool:
        return self.eye.closed

    @property
    def blink(self) -> bool:
        return self.eye.blink

    @property
    def prolonged_eye(self) -> bool:
        return self.eye.prolonged

    @property
    def mouth_open(self) -> bool:
        return self.mouth.open

    @property
    def yawn_event(self) -> bool:
        return self.mouth.yawn_event

    @property
    def yawn_prolonged(self) -> bool:
        return self.mouth.yawn_prolonged

    @property
    def drowsy(self) -> bool:
        return self.classifier.drowsy

    @property
    def probability(self) -> Optional[float]:
        return self.classifier.probability

    def states(self) -> Dict[str, bool]:
        """Discrete state flags for display."""
        return {
            'eye_closed': self.eye_closed,
            'blink': self.blink,
            'prolonged_eye': self.prolonged_eye,
            'mouth_open': self.mouth_open,
            'yawn_event': self.yawn_event,
            'yawn_prolonged': self.yawn_prolonged,
            'nod_active': self.nod_active,
            'drowsy': self.drowsy,
        }

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {'tick': self.tick.index, 'timestamp': self.tick.timestamp}
        row.update(self.features.as_dict())
        row.update({k: int(v) for k, v in self.states().items()})
        row['probability'] = self.probability
        row['classifier_status'] = self.classifier.status.value
        row['normalization_status'] = self.normalization_status.value
        return row


class DrowsinessSession:
    """Per-session processing context for the drowsiness feature engine."""

    def __init__(self, classifier: Optional[TemporalClassifier] = None,
                 cfg: Optional[Config] = None,
                 normalization_enabled: Optional[bool] = None,
                 session_id: Optional[str] = None):
        """
        Initialize a session.

        Args:
            classifier: Temporal classifier (``predict(window) -> float`` or a
                callable); ``None`` runs the feature engine only
            cfg: Configuration (defaults to the global configuration)
            normalization_enabled: Collect per-session baseline statistics;
                defaults to ``cfg.normalization.enabled``
            session_id: Identifier used in logs and saved session data
        """
        cfg = cfg or default_config
        if not cfg.validate_config():
            raise ValueError("Invalid drowsiness engine configuration")
        self.config = cfg

        self.clock = Clock(cfg.fps)
        self.pose = PoseSmoother(cfg)
        self.baseline = BaselineCalibrator()
        self.eye = EyeStateMachine(cfg)
        self.mouth = MouthStateMachine(cfg)
        self.nod = NodDetector(cfg)
        self.assembler = FeatureAssembler()
        self.normalizer = BaselineNormalizer(NUM_FEATURES, cfg)
        self.window = TemporalWindow(classifier, cfg)

        if normalization_enabled is None:
            normalization_enabled = cfg.normalization.enabled
        self._normalization_requested = bool(normalization_enabled)
        self.normalization_enabled = self._normalization_requested

        self.session_id = session_id
        self.reset_session(session_id)

    def set_normalization_enabled(self, enabled: bool) -> None:
        """Toggle baseline normalization; takes effect at the next session start."""
        self._normalization_requested = bool(enabled)
        logger.info(f"Normalization {'will collect' if enabled else 'disabled'} from next session start")

    @log_function_call
    def reset_session(self, new_session_id: Optional[str] = None) -> None:
        """Clear every piece of per-session state."""
        self.session_id = new_session_id or f"session_{int(time.time())}"
        self.clock.reset()
        self.pose.reset()
        self.baseline.reset()
        self.eye.reset()
        self.mouth.reset()
        self.nod.reset()
        self.normalizer.reset()
        self.window.reset()
        self.normalization_enabled = self._normalization_requested

        self.started = False
        self.dominant_eye = "both"
        self.session_start_time: Optional[float] = None
        self.last_timestamp: Optional[float] = None
        self.session_events: List[Dict[str, Any]] = []
        self.session_stats = {
            'total_ticks': 0,
            'blinks': 0,
            'yawns': 0,
            'prolonged_eye_episodes': 0,
            'nod_ticks': 0,
            'drowsy_ticks': 0,
            'classified_ticks': 0,
        }
        self._prev_prolonged = False
        self._prev_nod = False
        logger.info(f"Session reset: {self.session_id}")

    def _start(self, tick: Tick, raw_yaw: float) -> None:
        self.started = True
        self.session_start_time = tick.timestamp
        self.dominant_eye = dominant_eye_from_yaw(
            raw_yaw, self.config.pose.dominant_eye_yaw_deg
        ) if math.isfinite(raw_yaw) else "both"
        if self.normalization_enabled:
            self.normalizer.begin(tick.timestamp)
        logger.info(f"Session {self.session_id} started at t={tick.timestamp:.3f}s "
                    f"(dominant eye: {self.dominant_eye}, normalization: "
                    f"{'on' if self.normalization_enabled else 'off'})")

    def _resolve_angles(self, frame: FrameInput):
        """Return (yaw, pitch, roll, raw_yaw) for this frame."""
        if frame.axes is None:
            return frame.yaw, frame.pitch, frame.roll, frame.yaw

        x_axis, y_axis, z_axis = frame.axes
        raw_yaw = euler_from_axes(x_axis, y_axis, z_axis)[0]
        adjusted = self.baseline.apply(x_axis, y_axis, z_axis)
        if not self.baseline.is_captured:
            self.baseline.capture(x_axis, y_axis, z_axis)
        yaw, pitch, roll = euler_from_axes(*adjusted)
        return yaw, pitch, roll, raw_yaw

    @log_performance_metrics
    def process_tick(self, frame: FrameInput, timestamp: Optional[float] = None) -> TickResult:
        """Run the full per-tick chain for one frame of raw signals."""
        tick = self.clock.advance(timestamp)
        yaw, pitch, roll, raw_yaw = self._resolve_angles(frame)
        if not self.started:
            self._start(tick, raw_yaw)

        pose = self.pose.update(yaw, pitch, roll)

        eye_prob = frame.eye_open_prob
        if eye_prob is None and (frame.left_eye_prob is not None or frame.right_eye_prob is not None):
            eye_prob = unify_eye_probabilities(frame.left_eye_prob, frame.right_eye_prob, pose.yaw,
                                               self.config.eye.unify_max_yaw_deg)
        eye = self.eye.update(eye_prob, tick)
        mouth = self.mouth.update(frame.yawn_prob, tick)
        nod_active = self.nod.update(eye.prolonged, eye.raw_closed, pose.yaw, pose.pitch, pose.roll)

        features = self.assembler.assemble(pose, eye, mouth)
        raw_vector = features.as_array()
        if self.normalizer.collecting:
            self.normalizer.add_sample(raw_vector, tick.timestamp)
        normalized = self.normalizer.apply(raw_vector)

        self.window.append(normalized)
        classifier = self.window.evaluate(awaiting_normalization=self.normalizer.collecting)

        result = TickResult(
            tick=tick,
            pose=pose,
            eye=eye,
            mouth=mouth,
            nod_active=nod_active,
            features=features,
            normalized=normalized,
            classifier=classifier,
            normalization_status=self.normalizer.status,
            dominant_eye=self.dominant_eye,
        )
        self._update_session_metrics(result)
        return result

    def _record_event(self, name: str, tick: Tick) -> None:
        self.session_events.append({'event': name, 'tick': tick.index, 'timestamp': tick.timestamp})

    def _update_session_metrics(self, result: TickResult) -> None:
        """Update session-level counters and the event log."""
        stats = self.session_stats
        tick = result.tick
        self.last_timestamp = tick.timestamp
        stats['total_ticks'] += 1

        if result.blink:
            stats['blinks'] += 1
            self._record_event('blink', tick)
        if result.yawn_event:
            stats['yawns'] += 1
            self._record_event('yawn', tick)
        if result.prolonged_eye and not self._prev_prolonged:
            stats['prolonged_eye_episodes'] += 1
            self._record_event('prolonged_eye', tick)
        if result.nod_active:
            stats['nod_ticks'] += 1
            if not self._prev_nod:
                self._record_event('nod', tick)
                logger.log_event("nod", tick.index, tick.timestamp, pitch=result.pose.pitch)
        if result.probability is not None:
            stats['classified_ticks'] += 1
            if result.drowsy:
                stats['drowsy_ticks'] += 1

        self._prev_prolonged = result.prolonged_eye
        self._prev_nod = result.nod_active

    def get_session_summary(self) -> Dict[str, Any]:
        """Get comprehensive session summary."""
        duration = 0.0
        if self.session_start_time is not None and self.last_timestamp is not None:
            duration = self.last_timestamp - self.session_start_time
        classified = self.session_stats['classified_ticks']
        stats = self.normalizer.stats
        return {
            'session_id': self.session_id,
            'session_duration': duration,
            'dominant_eye': self.dominant_eye,
            'normalization_status': self.normalizer.status.value,
            'normalization_samples': self.normalizer.count,
            'normalization_mean': stats.mean.tolist() if stats is not None else None,
            'normalization_stddev': stats.stddev.tolist() if stats is not None else None,
            'drowsy_percentage': (self.session_stats['drowsy_ticks'] / classified * 100.0) if classified else 0.0,
            **self.session_stats,
        }

    def save_session_data(self, filepath: Optional[str] = None) -> str:
        """Save the session summary and event log to a JSON file."""
        if filepath is None:
            timestamp = time.strftime("%Y%m%d_%H%M%S")
            filepath = f"session_data_{self.session_id}_{timestamp}.json"

        session_data = {
            'session_id': self.session_id,
            'summary': self.get_session_summary(),
            'events': self.session_events,
        }
        with open(filepath, 'w') as f:
            json.dump(session_data, f, indent=2)
        logger.info(f"Session data saved to: {filepath}")
        return filepath
