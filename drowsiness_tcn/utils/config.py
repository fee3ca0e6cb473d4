"""
Configuration management for the drowsiness feature engine.

All thresholds are expressed in physical units (seconds, degrees,
probabilities). Frame counts are derived from the tick rate by the
components at construction time via ``Config.frames``.
"""

import os
import json
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional


_log = logging.getLogger(__name__)


@dataclass
class TimingConfig:
    """Tick cadence settings."""
    target_fps: int = 15
    window_length: int = 90        # ticks fed to the temporal classifier

    @property
    def dt(self) -> float:
        return 1.0 / self.target_fps


@dataclass
class PoseConfig:
    """Head pose smoothing settings."""
    history_size: int = 5
    rate_smoothing: float = 0.3    # EMA coefficient for angular rates
    dominant_eye_yaw_deg: float = 10.0


@dataclass
class EyeConfig:
    """Eye state machine settings."""
    close_threshold: float = 0.40
    debounce_on_frames: int = 2
    debounce_off_frames: int = 2
    blink_min_frames: int = 2
    blink_max_frames: int = 6
    # Historically named for 2.5 s, the shipped value is 0.8 s.
    prolonged_close_seconds: float = 0.8
    prolonged_lockout_seconds: float = 2.0
    perclos_window_seconds: float = 30.0
    blink_rate_window_seconds: float = 30.0
    max_close_window_seconds: float = 10.0
    ema_short_tau: float = 1.0
    ema_long_tau: float = 5.0
    unify_max_yaw_deg: float = 20.0
    time_since_cap_seconds: float = 30.0


@dataclass
class MouthConfig:
    """Mouth / yawn state machine settings."""
    ema_tau: float = 1.0
    open_threshold: float = 0.55
    close_threshold: float = 0.45
    prolonged_seconds: float = 1.3
    short_open_min_seconds: float = 0.10
    short_open_max_seconds: float = 0.50
    rate_window_seconds: float = 30.0
    time_since_cap_seconds: float = 30.0


@dataclass
class NodConfig:
    """Head-nod rule settings (degrees)."""
    set_pitch_deg: float = -4.0
    release_pitch_deg: float = -2.0
    max_roll_deg: float = 20.0
    max_yaw_deg: float = 10.0


@dataclass
class NormalizationConfig:
    """Per-session baseline normalization settings."""
    enabled: bool = False
    collection_seconds: float = 10.0
    min_samples: int = 60
    variance_floor: float = 1e-6
    stddev_floor: float = 1e-3


@dataclass
class ClassifierConfig:
    """Temporal classifier output hysteresis."""
    on_threshold: float = 0.65
    off_threshold: float = 0.55
    model_path: str = ""
    device: str = "cpu"


@dataclass
class LoggingConfig:
    """Logging settings."""
    enable_file_logging: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"


SECTIONS = ('timing', 'pose', 'eye', 'mouth', 'nod', 'normalization', 'classifier', 'logging')


class Config:
    """Main configuration class for the drowsiness feature engine."""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration with optional config file."""
        self.timing = TimingConfig()
        self.pose = PoseConfig()
        self.eye = EyeConfig()
        self.mouth = MouthConfig()
        self.nod = NodConfig()
        self.normalization = NormalizationConfig()
        self.classifier = ClassifierConfig()
        self.logging = LoggingConfig()

        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

    @property
    def fps(self) -> int:
        return self.timing.target_fps

    @property
    def dt(self) -> float:
        return self.timing.dt

    def frames(self, seconds: float) -> int:
        """Convert a duration in seconds to a whole number of ticks."""
        return int(round(seconds * self.timing.target_fps))

    def load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file."""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            _log.warning(f"Could not load config file {config_file}: {e}")
            return

        # Update each config section
        for section_name, section_data in config_data.items():
            if section_name not in SECTIONS or not isinstance(section_data, dict):
                continue
            section = getattr(self, section_name)
            for key, value in section_data.items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def save_to_file(self, config_file: str) -> None:
        """Save current configuration to JSON file."""
        config_data = self.to_dict()
        directory = os.path.dirname(config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(config_file, 'w') as f:
            json.dump(config_data, f, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        """Return all sections as plain dictionaries."""
        return {name: asdict(getattr(self, name)) for name in SECTIONS}

    def get_device_info(self) -> Dict[str, Any]:
        """Get information about the device configured for the classifier."""
        import torch

        cuda = torch.cuda.is_available()
        return {
            'device': self.classifier.device,
            'cuda_available': cuda,
            'device_count': torch.cuda.device_count() if cuda else 0,
            'device_name': torch.cuda.get_device_name(0) if cuda else None,
        }

    def validate_config(self) -> bool:
        """Validate configuration settings."""
        errors = []

        if self.timing.target_fps <= 0:
            errors.append("Target FPS must be positive")

        if self.timing.window_length <= 0:
            errors.append("Temporal window length must be positive")

        if self.pose.history_size < 1:
            errors.append("Pose history must hold at least one sample")

        if not 0.0 < self.pose.rate_smoothing <= 1.0:
            errors.append("Pose rate smoothing must be in (0, 1]")

        if self.eye.blink_min_frames > self.eye.blink_max_frames:
            errors.append("Blink min frames must not exceed blink max frames")

        if self.eye.debounce_on_frames < 1 or self.eye.debounce_off_frames < 1:
            errors.append("Eye debounce counts must be at least 1")

        if self.eye.ema_short_tau <= 0 or self.eye.ema_long_tau <= 0 or self.mouth.ema_tau <= 0:
            errors.append("EMA time constants must be positive")

        # Hysteresis bands must be open, not inverted
        if self.mouth.close_threshold >= self.mouth.open_threshold:
            errors.append("Mouth close threshold must be below open threshold")

        if self.classifier.off_threshold >= self.classifier.on_threshold:
            errors.append("Classifier off threshold must be below on threshold")

        if self.nod.release_pitch_deg < self.nod.set_pitch_deg:
            errors.append("Nod release pitch must not be below set pitch")

        if self.normalization.collection_seconds <= 0:
            errors.append("Normalization collection window must be positive")

        if self.normalization.min_samples < 1:
            errors.append("Normalization needs at least one sample")

        if not (self.classifier.device == "cpu" or self.classifier.device.startswith("cuda")):
            errors.append("Classifier device must be 'cpu' or 'cuda[:N]'")

        if errors:
            _log.error("Configuration validation errors:")
            for error in errors:
                _log.error(f"  - {error}")
            return False

        return True


# Global configuration instance
config = Config()

# Default configuration file path
DEFAULT_CONFIG_FILE = os.environ.get("DRIVER_TCN_CONFIG", "data/configs/default_config.json")

# Load default configuration if available
if os.path.exists(DEFAULT_CONFIG_FILE):
    config.load_from_file(DEFAULT_CONFIG_FILE)
