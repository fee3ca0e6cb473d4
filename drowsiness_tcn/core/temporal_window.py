"""
Temporal Window Module

Keeps the last N normalized feature vectors, invokes the temporal
classifier once the window is full and smooths its output with a
drowsy/awake hysteresis.
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from .features import NUM_FEATURES, SchemaMismatchError, check_classifier_schema
from .hysteresis import HysteresisLatch
from .ring_buffer import VectorRing
from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ClassifierStatus(Enum):
    NOT_LOADED = "not_loaded"
    AWAITING_NORMALIZATION = "awaiting_normalization"
    WARMING_UP = "warming_up"
    READY = "ready"


@dataclass(frozen=True)
class ClassifierOutput:
    """Per-tick classifier state."""
    status: ClassifierStatus
    filled: int
    capacity: int
    probability: Optional[float] = None
    drowsy: bool = False

    @property
    def progress(self) -> float:
        return self.filled / self.capacity

    def describe(self) -> str:
        if self.status is ClassifierStatus.NOT_LOADED:
            return "classifier not loaded"
        if self.status is ClassifierStatus.AWAITING_NORMALIZATION:
            return "awaiting normalization..."
        if self.status is ClassifierStatus.WARMING_UP:
            return f"warming {self.filled}/{self.capacity}..."
        return f"{'Drowsy' if self.drowsy else 'Awake'} (p={self.probability:.2f})"


TemporalClassifier = Union[Callable[[np.ndarray], float], Any]


def _predict(classifier: TemporalClassifier, window: np.ndarray) -> float:
    predict = getattr(classifier, 'predict', None)
    result = predict(window) if predict is not None else classifier(window)
    return float(np.asarray(result, dtype=np.float64).reshape(-1)[0])


class TemporalWindow:
    """Fixed-capacity FIFO of feature vectors with classifier hysteresis."""

    def __init__(self, classifier: Optional[TemporalClassifier] = None,
                 cfg: Optional[Config] = None, n_features: int = NUM_FEATURES):
        cfg = cfg or default_config
        self.capacity = cfg.timing.window_length
        self.n_features = n_features
        self.classifier = classifier
        if classifier is not None:
            check_classifier_schema(getattr(classifier, 'n_features', None),
                                    getattr(classifier, 'window_length', None),
                                    self.capacity)
        self.buffer = VectorRing(self.capacity, n_features)
        self.latch = HysteresisLatch(cfg.classifier.on_threshold, cfg.classifier.off_threshold)
        self.last_probability: Optional[float] = None

    def __len__(self) -> int:
        return len(self.buffer)

    @property
    def is_full(self) -> bool:
        return self.buffer.is_full

    @property
    def drowsy(self) -> bool:
        return self.latch.active

    def reset(self) -> None:
        self.buffer.clear()
        self.latch.reset()
        self.last_probability = None

    def append(self, vector) -> None:
        self.buffer.append(vector)

    def to_array(self) -> np.ndarray:
        """Window contents, oldest first, shape (len, n_features)."""
        return self.buffer.to_array()

    def apply_probability(self, probability: float) -> bool:
        """Feed one classifier probability through the drowsy/awake hysteresis."""
        was_drowsy = self.latch.active
        drowsy = self.latch.update(probability)
        self.last_probability = probability
        logger.log_classifier_state(probability, drowsy, drowsy != was_drowsy)
        return drowsy

    def evaluate(self, awaiting_normalization: bool = False) -> ClassifierOutput:
        """Run the classifier if the window is full, else report warm-up."""
        filled = len(self.buffer)
        if self.classifier is None:
            return ClassifierOutput(ClassifierStatus.NOT_LOADED, filled, self.capacity,
                                    drowsy=self.latch.active)
        if not self.is_full:
            # Awaiting only while baseline collection runs; unstable/disabled report warm-up
            status = (ClassifierStatus.AWAITING_NORMALIZATION if awaiting_normalization
                      else ClassifierStatus.WARMING_UP)
            return ClassifierOutput(status, filled, self.capacity, drowsy=self.latch.active)

        probability = _predict(self.classifier, self.to_array())
        drowsy = self.apply_probability(probability)
        return ClassifierOutput(ClassifierStatus.READY, filled, self.capacity,
                                probability=probability, drowsy=drowsy)


class TorchTemporalClassifier:
    """Adapter feeding the window to a PyTorch / TorchScript sequence model.

    The model receives a float32 tensor of shape [1, window, features] and
    its first output element is read back as the drowsiness probability.
    """

    def __init__(self, model, n_features: int = NUM_FEATURES, window_length: Optional[int] = None,
                 device: str = "cpu", apply_sigmoid: bool = False):
        self.model = model
        self.n_features = n_features
        self.window_length = window_length
        self.device = device
        self.apply_sigmoid = apply_sigmoid
        if hasattr(self.model, 'eval'):
            self.model.eval()
        if hasattr(self.model, 'to'):
            self.model.to(device)
        self._check_input_shape()

    def _check_input_shape(self) -> None:
        """Run one zero window through the model to reject a wrong input schema."""
        import torch

        length = self.window_length or default_config.timing.window_length
        with torch.no_grad():
            try:
                self.model(torch.zeros(1, length, self.n_features, device=self.device))
            except RuntimeError as e:
                raise SchemaMismatchError(
                    f"Model rejects a [1, {length}, {self.n_features}] window: {e}"
                ) from e

    @classmethod
    def from_torchscript(cls, path: str, device: str = "cpu", **kwargs) -> "TorchTemporalClassifier":
        """Load a TorchScript model saved with ``torch.jit.save``."""
        import torch

        model = torch.jit.load(path, map_location=device)
        logger.info(f"Loaded temporal classifier from {path}")
        return cls(model, device=device, **kwargs)

    def predict(self, window: np.ndarray) -> float:
        import torch

        window = np.asarray(window, dtype=np.float32)
        if window.ndim != 2 or window.shape[1] != self.n_features:
            raise ValueError(f"Expected window of shape (T, {self.n_features}), got {window.shape}")
        with torch.no_grad():
            x = torch.from_numpy(window).unsqueeze(0).to(self.device)
            y = self.model(x)
            if self.apply_sigmoid:
                y = torch.sigmoid(y)
            return float(y.reshape(-1)[0].item())
