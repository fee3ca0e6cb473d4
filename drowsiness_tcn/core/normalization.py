"""
Baseline Normalization Module

Collects per-feature mean/stddev over the first seconds of a session and
z-scores every later feature vector against them.
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..utils.config import Config, config as default_config
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NormalizationStatus(Enum):
    DISABLED = "disabled"
    COLLECTING = "collecting"
    READY = "ready"
    UNSTABLE = "unstable"


@dataclass(frozen=True)
class NormalizationStats:
    """Finalized per-session baseline statistics."""
    mean: np.ndarray
    stddev: np.ndarray
    count: int


class BaselineNormalizer:
    """Online count / sum / sum-of-squares accumulator with z-scoring."""

    def __init__(self, n_features: int, cfg: Optional[Config] = None):
        norm = (cfg or default_config).normalization
        self.n_features = n_features
        self.collection_seconds = norm.collection_seconds
        self.min_samples = norm.min_samples
        self.variance_floor = norm.variance_floor
        self.stddev_floor = norm.stddev_floor
        self._sum = np.zeros(n_features, dtype=np.float64)
        self._sq_sum = np.zeros(n_features, dtype=np.float64)
        self.reset()

    def reset(self) -> None:
        self.status = NormalizationStatus.DISABLED
        self.stats: Optional[NormalizationStats] = None
        self.count = 0
        self.start_time: Optional[float] = None
        self.elapsed = 0.0
        self._sum.fill(0.0)
        self._sq_sum.fill(0.0)

    @property
    def collecting(self) -> bool:
        return self.status is NormalizationStatus.COLLECTING

    def begin(self, timestamp: float) -> None:
        """Start a fresh collection window at ``timestamp``."""
        self.reset()
        self.status = NormalizationStatus.COLLECTING
        self.start_time = timestamp
        logger.info(f"Normalization collecting for {self.collection_seconds:.1f}s")

    def add_sample(self, vector, timestamp: Optional[float] = None) -> NormalizationStatus:
        """Absorb one raw vector; finalizes once the window has elapsed."""
        if not self.collecting:
            return self.status
        vector = np.asarray(vector, dtype=np.float64)
        self._sum += vector
        self._sq_sum += vector * vector
        self.count += 1

        if timestamp is not None and self.start_time is not None:
            self.elapsed = timestamp - self.start_time
            if self.elapsed >= self.collection_seconds:
                self.finalize()
        return self.status

    def finalize(self) -> Optional[NormalizationStats]:
        """Close the window: compute stats or mark them unstable."""
        if self.count < self.min_samples:
            self.status = NormalizationStatus.UNSTABLE
            self.stats = None
            logger.log_normalization(self.status.value, self.count, self.elapsed)
            return None

        mean = self._sum / self.count
        variance = np.maximum(self.variance_floor, self._sq_sum / self.count - mean * mean)
        stddev = np.sqrt(variance)
        mean.setflags(write=False)
        stddev.setflags(write=False)
        self.stats = NormalizationStats(mean=mean, stddev=stddev, count=self.count)
        self.status = NormalizationStatus.READY
        logger.log_normalization(self.status.value, self.count, self.elapsed)
        return self.stats

    def apply(self, vector) -> np.ndarray:
        """Z-score ``vector``; identity while no stats are available."""
        vector = np.asarray(vector, dtype=np.float64)
        if self.stats is None:
            return vector.copy()
        return (vector - self.stats.mean) / np.maximum(self.stddev_floor, self.stats.stddev)
