"""
Per-tick signal processing: pose smoothing, eye/mouth state machines,
nod rule, feature assembly, normalization and temporal windowing.
"""

from .pipeline import DrowsinessSession, FrameInput, TickResult
from .features import FEATURE_ORDER, FeatureVector

__all__ = ["DrowsinessSession", "FrameInput", "TickResult", "FEATURE_ORDER", "FeatureVector"]
