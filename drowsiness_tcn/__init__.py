"""
Streaming Drowsiness Feature Engine

Turns per-frame head pose, eye-openness and yawn probabilities into a
temporally coherent feature vector and discrete behavioral states
(blink, prolonged eye closure, yawn, head nod) for a temporal classifier.
"""

__version__ = "1.0.0"
__author__ = "Drowsiness TCN Team"
__description__ = "Streaming feature extraction and state machines for TCN drowsiness detection"
