"""
Data structures flowing through the detection pipeline.
"""

from .detection import Detection, Feature, Prediction, filter_predictions
from .utils import WindowUtils, default_step_size
from .window import PixelRect, PyramidLevel, Window

__all__ = [
    "PixelRect",
    "PyramidLevel",
    "Window",
    "Prediction",
    "Detection",
    "Feature",
    "filter_predictions",
    "WindowUtils",
    "default_step_size",
]
