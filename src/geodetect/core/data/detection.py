"""
Detection data structures: per-window predictions, geolocated detections and
the features handed to the output sink.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from .window import Window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    """A (label, confidence) pair produced by the classifier for one window."""

    label: str
    confidence: float

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"confidence must be in [0, 1], but got {self.confidence}"
            )

    def passes(self, threshold: float) -> bool:
        """Retained when the confidence is at least the threshold."""
        return self.confidence >= threshold


@dataclass
class Detection:
    """One accepted prediction of a window, with its geographic geometry.

    ``footprint`` is always the window polygon and is used for overlap tests;
    ``geometry`` is what gets written (point or polygon).
    """

    window: Window
    prediction: Prediction
    geometry: BaseGeometry
    footprint: BaseGeometry
    rank: int = 0  # position of the prediction within its window
    suppressed: bool = False

    @property
    def label(self) -> str:
        return self.prediction.label

    @property
    def confidence(self) -> float:
        return self.prediction.confidence

    @property
    def order_key(self) -> tuple:
        """Insertion order: scheduler order, then prediction order."""
        return (self.window.index, self.rank)


@dataclass(frozen=True)
class Feature:
    """A detection serialized for the feature sink."""

    geometry: BaseGeometry
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_detection(
        cls, detection: Detection, producer: Optional[Dict[str, Any]] = None
    ) -> "Feature":
        properties = {
            "label": detection.label,
            "confidence": float(detection.confidence),
        }
        if producer:
            properties.update(producer)
        return cls(geometry=detection.geometry, properties=properties)

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry),
            "properties": dict(self.properties),
        }


def filter_predictions(
    predictions: List[Prediction], threshold: float
) -> List[Prediction]:
    """Keep predictions whose confidence is at least ``threshold``."""
    return [p for p in predictions if p.passes(threshold)]
