"""
Aggregation of per-window predictions into geolocated features, with
non-maximum suppression.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from shapely.geometry import Point
from shapely.strtree import STRtree

from .data import Detection, Feature, Prediction, Window, filter_predictions
from .exceptions import ConfigurationError, SinkError
from .gps import Geocoder
from .sinks import FeatureSink

logger = logging.getLogger(__name__)


def overlap_ratio(a: Detection, b: Detection) -> float:
    """Intersection over union of two detection footprints."""
    intersection = a.footprint.intersection(b.footprint).area
    if intersection == 0:
        return 0.0
    union = a.footprint.area + b.footprint.area - intersection
    return intersection / union if union > 0 else 0.0


def _suppress_group(
    detections: Sequence[Detection],
    overlap: float,
    point_radius: Optional[float],
) -> List[Detection]:
    """Greedy NMS over detections sharing one label."""
    candidates = sorted(detections, key=lambda d: (-d.confidence, d.order_key))
    use_points = point_radius is not None and all(
        isinstance(d.geometry, Point) for d in candidates
    )
    shapes = [d.geometry if use_points else d.footprint for d in candidates]
    tree = STRtree(shapes)
    accepted = [False] * len(candidates)

    for i, candidate in enumerate(candidates):
        probe = shapes[i].buffer(point_radius) if use_points else shapes[i]
        keep = True
        for j in tree.query(probe):
            if j == i or not accepted[j]:
                continue
            if use_points:
                if shapes[i].distance(shapes[j]) < point_radius:
                    keep = False
                    break
            elif overlap_ratio(candidate, candidates[j]) > overlap:
                keep = False
                break
        accepted[i] = keep

    return [d for d, keep in zip(candidates, accepted) if keep]


def non_maximum_suppression(
    detections: Iterable[Detection],
    overlap: float = 0.5,
    point_radius: Optional[float] = None,
) -> List[Detection]:
    """
    Suppress detections overlapping a higher-confidence detection of the same label.

    Candidates are visited by descending confidence; ties go to the detection
    inserted first. A candidate is dropped when its footprint IoU with an
    accepted detection exceeds ``overlap``, or, for point geometries with a
    ``point_radius``, when it lies closer than the radius to an accepted point.

    Args:
        detections: Candidate detections
        overlap: IoU above which a detection is suppressed
        point_radius: Proximity radius for point geometries, in CRS units

    Returns:
        List[Detection]: Accepted detections, in acceptance order per label
    """
    if not 0.0 < overlap <= 1.0:
        raise ConfigurationError(f"overlap must be in (0, 1], got {overlap}")

    groups: Dict[str, List[Detection]] = defaultdict(list)
    for detection in detections:
        groups[detection.label].append(detection)

    accepted: List[Detection] = []
    for label in sorted(groups):
        accepted.extend(_suppress_group(groups[label], overlap, point_radius))
    return accepted


class FeatureAggregator:
    """Collects detections from workers and turns the accepted ones into features.

    ``add`` may be called from several threads; everything else runs once the
    dispatch has finished.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        confidence_threshold: float,
        nms: bool = False,
        overlap: float = 0.5,
        point_radius: Optional[float] = None,
        producer: Optional[Dict[str, Any]] = None,
        top_k: Optional[int] = None,
    ):
        self.geocoder = geocoder
        self.confidence_threshold = confidence_threshold
        self.nms = nms
        self.overlap = overlap
        self.point_radius = point_radius
        self.producer = producer
        self.top_k = top_k

        self._lock = threading.Lock()
        self._detections: List[Detection] = []
        self._windows_seen = 0
        self.accepted: Optional[List[Detection]] = None

    def add(self, window: Window, predictions: List[Prediction]) -> int:
        """Record the retained predictions of one window.

        Returns:
            int: Number of detections created for the window
        """
        if self.top_k is not None:
            predictions = sorted(predictions, key=lambda p: -p.confidence)[: self.top_k]
        retained = filter_predictions(predictions, self.confidence_threshold)

        detections = []
        if retained:
            geometry = self.geocoder.geocode(window.rect)
            footprint = self.geocoder.footprint(window.rect)
            for rank, prediction in enumerate(retained):
                detections.append(
                    Detection(
                        window=window,
                        prediction=prediction,
                        geometry=geometry,
                        footprint=footprint,
                        rank=rank,
                    )
                )

        with self._lock:
            self._windows_seen += 1
            self._detections.extend(detections)
        return len(detections)

    @property
    def detections(self) -> List[Detection]:
        with self._lock:
            return list(self._detections)

    @property
    def windows_seen(self) -> int:
        return self._windows_seen

    def __len__(self) -> int:
        return len(self._detections)

    def finalize(self) -> List[Detection]:
        """Run NMS (if enabled) and mark suppressed detections."""
        detections = self.detections
        if not self.nms:
            self.accepted = sorted(detections, key=lambda d: d.order_key)
            return self.accepted

        logger.info(f"Running non-maximum suppression on {len(detections)} detections")
        accepted = non_maximum_suppression(
            detections, overlap=self.overlap, point_radius=self.point_radius
        )
        kept = {id(d) for d in accepted}
        for detection in detections:
            detection.suppressed = id(detection) not in kept
        self.accepted = accepted
        logger.info(
            f"NMS kept {len(accepted)} of {len(detections)} detections"
        )
        return accepted

    def features(self) -> List[Feature]:
        if self.accepted is None:
            self.finalize()
        return [Feature.from_detection(d, self.producer) for d in self.accepted]

    def emit(self, sink: FeatureSink) -> int:
        """Write accepted features to an opened sink."""
        count = 0
        for feature in self.features():
            try:
                sink.write(feature)
            except SinkError:
                raise
            except Exception as e:
                raise SinkError(f"Failed to write feature: {e}") from e
            count += 1
        return count

    def label_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for detection in self.accepted or []:
            counts[detection.label] += 1
        return dict(counts)
