"""
Detection Pipeline for end-to-end sliding window detection over a raster.
"""

import getpass
import threading
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .aggregator import FeatureAggregator
from .classifiers import Classifier, load_classifier
from .config import DEFAULT_BATCH_SIZE, GeometryTypes, RunConfig, RunModes
from .data import PixelRect
from .dispatcher import WindowDispatcher
from .exceptions import ConfigurationError
from .gps import Geocoder
from .raster import RasterSource, get_raster_source
from .scheduler import WindowScheduler
from .sinks import BASE_FIELDS, PRODUCER_FIELDS, FeatureSink, get_feature_sink

logger = logging.getLogger(__name__)

TOOL_NAME = "geodetect"


@dataclass
class RunSummary:
    """Outcome of one run."""

    windows: int
    detections: int
    accepted: int
    label_counts: Dict[str, int] = field(default_factory=dict)
    elapsed: float = 0.0
    output_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "windows": self.windows,
            "detections": self.detections,
            "accepted": self.accepted,
            "label_counts": dict(self.label_counts),
            "elapsed": round(self.elapsed, 3),
            "output_path": self.output_path,
        }


def point_nms_radius(window_width: float, overlap: float) -> float:
    """Centre distance at which two equal squares of side ``window_width`` reach IoU ``overlap``."""
    return window_width * (1.0 - overlap) / (1.0 + overlap)


def producer_info() -> Dict[str, str]:
    from .. import __version__

    return {
        "tool": TOOL_NAME,
        "version": __version__,
        "run_time": datetime.now().isoformat(timespec="seconds"),
        "user_name": getpass.getuser(),
    }


class DetectionPipeline(object):
    """End-to-end pipeline: schedule windows, classify, geocode, aggregate, write.

    The classifier, raster source and sink are created from the configuration
    unless given explicitly.
    """

    def __init__(
        self,
        config: RunConfig,
        classifier: Optional[Classifier] = None,
        source: Optional[RasterSource] = None,
        sink: Optional[FeatureSink] = None,
        show_progress: bool = True,
    ):
        """Initialize the detection pipeline.

        Args:
            config: Validated run configuration
            classifier: Classifier to use instead of loading ``config.model``
            source: Raster source to use instead of opening ``config.source``
            sink: Feature sink to use instead of one for ``config.output.format``
            show_progress: Display a progress bar during dispatch
        """
        self.config = config
        self.show_progress = show_progress

        self.classifier = classifier or load_classifier(config.model)
        self.source = source or get_raster_source(config.source)
        self.sink = sink or get_feature_sink(config.output.format)

        self.dispatcher: Optional[WindowDispatcher] = None
        self.aggregator: Optional[FeatureAggregator] = None
        self._stop_requested = threading.Event()

        logger.info(
            f"Initialized DetectionPipeline: mode={config.detection.mode}, "
            f"dispatch={config.dispatch.mode}, device={self.classifier.device}"
        )

    @property
    def is_landcover(self) -> bool:
        return self.config.detection.mode == RunModes.LANDCOVER

    @property
    def window_size(self) -> Tuple[int, int]:
        """Size of the windows read from the raster."""
        return self.config.model.window_size or self.classifier.native_window_size

    @property
    def batch_size(self) -> int:
        return (
            self.config.dispatch.batch_size
            or self.classifier.metadata.get("batch_size")
            or DEFAULT_BATCH_SIZE
        )

    def _build_geocoder(self) -> Geocoder:
        geometry_type = self.config.output.geometry_type
        if self.is_landcover and geometry_type != GeometryTypes.POLYGON:
            logger.warning("Landcover runs always write polygons")
            geometry_type = GeometryTypes.POLYGON
        return Geocoder(
            self.source.pixel_to_geo_transform(),
            geometry_type=geometry_type,
            crs=self.source.crs,
        )

    def _region_of_interest(self, geocoder: Geocoder) -> PixelRect:
        extent = self.source.pixel_extent()
        bbox = self.config.source.bbox
        if bbox is None:
            return extent
        roi = geocoder.roi_from_bbox(bbox, extent)
        logger.info(f"Region of interest: {roi.to_list()} of {extent.to_list()}")
        return roi

    def _build_scheduler(self, roi: PixelRect) -> WindowScheduler:
        detection = self.config.detection
        extent = self.source.pixel_extent()
        if self.is_landcover:
            return WindowScheduler(
                roi, extent, self.window_size, step_size=self.window_size
            )
        return WindowScheduler(
            roi,
            extent,
            self.window_size,
            step_size=detection.step_size,
            pyramid=detection.pyramid,
        )

    def _build_aggregator(self, geocoder: Geocoder) -> FeatureAggregator:
        detection = self.config.detection
        producer = producer_info() if self.config.output.producer_info else None

        if self.is_landcover:
            return FeatureAggregator(
                geocoder, confidence_threshold=0.0, producer=producer, top_k=1
            )

        radius = detection.point_nms_radius
        if (
            detection.nms
            and radius is None
            and geocoder.geometry_type == GeometryTypes.POINT
        ):
            radius = point_nms_radius(
                geocoder.pixel_size[0] * self.window_size[0], detection.overlap
            )
            logger.debug(f"Point NMS radius: {radius}")

        return FeatureAggregator(
            geocoder,
            confidence_threshold=detection.confidence_threshold,
            nms=detection.nms,
            overlap=detection.overlap,
            point_radius=radius,
            producer=producer,
        )

    def _open_sink(self, geocoder: Geocoder) -> None:
        output = self.config.output
        fields = dict(BASE_FIELDS)
        if output.producer_info:
            fields.update(PRODUCER_FIELDS)
        self.sink.open(
            output.path,
            output.layer,
            geocoder.geometry_type,
            fields,
            crs=self.source.crs,
        )

    def process(self) -> RunSummary:
        """Run detection over the region of interest and write the features.

        Returns:
            RunSummary: Window and detection counts of the run

        Raises:
            ConfigurationError: If the raster cannot be georeferenced or the
                windows do not fit
            SourceError, ClassifierError, SinkError: If the run fails
            RunCancelledError: If the run was cancelled
        """
        start = time.time()
        sink_opened = False
        try:
            geocoder = self._build_geocoder()
            roi = self._region_of_interest(geocoder)
            scheduler = self._build_scheduler(roi)
            self.aggregator = self._build_aggregator(geocoder)

            if len(self.classifier.labels) == 0:
                raise ConfigurationError("The classifier has no labels")

            self._open_sink(geocoder)
            sink_opened = True

            dispatch = self.config.dispatch
            self.dispatcher = WindowDispatcher(
                self.source,
                self.classifier,
                mode=dispatch.mode,
                num_workers=dispatch.resolve_num_workers(self.classifier.use_cpu),
                batch_size=self.batch_size,
                queue_size=dispatch.queue_size,
                window_size=self.classifier.native_window_size,
                show_progress=self.show_progress,
            )
            if self._stop_requested.is_set():
                self.dispatcher.cancel()
            logger.info(
                f"Dispatching {len(scheduler)} windows of {self.window_size} "
                f"over {len(scheduler.levels)} level(s)"
            )
            windows = self.dispatcher.run(scheduler, self.aggregator.add, total=len(scheduler))

            accepted = self.aggregator.finalize()
            self.aggregator.emit(self.sink)
            self.sink.close()
            sink_opened = False
        except BaseException:
            if sink_opened:
                self.sink.abort()
            raise
        finally:
            self.source.close()

        summary = RunSummary(
            windows=windows,
            detections=len(self.aggregator),
            accepted=len(accepted),
            label_counts=self.aggregator.label_counts(),
            elapsed=time.time() - start,
            output_path=self.config.output.path,
        )
        logger.info(
            f"Run finished in {summary.elapsed:.1f}s: {summary.windows} windows, "
            f"{summary.accepted} features written to {summary.output_path}"
        )
        return summary

    def stop(self) -> None:
        """Cancel a running ``process`` call, or the next one if none is running."""
        self._stop_requested.set()
        if self.dispatcher is not None:
            self.dispatcher.cancel()

    def get_pipeline_info(self) -> Dict[str, Any]:
        """Get information about the pipeline."""
        return {
            "mode": str(self.config.detection.mode),
            "dispatch": str(self.config.dispatch.mode),
            "window_size": list(self.window_size),
            "batch_size": self.batch_size,
            "output": self.config.output.path,
            "classifier": self.classifier.get_model_info(),
        }
