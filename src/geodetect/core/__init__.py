"""
Core detection functionality for GeoDetect.
"""

from .aggregator import FeatureAggregator, non_maximum_suppression
from .classifiers import Classifier, TorchScriptClassifier
from .config import RunConfig
from .detection_pipeline import DetectionPipeline, RunSummary
from .dispatcher import WindowDispatcher
from .gps import Geocoder
from .raster import LocalRasterSource, MapServiceRasterSource, RasterSource
from .scheduler import WindowScheduler
from .sinks import FeatureSink, GeoPandasFeatureSink

__all__ = [
    "RunConfig",
    "DetectionPipeline",
    "RunSummary",
    "WindowScheduler",
    "WindowDispatcher",
    "Geocoder",
    "FeatureAggregator",
    "non_maximum_suppression",
    "Classifier",
    "TorchScriptClassifier",
    "RasterSource",
    "LocalRasterSource",
    "MapServiceRasterSource",
    "FeatureSink",
    "GeoPandasFeatureSink",
]
