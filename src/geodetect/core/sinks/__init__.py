"""
Feature sinks.
"""

from ..config import OutputFormats
from .base import BASE_FIELDS, PRODUCER_FIELDS, FeatureSink
from .geopandas_sink import GeoPandasFeatureSink

__all__ = [
    "FeatureSink",
    "GeoPandasFeatureSink",
    "BASE_FIELDS",
    "PRODUCER_FIELDS",
    "get_feature_sink",
]


def get_feature_sink(output_format: OutputFormats) -> FeatureSink:
    """Get a feature sink for an output format."""
    return GeoPandasFeatureSink(output_format=output_format)
