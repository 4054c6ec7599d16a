"""
Raster sources.
"""

from ..config import SourceConfig, SourceTypes
from .base import RasterSource
from .local import LocalRasterSource
from .map_service import MapServiceRasterSource, create_session

__all__ = [
    "RasterSource",
    "LocalRasterSource",
    "MapServiceRasterSource",
    "create_session",
    "get_raster_source",
]


def get_raster_source(config: SourceConfig) -> RasterSource:
    """Get a raster source based on the source type."""
    if config.source_type == SourceTypes.SERVICE:
        return MapServiceRasterSource(
            url_template=config.url_template,
            bbox=config.bbox,
            zoom=config.zoom,
            max_downloads=config.max_downloads,
            tile_size=config.tile_size,
            token=config.token,
            credentials=config.credentials,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )
    return LocalRasterSource(config.image_path)
