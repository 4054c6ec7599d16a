"""
Raster source backed by a local image file.
"""

import logging
import threading
import traceback
from typing import Optional

import numpy as np
import rasterio as rio
from rasterio.crs import CRS
from rasterio.errors import RasterioError
from rasterio.transform import Affine
from rasterio.windows import Window as RioWindow

from ..data import PixelRect
from ..exceptions import SourceError
from .base import RasterSource

logger = logging.getLogger(__name__)


class LocalRasterSource(RasterSource):
    """Reads windows of a local raster with rasterio.

    Reads are serialized because a rasterio dataset handle is not thread-safe.
    """

    def __init__(self, image_path: str, max_channels: int = 3):
        self.image_path = image_path
        try:
            self.src = rio.open(image_path)
        except (RasterioError, OSError) as e:
            raise SourceError(
                f"Failed to open image {image_path}: {e}",
                details={"path": image_path},
            ) from e

        self.num_channels = min(self.src.count, max_channels)
        self._lock = threading.Lock()
        logger.info(
            f"Opened {image_path}: {self.src.width}x{self.src.height}, "
            f"{self.src.count} bands, crs={self.src.crs}"
        )

    def pixel_extent(self) -> PixelRect:
        return PixelRect(0, 0, self.src.width, self.src.height)

    def pixel_to_geo_transform(self) -> Optional[Affine]:
        transform = self.src.transform
        if self.src.crs is None and transform.is_identity:
            return None
        return transform

    @property
    def crs(self) -> Optional[CRS]:
        return self.src.crs

    def read_window(self, rect: PixelRect) -> np.ndarray:
        if self.src is None:
            raise SourceError(f"Image {self.image_path} is closed")
        try:
            with self._lock:
                return self.src.read(
                    indexes=list(range(1, self.num_channels + 1)),
                    window=RioWindow(rect.x, rect.y, rect.width, rect.height),
                )
        except (RasterioError, OSError) as e:
            logger.debug(traceback.format_exc())
            raise SourceError(
                f"Failed to read window {rect.to_list()} from {self.image_path}: {e}",
                details={"path": self.image_path, "window": rect.to_list()},
            ) from e

    def close(self) -> None:
        if self.src is not None:
            self.src.close()
            self.src = None
