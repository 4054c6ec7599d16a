"""
Raster source interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from rasterio.crs import CRS
from rasterio.transform import Affine

from ..data import PixelRect


class RasterSource(ABC):
    """Pixel data for arbitrary windows of a georeferenced raster."""

    @abstractmethod
    def read_window(self, rect: PixelRect) -> np.ndarray:
        """Read a window as a (C, H, W) array. Must be safe to call from several threads."""

    @abstractmethod
    def pixel_extent(self) -> PixelRect:
        """Full pixel extent, with origin at (0, 0)."""

    @abstractmethod
    def pixel_to_geo_transform(self) -> Optional[Affine]:
        """Affine pixel -> CRS transform, or None if the raster is not georeferenced."""

    @property
    def crs(self) -> Optional[CRS]:
        return None

    def close(self) -> None:
        return None
