"""
Mapping between raster pixel space and geographic space.
"""

import logging
import math
from typing import Optional, Tuple

from rasterio.crs import CRS
from rasterio.transform import Affine
from rasterio.warp import transform_bounds
from shapely.geometry import Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from ..config import GeometryTypes
from ..data import PixelRect
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

WGS84 = CRS.from_epsg(4326)


class Geocoder:
    """Projects window rectangles through a fixed pixel -> geographic affine transform."""

    def __init__(
        self,
        transform: Optional[Affine],
        geometry_type: GeometryTypes = GeometryTypes.POLYGON,
        crs: Optional[CRS] = None,
    ):
        if transform is None:
            raise ConfigurationError(
                "The raster has no pixel to geographic transform (missing spatial reference)."
            )
        if transform.is_degenerate:
            raise ConfigurationError(f"Pixel to geographic transform is degenerate: {transform}")

        self.transform = transform
        self.inverse = ~transform
        self.geometry_type = GeometryTypes(geometry_type)
        self.crs = crs

    @property
    def pixel_size(self) -> Tuple[float, float]:
        """Ground size of one pixel along x and y, in CRS units."""
        a, b, _, d, e, _ = self.transform[:6]
        return math.hypot(a, d), math.hypot(b, e)

    def to_geo(self, x: float, y: float) -> Tuple[float, float]:
        return self.transform @ (x, y)

    def to_pixel(self, x: float, y: float) -> Tuple[float, float]:
        return self.inverse @ (x, y)

    def footprint(self, rect: PixelRect) -> Polygon:
        """Window corners in geographic space, counter-clockwise."""
        polygon = Polygon([self.to_geo(x, y) for x, y in rect.corners()])
        return orient(polygon, sign=1.0)

    def center(self, rect: PixelRect) -> Point:
        return Point(self.to_geo(*rect.center))

    def geocode(self, rect: PixelRect) -> BaseGeometry:
        """Geometry of a window according to the configured output type."""
        if self.geometry_type == GeometryTypes.POINT:
            return self.center(rect)
        return self.footprint(rect)

    def to_pixel_rect(self, geometry: BaseGeometry) -> PixelRect:
        """Pixel rectangle enclosing a geographic geometry, rounded to whole pixels."""
        xs, ys = [], []
        minx, miny, maxx, maxy = geometry.bounds
        for gx, gy in ((minx, miny), (minx, maxy), (maxx, maxy), (maxx, miny)):
            px, py = self.to_pixel(gx, gy)
            xs.append(px)
            ys.append(py)
        x1, y1 = round(min(xs)), round(min(ys))
        x2, y2 = round(max(xs)), round(max(ys))
        return PixelRect(x1, y1, x2 - x1, y2 - y1)

    def roi_from_bbox(
        self,
        bbox: Tuple[float, float, float, float],
        extent: PixelRect,
    ) -> PixelRect:
        """
        Clip a WGS84 bounding box to the raster and return it in pixel space.

        Args:
            bbox: (west, south, east, north) in WGS84
            extent: Raster pixel extent

        Returns:
            PixelRect: Region of interest contained in ``extent``

        Raises:
            ConfigurationError: If the box does not intersect the raster
        """
        west, south, east, north = bbox
        if self.crs is not None and self.crs != WGS84:
            west, south, east, north = transform_bounds(
                WGS84, self.crs, west, south, east, north
            )

        xs, ys = [], []
        for gx, gy in ((west, south), (west, north), (east, north), (east, south)):
            px, py = self.to_pixel(gx, gy)
            xs.append(px)
            ys.append(py)

        x1, y1 = math.floor(min(xs)), math.floor(min(ys))
        x2, y2 = math.ceil(max(xs)), math.ceil(max(ys))
        requested = PixelRect(x1, y1, max(0, x2 - x1), max(0, y2 - y1))
        roi = extent.intersection(requested)
        if roi.is_empty:
            raise ConfigurationError(
                f"Bounding box {bbox} does not intersect the raster",
                details={"bbox": bbox, "extent": extent.to_list()},
            )
        logger.info(f"Region of interest from bounding box: {roi.to_list()}")
        return roi
