"""
Raster source assembled from XYZ tiles downloaded from a map service.

The mosaic covers the tiles intersecting the requested bounding box at one zoom
level. Pixel coordinates are relative to the top-left tile of the mosaic and
map linearly to Web Mercator (EPSG:3857).
"""

import logging
import math
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import numpy as np
import requests
from PIL import Image
from rasterio.crs import CRS
from rasterio.transform import Affine
from rasterio.warp import transform_bounds
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..data import PixelRect
from ..exceptions import SourceError
from .base import RasterSource

logger = logging.getLogger(__name__)

WEB_MERCATOR = CRS.from_epsg(3857)
WGS84 = CRS.from_epsg(4326)
ORIGIN_SHIFT = 20037508.342789244  # half the Web Mercator world width, in meters
MAX_LATITUDE = 85.0511287798066

TileKey = Tuple[int, int]


def create_session(
    max_downloads: int,
    max_retries: int = 3,
    credentials: Optional[str] = None,
) -> requests.Session:
    """HTTP session sized for ``max_downloads`` connections, retrying transient failures."""
    retry = Retry(
        total=max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
        raise_on_status=True,
    )
    adapter = HTTPAdapter(
        pool_connections=max_downloads, pool_maxsize=max_downloads, max_retries=retry
    )
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    if credentials:
        user, _, password = credentials.partition(":")
        session.auth = (user, password)
    return session


class MapServiceRasterSource(RasterSource):
    """Tile mosaic with a shared, request-coalescing tile cache.

    Concurrent windows needing the same tile wait on a single download.
    Downloads run on their own pool bounded by ``max_downloads``, independent of
    the classification concurrency.
    """

    def __init__(
        self,
        url_template: str,
        bbox: Tuple[float, float, float, float],
        zoom: int = 18,
        max_downloads: int = 10,
        tile_size: int = 256,
        token: Optional[str] = None,
        credentials: Optional[str] = None,
        max_retries: int = 3,
        timeout: int = 60,
        cache_size: int = 1024,
        session: Optional[requests.Session] = None,
    ):
        self.url_template = url_template
        self.zoom = zoom
        self.tile_size = tile_size
        self.token = token
        self.timeout = timeout
        self.cache_size = cache_size
        self.max_downloads = max_downloads

        self.resolution = 2 * ORIGIN_SHIFT / (tile_size * 2**zoom)

        west, south, east, north = bbox
        south = max(south, -MAX_LATITUDE)
        north = min(north, MAX_LATITUDE)
        minx, miny, maxx, maxy = transform_bounds(
            WGS84, WEB_MERCATOR, west, south, east, north
        )
        gx0, gy0 = self._global_pixel(minx, maxy)
        gx1, gy1 = self._global_pixel(maxx, miny)
        max_index = 2**zoom - 1
        self.tile_x0 = min(max_index, max(0, math.floor(gx0 / tile_size)))
        self.tile_y0 = min(max_index, max(0, math.floor(gy0 / tile_size)))
        self.tile_x1 = min(max_index, max(0, math.ceil(gx1 / tile_size) - 1))
        self.tile_y1 = min(max_index, max(0, math.ceil(gy1 / tile_size) - 1))
        self.tile_x1 = max(self.tile_x1, self.tile_x0)
        self.tile_y1 = max(self.tile_y1, self.tile_y0)

        self.session = session or create_session(max_downloads, max_retries, credentials)
        self.executor = ThreadPoolExecutor(
            max_workers=max_downloads, thread_name_prefix="tile-download"
        )
        self._tiles: "OrderedDict[TileKey, Future]" = OrderedDict()
        self._lock = threading.Lock()
        self.downloads = 0

        extent = self.pixel_extent()
        logger.info(
            f"Map service mosaic at zoom {zoom}: "
            f"{self.tile_x1 - self.tile_x0 + 1}x{self.tile_y1 - self.tile_y0 + 1} tiles, "
            f"{extent.width}x{extent.height} pixels, {max_downloads} concurrent downloads"
        )

    def _global_pixel(self, mx: float, my: float) -> Tuple[float, float]:
        return (mx + ORIGIN_SHIFT) / self.resolution, (ORIGIN_SHIFT - my) / self.resolution

    def pixel_extent(self) -> PixelRect:
        return PixelRect(
            0,
            0,
            (self.tile_x1 - self.tile_x0 + 1) * self.tile_size,
            (self.tile_y1 - self.tile_y0 + 1) * self.tile_size,
        )

    def pixel_to_geo_transform(self) -> Affine:
        origin_x = self.tile_x0 * self.tile_size * self.resolution - ORIGIN_SHIFT
        origin_y = ORIGIN_SHIFT - self.tile_y0 * self.tile_size * self.resolution
        return Affine(self.resolution, 0.0, origin_x, 0.0, -self.resolution, origin_y)

    @property
    def crs(self) -> CRS:
        return WEB_MERCATOR

    def tile_url(self, x: int, y: int) -> str:
        return self.url_template.format(z=self.zoom, x=x, y=y, token=self.token or "")

    def _download(self, key: TileKey) -> np.ndarray:
        url = self.tile_url(*key)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            image = Image.open(BytesIO(response.content)).convert("RGB")
        except requests.RequestException as e:
            raise SourceError(
                f"Failed to download tile z={self.zoom} x={key[0]} y={key[1]}: {e}",
                details={"url": url},
            ) from e
        except OSError as e:
            raise SourceError(
                f"Failed to decode tile z={self.zoom} x={key[0]} y={key[1]}: {e}",
                details={"url": url},
            ) from e

        if image.size != (self.tile_size, self.tile_size):
            image = image.resize((self.tile_size, self.tile_size))
        with self._lock:
            self.downloads += 1
        return np.asarray(image).transpose(2, 0, 1)

    def _request_tile(self, key: TileKey) -> Future:
        """Future for a tile, starting its download unless one is cached or in flight."""
        with self._lock:
            future = self._tiles.get(key)
            if future is not None:
                self._tiles.move_to_end(key)
                return future

            future = self.executor.submit(self._download, key)
            self._tiles[key] = future
            self._evict()
            return future

    def _evict(self) -> None:
        while len(self._tiles) > self.cache_size:
            for key, future in self._tiles.items():
                if future.done():
                    del self._tiles[key]
                    logger.debug(f"Evicted tile {key}")
                    break
            else:
                return

    def read_window(self, rect: PixelRect) -> np.ndarray:
        ts = self.tile_size
        first_x = self.tile_x0 + rect.x // ts
        first_y = self.tile_y0 + rect.y // ts
        last_x = self.tile_x0 + (rect.x_end - 1) // ts
        last_y = self.tile_y0 + (rect.y_end - 1) // ts

        futures: Dict[TileKey, Future] = {}
        for ty in range(first_y, last_y + 1):
            for tx in range(first_x, last_x + 1):
                futures[(tx, ty)] = self._request_tile((tx, ty))

        buffer = np.zeros((3, rect.height, rect.width), dtype=np.uint8)
        for (tx, ty), future in futures.items():
            tile = future.result()
            # tile position relative to the window
            left = (tx - self.tile_x0) * ts - rect.x
            top = (ty - self.tile_y0) * ts - rect.y
            src_x0, src_y0 = max(0, -left), max(0, -top)
            dst_x0, dst_y0 = max(0, left), max(0, top)
            w = min(ts - src_x0, rect.width - dst_x0)
            h = min(ts - src_y0, rect.height - dst_y0)
            buffer[:, dst_y0 : dst_y0 + h, dst_x0 : dst_x0 + w] = tile[
                :, src_y0 : src_y0 + h, src_x0 : src_x0 + w
            ]
        return buffer

    def cached_tiles(self) -> List[TileKey]:
        with self._lock:
            return list(self._tiles.keys())

    def close(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()
