"""
Shared fixtures: synthetic GeoTIFFs and deterministic classifiers.
"""

import json
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pytest
import rasterio as rio
import torch
from rasterio.crs import CRS
from rasterio.transform import from_origin

from geodetect.core.classifiers import Classifier
from geodetect.core.data import PixelRect, Prediction
from geodetect.core.exceptions import SourceError
from geodetect.core.raster import RasterSource

ORIGIN_X = 500000.0
ORIGIN_Y = 4000000.0
UTM_33N = CRS.from_epsg(32633)


def write_geotiff(
    path: Path,
    pixels: np.ndarray,
    transform=None,
    crs: Optional[CRS] = UTM_33N,
) -> str:
    """Write a (C, H, W) uint8 array as a GeoTIFF."""
    count, height, width = pixels.shape
    profile = dict(
        driver="GTiff",
        width=width,
        height=height,
        count=count,
        dtype="uint8",
    )
    if transform is not None:
        profile["transform"] = transform
    if crs is not None:
        profile["crs"] = crs
    with rio.open(path, "w", **profile) as dst:
        dst.write(pixels)
    return str(path)


def bright_square(size: int = 128, start: int = 32, stop: int = 64) -> np.ndarray:
    """Dark raster with one bright square."""
    pixels = np.zeros((3, size, size), dtype=np.uint8)
    pixels[:, start:stop, start:stop] = 255
    return pixels


class MeanClassifier(Classifier):
    """Reports the mean brightness of each window as the confidence of one label."""

    def __init__(
        self,
        window_size: Tuple[int, int] = (32, 32),
        labels: Sequence[str] = ("bright",),
        delay: float = 0.0,
    ):
        self._window_size = window_size
        self._labels = list(labels)
        self.delay = delay
        self.calls = 0
        self.batch_shapes: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @property
    def native_window_size(self) -> Tuple[int, int]:
        return self._window_size

    @property
    def labels(self) -> List[str]:
        return self._labels

    def classify(self, batch: torch.Tensor) -> List[List[Prediction]]:
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.batch_shapes.append(tuple(batch.shape))
        try:
            if self.delay:
                time.sleep(self.delay)
            results = []
            for crop in batch:
                mean = min(1.0, max(0.0, float(crop.mean())))
                predictions = [Prediction(self._labels[0], mean)]
                if len(self._labels) > 1:
                    predictions.append(Prediction(self._labels[1], 1.0 - mean))
                predictions.sort(key=lambda p: -p.confidence)
                results.append(predictions)
            return results
        finally:
            with self._lock:
                self.in_flight -= 1


class FailingClassifier(MeanClassifier):
    """Fails on the ``fail_on``-th call."""

    def __init__(self, fail_on: int = 2, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on

    def classify(self, batch: torch.Tensor) -> List[List[Prediction]]:
        with self._lock:
            call = self.calls + 1
        if call >= self.fail_on:
            with self._lock:
                self.calls += 1
            raise RuntimeError("CUDA out of memory")
        return super().classify(batch)


@pytest.fixture
def bright_raster(tmp_path) -> str:
    """128x128 UTM raster, 1 m pixels, bright square at pixels [32, 64)."""
    return write_geotiff(
        tmp_path / "bright.tif",
        bright_square(),
        transform=from_origin(ORIGIN_X, ORIGIN_Y, 1.0, 1.0),
    )


@pytest.fixture
def torchscript_model(tmp_path) -> str:
    """Small scripted classifier with embedded metadata."""
    model = torch.nn.Sequential(
        torch.nn.AdaptiveAvgPool2d(1),
        torch.nn.Flatten(),
        torch.nn.Linear(3, 2),
    )
    scripted = torch.jit.script(model.eval())
    metadata = {"labels": ["tree", "other"], "window_size": [32, 32], "batch_size": 4}
    path = tmp_path / "model.pt"
    torch.jit.save(scripted, str(path), _extra_files={"metadata.json": json.dumps(metadata)})
    return str(path)


class ArraySource(RasterSource):
    """In-memory raster with an optional failing window."""

    def __init__(self, pixels: np.ndarray, transform=None, fail_at: Optional[PixelRect] = None):
        self.pixels = pixels
        self.transform = transform or from_origin(ORIGIN_X, ORIGIN_Y, 1.0, 1.0)
        self.fail_at = fail_at
        self.reads = 0
        self.closed = False

    def read_window(self, rect: PixelRect) -> np.ndarray:
        if rect == self.fail_at:
            raise SourceError(f"Failed to read window {rect.to_list()}")
        self.reads += 1
        return self.pixels[:, rect.y : rect.y_end, rect.x : rect.x_end]

    def pixel_extent(self) -> PixelRect:
        _, height, width = self.pixels.shape
        return PixelRect(0, 0, width, height)

    def pixel_to_geo_transform(self):
        return self.transform

    @property
    def crs(self):
        return UTM_33N

    def close(self) -> None:
        self.closed = True
