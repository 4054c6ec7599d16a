"""
Utility functions for window tiling and crop preparation.
"""

import logging
import math
from functools import lru_cache
from typing import List, Tuple

import numpy as np
import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)


def default_step_size(window_size: Tuple[int, int]) -> Tuple[int, int]:
    """Default sliding step: floor(log2) of each window dimension, at least 1."""
    return tuple(max(1, int(math.floor(math.log2(d)))) for d in window_size)


class WindowUtils:
    """Arithmetic for placing windows on a regular grid."""

    @staticmethod
    @lru_cache(maxsize=128)
    def axis_offsets(
        start: int, length: int, window: int, step: int, extent: int
    ) -> Tuple[int, ...]:
        """
        Offsets along one axis covering ``[start, start + length)``.

        Windows are placed every ``step`` pixels from ``start``. The last one is
        clamped to end at the region end, so it may overlap its predecessor by
        more than ``window - step``. A step longer than the window is capped
        at the window so that consecutive windows stay contiguous. A region
        shorter than one window gets a single window clamped to ``[0, extent)``.

        Args:
            start (int): Region origin.
            length (int): Region length.
            window (int): Window length.
            step (int): Step between window origins.
            extent (int): Raster length along the axis.

        Returns:
            Tuple[int, ...]: Window origins in increasing order.

        Raises:
            ValueError: If the window does not fit in the raster.
        """
        if window > extent:
            raise ValueError(f"Window ({window}) is larger than the raster ({extent})")
        if step <= 0:
            raise ValueError("step must be positive")
        step = min(step, window)

        if length <= window:
            return (max(0, min(start, extent - window)),)

        end = start + length
        offsets = list(range(start, end - window + 1, step))
        if offsets[-1] + window < end:
            offsets.append(end - window)
        return tuple(offsets)

    @staticmethod
    def grid_count(
        length: Tuple[int, int],
        window: Tuple[int, int],
        step: Tuple[int, int],
    ) -> int:
        """Number of windows needed to cover a region of the given size."""
        count = 1
        for n, w, s in zip(length, window, step):
            if n <= w:
                continue
            count *= math.ceil((n - w) / min(s, w)) + 1
        return count


def to_tensor(pixels: np.ndarray) -> torch.Tensor:
    """Convert a (C, H, W) pixel buffer to a float tensor in [0, 1]."""
    tensor = torch.from_numpy(np.ascontiguousarray(pixels)).float()
    if pixels.dtype == np.uint8:
        tensor = tensor / 255.0
    return tensor


def resize_crops(crops: List[torch.Tensor], size: Tuple[int, int]) -> torch.Tensor:
    """Stack crops into a batch, resizing those that differ from ``size`` (w, h)."""
    width, height = size
    resized = []
    with torch.no_grad():
        for crop in crops:
            if crop.shape[-2:] != (height, width):
                crop = F.interpolate(
                    crop.unsqueeze(0),
                    size=(height, width),
                    mode="bilinear",
                    align_corners=False,
                ).squeeze(0)
            resized.append(crop)
    return torch.stack(resized)
