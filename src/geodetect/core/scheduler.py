"""
Window scheduling: the ordered set of classification windows covering a region.
"""

import logging
from typing import Iterator, List, Optional, Tuple

from .data import PixelRect, PyramidLevel, Window, WindowUtils, default_step_size
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class WindowScheduler:
    """Lazy, restartable sequence of windows covering a region of interest.

    Windows are emitted level by level (scale 1.0 first), row-major within a
    level. Every window lies inside the raster extent.
    """

    def __init__(
        self,
        roi: PixelRect,
        extent: PixelRect,
        window_size: Tuple[int, int],
        step_size: Optional[Tuple[int, int]] = None,
        pyramid: bool = False,
    ):
        """
        Args:
            roi: Region of interest in raster pixel space
            extent: Pixel extent of the raster
            window_size: Native (width, height) of the classifier window
            step_size: Step between windows, defaults to log2 of the window size
            pyramid: Sweep the region again at successive doublings of the window

        Raises:
            ConfigurationError: If the window does not fit in the raster or the
                region is empty or outside the raster
        """
        width, height = window_size
        if width > extent.width or height > extent.height:
            raise ConfigurationError(
                f"Window size {width}x{height} is larger than the raster "
                f"{extent.width}x{extent.height}",
                details={"window_size": window_size, "extent": extent.size},
            )
        if roi.is_empty:
            raise ConfigurationError(f"Region of interest is empty: {roi}")
        if not extent.contains(roi):
            raise ConfigurationError(
                f"Region of interest {roi} is not contained in the raster extent {extent}"
            )

        self.roi = roi
        self.extent = extent
        self.window_size = (width, height)
        self.step_size = step_size or default_step_size(self.window_size)
        if self.step_size[0] > width or self.step_size[1] > height:
            capped = (min(self.step_size[0], width), min(self.step_size[1], height))
            logger.warning(
                f"Step size {self.step_size} is larger than the window "
                f"{self.window_size}, using {capped}"
            )
            self.step_size = capped
        self.pyramid = pyramid
        self.levels = self._build_levels()

        logger.debug(
            f"Scheduler: roi={roi.to_list()}, window={self.window_size}, "
            f"step={self.step_size}, levels={len(self.levels)}"
        )

    def _build_levels(self) -> List[PyramidLevel]:
        levels = [PyramidLevel(0, 1.0, self.window_size, self.step_size)]
        if not self.pyramid:
            return levels

        scale = 2
        while True:
            size = (self.window_size[0] * scale, self.window_size[1] * scale)
            if size[0] > self.roi.width or size[1] > self.roi.height:
                break
            step = (self.step_size[0] * scale, self.step_size[1] * scale)
            levels.append(PyramidLevel(len(levels), float(scale), size, step))
            scale *= 2
        return levels

    def level_count(self, level: PyramidLevel) -> int:
        return WindowUtils.grid_count(
            self.roi.size, level.window_size, level.step_size
        )

    def __len__(self) -> int:
        return sum(self.level_count(level) for level in self.levels)

    def _level_windows(self, level: PyramidLevel) -> Iterator[PixelRect]:
        width, height = level.window_size
        xs = WindowUtils.axis_offsets(
            self.roi.x, self.roi.width, width, level.step_size[0], self.extent.x_end
        )
        ys = WindowUtils.axis_offsets(
            self.roi.y, self.roi.height, height, level.step_size[1], self.extent.y_end
        )
        for y in ys:
            for x in xs:
                yield PixelRect(x, y, width, height)

    def __iter__(self) -> Iterator[Window]:
        index = 0
        for level in self.levels:
            for rect in self._level_windows(level):
                yield Window(rect=rect, scale=level.index, index=index)
                index += 1
