"""
Tests for the WindowScheduler.
"""

import numpy as np
import pytest

from geodetect.core.data import PixelRect, WindowUtils, default_step_size
from geodetect.core.exceptions import ConfigurationError
from geodetect.core.scheduler import WindowScheduler


def coverage_mask(extent: PixelRect, windows) -> np.ndarray:
    mask = np.zeros((extent.height, extent.width), dtype=bool)
    for window in windows:
        rect = window.rect
        mask[rect.y : rect.y_end, rect.x : rect.x_end] = True
    return mask


class TestWindowScheduler:
    """Test cases for window placement."""

    def test_exact_grid(self):
        """A 100x100 region with 50x50 windows and step 50 yields four windows."""
        extent = PixelRect(0, 0, 100, 100)
        scheduler = WindowScheduler(extent, extent, (50, 50), step_size=(50, 50))

        windows = list(scheduler)

        assert len(windows) == 4
        assert len(scheduler) == 4
        assert [w.origin for w in windows] == [(0, 0), (50, 0), (0, 50), (50, 50)]
        assert all(w.size == (50, 50) for w in windows)
        assert [w.index for w in windows] == [0, 1, 2, 3]

    def test_last_window_clamped_to_region_end(self):
        extent = PixelRect(0, 0, 100, 100)
        scheduler = WindowScheduler(extent, extent, (30, 30), step_size=(30, 30))

        xs = sorted({w.rect.x for w in scheduler})

        assert xs == [0, 30, 60, 70]
        assert len(scheduler) == 16

    @pytest.mark.parametrize(
        "roi,window,step",
        [
            (PixelRect(0, 0, 100, 100), (32, 32), None),
            (PixelRect(7, 13, 61, 45), (16, 8), (5, 3)),
            (PixelRect(0, 0, 100, 100), (33, 17), (40, 40)),
            (PixelRect(50, 50, 50, 50), (20, 20), (7, 7)),
        ],
    )
    def test_windows_cover_region_inside_extent(self, roi, window, step):
        extent = PixelRect(0, 0, 100, 100)
        scheduler = WindowScheduler(roi, extent, window, step_size=step)
        windows = list(scheduler)

        mask = coverage_mask(extent, windows)
        assert mask[roi.y : roi.y_end, roi.x : roi.x_end].all()
        assert all(extent.contains(w.rect) for w in windows)
        assert all(roi.contains(w.rect) for w in windows)
        assert len(windows) == len(scheduler)

    def test_step_larger_than_window_is_capped(self, caplog):
        """Steps longer than the window would skip pixels between windows."""
        extent = PixelRect(0, 0, 100, 100)
        with caplog.at_level("WARNING", logger="geodetect.core.scheduler"):
            scheduler = WindowScheduler(extent, extent, (33, 17), step_size=(40, 40))

        assert scheduler.step_size == (33, 17)
        assert "larger than the window" in caplog.text
        xs = sorted({w.rect.x for w in scheduler})
        assert xs == [0, 33, 66, 67]
        assert coverage_mask(extent, scheduler).all()

    def test_region_smaller_than_window(self):
        """A region smaller than one window gets a single window clamped to the raster."""
        extent = PixelRect(0, 0, 100, 100)
        roi = PixelRect(90, 90, 5, 5)
        scheduler = WindowScheduler(roi, extent, (20, 20))

        windows = list(scheduler)

        assert len(windows) == 1
        assert windows[0].rect == PixelRect(80, 80, 20, 20)
        assert coverage_mask(extent, windows)[90:95, 90:95].all()

    def test_window_larger_than_raster(self):
        extent = PixelRect(0, 0, 10, 10)
        with pytest.raises(ConfigurationError):
            WindowScheduler(extent, extent, (20, 20))

    def test_region_outside_raster(self):
        extent = PixelRect(0, 0, 100, 100)
        with pytest.raises(ConfigurationError):
            WindowScheduler(PixelRect(90, 90, 20, 20), extent, (10, 10))
        with pytest.raises(ConfigurationError):
            WindowScheduler(PixelRect(10, 10, 0, 5), extent, (10, 10))

    def test_default_step_size(self):
        extent = PixelRect(0, 0, 100, 100)
        assert WindowScheduler(extent, extent, (32, 32)).step_size == (5, 5)
        assert WindowScheduler(extent, extent, (50, 20)).step_size == (5, 4)
        assert default_step_size((1, 3)) == (1, 1)

    def test_restartable(self):
        extent = PixelRect(0, 0, 64, 64)
        scheduler = WindowScheduler(extent, extent, (16, 16), pyramid=True)
        assert list(scheduler) == list(scheduler)

    def test_pyramid_levels(self):
        extent = PixelRect(0, 0, 128, 128)
        scheduler = WindowScheduler(
            extent, extent, (32, 32), step_size=(16, 16), pyramid=True
        )

        assert [level.window_size for level in scheduler.levels] == [
            (32, 32),
            (64, 64),
            (128, 128),
        ]
        assert [level.step_size for level in scheduler.levels] == [
            (16, 16),
            (32, 32),
            (64, 64),
        ]

        windows = list(scheduler)
        assert [w.index for w in windows] == list(range(len(windows)))
        # level by level, scale 1.0 first
        scales = [w.scale for w in windows]
        assert scales == sorted(scales)
        assert scales.count(0) == 49
        assert scales.count(1) == 9
        assert scales.count(2) == 1
        for window in windows:
            assert window.size == scheduler.levels[window.scale].window_size

    def test_pyramid_off_single_level(self):
        extent = PixelRect(0, 0, 128, 128)
        scheduler = WindowScheduler(extent, extent, (32, 32))
        assert len(scheduler.levels) == 1
        assert {w.scale for w in scheduler} == {0}


class TestWindowUtils:
    """Test cases for grid arithmetic."""

    def test_axis_offsets(self):
        assert WindowUtils.axis_offsets(0, 100, 50, 50, 100) == (0, 50)
        assert WindowUtils.axis_offsets(10, 25, 10, 10, 100) == (10, 20, 25)
        assert WindowUtils.axis_offsets(0, 100, 33, 40, 100) == (0, 33, 66, 67)

    def test_axis_offsets_window_too_large(self):
        with pytest.raises(ValueError):
            WindowUtils.axis_offsets(0, 10, 20, 5, 10)

    def test_grid_count_matches_offsets(self):
        for length, window, step in [(100, 30, 30), (61, 16, 5), (10, 20, 5), (64, 64, 3), (100, 33, 40)]:
            offsets = WindowUtils.axis_offsets(0, length, window, step, max(length, window))
            assert WindowUtils.grid_count((length, 1), (window, 1), (step, 1)) == len(
                offsets
            )
