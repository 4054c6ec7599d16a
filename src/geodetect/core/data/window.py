"""
Pixel-space values: rectangles, windows and pyramid levels.
"""

from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True)
class PixelRect:
    """Axis-aligned rectangle in raster pixel space."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"width and height must be non-negative, got {self.width}x{self.height}"
            )

    @property
    def x_end(self) -> int:
        return self.x + self.width

    @property
    def y_end(self) -> int:
        return self.y + self.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def corners(self) -> List[Tuple[int, int]]:
        """Corners in counter-clockwise order in pixel space (y down)."""
        return [
            (self.x, self.y),
            (self.x, self.y_end),
            (self.x_end, self.y_end),
            (self.x_end, self.y),
        ]

    def contains(self, other: "PixelRect") -> bool:
        return (
            self.x <= other.x
            and self.y <= other.y
            and other.x_end <= self.x_end
            and other.y_end <= self.y_end
        )

    def intersection(self, other: "PixelRect") -> "PixelRect":
        """Overlap of two rectangles, empty at the origin of ``self`` if disjoint."""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x_end, other.x_end)
        y2 = min(self.y_end, other.y_end)
        if x2 <= x1 or y2 <= y1:
            return PixelRect(self.x, self.y, 0, 0)
        return PixelRect(x1, y1, x2 - x1, y2 - y1)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def to_list(self) -> List[int]:
        return [self.x, self.y, self.width, self.height]


@dataclass(frozen=True)
class PyramidLevel:
    """One sweep of the scheduler: a scale factor and the step used at it."""

    index: int
    scale: float
    window_size: Tuple[int, int]
    step_size: Tuple[int, int]


@dataclass(frozen=True)
class Window:
    """A pixel rectangle submitted to the classifier.

    ``index`` is the position of the window in scheduler order and is used to
    break ties deterministically downstream.
    """

    rect: PixelRect
    scale: int = 0
    index: int = 0

    @property
    def origin(self) -> Tuple[int, int]:
        return self.rect.x, self.rect.y

    @property
    def size(self) -> Tuple[int, int]:
        return self.rect.size
