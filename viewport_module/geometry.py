# viewport_module/geometry.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Point:
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class Size:
    """Pixel size of the rendering surface or of the diagram's bounding box."""
    w: float = 0.0
    h: float = 0.0

    @property
    def empty(self) -> bool:
        return not self.w or not self.h or self.w <= 0 or self.h <= 0

    @property
    def center(self) -> Point:
        return Point(self.w / 2, self.h / 2)
