from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from shapely.geometry import LineString, Polygon

from takeoff.exceptions import GeometryError
from takeoff.geometry.contract import DEFAULT_UNIT, PARALLEL_EPSILON, area_unit

Point2 = Tuple[float, float]


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.hypot(float(b[0]) - float(a[0]), float(b[1]) - float(a[1]))


def nearest_point_on_segment(point: Sequence[float], start: Sequence[float], end: Sequence[float]) -> Point2:
    """Project ``point`` onto the segment ``start``-``end``, clamped to its ends."""
    sx, sy = float(start[0]), float(start[1])
    dx = float(end[0]) - sx
    dy = float(end[1]) - sy
    length_sq = dx * dx + dy * dy
    if length_sq == 0.0:
        return sx, sy
    t = ((float(point[0]) - sx) * dx + (float(point[1]) - sy) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return sx + t * dx, sy + t * dy


def segment_intersection(
    a1: Sequence[float],
    a2: Sequence[float],
    b1: Sequence[float],
    b2: Sequence[float],
) -> Optional[Point2]:
    """
    Intersection point of two finite segments.

    Parallel and collinear pairs return None; overlapping collinear runs are
    not intersections for snapping purposes.
    """
    x1, y1 = float(a1[0]), float(a1[1])
    x2, y2 = float(a2[0]), float(a2[1])
    x3, y3 = float(b1[0]), float(b1[1])
    x4, y4 = float(b2[0]), float(b2[1])
    denom = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if abs(denom) < PARALLEL_EPSILON:
        return None
    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denom
    u = -((x1 - x2) * (y1 - y3) - (y1 - y2) * (x1 - x3)) / denom
    if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
        return x1 + t * (x2 - x1), y1 + t * (y2 - y1)
    return None


def polyline_length(points: Sequence[Sequence[float]]) -> float:
    if len(points) < 2:
        return 0.0
    return float(LineString([(float(p[0]), float(p[1])) for p in points]).length)


def polygon_area(points: Sequence[Sequence[float]]) -> float:
    """Unsigned area of the closed ring through ``points``."""
    if len(points) < 3:
        return 0.0
    return float(abs(Polygon([(float(p[0]), float(p[1])) for p in points]).area))


def midpoint(a: Sequence[float], b: Sequence[float]) -> Point2:
    return (float(a[0]) + float(b[0])) / 2.0, (float(a[1]) + float(b[1])) / 2.0


@dataclass(frozen=True)
class Calibration:
    """Pixels (native units) per real-world unit."""

    scale: float = 1.0
    unit: str = DEFAULT_UNIT

    @classmethod
    def from_points(
        cls,
        p1: Sequence[float],
        p2: Sequence[float],
        known_distance: float,
        unit: str = DEFAULT_UNIT,
    ) -> "Calibration":
        if known_distance <= 0:
            raise GeometryError(
                "Calibration distance must be positive",
                {"known_distance": str(known_distance)},
            )
        pixels = distance(p1, p2)
        if pixels <= 0:
            raise GeometryError("Calibration points must not coincide")
        return cls(scale=pixels / known_distance, unit=unit)

    @property
    def area_unit(self) -> str:
        return area_unit(self.unit)

    def to_real(self, pixels: float) -> float:
        return pixels / self.scale

    def to_pixels(self, real: float) -> float:
        return real * self.scale

    def area_to_real(self, square_pixels: float) -> float:
        return square_pixels / (self.scale * self.scale)


__all__ = [
    "Calibration",
    "distance",
    "midpoint",
    "nearest_point_on_segment",
    "segment_intersection",
    "polyline_length",
    "polygon_area",
]
