from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, Flag, auto
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint
from takeoff.geometry.measure import distance, nearest_point_on_segment
from takeoff.markups.models import markup_snap_points
from takeoff.vector.extractor import VectorIndex


class SnapMode(Flag):
    NONE = 0
    DOCUMENT = auto()
    MARKUP = auto()
    GRID = auto()

    @classmethod
    def from_flags(cls, snap_enabled: bool, grid_enabled: bool) -> "SnapMode":
        mode = cls.NONE
        if snap_enabled:
            mode |= cls.DOCUMENT | cls.MARKUP
        if grid_enabled:
            mode |= cls.GRID
        return mode


class SnapSource(str, Enum):
    DOCUMENT_ENDPOINT = "document-endpoint"
    INTERSECTION = "intersection"
    DOCUMENT_LINE = "document-line"
    CORNER = "corner"
    MIDPOINT = "midpoint"
    CENTER = "center"
    ENDPOINT = "endpoint"
    GRID = "grid"


@dataclass(frozen=True)
class SnapPoint:
    point: NativePoint
    source: SnapSource


@dataclass(frozen=True)
class SnapResult:
    point: NativePoint
    source: Optional[SnapSource] = None

    @property
    def snapped(self) -> bool:
        return self.source is not None


def _closest(point: NativePoint, candidates: Iterable[NativePoint], radius: float) -> Optional[NativePoint]:
    best: Tuple[float, NativePoint] | None = None
    for candidate in candidates:
        d = distance(point, candidate)
        if d < radius and (best is None or d < best[0]):
            best = (d, candidate)
    return best[1] if best else None


def nearest_on_lines(point: NativePoint, index: VectorIndex, radius: float) -> Optional[NativePoint]:
    best: Tuple[float, NativePoint] | None = None
    for line in index.lines:
        nx, ny = nearest_point_on_segment(point, line.start, line.end)
        d = math.hypot(point.x - nx, point.y - ny)
        if d < radius and (best is None or d < best[0]):
            best = (d, NativePoint(nx, ny))
    return best[1] if best else None


def grid_point(point: NativePoint, grid_size: float) -> NativePoint:
    return NativePoint(round(point.x / grid_size) * grid_size, round(point.y / grid_size) * grid_size)


def compute_markup_snap_points(markups: Sequence[Any]) -> Tuple[SnapPoint, ...]:
    """Full recomputation of a page's markup-derived snap points."""
    points: List[SnapPoint] = []
    for markup in markups:
        for point, kind in markup_snap_points(markup):
            points.append(SnapPoint(point, SnapSource(kind)))
    return tuple(points)


class SnapEngine:
    """
    Resolve a candidate point against, in order: document endpoints, document
    intersections, document lines, markup snap points and the grid. The first
    category with a candidate inside the radius wins; within a category the
    closest candidate wins.
    """

    def __init__(self, *, radius: float = contract.SNAP_RADIUS, grid_size: float = contract.GRID_SIZE) -> None:
        self.radius = radius
        self.grid_size = grid_size
        self._markup_points: Dict[Tuple[str, int], Tuple[SnapPoint, ...]] = {}
        self._vector_indexes: Dict[Tuple[str, int], VectorIndex] = {}

    # -------------------------------------------------------------- sources

    def update_markup_points(self, document_id: str, page: int, markups: Sequence[Any]) -> None:
        self._markup_points[(document_id, page)] = compute_markup_snap_points(markups)

    def markup_points(self, document_id: str, page: int) -> Tuple[SnapPoint, ...]:
        return self._markup_points.get((document_id, page), ())

    def set_vector_index(self, document_id: str, page: int, index: Optional[VectorIndex]) -> None:
        if index is not None:
            self._vector_indexes[(document_id, page)] = index

    def vector_index(self, document_id: str, page: int) -> Optional[VectorIndex]:
        return self._vector_indexes.get((document_id, page))

    def forget_document(self, document_id: str) -> None:
        for store in (self._markup_points, self._vector_indexes):
            for key in [k for k in store if k[0] == document_id]:
                del store[key]

    # -------------------------------------------------------------- resolve

    def resolve_snap(
        self,
        document_id: str,
        page: int,
        point: NativePoint,
        modes: SnapMode,
        *,
        radius: Optional[float] = None,
    ) -> SnapResult:
        point = NativePoint(float(point[0]), float(point[1]))
        radius = self.radius if radius is None else radius

        if SnapMode.DOCUMENT in modes:
            index = self._vector_indexes.get((document_id, page))
            if index is not None:
                hit = _closest(point, index.endpoints, radius)
                if hit is not None:
                    return SnapResult(hit, SnapSource.DOCUMENT_ENDPOINT)
                hit = _closest(point, index.intersections, radius)
                if hit is not None:
                    return SnapResult(hit, SnapSource.INTERSECTION)
                hit = nearest_on_lines(point, index, radius)
                if hit is not None:
                    return SnapResult(hit, SnapSource.DOCUMENT_LINE)

        if SnapMode.MARKUP in modes:
            best: Tuple[float, SnapPoint] | None = None
            for candidate in self._markup_points.get((document_id, page), ()):
                d = distance(point, candidate.point)
                if d < radius and (best is None or d < best[0]):
                    best = (d, candidate)
            if best is not None:
                return SnapResult(best[1].point, best[1].source)

        if SnapMode.GRID in modes and self.grid_size > 0:
            snapped = grid_point(point, self.grid_size)
            if distance(point, snapped) < radius:
                return SnapResult(snapped, SnapSource.GRID)

        return SnapResult(point, None)


__all__ = [
    "SnapEngine",
    "SnapMode",
    "SnapPoint",
    "SnapResult",
    "SnapSource",
    "compute_markup_snap_points",
    "grid_point",
]
