"""
Vector snap data extracted from a PDF page's content stream.

Path construction operators are replayed through the graphics-state stack;
every drawn segment becomes a snap line. Output coordinates are document
native (base render scale, top-left origin) so they compare directly with
markup geometry.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from loguru import logger
from pypdf import PageObject, PdfReader
from pypdf.generic import ContentStream
from shapely import STRtree
from shapely.geometry import LineString

from takeoff.exceptions import DocumentDecodeError
from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint
from takeoff.geometry.measure import distance, segment_intersection

Matrix = Tuple[float, float, float, float, float, float]
IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

_CLOSING = {b"h", b"s", b"b", b"b*"}
_PAINTING = {b"S", b"s", b"f", b"F", b"f*", b"B", b"B*", b"b", b"b*"}


class DocumentLine(NamedTuple):
    start: NativePoint
    end: NativePoint


@dataclass(frozen=True)
class VectorIndex:
    lines: Tuple[DocumentLine, ...] = ()
    endpoints: Tuple[NativePoint, ...] = ()
    intersections: Tuple[NativePoint, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class ExtractionLimits:
    min_line_length: float = contract.MIN_LINE_LENGTH
    max_lines_per_page: int = contract.MAX_LINES_PER_PAGE
    curve_samples: int = contract.CURVE_SAMPLE_POINTS
    max_intersections: int = contract.MAX_INTERSECTIONS
    max_intersection_lines: int = contract.MAX_INTERSECTION_LINES

    @classmethod
    def from_settings(cls, settings: object) -> "ExtractionLimits":
        if settings is None:
            return cls()
        return cls(
            min_line_length=float(getattr(settings, "min_line_length", contract.MIN_LINE_LENGTH)),
            max_lines_per_page=int(getattr(settings, "max_lines_per_page", contract.MAX_LINES_PER_PAGE)),
            curve_samples=int(getattr(settings, "curve_samples", contract.CURVE_SAMPLE_POINTS)),
            max_intersections=int(getattr(settings, "max_intersections", contract.MAX_INTERSECTIONS)),
            max_intersection_lines=int(
                getattr(settings, "max_intersection_lines", contract.MAX_INTERSECTION_LINES)
            ),
        )


def _multiply(m: Matrix, ctm: Matrix) -> Matrix:
    """Concatenate ``m`` onto ``ctm`` (the ``cm`` operator)."""
    a, b, c, d, e, f = m
    ca, cb, cc, cd, ce, cf = ctm
    return (
        ca * a + cc * b,
        cb * a + cd * b,
        ca * c + cc * d,
        cb * c + cd * d,
        ca * e + cc * f + ce,
        cb * e + cd * f + cf,
    )


def _apply(ctm: Matrix, x: float, y: float) -> Tuple[float, float]:
    a, b, c, d, e, f = ctm
    return a * x + c * y + e, b * x + d * y + f


def sample_cubic(
    start: Tuple[float, float],
    cp1: Tuple[float, float],
    cp2: Tuple[float, float],
    end: Tuple[float, float],
    samples: int = contract.CURVE_SAMPLE_POINTS,
) -> List[Tuple[float, float]]:
    points = [start]
    for i in range(1, samples + 1):
        t = i / samples
        mt = 1.0 - t
        points.append(
            (
                mt**3 * start[0] + 3 * mt**2 * t * cp1[0] + 3 * mt * t**2 * cp2[0] + t**3 * end[0],
                mt**3 * start[1] + 3 * mt**2 * t * cp1[1] + 3 * mt * t**2 * cp2[1] + t**3 * end[1],
            )
        )
    return points


def _key(point: Sequence[float]) -> str:
    return f"{point[0]:.{contract.POINT_KEY_PRECISION}f},{point[1]:.{contract.POINT_KEY_PRECISION}f}"


class _PathCollector:
    """Stages path segments and keeps them only once the path is painted."""

    def __init__(self, limits: ExtractionLimits, left: float, top: float, base_scale: float) -> None:
        self.limits = limits
        self.left = left
        self.top = top
        self.base_scale = base_scale
        self.lines: List[DocumentLine] = []
        self.endpoints: Dict[str, NativePoint] = {}
        self.pending: List[Tuple[Tuple[float, float], Tuple[float, float]]] = []
        self.dropped = 0

    def _native(self, point: Tuple[float, float]) -> NativePoint:
        return NativePoint((point[0] - self.left) * self.base_scale, (self.top - point[1]) * self.base_scale)

    def add(self, start: Tuple[float, float], end: Tuple[float, float]) -> None:
        self.pending.append((start, end))

    def discard(self) -> None:
        self.pending.clear()

    def commit(self) -> None:
        for start, end in self.pending:
            if len(self.lines) >= self.limits.max_lines_per_page:
                self.dropped += 1
                continue
            if distance(start, end) < self.limits.min_line_length:
                continue
            line = DocumentLine(self._native(start), self._native(end))
            self.lines.append(line)
            for point in line:
                self.endpoints.setdefault(_key(point), point)
        self.pending.clear()


def _operands(args: Sequence[object], count: int) -> Optional[List[float]]:
    if len(args) < count:
        return None
    try:
        return [float(a) for a in args[:count]]  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _walk_content(page: PageObject, reader: PdfReader, collector: _PathCollector) -> None:
    contents = page.get_contents()
    if contents is None:
        return
    stream = contents if isinstance(contents, ContentStream) else ContentStream(contents, reader)

    stack: List[Matrix] = [IDENTITY]
    current = (0.0, 0.0)
    subpath_start: Optional[Tuple[float, float]] = None
    samples = collector.limits.curve_samples

    for args, operator in stream.operations:
        ctm = stack[-1]
        if operator == b"q":
            stack.append(ctm)
        elif operator == b"Q":
            if len(stack) > 1:
                stack.pop()
        elif operator == b"cm":
            values = _operands(args, 6)
            if values is not None:
                stack[-1] = _multiply(tuple(values), ctm)  # type: ignore[arg-type]
        elif operator == b"m":
            values = _operands(args, 2)
            if values is not None:
                current = _apply(ctm, values[0], values[1])
                subpath_start = current
        elif operator == b"l":
            values = _operands(args, 2)
            if values is not None:
                point = _apply(ctm, values[0], values[1])
                collector.add(current, point)
                current = point
        elif operator in (b"c", b"v", b"y"):
            need = 6 if operator == b"c" else 4
            values = _operands(args, need)
            if values is None:
                continue
            if operator == b"c":
                cp1 = _apply(ctm, values[0], values[1])
                cp2 = _apply(ctm, values[2], values[3])
                end = _apply(ctm, values[4], values[5])
            elif operator == b"v":
                cp1 = current
                cp2 = _apply(ctm, values[0], values[1])
                end = _apply(ctm, values[2], values[3])
            else:
                cp1 = _apply(ctm, values[0], values[1])
                end = _apply(ctm, values[2], values[3])
                cp2 = end
            pts = sample_cubic(current, cp1, cp2, end, samples)
            for a, b in zip(pts, pts[1:]):
                collector.add(a, b)
            current = end
        elif operator == b"re":
            values = _operands(args, 4)
            if values is None:
                continue
            x, y, w, h = values
            corners = [
                _apply(ctm, x, y),
                _apply(ctm, x + w, y),
                _apply(ctm, x + w, y + h),
                _apply(ctm, x, y + h),
            ]
            for a, b in zip(corners, corners[1:] + corners[:1]):
                collector.add(a, b)
            current = corners[0]
            subpath_start = corners[0]
        elif operator in _CLOSING:
            if subpath_start is not None and current != subpath_start:
                collector.add(current, subpath_start)
                current = subpath_start
            if operator in _PAINTING:
                collector.commit()
        elif operator in _PAINTING:
            collector.commit()
        elif operator == b"n":
            # End without painting, e.g. a clipping path.
            collector.discard()
            subpath_start = None


def _intersections(
    lines: Sequence[DocumentLine],
    endpoint_keys: set[str],
    limits: ExtractionLimits,
) -> List[NativePoint]:
    candidates = list(lines[: limits.max_intersection_lines])
    if len(candidates) < 2 or limits.max_intersections <= 0:
        return []
    geoms = [LineString([line.start, line.end]) for line in candidates]
    tree = STRtree(geoms)

    found: Dict[str, NativePoint] = {}
    for i, geom in enumerate(geoms):
        if len(found) >= limits.max_intersections:
            break
        for j in sorted(int(k) for k in tree.query(geom, predicate="intersects")):
            if j <= i:
                continue
            hit = segment_intersection(candidates[i].start, candidates[i].end, candidates[j].start, candidates[j].end)
            if hit is None:
                continue
            key = _key(hit)
            if key in found or key in endpoint_keys:
                continue
            found[key] = NativePoint(*hit)
            if len(found) >= limits.max_intersections:
                break
    return list(found.values())


def extract_page_vectors(
    reader: PdfReader,
    page_number: int,
    *,
    base_scale: float = contract.BASE_RENDER_SCALE,
    limits: Optional[ExtractionLimits] = None,
) -> VectorIndex:
    """Extract snap lines, endpoints and intersections for a 1-indexed page."""
    limits = limits or ExtractionLimits()
    if page_number < 1 or page_number > len(reader.pages):
        raise DocumentDecodeError(
            f"Page {page_number} is outside the document",
            {"page": str(page_number), "page_count": str(len(reader.pages))},
        )
    page = reader.pages[page_number - 1]
    box = page.mediabox
    collector = _PathCollector(limits, left=float(box.left), top=float(box.top), base_scale=base_scale)
    _walk_content(page, reader, collector)

    intersections = _intersections(collector.lines, set(collector.endpoints), limits)
    if collector.dropped:
        logger.warning(
            "Page {} hit the {} segment cap; {} segment(s) ignored",
            page_number,
            limits.max_lines_per_page,
            collector.dropped,
        )
    logger.info(
        "Extracted {} lines, {} endpoints, {} intersections for page {}",
        len(collector.lines),
        len(collector.endpoints),
        len(intersections),
        page_number,
    )
    return VectorIndex(
        lines=tuple(collector.lines),
        endpoints=tuple(collector.endpoints.values()),
        intersections=tuple(intersections),
    )


def extract_vectors(
    pdf_bytes: bytes,
    page_number: int,
    *,
    base_scale: float = contract.BASE_RENDER_SCALE,
    limits: Optional[ExtractionLimits] = None,
) -> VectorIndex:
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
    except Exception as exc:
        raise DocumentDecodeError(f"Unable to read PDF: {exc}") from exc
    return extract_page_vectors(reader, page_number, base_scale=base_scale, limits=limits)


__all__ = [
    "DocumentLine",
    "ExtractionLimits",
    "VectorIndex",
    "extract_page_vectors",
    "extract_vectors",
    "sample_cubic",
]
