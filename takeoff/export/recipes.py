"""
Per-variant drawing recipes.

Recipes speak document-native coordinates (top-left origin). Painters own the
mapping onto their surface: the PDF painter flips and scales into page space,
the raster painter draws straight onto a top-left raster.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from takeoff.exceptions import DegenerateMarkupError
from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint
from takeoff.markups.models import (
    STAMP_TEXT,
    BoxMarkup,
    CountMarker,
    LineMarkup,
    MarkupStyle,
    MeasurementMarkup,
    PathMarkup,
    StampMarkup,
    TextMarkup,
)


@dataclass(frozen=True)
class Paint:
    stroke_color: Optional[str] = None
    fill_color: Optional[str] = None
    stroke_width: float = 2.0
    stroke_opacity: float = 1.0
    fill_opacity: float = 1.0


class Painter(Protocol):
    def polyline(self, points: Sequence[NativePoint], paint: Paint, *, closed: bool = False) -> None: ...

    def rect(self, x: float, y: float, width: float, height: float, paint: Paint) -> None: ...

    def ellipse(self, cx: float, cy: float, rx: float, ry: float, paint: Paint) -> None: ...

    def text(
        self,
        x: float,
        y: float,
        content: str,
        *,
        size: float,
        color: str,
        opacity: float = 1.0,
        bold: bool = False,
        centered: bool = False,
    ) -> None: ...


def _opacity(style: MarkupStyle) -> float:
    return max(0.0, min(1.0, style.opacity / 100.0))


def stroke_paint(style: MarkupStyle) -> Paint:
    opacity = _opacity(style)
    return Paint(
        stroke_color=style.stroke_color,
        fill_color=style.fill_color if style.has_fill else None,
        stroke_width=style.stroke_width,
        stroke_opacity=opacity,
        fill_opacity=opacity,
    )


def arrow_head(start: NativePoint, end: NativePoint, length: float = contract.ARROW_LENGTH) -> tuple:
    """The two head stroke endpoints of an arrow ending at ``end``."""
    angle = math.atan2(end.y - start.y, end.x - start.x)
    spread = math.radians(contract.ARROW_ANGLE_DEG)
    return (
        NativePoint(end.x - length * math.cos(angle - spread), end.y - length * math.sin(angle - spread)),
        NativePoint(end.x - length * math.cos(angle + spread), end.y - length * math.sin(angle + spread)),
    )


def measurement_label(markup: MeasurementMarkup) -> str:
    return f"{markup.scaled_value:.2f} {markup.unit}"


def _require_points(markup: Any, points: Sequence[NativePoint]) -> None:
    if len(points) < 2:
        raise DegenerateMarkupError(
            f"{markup.type} {markup.id} has fewer than 2 points",
            {"markup_id": markup.id, "points": str(len(points))},
        )


def draw_markup(painter: Painter, markup: Any, *, label_offset: float = contract.LABEL_OFFSET) -> None:
    """Dispatch a markup to its recipe. Raises DegenerateMarkupError for unusable geometry."""
    style = markup.style
    paint = stroke_paint(style)
    opacity = _opacity(style)

    if isinstance(markup, BoxMarkup):
        if markup.type == "highlight":
            painter.rect(
                markup.x,
                markup.y,
                markup.width,
                markup.height,
                Paint(fill_color=contract.HIGHLIGHT_COLOR, fill_opacity=contract.HIGHLIGHT_OPACITY, stroke_width=0.0),
            )
        elif markup.type == "ellipse":
            painter.ellipse(
                markup.x + markup.width / 2,
                markup.y + markup.height / 2,
                abs(markup.width) / 2,
                abs(markup.height) / 2,
                paint,
            )
        else:
            painter.rect(markup.x, markup.y, markup.width, markup.height, paint)
        return

    if isinstance(markup, LineMarkup):
        start = NativePoint(markup.start_x, markup.start_y)
        end = NativePoint(markup.end_x, markup.end_y)
        painter.polyline([start, end], paint)
        if markup.type == "arrow":
            left, right = arrow_head(start, end)
            painter.polyline([end, left], paint)
            painter.polyline([end, right], paint)
        return

    if isinstance(markup, PathMarkup):
        points = [p.native() for p in markup.points]
        _require_points(markup, points)
        painter.polyline(points, paint, closed=markup.type in ("polygon", "cloud"))
        return

    if isinstance(markup, TextMarkup):
        size = style.font_size or contract.DEFAULT_FONT_SIZE
        painter.text(markup.x, markup.y + size, markup.content or "", size=size, color=style.stroke_color, opacity=opacity)
        if markup.type == "callout" and markup.leader_points and len(markup.leader_points) >= 2:
            painter.polyline([p.native() for p in markup.leader_points], paint)
        return

    if isinstance(markup, StampMarkup):
        text = STAMP_TEXT.get(markup.preset, markup.preset.upper())
        pad = contract.STAMP_PADDING
        painter.rect(
            markup.x - pad,
            markup.y - pad,
            len(text) * contract.STAMP_CHAR_WIDTH + 2 * pad,
            contract.STAMP_BOX_HEIGHT,
            Paint(stroke_color=style.stroke_color, stroke_width=2.0, stroke_opacity=opacity),
        )
        painter.text(
            markup.x,
            markup.y + contract.STAMP_FONT_SIZE,
            text,
            size=contract.STAMP_FONT_SIZE,
            color=style.stroke_color,
            opacity=opacity,
            bold=True,
        )
        return

    if isinstance(markup, CountMarker):
        radius = contract.COUNT_MARKER_RADIUS
        painter.ellipse(
            markup.x,
            markup.y,
            radius,
            radius,
            Paint(fill_color=style.stroke_color, fill_opacity=opacity, stroke_width=0.0),
        )
        painter.text(
            markup.x,
            markup.y,
            str(markup.number),
            size=contract.COUNT_LABEL_SIZE,
            color="#ffffff",
            bold=True,
            centered=True,
        )
        return

    if isinstance(markup, MeasurementMarkup):
        points = [p.native() for p in markup.points]
        _require_points(markup, points)
        painter.polyline(points, Paint(stroke_color=style.stroke_color, stroke_width=style.stroke_width, stroke_opacity=opacity), closed=markup.is_area)
        anchor = points[len(points) // 2]
        painter.text(
            anchor.x,
            anchor.y - label_offset,
            measurement_label(markup),
            size=contract.LABEL_FONT_SIZE,
            color=style.stroke_color,
            opacity=opacity,
        )
        return

    raise TypeError(f"No drawing recipe for {type(markup).__name__}")


__all__ = ["Paint", "Painter", "arrow_head", "draw_markup", "measurement_label", "stroke_paint"]
