from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from takeoff.catalog.links import MeasurementLinkGraph
from takeoff.catalog.products import LinkedMeasurement, MeasurementPayload
from takeoff.exceptions import AIPipelineError
from takeoff.geometry.measure import Calibration, polygon_area, polyline_length
from takeoff.markups.models import (
    CountMarker,
    MarkupStyle,
    MeasurementMarkup,
    PathMarkup,
    Point,
    TextMarkup,
)

PlacementType = Literal["count-marker", "measurement-length", "measurement-area", "polyline", "polygon", "text"]


class _PlacementModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PlacementPoint(_PlacementModel):
    x: float
    y: float


class PlacementStyle(_PlacementModel):
    stroke_color: Optional[str] = None
    fill_color: Optional[str] = None
    stroke_width: Optional[float] = None


class PlacementMarkup(_PlacementModel):
    id: Optional[str] = None
    type: PlacementType
    page: int = Field(1, ge=1)
    points: List[PlacementPoint] = Field(default_factory=list)
    style: Optional[PlacementStyle] = None
    label: Optional[str] = None
    ai_note: Optional[str] = None
    linked_item_id: Optional[str] = None
    pending: bool = True


class PlacementNote(_PlacementModel):
    id: str
    page: int = Field(1, ge=1)
    position: PlacementPoint
    text: str
    linked_markup_id: Optional[str] = None


class CanvasPlacement(_PlacementModel):
    markups: List[PlacementMarkup] = Field(default_factory=list)
    notes: List[PlacementNote] = Field(default_factory=list)


def parse_placements(payload: Any) -> CanvasPlacement:
    """Validate raw pipeline output."""
    try:
        return CanvasPlacement.model_validate(payload)
    except PydanticValidationError as exc:
        raise AIPipelineError(
            "AI pipeline returned malformed placements",
            {"errors": str(exc.errors(include_url=False))},
        ) from exc


def _style(hint: Optional[PlacementStyle], default: MarkupStyle) -> MarkupStyle:
    return MarkupStyle(
        stroke_color=(hint and hint.stroke_color) or default.stroke_color,
        fill_color=(hint and hint.fill_color) or default.fill_color,
        stroke_width=(hint and hint.stroke_width) or default.stroke_width,
        opacity=100.0,
        font_size=default.font_size,
        font_family=default.font_family,
    )


def convert_placements(
    placements: CanvasPlacement,
    default_style: MarkupStyle,
    group_id: str,
    scale_x: float,
    scale_y: float,
    calibration: Optional[Calibration] = None,
) -> List[Tuple[int, Any]]:
    """
    Turn normalized placements into native markups.

    Placement points are in the pipeline's image space; ``scale_x``/``scale_y``
    map them onto the page's native coordinates. Notes become pending text
    markups. Count and text placements without a point are skipped.
    """
    calibration = calibration or Calibration()
    now = datetime.now(timezone.utc).isoformat()
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    converted: List[Tuple[int, Any]] = []

    for index, placement in enumerate(placements.markups):
        points = [Point(x=p.x * scale_x, y=p.y * scale_y) for p in placement.points]
        base: Dict[str, Any] = {
            "id": placement.id or f"ai_{stamp}_{index}",
            "page": placement.page,
            "style": _style(placement.style, default_style),
            "locked": False,
            "author": "AI",
            "created_at": now,
            "label": placement.label,
            "ai_generated": True,
            "ai_pending": placement.pending,
            "ai_note": placement.ai_note,
            "ai_linked_item_id": placement.linked_item_id,
        }
        if placement.type in ("count-marker", "text") and not points:
            logger.warning("Skipping {} placement {} without an anchor point", placement.type, base["id"])
            continue
        anchor = points[0] if points else None

        if placement.type == "count-marker":
            markup: Any = CountMarker(**base, x=anchor.x, y=anchor.y, number=1, group_id=group_id)
        elif placement.type in ("measurement-length", "measurement-area"):
            coords = [(p.x, p.y) for p in points]
            if placement.type == "measurement-area":
                value = polygon_area(coords)
                scaled = calibration.area_to_real(value)
                unit = calibration.area_unit
            else:
                value = polyline_length(coords)
                scaled = calibration.to_real(value)
                unit = calibration.unit
            markup = MeasurementMarkup(
                **base,
                type=placement.type,
                points=tuple(points),
                value=value,
                scaled_value=scaled,
                unit=unit,
            )
        elif placement.type in ("polyline", "polygon"):
            markup = PathMarkup(**base, type=placement.type, points=tuple(points))
        elif placement.type == "text":
            markup = TextMarkup(
                **base,
                type="text",
                x=anchor.x,
                y=anchor.y,
                width=200.0,
                height=50.0,
                content=placement.label or placement.ai_note or "AI Note",
            )
        else:
            logger.warning("Ignoring placement with unsupported type {}", placement.type)
            continue
        converted.append((placement.page, markup))

    for note in placements.notes:
        converted.append(
            (
                note.page,
                TextMarkup(
                    id=note.id,
                    page=note.page,
                    style=_style(None, default_style),
                    author="AI",
                    created_at=now,
                    ai_generated=True,
                    ai_pending=True,
                    ai_note=note.text,
                    ai_linked_item_id=note.linked_markup_id,
                    type="text",
                    x=note.position.x * scale_x,
                    y=note.position.y * scale_y,
                    width=200.0,
                    height=50.0,
                    content=note.text,
                ),
            )
        )

    return converted


def apply_product_count_mappings(
    links: MeasurementLinkGraph,
    document_id: str,
    mappings: Dict[str, str],
    counts: Dict[str, float],
    page: int,
) -> List[LinkedMeasurement]:
    """Link AI-counted item totals to mapped products under one count group."""
    group_id = f"ai-count-{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    created = []
    for key, value in counts.items():
        product_id = mappings.get(key)
        if not product_id or value <= 0:
            continue
        payload = MeasurementPayload(
            markup_id=f"{group_id}-{key}",
            document_id=document_id,
            page=page,
            type="count",
            value=float(value),
            unit="ea",
            group_id=group_id,
            group_label=key,
        )
        created.append(links.link(product_id, payload))
    return created


__all__ = [
    "CanvasPlacement",
    "PlacementMarkup",
    "PlacementNote",
    "PlacementPoint",
    "PlacementStyle",
    "apply_product_count_mappings",
    "convert_placements",
    "parse_placements",
]
