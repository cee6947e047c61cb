from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from takeoff.catalog.products import MeasurementPayload
from takeoff.exceptions import ValidationError
from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint


def new_id() -> str:
    return str(uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Point(_CamelModel):
    x: float
    y: float

    def native(self) -> NativePoint:
        return NativePoint(self.x, self.y)


class MarkupStyle(_CamelModel):
    stroke_color: str = "#ef4444"
    fill_color: str = "transparent"
    stroke_width: float = Field(2.0, ge=0.0)
    opacity: float = Field(100.0, ge=0.0, le=100.0)
    font_size: Optional[float] = None
    font_family: Optional[str] = None

    @property
    def has_fill(self) -> bool:
        return self.fill_color not in ("transparent", "none", "")


StampPreset = Literal["approved", "rejected", "draft", "reviewed", "confidential", "void"]

STAMP_TEXT = {
    "approved": "APPROVED",
    "rejected": "REJECTED",
    "draft": "DRAFT",
    "reviewed": "REVIEWED",
    "confidential": "CONFIDENTIAL",
    "void": "VOID",
}


class MarkupBase(_CamelModel):
    id: str = Field(default_factory=new_id)
    page: int = Field(1, ge=1)
    style: MarkupStyle = Field(default_factory=MarkupStyle)
    locked: bool = False
    author: str = "Current User"
    created_at: str = Field(default_factory=utc_now)
    label: Optional[str] = None

    ai_generated: bool = False
    ai_pending: bool = False
    ai_note: Optional[str] = None
    ai_linked_item_id: Optional[str] = None


class BoxMarkup(MarkupBase):
    type: Literal["rectangle", "ellipse", "highlight"]
    x: float
    y: float
    width: float
    height: float


class LineMarkup(MarkupBase):
    type: Literal["line", "arrow"]
    start_x: float
    start_y: float
    end_x: float
    end_y: float


class PathMarkup(MarkupBase):
    type: Literal["polyline", "polygon", "freehand", "cloud"]
    points: Tuple[Point, ...] = ()


class TextMarkup(MarkupBase):
    type: Literal["text", "callout"]
    x: float
    y: float
    width: float = 200.0
    height: float = 50.0
    content: str = ""
    leader_points: Optional[Tuple[Point, ...]] = None


class StampMarkup(MarkupBase):
    type: Literal["stamp"] = "stamp"
    x: float
    y: float
    width: float = 120.0
    height: float = contract.STAMP_BOX_HEIGHT
    preset: StampPreset = "approved"


class CountMarker(MarkupBase):
    type: Literal["count-marker"] = "count-marker"
    x: float
    y: float
    number: int = 1
    group_id: str = Field(default_factory=new_id)
    product_id: Optional[str] = None


class MeasurementMarkup(MarkupBase):
    type: Literal["measurement-length", "measurement-area"]
    points: Tuple[Point, ...] = ()
    value: float = 0.0
    scaled_value: float = 0.0
    unit: str = contract.DEFAULT_UNIT
    product_id: Optional[str] = None

    @property
    def is_area(self) -> bool:
        return self.type == "measurement-area"


Markup = Annotated[
    Union[BoxMarkup, LineMarkup, PathMarkup, TextMarkup, StampMarkup, CountMarker, MeasurementMarkup],
    Field(discriminator="type"),
]

MARKUP_ADAPTER: TypeAdapter[Any] = TypeAdapter(Markup)

MARKUP_TYPES = (
    "rectangle",
    "ellipse",
    "highlight",
    "line",
    "arrow",
    "polyline",
    "polygon",
    "freehand",
    "cloud",
    "text",
    "callout",
    "stamp",
    "count-marker",
    "measurement-length",
    "measurement-area",
)

# Fields a caller may never rewrite through an update.
_IMMUTABLE_FIELDS = {"id", "type", "page"}


def parse_markup(payload: Any) -> Any:
    """Validate a markup payload (camelCase or snake_case keys)."""
    if isinstance(payload, MarkupBase):
        return payload
    try:
        return MARKUP_ADAPTER.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid markup payload",
            {"errors": str(exc.errors(include_url=False))},
        ) from exc


def dump_markup(markup: Any) -> dict[str, Any]:
    return markup.model_dump(by_alias=True, exclude_none=True)


def _camel_key(key: str) -> str:
    return to_camel(key) if "_" in key else key


def apply_changes(markup: Any, changes: dict[str, Any]) -> Any:
    """Return a validated copy of ``markup`` with ``changes`` merged in."""
    normalized = {_camel_key(key): value for key, value in changes.items()}
    for key in _IMMUTABLE_FIELDS:
        if key in normalized and normalized[key] != getattr(markup, key):
            raise ValidationError(f"Markup field '{key}' cannot be changed", {"markup_id": markup.id})
    merged = {**dump_markup(markup), **normalized}
    return parse_markup(merged)


def only_toggles_lock(changes: dict[str, Any]) -> bool:
    return bool(changes) and set(changes) == {"locked"}


def markup_vertices(markup: Any) -> List[NativePoint]:
    """Geometry vertices in drawing order."""
    if isinstance(markup, (BoxMarkup, TextMarkup, StampMarkup)):
        x, y, w, h = markup.x, markup.y, markup.width, markup.height
        return [NativePoint(x, y), NativePoint(x + w, y), NativePoint(x + w, y + h), NativePoint(x, y + h)]
    if isinstance(markup, LineMarkup):
        return [NativePoint(markup.start_x, markup.start_y), NativePoint(markup.end_x, markup.end_y)]
    if isinstance(markup, (PathMarkup, MeasurementMarkup)):
        return [p.native() for p in markup.points]
    if isinstance(markup, CountMarker):
        return [NativePoint(markup.x, markup.y)]
    raise TypeError(f"Unsupported markup variant: {type(markup).__name__}")


def markup_snap_points(markup: Any) -> List[Tuple[NativePoint, str]]:
    """Corners, edge midpoints and centers for boxes; endpoints and vertices otherwise."""
    if isinstance(markup, (BoxMarkup, TextMarkup, StampMarkup)):
        x, y, w, h = markup.x, markup.y, markup.width, markup.height
        return [
            (NativePoint(x, y), "corner"),
            (NativePoint(x + w, y), "corner"),
            (NativePoint(x, y + h), "corner"),
            (NativePoint(x + w, y + h), "corner"),
            (NativePoint(x + w / 2, y + h / 2), "center"),
            (NativePoint(x + w / 2, y), "midpoint"),
            (NativePoint(x + w / 2, y + h), "midpoint"),
            (NativePoint(x, y + h / 2), "midpoint"),
            (NativePoint(x + w, y + h / 2), "midpoint"),
        ]
    if isinstance(markup, LineMarkup):
        return [
            (NativePoint(markup.start_x, markup.start_y), "endpoint"),
            (NativePoint(markup.end_x, markup.end_y), "endpoint"),
        ]
    if isinstance(markup, (PathMarkup, MeasurementMarkup)):
        return [(p.native(), "endpoint") for p in markup.points]
    if isinstance(markup, CountMarker):
        return [(NativePoint(markup.x, markup.y), "center")]
    raise TypeError(f"Unsupported markup variant: {type(markup).__name__}")


def linked_product_id(markup: Any) -> Optional[str]:
    if isinstance(markup, (CountMarker, MeasurementMarkup)):
        return markup.product_id
    return None


def build_measurement_from_markup(
    markup: Any,
    document_id: str,
) -> Optional[Tuple[str, MeasurementPayload]]:
    """
    Reconstruct a link payload from a markup's own product reference.

    Count markers link with value 1 in ``ea``; measurements link their scaled
    value and unit. Markups without a product reference return None.
    """
    product_id = linked_product_id(markup)
    if not product_id:
        return None
    if isinstance(markup, CountMarker):
        payload = MeasurementPayload(
            markup_id=markup.id,
            document_id=document_id,
            page=markup.page,
            type="count",
            value=1.0,
            unit=contract.COUNT_UNIT,
            group_id=markup.group_id,
        )
        return product_id, payload
    if isinstance(markup, MeasurementMarkup):
        payload = MeasurementPayload(
            markup_id=markup.id,
            document_id=document_id,
            page=markup.page,
            type="area" if markup.is_area else "length",
            value=markup.scaled_value,
            unit=markup.unit,
        )
        return product_id, payload
    return None


__all__ = [
    "Point",
    "MarkupStyle",
    "MarkupBase",
    "BoxMarkup",
    "LineMarkup",
    "PathMarkup",
    "TextMarkup",
    "StampMarkup",
    "CountMarker",
    "MeasurementMarkup",
    "Markup",
    "MARKUP_ADAPTER",
    "MARKUP_TYPES",
    "STAMP_TEXT",
    "apply_changes",
    "build_measurement_from_markup",
    "dump_markup",
    "linked_product_id",
    "markup_snap_points",
    "markup_vertices",
    "new_id",
    "only_toggles_lock",
    "parse_markup",
    "utc_now",
]
