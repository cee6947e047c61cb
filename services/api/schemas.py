from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class DocumentOut(BaseModel):
    id: str
    name: str
    pages: int
    current_page: int
    zoom: float
    modified: bool
    active: bool = False


class PageNavigation(BaseModel):
    page: int | None = Field(None, ge=1)
    zoom: float | None = Field(None, gt=0.0)


class MarkupListOut(BaseModel):
    document_id: str
    page: int
    markups: list[dict[str, Any]]


class MarkupUpdateRequest(BaseModel):
    changes: dict[str, Any]

    @field_validator("changes")
    @classmethod
    def _non_empty(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value:
            raise ValueError("changes must not be empty")
        return value


class MarkupDeleteRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class HistoryOut(BaseModel):
    applied: bool
    description: str | None = None
    can_undo: bool
    can_redo: bool


class SnapRequest(BaseModel):
    page: int = Field(..., ge=1)
    x: float
    y: float
    space: Literal["native", "screen"] = "native"
    snap_enabled: bool | None = None
    grid_enabled: bool | None = None


class SnapOut(BaseModel):
    x: float
    y: float
    snapped: bool
    source: str | None = None


class SnapSettingsRequest(BaseModel):
    snap_enabled: bool | None = None
    grid_enabled: bool | None = None
    grid_size: float | None = Field(None, gt=0.0)


class CalibrationRequest(BaseModel):
    p1: list[float] = Field(..., min_length=2, max_length=2)
    p2: list[float] = Field(..., min_length=2, max_length=2)
    known_distance: float
    unit: str | None = None


class CalibrationOut(BaseModel):
    scale: float
    unit: str
    area_unit: str


class MeasurementRequest(BaseModel):
    page: int = Field(..., ge=1)
    kind: Literal["length", "area"] = "length"
    points: list[list[float]] = Field(..., min_length=2)
    product_id: str | None = None


class CountRequest(BaseModel):
    page: int = Field(..., ge=1)
    x: float
    y: float
    product_id: str | None = None
    group_id: str | None = None


class AIPlacementRequest(BaseModel):
    placements: dict[str, Any]
    scale_x: float = Field(1.0, gt=0.0)
    scale_y: float = Field(1.0, gt=0.0)
    group_id: str | None = None


class AIBatchOut(BaseModel):
    affected: int
    markups: list[dict[str, Any]] = Field(default_factory=list)


class ProductNodeRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["folder", "product"] = "product"
    parent_id: str | None = None


class ProductNodeOut(BaseModel):
    id: str


class LinkRequest(BaseModel):
    markup_id: str
    product_id: str
    document_id: str | None = None


class ProjectSaveRequest(BaseModel):
    name: str = Field("Untitled Project", min_length=1)


class ProjectLoadOut(BaseModel):
    name: str
    documents: list[DocumentOut]
