"""
Coordinate spaces.

Three point types keep the spaces apart:

* ``ScreenPoint``: viewport pixels at the current zoom.
* ``NativePoint``: document-native units, PDF points scaled by the base render
  scale, top-left origin. Every markup geometry field lives here.
* ``ExportPoint``: PDF user space of the target page, bottom-left origin.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from takeoff.geometry.contract import BASE_RENDER_SCALE


class ScreenPoint(NamedTuple):
    x: float
    y: float


class NativePoint(NamedTuple):
    x: float
    y: float


class ExportPoint(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class PageFrame:
    """Geometry of one target page in PDF user space."""

    width: float
    height: float
    left: float = 0.0
    bottom: float = 0.0

    @property
    def top(self) -> float:
        return self.bottom + self.height


def screen_to_native(point: ScreenPoint, zoom: float) -> NativePoint:
    """Undo the viewport zoom (percent)."""
    factor = zoom / 100.0
    if factor <= 0:
        raise ValueError(f"zoom must be positive, got {zoom}")
    return NativePoint(point.x / factor, point.y / factor)


def native_to_screen(point: NativePoint, zoom: float) -> ScreenPoint:
    factor = zoom / 100.0
    return ScreenPoint(point.x * factor, point.y * factor)


def native_to_export(point: NativePoint, frame: PageFrame, base_scale: float = BASE_RENDER_SCALE) -> ExportPoint:
    """Map a native point onto the target page, flipping the vertical axis."""
    scale_factor = 1.0 / base_scale
    return ExportPoint(
        frame.left + point.x * scale_factor,
        frame.bottom + frame.height - point.y * scale_factor,
    )


def export_to_native(point: ExportPoint, frame: PageFrame, base_scale: float = BASE_RENDER_SCALE) -> NativePoint:
    return NativePoint(
        (point.x - frame.left) * base_scale,
        (frame.bottom + frame.height - point.y) * base_scale,
    )


def native_length_to_export(length: float, base_scale: float = BASE_RENDER_SCALE) -> float:
    return length / base_scale


__all__ = [
    "ScreenPoint",
    "NativePoint",
    "ExportPoint",
    "PageFrame",
    "screen_to_native",
    "native_to_screen",
    "native_to_export",
    "export_to_native",
    "native_length_to_export",
]
