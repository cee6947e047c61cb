from __future__ import annotations

import pytest

from takeoff.geometry.coords import NativePoint
from takeoff.markups.models import BoxMarkup, CountMarker
from takeoff.snapping.engine import SnapEngine, SnapMode, SnapSource, grid_point
from takeoff.vector.extractor import DocumentLine, VectorIndex

ALL = SnapMode.DOCUMENT | SnapMode.MARKUP | SnapMode.GRID


@pytest.fixture()
def engine() -> SnapEngine:
    engine = SnapEngine(radius=10.0, grid_size=20.0)
    horizontal = DocumentLine(NativePoint(0.0, 100.0), NativePoint(200.0, 100.0))
    vertical = DocumentLine(NativePoint(100.0, 0.0), NativePoint(100.0, 200.0))
    engine.set_vector_index(
        "doc",
        1,
        VectorIndex(
            lines=(horizontal, vertical),
            endpoints=(horizontal.start, horizontal.end, vertical.start, vertical.end),
            intersections=(NativePoint(100.0, 100.0),),
        ),
    )
    return engine


def test_document_endpoint_beats_grid(engine):
    # Both the endpoint (200, 100) and the grid node (203, 98) are in range.
    engine.grid_size = 7.0
    result = engine.resolve_snap("doc", 1, NativePoint(203.0, 97.0), ALL)
    assert result.source is SnapSource.DOCUMENT_ENDPOINT
    assert result.point == NativePoint(200.0, 100.0)


def test_intersection_beats_line_and_markup(engine):
    engine.update_markup_points("doc", 1, [CountMarker(x=104.0, y=104.0)])
    result = engine.resolve_snap("doc", 1, NativePoint(103.0, 103.0), ALL)
    assert result.source is SnapSource.INTERSECTION
    assert result.point == NativePoint(100.0, 100.0)


def test_nearest_point_on_document_line(engine):
    result = engine.resolve_snap("doc", 1, NativePoint(50.0, 104.0), SnapMode.DOCUMENT)
    assert result.source is SnapSource.DOCUMENT_LINE
    assert result.point == NativePoint(50.0, 100.0)


def test_markup_points_when_no_document_feature_in_range(engine):
    engine.update_markup_points("doc", 1, [BoxMarkup(type="rectangle", x=300, y=300, width=40, height=20)])
    result = engine.resolve_snap("doc", 1, NativePoint(318.0, 302.0), ALL)
    assert result.source is SnapSource.MIDPOINT
    assert result.point == NativePoint(320.0, 300.0)


def test_closest_markup_point_wins(engine):
    engine.update_markup_points("doc", 1, [CountMarker(x=300, y=300), CountMarker(x=306, y=300)])
    result = engine.resolve_snap("doc", 1, NativePoint(304.0, 300.0), SnapMode.MARKUP)
    assert result.point == NativePoint(306.0, 300.0)
    assert result.source is SnapSource.CENTER


def test_grid_fallback_and_radius_is_strict(engine):
    result = engine.resolve_snap("doc", 1, NativePoint(401.0, 398.0), ALL)
    assert result.source is SnapSource.GRID
    assert result.point == NativePoint(400.0, 400.0)

    miss = engine.resolve_snap("doc", 1, NativePoint(300.0, 110.0), SnapMode.DOCUMENT)
    assert not miss.snapped
    assert miss.point == NativePoint(300.0, 110.0)


def test_disabled_modes_return_input(engine):
    result = engine.resolve_snap("doc", 1, NativePoint(200.5, 100.5), SnapMode.NONE)
    assert result.source is None
    assert result.point == NativePoint(200.5, 100.5)


def test_radius_override(engine):
    far = NativePoint(215.0, 100.0)
    assert not engine.resolve_snap("doc", 1, far, SnapMode.DOCUMENT).snapped
    assert engine.resolve_snap("doc", 1, far, SnapMode.DOCUMENT, radius=20.0).source is SnapSource.DOCUMENT_ENDPOINT


def test_forget_document_drops_sources(engine):
    engine.update_markup_points("doc", 1, [CountMarker(x=300, y=300)])
    engine.forget_document("doc")
    assert engine.vector_index("doc", 1) is None
    assert engine.markup_points("doc", 1) == ()


def test_snap_mode_from_flags():
    assert SnapMode.from_flags(True, False) == SnapMode.DOCUMENT | SnapMode.MARKUP
    assert SnapMode.from_flags(False, True) == SnapMode.GRID
    assert SnapMode.from_flags(False, False) == SnapMode.NONE


def test_grid_point():
    assert grid_point(NativePoint(29.0, 31.0), 20.0) == NativePoint(20.0, 40.0)
