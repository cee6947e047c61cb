from __future__ import annotations

import pytest

from takeoff.exceptions import GeometryError
from takeoff.geometry.coords import (
    ExportPoint,
    NativePoint,
    PageFrame,
    ScreenPoint,
    export_to_native,
    native_length_to_export,
    native_to_export,
    native_to_screen,
    screen_to_native,
)
from takeoff.geometry.measure import (
    Calibration,
    distance,
    nearest_point_on_segment,
    polygon_area,
    polyline_length,
    segment_intersection,
)


def test_screen_native_round_trip():
    native = screen_to_native(ScreenPoint(300.0, 150.0), zoom=200.0)
    assert native == NativePoint(150.0, 75.0)
    assert native_to_screen(native, 200.0) == ScreenPoint(300.0, 150.0)


def test_screen_to_native_rejects_non_positive_zoom():
    with pytest.raises(ValueError):
        screen_to_native(ScreenPoint(1.0, 1.0), 0.0)


def test_native_to_export_flips_vertically():
    frame = PageFrame(width=612.0, height=792.0)
    exported = native_to_export(NativePoint(150.0, 138.0), frame, 1.5)
    assert exported.x == pytest.approx(100.0)
    assert exported.y == pytest.approx(700.0)


def test_export_round_trip_with_offset_mediabox():
    frame = PageFrame(width=500.0, height=400.0, left=20.0, bottom=30.0)
    point = NativePoint(123.4, 56.7)
    recovered = export_to_native(native_to_export(point, frame, 1.5), frame, 1.5)
    assert recovered.x == pytest.approx(point.x)
    assert recovered.y == pytest.approx(point.y)
    assert export_to_native(ExportPoint(20.0, 430.0), frame, 1.5) == NativePoint(0.0, 0.0)


def test_native_length_to_export():
    assert native_length_to_export(15.0, 1.5) == pytest.approx(10.0)


def test_distance_and_lengths():
    assert distance((0, 0), (3, 4)) == 5.0
    assert polyline_length([(0, 0), (100, 0), (100, 200)]) == pytest.approx(300.0)
    assert polyline_length([(1, 1)]) == 0.0


def test_polygon_area_is_unsigned():
    square = [(0, 0), (0, 10), (10, 10), (10, 0)]
    assert polygon_area(square) == pytest.approx(100.0)
    assert polygon_area(list(reversed(square))) == pytest.approx(100.0)
    assert polygon_area([(0, 0), (1, 1)]) == 0.0


def test_nearest_point_on_segment_clamps():
    assert nearest_point_on_segment((5, 5), (0, 0), (10, 0)) == (5.0, 0.0)
    assert nearest_point_on_segment((-5, 3), (0, 0), (10, 0)) == (0.0, 0.0)
    assert nearest_point_on_segment((4, 4), (2, 2), (2, 2)) == (2.0, 2.0)


def test_segment_intersection():
    assert segment_intersection((0, 0), (10, 0), (5, -5), (5, 5)) == pytest.approx((5.0, 0.0))
    assert segment_intersection((0, 0), (10, 0), (0, 1), (10, 1)) is None
    assert segment_intersection((0, 0), (1, 0), (5, -5), (5, 5)) is None


def test_calibration_scenario():
    calibration = Calibration.from_points((0, 0), (150, 0), 10.0, "ft")
    assert calibration.scale == pytest.approx(15.0)
    assert calibration.to_real(polyline_length([(0, 0), (300, 0)])) == pytest.approx(20.0)
    assert calibration.area_unit == "sq ft"
    assert calibration.area_to_real(225.0) == pytest.approx(1.0)
    assert calibration.to_pixels(2.0) == pytest.approx(30.0)


@pytest.mark.parametrize(
    "p1, p2, known",
    [((0, 0), (10, 0), 0.0), ((0, 0), (10, 0), -1.0), ((5, 5), (5, 5), 3.0)],
)
def test_calibration_rejects_degenerate_input(p1, p2, known):
    with pytest.raises(GeometryError):
        Calibration.from_points(p1, p2, known)
