from __future__ import annotations

import pytest

from takeoff.exceptions import ValidationError
from takeoff.markups.models import (
    MARKUP_TYPES,
    BoxMarkup,
    CountMarker,
    LineMarkup,
    MeasurementMarkup,
    PathMarkup,
    StampMarkup,
    TextMarkup,
    apply_changes,
    build_measurement_from_markup,
    dump_markup,
    markup_snap_points,
    markup_vertices,
    only_toggles_lock,
    parse_markup,
)


def test_parse_camel_case_payload():
    markup = parse_markup(
        {
            "type": "line",
            "page": 2,
            "startX": 1,
            "startY": 2,
            "endX": 3,
            "endY": 4,
            "style": {"strokeColor": "#00ff00", "strokeWidth": 3},
        }
    )
    assert isinstance(markup, LineMarkup)
    assert markup.page == 2
    assert markup.style.stroke_color == "#00ff00"
    assert markup.author == "Current User"
    assert markup.id


@pytest.mark.parametrize(
    "payload, cls",
    [
        ({"type": "rectangle", "x": 0, "y": 0, "width": 10, "height": 5}, BoxMarkup),
        ({"type": "highlight", "x": 0, "y": 0, "width": 10, "height": 5}, BoxMarkup),
        ({"type": "cloud", "points": [{"x": 0, "y": 0}, {"x": 5, "y": 5}]}, PathMarkup),
        ({"type": "callout", "x": 1, "y": 1, "content": "see detail"}, TextMarkup),
        ({"type": "stamp", "x": 1, "y": 1, "preset": "void"}, StampMarkup),
        ({"type": "count-marker", "x": 1, "y": 1, "number": 4, "groupId": "g"}, CountMarker),
        ({"type": "measurement-area", "points": [], "scaledValue": 2.5, "unit": "sq ft"}, MeasurementMarkup),
    ],
)
def test_union_dispatches_on_type(payload, cls):
    assert isinstance(parse_markup(payload), cls)


def test_every_declared_type_is_parseable():
    base = {"x": 0, "y": 0, "width": 1, "height": 1, "startX": 0, "startY": 0, "endX": 1, "endY": 1}
    for kind in MARKUP_TYPES:
        assert parse_markup({**base, "type": kind}).type == kind


def test_unknown_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_markup({"type": "sketch", "x": 0, "y": 0})


def test_dump_uses_camel_case_and_drops_none():
    markup = CountMarker(x=1, y=2, group_id="g1")
    dumped = dump_markup(markup)
    assert dumped["groupId"] == "g1"
    assert "productId" not in dumped
    assert parse_markup(dumped) == markup


def test_apply_changes_accepts_snake_and_camel_keys():
    markup = BoxMarkup(type="rectangle", x=0, y=0, width=10, height=10)
    updated = apply_changes(markup, {"width": 20, "locked": True, "ai_pending": False})
    assert updated.width == 20
    assert updated.locked is True
    assert updated.id == markup.id
    assert markup.width == 10


def test_apply_changes_rejects_identity_fields():
    markup = BoxMarkup(type="rectangle", x=0, y=0, width=10, height=10)
    with pytest.raises(ValidationError):
        apply_changes(markup, {"type": "ellipse"})
    with pytest.raises(ValidationError):
        apply_changes(markup, {"page": 3})


def test_only_toggles_lock():
    assert only_toggles_lock({"locked": False})
    assert not only_toggles_lock({"locked": False, "x": 1})
    assert not only_toggles_lock({})


def test_box_snap_points_include_corners_center_and_midpoints():
    markup = BoxMarkup(type="rectangle", x=0, y=0, width=10, height=20)
    kinds = [kind for _, kind in markup_snap_points(markup)]
    assert kinds.count("corner") == 4
    assert kinds.count("center") == 1
    assert kinds.count("midpoint") == 4
    assert len(markup_vertices(markup)) == 4


def test_count_marker_link_payload():
    marker = CountMarker(x=5, y=5, page=2, group_id="g", product_id="p1")
    product_id, payload = build_measurement_from_markup(marker, "doc-1")
    assert product_id == "p1"
    assert (payload.type, payload.value, payload.unit, payload.group_id) == ("count", 1.0, "ea", "g")
    assert payload.page == 2


def test_measurement_link_payload_uses_scaled_value():
    markup = MeasurementMarkup(
        type="measurement-area",
        points=({"x": 0, "y": 0}, {"x": 10, "y": 0}, {"x": 10, "y": 10}),
        value=100.0,
        scaled_value=3.0,
        unit="sq ft",
        product_id="p1",
    )
    _, payload = build_measurement_from_markup(markup, "doc-1")
    assert (payload.type, payload.value, payload.unit) == ("area", 3.0, "sq ft")


def test_markups_without_product_do_not_link():
    assert build_measurement_from_markup(CountMarker(x=0, y=0), "doc-1") is None
    assert build_measurement_from_markup(BoxMarkup(type="ellipse", x=0, y=0, width=1, height=1), "doc-1") is None
