from __future__ import annotations

import pytest

from takeoff.ai.placement import apply_product_count_mappings, convert_placements, parse_placements
from takeoff.catalog.links import MeasurementLinkGraph
from takeoff.catalog.products import ProductCatalog
from takeoff.exceptions import AIPipelineError
from takeoff.geometry.measure import Calibration
from takeoff.markups.models import CountMarker, MarkupStyle, MeasurementMarkup, PathMarkup, TextMarkup


def _payload():
    return {
        "markups": [
            {"id": "m1", "type": "count-marker", "page": 2, "points": [{"x": 10, "y": 20}], "aiNote": "outlet"},
            {
                "type": "measurement-length",
                "points": [{"x": 0, "y": 0}, {"x": 30, "y": 40}],
                "style": {"strokeColor": "#22c55e"},
                "pending": False,
            },
            {
                "type": "measurement-area",
                "points": [{"x": 0, "y": 0}, {"x": 10, "y": 0}, {"x": 10, "y": 10}, {"x": 0, "y": 10}],
            },
            {"type": "polygon", "points": [{"x": 0, "y": 0}, {"x": 5, "y": 0}, {"x": 5, "y": 5}]},
            {"type": "text", "points": [{"x": 1, "y": 1}]},
        ],
        "notes": [{"id": "n1", "position": {"x": 3, "y": 4}, "text": "Check panel"}],
    }


def test_malformed_output_raises_pipeline_error():
    with pytest.raises(AIPipelineError):
        parse_placements({"markups": [{"type": "hexagon"}]})
    with pytest.raises(AIPipelineError):
        parse_placements({"markups": "nope"})


def test_parse_accepts_camel_case_and_notes():
    placements = parse_placements(_payload())
    assert len(placements.markups) == 5
    assert placements.markups[0].ai_note == "outlet"
    assert placements.notes[0].text == "Check panel"


def test_convert_scales_points_into_native_space():
    placements = parse_placements(_payload())
    converted = convert_placements(placements, MarkupStyle(), "group-1", scale_x=2.0, scale_y=3.0)
    page, marker = converted[0]
    assert page == 2
    assert isinstance(marker, CountMarker)
    assert (marker.x, marker.y) == (20.0, 60.0)
    assert marker.id == "m1"
    assert marker.group_id == "group-1"
    assert marker.author == "AI"
    assert marker.ai_generated and marker.ai_pending
    assert marker.ai_note == "outlet"


def test_convert_measures_with_calibration():
    placements = parse_placements(_payload())
    converted = convert_placements(
        placements, MarkupStyle(), "g", scale_x=1.0, scale_y=1.0, calibration=Calibration(scale=5.0, unit="m")
    )
    length = converted[1][1]
    assert isinstance(length, MeasurementMarkup)
    assert length.value == pytest.approx(50.0)
    assert length.scaled_value == pytest.approx(10.0)
    assert length.unit == "m"
    assert length.style.stroke_color == "#22c55e"
    assert not length.ai_pending

    area = converted[2][1]
    assert area.value == pytest.approx(100.0)
    assert area.scaled_value == pytest.approx(4.0)
    assert area.unit == "sq m"


def test_convert_generates_ids_and_text_defaults():
    converted = convert_placements(parse_placements(_payload()), MarkupStyle(), "g", 1.0, 1.0)
    polygon = converted[3][1]
    text = converted[4][1]
    assert isinstance(polygon, PathMarkup)
    assert polygon.id.startswith("ai_") and polygon.id.endswith("_3")
    assert isinstance(text, TextMarkup)
    assert text.content == "AI Note"
    assert len({m.id for _, m in converted}) == 6


def test_notes_become_pending_text_markups():
    converted = convert_placements(parse_placements(_payload()), MarkupStyle(), "g", 2.0, 2.0)
    page, note = converted[-1]
    assert page == 1
    assert isinstance(note, TextMarkup)
    assert note.id == "n1"
    assert (note.x, note.y) == (6.0, 8.0)
    assert note.content == note.ai_note == "Check panel"
    assert note.ai_generated and note.ai_pending


def test_anchorless_count_and_text_placements_are_skipped():
    placements = parse_placements(
        {
            "markups": [
                {"type": "count-marker", "page": 1},
                {"type": "text", "label": "Floating"},
                {"type": "count-marker", "points": [{"x": 4, "y": 4}]},
            ]
        }
    )
    converted = convert_placements(placements, MarkupStyle(), "g", 1.0, 1.0)
    assert len(converted) == 1
    assert (converted[0][1].x, converted[0][1].y) == (4.0, 4.0)


def test_count_mappings_link_positive_totals():
    catalog = ProductCatalog()
    outlets = catalog.add_product(None, "Duplex outlet")
    links = MeasurementLinkGraph(catalog)

    created = apply_product_count_mappings(
        links,
        "doc",
        {"outlet": outlets, "switch": "missing"},
        {"outlet": 14, "switch": 0, "fixture": 3},
        page=1,
    )

    assert len(created) == 1
    assert created[0].value == 14.0
    assert created[0].unit == "ea"
    assert created[0].group_label == "outlet"
    assert created[0].group_id.startswith("ai-count-")
    assert catalog.export_products("Job")["products"][0]["measurements"]["totalCount"] == 14.0
