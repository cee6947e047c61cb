from __future__ import annotations

import pytest

pytest.importorskip("pypdf")
pytest.importorskip("reportlab")

from takeoff.exceptions import DocumentDecodeError
from takeoff.geometry.coords import NativePoint
from takeoff.vector.extractor import ExtractionLimits, extract_vectors, sample_cubic
from takeoff.vector.index import VectorIndexCache
from tests.utils_pdf import build_pdf, floor_plan_pdf


def _rounded(points):
    return {(round(p.x, 3), round(p.y, 3)) for p in points}


def test_lines_are_expressed_in_native_coordinates():
    index = extract_vectors(floor_plan_pdf(), 1, base_scale=1.5)
    assert len(index.lines) == 2
    assert _rounded(index.endpoints) == {(150.0, 138.0), (450.0, 138.0), (300.0, 288.0), (300.0, 63.0)}


def test_intersections_exclude_endpoints():
    index = extract_vectors(floor_plan_pdf(), 1, base_scale=1.5)
    assert _rounded(index.intersections) == {(300.0, 138.0)}


def test_touching_segments_do_not_create_intersections():
    data = build_pdf(lines={1: [(100, 100, 200, 100), (200, 100, 200, 200)]})
    index = extract_vectors(data, 1)
    assert index.intersections == ()
    assert len(index.endpoints) == 3


def test_curves_are_sampled_into_segments():
    data = build_pdf(curves={1: [(100, 100, 100, 200, 300, 200, 300, 100)]})
    index = extract_vectors(data, 1, base_scale=1.0)
    assert len(index.lines) == 4
    assert (100.0, 692.0) in _rounded(index.endpoints)
    assert (300.0, 692.0) in _rounded(index.endpoints)


def test_unpainted_paths_are_ignored():
    from io import BytesIO

    from reportlab.pdfgen import canvas

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(612, 792), invariant=1)
    c.rect(50, 50, 400, 300, stroke=0, fill=0)
    c.rect(100, 100, 50, 50, stroke=1, fill=0)
    c.showPage()
    c.save()

    index = extract_vectors(buffer.getvalue(), 1, base_scale=1.0)
    assert len(index.lines) == 4
    assert (100.0, 692.0) in _rounded(index.endpoints)
    assert (50.0, 742.0) not in _rounded(index.endpoints)


def test_short_segments_are_dropped():
    data = build_pdf(lines={1: [(400, 400, 401, 400), (100, 100, 200, 100)]})
    index = extract_vectors(data, 1)
    assert len(index.lines) == 1


def test_segment_cap():
    data = build_pdf(lines={1: [(10, 10 + i * 10, 200, 10 + i * 10) for i in range(5)]})
    index = extract_vectors(data, 1, limits=ExtractionLimits(max_lines_per_page=3))
    assert len(index.lines) == 3


def test_empty_page_yields_empty_index():
    index = extract_vectors(build_pdf(), 1)
    assert index.is_empty
    assert index.intersections == ()


def test_page_outside_document():
    with pytest.raises(DocumentDecodeError):
        extract_vectors(build_pdf(), 2)


def test_unreadable_bytes():
    with pytest.raises(DocumentDecodeError):
        extract_vectors(b"not a pdf", 1)


def test_sample_cubic_endpoints():
    points = sample_cubic((0, 0), (0, 10), (10, 10), (10, 0), 4)
    assert len(points) == 5
    assert points[0] == (0, 0)
    assert points[-1] == pytest.approx((10.0, 0.0))


@pytest.mark.asyncio()
async def test_cache_memoizes_per_page():
    cache = VectorIndexCache(base_scale=1.5)
    data = floor_plan_pdf()
    first = await cache.ensure("doc", data, 1)
    second = await cache.ensure("doc", data, 1)
    assert first is second
    assert cache.get("doc", 1) is first
    assert NativePoint(150.0, 138.0) in {NativePoint(round(p.x, 3), round(p.y, 3)) for p in first.endpoints}

    cache.evict_document("doc")
    assert cache.get("doc", 1) is None


@pytest.mark.asyncio()
async def test_cache_swallows_extraction_failures():
    cache = VectorIndexCache()
    assert await cache.ensure("doc", b"broken", 1) is None
    assert not cache.is_extracting("doc", 1)
    assert cache.extract_sync("doc", b"broken", 1) is None
