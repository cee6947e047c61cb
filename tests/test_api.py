from __future__ import annotations

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("pypdfium2")
pytest.importorskip("reportlab")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from services.api.main import create_app
from takeoff.workspace import Workspace
from tests.utils_pdf import build_pdf, floor_plan_pdf


@pytest.fixture()
def workspace() -> Workspace:
    return Workspace()


@pytest_asyncio.fixture()
async def client(workspace):
    app = create_app(workspace)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def _upload(client, data=None, name="A-101.pdf") -> dict:
    response = await client.post(
        "/v1/documents",
        files={"file": (name, data or build_pdf(pages=2), "application/pdf")},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio()
async def test_document_lifecycle(client):
    doc = await _upload(client)
    assert doc["pages"] == 2
    assert doc["active"] is True

    listing = await client.get("/v1/documents")
    assert [d["id"] for d in listing.json()] == [doc["id"]]

    view = await client.put(f"/v1/documents/{doc['id']}/view", json={"page": 2, "zoom": 800})
    assert view.json()["current_page"] == 2
    assert view.json()["zoom"] == 400.0

    bad_page = await client.put(f"/v1/documents/{doc['id']}/view", json={"page": 3})
    assert bad_page.status_code == 400
    assert bad_page.json()["error"] == "ValidationError"

    closed = await client.delete(f"/v1/documents/{doc['id']}")
    assert closed.json() == {"closed": doc["id"], "unlinked": 0}
    missing = await client.get(f"/v1/documents/{doc['id']}/pages/1/markups")
    assert missing.status_code == 404


@pytest.mark.asyncio()
async def test_upload_rejects_garbage(client):
    response = await client.post("/v1/documents", files={"file": ("x.pdf", b"garbage", "application/pdf")})
    assert response.status_code == 422
    assert response.json()["error"] == "DocumentDecodeError"


@pytest.mark.asyncio()
async def test_markup_crud_and_history(client):
    doc = await _upload(client)
    base = f"/v1/documents/{doc['id']}/pages/1/markups"

    created = await client.post(base, json={"type": "rectangle", "x": 10, "y": 10, "width": 50, "height": 20})
    assert created.status_code == 201
    markup_id = created.json()["id"]
    assert created.json()["page"] == 1

    locked = await client.patch(f"{base}/{markup_id}", json={"changes": {"locked": True}})
    assert locked.json()["locked"] is True
    blocked = await client.patch(f"{base}/{markup_id}", json={"changes": {"x": 5}})
    assert blocked.status_code == 409

    undo = await client.post(f"/v1/documents/{doc['id']}/undo")
    assert undo.json()["applied"] is True
    assert undo.json()["can_redo"] is True

    deleted = await client.post(f"{base}/delete", json={"ids": [markup_id]})
    assert deleted.json() == {"deleted": [markup_id]}
    assert (await client.get(base)).json()["markups"] == []

    nothing = await client.post(f"{base}/delete", json={"ids": ["nope"]})
    assert nothing.status_code == 404

    invalid = await client.post(base, json={"type": "hexagon"})
    assert invalid.status_code == 400


@pytest.mark.asyncio()
async def test_markup_ids_are_unique_and_deletable_by_id(client):
    doc = await _upload(client)
    first = await client.post(
        f"/v1/documents/{doc['id']}/pages/1/markups", json={"id": "A", "type": "text", "x": 1, "y": 1, "content": "x"}
    )
    assert first.status_code == 201
    clash = await client.post(
        f"/v1/documents/{doc['id']}/pages/2/markups", json={"id": "A", "type": "text", "x": 1, "y": 1, "content": "y"}
    )
    assert clash.status_code == 400

    removed = await client.delete(f"/v1/documents/{doc['id']}/markups/A")
    assert removed.json() == {"deleted": ["A"], "page": 1}
    again = await client.delete(f"/v1/documents/{doc['id']}/markups/A")
    assert again.status_code == 404


@pytest.mark.asyncio()
async def test_measurement_flow_links_products(client):
    doc = await _upload(client)
    product = (await client.post("/v1/products", json={"name": "Baseboard"})).json()["id"]

    calibration = await client.post(
        "/v1/calibration", json={"p1": [0, 0], "p2": [150, 0], "known_distance": 10, "unit": "ft"}
    )
    assert calibration.json() == {"scale": 15.0, "unit": "ft", "area_unit": "sq ft"}

    zero = await client.post("/v1/calibration", json={"p1": [0, 0], "p2": [0, 0], "known_distance": 10})
    assert zero.status_code == 400

    measured = await client.post(
        f"/v1/documents/{doc['id']}/measurements",
        json={"page": 1, "points": [[0, 0], [300, 0]], "product_id": product},
    )
    assert measured.status_code == 201
    assert measured.json()["scaledValue"] == pytest.approx(20.0)

    count = await client.post(f"/v1/documents/{doc['id']}/counts", json={"page": 2, "x": 5, "y": 5})
    marker_id = count.json()["id"]
    linked = await client.post("/v1/links", json={"markup_id": marker_id, "product_id": product})
    assert linked.status_code == 201
    again = await client.post("/v1/links", json={"markup_id": marker_id, "product_id": product})
    assert again.status_code == 409

    export = await client.get("/v1/products/export", params={"project_name": "Job"})
    totals = export.json()["products"][0]["measurements"]
    assert totals["totalLength"] == pytest.approx(20.0)
    assert totals["totalCount"] == 1.0

    unlinked = await client.delete(f"/v1/links/{marker_id}")
    assert unlinked.json()["productId"] == product
    assert (await client.delete(f"/v1/links/{marker_id}")).status_code == 404


@pytest.mark.asyncio()
async def test_snap_endpoint_uses_document_vectors(client):
    doc = await _upload(client, floor_plan_pdf(), "plan.pdf")
    settings = await client.put("/v1/snap/settings", json={"snap_enabled": True, "grid_enabled": True})
    assert settings.json() == {"snapEnabled": True, "gridEnabled": True, "gridSize": 20.0}

    hit = await client.post(f"/v1/documents/{doc['id']}/snap", json={"page": 1, "x": 452, "y": 140})
    assert hit.json()["snapped"] is True
    assert hit.json()["source"] == "document-endpoint"
    assert hit.json()["x"] == pytest.approx(450.0)

    off = await client.post(
        f"/v1/documents/{doc['id']}/snap",
        json={"page": 1, "x": 452, "y": 140, "snap_enabled": False, "grid_enabled": False},
    )
    assert off.json() == {"x": 452.0, "y": 140.0, "snapped": False, "source": None}


@pytest.mark.asyncio()
async def test_ai_placements_confirm_and_reject(client):
    doc = await _upload(client)
    placed = await client.post(
        f"/v1/documents/{doc['id']}/ai/placements",
        json={
            "placements": {
                "markups": [
                    {"type": "count-marker", "page": 1, "points": [{"x": 1, "y": 1}]},
                    {"type": "count-marker", "page": 2, "points": [{"x": 2, "y": 2}]},
                ]
            }
        },
    )
    assert placed.status_code == 201
    assert placed.json()["affected"] == 2

    confirmed = await client.post(f"/v1/documents/{doc['id']}/ai/confirm")
    assert confirmed.json()["affected"] == 2
    rejected = await client.post(f"/v1/documents/{doc['id']}/ai/reject")
    assert rejected.json()["affected"] == 0

    malformed = await client.post(
        f"/v1/documents/{doc['id']}/ai/placements", json={"placements": {"markups": [{"type": "blob"}]}}
    )
    assert malformed.status_code == 502


@pytest.mark.asyncio()
async def test_export_returns_pdf(client):
    doc = await _upload(client)
    await client.post(f"/v1/documents/{doc['id']}/counts", json={"page": 1, "x": 100, "y": 100})
    response = await client.get(f"/v1/documents/{doc['id']}/export")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="A-101_marked.pdf"' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


@pytest.mark.asyncio()
async def test_project_save_and_load(client, workspace):
    doc = await _upload(client)
    await client.post(f"/v1/documents/{doc['id']}/counts", json={"page": 1, "x": 10, "y": 10})

    saved = await client.post("/v1/project/save", json={"name": "Tower"})
    assert saved.headers["content-type"].startswith("application/json")
    project = saved.json()
    assert project["documents"][0]["id"] == doc["id"]

    await client.delete(f"/v1/documents/{doc['id']}")
    loaded = await client.post("/v1/project/load", json=project)
    assert loaded.status_code == 200
    assert loaded.json()["name"] == "Tower"
    assert [d["id"] for d in loaded.json()["documents"]] == [doc["id"]]
    assert len(workspace.session(doc["id"]).all_markups()) == 1

    broken = await client.post("/v1/project/load", json={"documents": []})
    assert broken.status_code == 400
