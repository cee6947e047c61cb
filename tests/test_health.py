import pytest

pytest.importorskip("loguru")
pytest.importorskip("fastapi")

from httpx import ASGITransport, AsyncClient

from services.api.main import create_app
from takeoff.workspace import Workspace


@pytest.mark.asyncio()
async def test_health_endpoint() -> None:
    app = create_app(Workspace())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
