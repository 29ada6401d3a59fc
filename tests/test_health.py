from fastapi.testclient import TestClient

from mcpauth.main import create_app
from tests.conftest import build_settings


def test_healthz_endpoint() -> None:
    app = create_app(settings=build_settings())
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_reports_service_name() -> None:
    app = create_app(settings=build_settings())
    with TestClient(app) as client:
        response = client.get("/")

    assert response.json() == {"service": "mcp-auth-bff", "status": "ok"}
