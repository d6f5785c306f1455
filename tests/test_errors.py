"""Tests for the error envelope."""

from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient

from storefront.core import errors
from storefront.core.errors import AppError, Conflict, NotFound, ProviderError, register_error_handlers


def build_app():
    app = FastAPI()
    register_error_handlers(app)
    router = APIRouter()

    @router.get("/missing")
    def missing():
        raise NotFound("Thing not found")

    @router.get("/upstream")
    def upstream():
        raise ProviderError("Payment provider unavailable")

    @router.get("/boom")
    def boom():
        raise RuntimeError("database exploded")

    app.include_router(router)
    return app


class TestAppError:
    def test_status_labels(self):
        assert AppError("x").status == "fail"
        assert Conflict("x").status_code == 409
        assert ProviderError("x").status == "error"
        assert NotFound("x").is_operational is True


class TestHandlers:
    def test_operational_error(self):
        client = TestClient(build_app())
        response = client.get("/missing")
        assert response.status_code == 404
        assert response.json() == {"status": "fail", "message": "Thing not found"}

    def test_provider_error_is_5xx(self):
        response = TestClient(build_app()).get("/upstream")
        assert response.status_code == 502
        assert response.json()["status"] == "error"

    def test_unknown_route(self):
        response = TestClient(build_app()).get("/nowhere")
        assert response.status_code == 404
        assert response.json()["status"] == "fail"

    def test_unexpected_error_in_development(self):
        client = TestClient(build_app(), raise_server_exceptions=False)
        response = client.get("/boom")
        assert response.status_code == 500
        assert response.json()["status"] == "error"
        assert response.json()["message"] == "database exploded"

    def test_unexpected_error_in_production(self, monkeypatch):
        monkeypatch.setattr(errors.settings, "APP_ENV", "production")
        client = TestClient(build_app(), raise_server_exceptions=False)
        response = client.get("/boom")
        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": errors.GENERIC_MESSAGE}
