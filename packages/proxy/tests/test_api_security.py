"""Tests for the admin authentication and CORS middleware."""

import os

from fastapi import FastAPI
from fastapi.testclient import TestClient

from keyrelay_proxy.middleware.auth import AdminAuthMiddleware, get_admin_api_key
from keyrelay_proxy.middleware.cors import CORSMiddleware, get_cors_origins


def build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/admin/keys")
    async def admin_keys():
        return {"ok": True}

    @app.get("/v1/models")
    async def models():
        return {"ok": True}

    return app


class TestAdminAuthMiddleware:
    """Tests for AdminAuthMiddleware."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.admin_key = "test-admin-api-key-12345"
        os.environ["KEYRELAY_ADMIN_API_KEY"] = self.admin_key

    def teardown_method(self) -> None:
        """Clean up test environment."""
        os.environ.pop("KEYRELAY_ADMIN_API_KEY", None)

    def test_get_admin_api_key(self) -> None:
        assert get_admin_api_key() == self.admin_key

    def test_get_admin_api_key_not_set(self) -> None:
        os.environ.pop("KEYRELAY_ADMIN_API_KEY", None)
        assert get_admin_api_key() is None

    def test_public_endpoints_are_open(self) -> None:
        app = build_app()
        app.add_middleware(AdminAuthMiddleware)

        response = TestClient(app).get("/v1/models")

        assert response.status_code == 200

    def test_admin_endpoints_require_bearer_token(self) -> None:
        app = build_app()
        app.add_middleware(AdminAuthMiddleware)
        client = TestClient(app)

        assert client.get("/admin/keys").status_code == 401
        assert (
            client.get("/admin/keys", headers={"Authorization": "Bearer wrong"}).status_code
            == 401
        )
        response = client.get(
            "/admin/keys", headers={"Authorization": f"Bearer {self.admin_key}"}
        )
        assert response.status_code == 200

    def test_explicit_key_overrides_environment(self) -> None:
        app = build_app()
        app.add_middleware(AdminAuthMiddleware, admin_api_key="explicit-key")
        client = TestClient(app)

        assert (
            client.get(
                "/admin/keys", headers={"Authorization": f"Bearer {self.admin_key}"}
            ).status_code
            == 401
        )
        assert (
            client.get("/admin/keys", headers={"Authorization": "Bearer explicit-key"}).status_code
            == 200
        )

    def test_admin_open_when_no_key_configured(self) -> None:
        os.environ.pop("KEYRELAY_ADMIN_API_KEY", None)
        app = build_app()
        app.add_middleware(AdminAuthMiddleware)

        assert TestClient(app).get("/admin/keys").status_code == 200


class TestCORS:
    """Tests for CORS middleware."""

    def teardown_method(self) -> None:
        os.environ.pop("CORS_ORIGINS", None)

    def test_get_cors_origins_from_environment(self) -> None:
        os.environ["CORS_ORIGINS"] = "https://a.example, https://b.example"
        assert get_cors_origins() == ["https://a.example", "https://b.example"]

    def test_get_cors_origins_defaults(self) -> None:
        os.environ.pop("CORS_ORIGINS", None)
        assert get_cors_origins() == ["*"]

    def test_wildcard_origin(self) -> None:
        app = build_app()
        app.add_middleware(CORSMiddleware)

        response = TestClient(app).get("/v1/models", headers={"Origin": "https://x.example"})

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "Vary" not in response.headers

    def test_preflight(self) -> None:
        app = build_app()
        app.add_middleware(CORSMiddleware, allowed_origins=["https://a.example"])

        response = TestClient(app).options(
            "/v1/chat/completions", headers={"Origin": "https://a.example"}
        )

        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "https://a.example"
        assert response.headers["Access-Control-Max-Age"] == "86400"
        assert response.headers["Vary"] == "Origin"

    def test_unconfigured_origin_gets_no_headers(self) -> None:
        app = build_app()
        app.add_middleware(CORSMiddleware, allowed_origins=["https://a.example"])

        response = TestClient(app).get("/v1/models", headers={"Origin": "https://evil.example"})

        assert response.status_code == 200
        assert "Access-Control-Allow-Origin" not in response.headers
