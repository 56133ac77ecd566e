"""
Tests for api/app.py: create_app() factory

Verifies environment validation at startup, router registration, the
health endpoints and the middleware stack (security headers, request ids,
rate limits).
"""
import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from api.app import create_app  # noqa: E402
from utils.config import AppConfig, EnvironmentConfigError  # noqa: E402


def _config(monkeypatch, **env) -> AppConfig:
    for name in ("CSRF_SECRET", "APP_JWT_SECRET", "APP_CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return AppConfig()


class TestCreateApp:
    def test_creates_fastapi_instance(self, db_path):
        app = create_app(db_path=db_path)
        assert app.title == "RBI Registry API"
        assert app.version == "1.0.0"

    def test_registers_api_routes(self, db_path):
        paths = set(create_app(db_path=db_path).openapi()["paths"])
        for path in ("/api/v1/auth/sign-in", "/api/v1/addresses/regions/public",
                     "/api/v1/psgc/search", "/api/v1/user/geographic-location",
                     "/api/v1/residents", "/api/v1/households/{code}/members",
                     "/api/v1/dashboard/stats", "/api/v1/search",
                     "/api/v1/download/residents", "/health"):
            assert path in paths, path

    def test_refuses_invalid_environment(self, db_path, monkeypatch):
        cfg = _config(monkeypatch, APP_ENV="production")
        with pytest.raises(EnvironmentConfigError) as excinfo:
            create_app(db_path=db_path, config=cfg)
        assert "CSRF_SECRET is required in production" in excinfo.value.errors

    def test_accepts_strict_environment_with_secrets(self, db_path, monkeypatch):
        cfg = _config(monkeypatch, APP_ENV="staging", CSRF_SECRET="c" * 48,
                      APP_JWT_SECRET="j" * 48)
        client = TestClient(create_app(db_path=db_path, config=cfg))
        assert client.get("/health").status_code == 200


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["residents"] == 0

    def test_health_is_not_rate_limited(self, client):
        for _ in range(130):
            assert client.get("/health").status_code == 200

    def test_detailed(self, client):
        body = client.get("/health/detailed").json()
        assert body["status"] == "ok"
        assert body["environment"] == "test"
        assert body["row_counts"]["psgc_barangays"] == 4
        assert body["row_counts"]["user_profiles"] == 6
        assert body["db_size_bytes"] > 0
        assert body["db_size_mb"] == round(body["db_size_bytes"] / (1024 * 1024), 2)

    def test_missing_database(self, tmp_path):
        client = TestClient(create_app(db_path=tmp_path / "missing.sqlite"))
        assert client.get("/health").status_code == 503
        resp = client.get("/api/v1/addresses/regions/public")
        assert resp.status_code == 503
        assert "build_rbi_db.py" in resp.json()["detail"]


class TestMiddleware:
    def test_security_headers(self, client):
        resp = client.get("/api/v1/addresses/regions/public")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'self'" in resp.headers["Content-Security-Policy"]
        assert len(resp.headers["X-Request-ID"]) == 8

    def test_default_rate_limit(self, db_path, monkeypatch):
        cfg = _config(monkeypatch, APP_ENV="test", RATE_LIMIT_DEFAULT="3")
        client = TestClient(create_app(db_path=db_path, config=cfg))
        url = "/api/v1/addresses/regions/public"
        assert [client.get(url).status_code for _ in range(3)] == [200, 200, 200]
        resp = client.get(url)
        assert resp.status_code == 429
        assert resp.json()["error"] == "Too many requests"
        # Other paths keep their own window
        assert client.get("/api/v1/addresses/provinces/public").status_code == 200

    def test_validation_errors_are_json(self, client, login):
        resp = client.post("/api/v1/residents", json={"sex": "male"}, headers=login())
        assert resp.status_code == 422
        body = resp.json()
        assert body["status_code"] == 422
        assert {e["field"] for e in body["errors"]} == {"first_name", "last_name", "birthdate"}
