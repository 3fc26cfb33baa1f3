"""Tests for settings and application assembly."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from starlette.testclient import TestClient

from reader_mcp.config import Settings
from reader_mcp.server import create_app


class TestSettings:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COOKIE_ENCRYPTION_KEY", "from-env")
        monkeypatch.setenv("SERVER_URL", "https://reader-mcp.example.com")
        monkeypatch.setenv("PORT", "9000")
        settings = Settings(_env_file=None)
        assert settings.cookie_encryption_key == "from-env"
        assert settings.server_url == "https://reader-mcp.example.com"
        assert settings.port == 9000
        assert settings.log_level == "info"

    def test_cookie_key_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("COOKIE_ENCRYPTION_KEY", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_jwt_secret_generated_when_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("JWT_SECRET", raising=False)
        first = Settings(_env_file=None, cookie_encryption_key="k")
        second = Settings(_env_file=None, cookie_encryption_key="k")
        assert len(first.jwt_secret) == 128
        assert first.jwt_secret != second.jwt_secret


class TestCreateApp:
    @pytest.fixture
    def client(self) -> TestClient:
        settings = Settings(
            _env_file=None,
            cookie_encryption_key="app-secret",
            jwt_secret="s" * 64,
            server_url="http://localhost:8787",
        )
        return TestClient(create_app(settings), base_url="http://localhost:8787")

    def test_authorize_is_served_by_consent_handler(self, client: TestClient) -> None:
        resp = client.get("/authorize", params={"response_type": "code"})
        assert resp.status_code == 400
        assert resp.text == "Invalid request"

    def test_sdk_endpoints_mounted(self, client: TestClient) -> None:
        resp = client.get("/.well-known/oauth-authorization-server")
        assert resp.status_code == 200
        assert resp.json()["authorization_endpoint"] == "http://localhost:8787/authorize"

    def test_mcp_requires_bearer_token(self, client: TestClient) -> None:
        resp = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
            headers={"Accept": "application/json, text/event-stream"},
        )
        assert resp.status_code == 401
        assert "WWW-Authenticate" in resp.headers
