"""
Tests for the HTTP application
"""
import pytest
from fastapi.testclient import TestClient

from mailfetch import __version__
from mailfetch.api import FetchResult, create_app
from mailfetch.utils.config_manager import AppConfig


class RecordingService:
    """Returns a canned FetchResult and records payloads"""

    def __init__(self, result):
        self.result = result
        self.payloads = []

    async def fetch(self, payload):
        self.payloads.append(payload)
        return self.result

    async def fetch_body(self, payload):
        self.payloads.append(payload)
        return self.result


@pytest.fixture
def app():
    return create_app(AppConfig())


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRoutes:
    """Tests for routing and status codes"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_fetch_emails_passes_payload_and_status(self, app, client):
        service = RecordingService(FetchResult(200, {"success": True, "emails": [], "count": 0}))
        app.state.emails_service = service

        response = client.post("/fetch-emails", json={"imap_config": {"host": "h"}})

        assert response.status_code == 200
        assert response.json() == {"success": True, "emails": [], "count": 0}
        assert service.payloads == [{"imap_config": {"host": "h"}}]

    def test_fetch_body_route(self, app, client):
        service = RecordingService(FetchResult(200, {"success": True, "body": "x", "html_body": None}))
        app.state.body_service = service

        response = client.post("/fetch-body", json={"seq": 3})

        assert response.status_code == 200
        assert response.json()["body"] == "x"

    def test_blank_credentials_return_401(self, client):
        """Test the real service rejects blank credentials without connecting"""
        response = client.post(
            "/fetch-emails",
            json={"imap_config": {"host": "imap.test.com", "port": 993, "user": " ", "pass": ""}},
        )

        assert response.status_code == 401
        body = response.json()
        assert body["authError"] is True
        assert body["emails"] == []

    def test_invalid_json_returns_400(self, client):
        response = client.post(
            "/fetch-emails", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_empty_body_is_missing_credentials(self, client):
        response = client.post("/fetch-emails")

        assert response.status_code == 401

    def test_get_not_allowed(self, client):
        assert client.get("/fetch-emails").status_code == 405


class TestCORS:
    """Tests for cross-origin headers"""

    def test_preflight(self, client):
        response = client.options(
            "/fetch-emails",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, x-client-info, apikey, content-type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        allowed = response.headers["access-control-allow-headers"].lower()
        for header in ("authorization", "x-client-info", "apikey", "content-type"):
            assert header in allowed

    def test_simple_request_has_allow_origin(self, client):
        response = client.get("/health", headers={"Origin": "https://app.example.com"})

        assert response.headers["access-control-allow-origin"] == "*"
