"""
Unit tests for the HTTP front end.

Settings and the invoker are replaced through FastAPI dependency
overrides, so no environment or OpenWhisk deployment is needed.
"""

import jwt
import pytest
from fastapi.testclient import TestClient

from asset_compute.api.dependencies import get_invoker
from asset_compute.config.settings import Settings, get_settings
from asset_compute.infrastructure.openwhisk import MockInvoker
from asset_compute.main import create_app


@pytest.fixture
def settings():
    return Settings(
        ow_action_name="/ns/pkg/worker",
        invoker_mock_mode=True,
        temporary_storage_mock_mode=True,
        telemetry_mock_mode=True,
    )


@pytest.fixture
def invoker():
    return MockInvoker()


@pytest.fixture
def client(settings, invoker):
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_invoker] = lambda: invoker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = jwt.encode({"client_id": "my-client"}, "unit-test-signing-key-of-32-bytes!", algorithm="HS256")
    return {
        "Authorization": f"Bearer {token}",
        "x-gw-ims-org-id": "org@AdobeOrg",
    }


# ---------------------------------------------------------------------------
# Health Tests
# ---------------------------------------------------------------------------

class TestHealth:
    """Tests for the health endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["details"]["action"] == "worker"
        assert body["details"]["mock_mode"]["invoker"] is True

    def test_ready_in_mock_mode(self, client):
        body = client.get("/health/ready").json()
        assert body["status"] == "ready"
        assert body["missing_settings"] == []

    def test_not_ready_without_openwhisk(self, client, settings):
        settings.invoker_mock_mode = False
        body = client.get("/health/ready").json()
        assert body["status"] == "not_ready"
        assert "__OW_API_HOST" in body["missing_settings"]


# ---------------------------------------------------------------------------
# Web Action Tests
# ---------------------------------------------------------------------------

class TestWebAction:
    """Tests for the web action endpoint."""

    def test_post_returns_activation_id(self, client, invoker, auth_headers):
        response = client.post(
            "/api/v1/webaction",
            json={"source": "https://example.com/a.png", "renditions": [{"fmt": "png"}]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["activationId"]
        action_name, params = invoker.invocations[0]
        assert action_name == "/ns/pkg/worker"
        assert params["renditions"] == [{"fmt": "png"}]
        assert params["auth"]["orgId"] == "org@AdobeOrg"
        assert params["auth"]["clientId"] == "my-client"

    def test_missing_token_is_401(self, client, invoker):
        response = client.post("/api/v1/webaction", json={"source": "a"})

        assert response.status_code == 401
        assert response.json() == {"message": "Missing Oauth token"}
        assert invoker.invocations == []

    def test_invalid_token_is_401(self, client):
        response = client.post(
            "/api/v1/webaction",
            json={},
            headers={"Authorization": "Bearer garbage"},
        )
        assert response.status_code == 401
        assert response.json() == {"message": "Invalid token"}

    def test_get_is_405(self, client, auth_headers):
        response = client.get("/api/v1/webaction", headers=auth_headers)

        assert response.status_code == 405
        assert response.json() == {"message": "Supported HTTP methods: OPTIONS, POST"}

    def test_non_json_body_is_400(self, client, auth_headers):
        response = client.post(
            "/api/v1/webaction",
            content=b"not json",
            headers={**auth_headers, "content-type": "text/plain"},
        )
        assert response.status_code == 400



class TestWebActionWithoutOpenWhisk:
    """The real invoker dependency with no OpenWhisk host or key set."""

    @pytest.fixture
    def unconfigured_client(self):
        settings = Settings(
            ow_action_name="/ns/pkg/worker",
            ow_api_host="",
            ow_api_key="",
            invoker_mock_mode=False,
        )
        app = create_app()
        app.dependency_overrides[get_settings] = lambda: settings
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()

    def test_post_is_500_with_message(self, unconfigured_client, auth_headers):
        response = unconfigured_client.post("/api/v1/webaction", json={}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"message": "Async invocation is not configured"}

    def test_get_is_405(self, unconfigured_client):
        response = unconfigured_client.get("/api/v1/webaction")

        assert response.status_code == 405
