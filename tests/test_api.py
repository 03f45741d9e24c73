"""Tests de la surface HTTP (FastAPI TestClient, Jira simulé par MockTransport)."""

from typing import Generator
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from jira_monitor.main import create_app
from tests.helpers import CLOUD_ID, FakeJira, issue, make_settings

INSTALL = "/api/v1/auth/install"
CALLBACK = "/api/v1/auth/callback"


def _client(jira: FakeJira, **overrides) -> TestClient:
    settings = make_settings(**overrides)
    return TestClient(create_app(settings, transport=jira.transport()))


@pytest.fixture
def client(jira) -> Generator[TestClient, None, None]:
    with _client(jira) as client:
        yield client


def _install(client: TestClient, identity_key: str = "alice") -> str:
    response = client.get(INSTALL, params={"identityKey": identity_key}, follow_redirects=False)
    assert response.status_code == 307
    return parse_qs(urlsplit(response.headers["location"]).query)["state"][0]


class TestRoot:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_root(self, client) -> None:
        assert client.get("/").json()["status"] == "online"


class TestAuthorizationFlow:
    def test_install_redirects_to_consent_screen(self, client) -> None:
        response = client.get(INSTALL, follow_redirects=False)

        location = urlsplit(response.headers["location"])
        assert response.status_code == 307
        assert location.netloc == "auth.atlassian.com"
        assert parse_qs(location.query)["prompt"] == ["consent"]

    def test_callback_stores_credential_and_returns_no_token(self, client, jira) -> None:
        state = _install(client)

        response = client.get(CALLBACK, params={"code": "abc", "state": state})

        assert response.status_code == 200
        body = response.json()
        assert body["tenantId"] == CLOUD_ID
        assert body["expiresIn"] == 3600
        assert body["message"]
        assert "T1" not in response.text and "R1" not in response.text
        services = client.app.state.services
        assert services.store.find_by_identity("alice").access_token == "T1"

    def test_state_cannot_be_replayed(self, client) -> None:
        state = _install(client)
        client.get(CALLBACK, params={"code": "abc", "state": state})

        response = client.get(CALLBACK, params={"code": "abc", "state": state})

        assert response.status_code == 400

    def test_forged_state_is_rejected_before_any_exchange(self, client, jira) -> None:
        _install(client)

        response = client.get(CALLBACK, params={"code": "abc", "state": "forged"})

        assert response.status_code == 400
        assert jira.token_requests() == []

    def test_callback_without_install_is_rejected(self, client, jira) -> None:
        response = client.get(CALLBACK, params={"code": "abc", "state": "whatever"})

        assert response.status_code == 400
        assert jira.requests == []

    def test_consent_denied(self, client, jira) -> None:
        state = _install(client)

        response = client.get(CALLBACK, params={"error": "access_denied", "state": state})

        assert response.status_code == 400
        assert "access_denied" in response.json()["detail"]
        assert jira.requests == []

    def test_rejected_code_is_a_client_error(self, client, jira) -> None:
        state = _install(client)
        jira.queue_token(400, error="invalid_grant")

        response = client.get(CALLBACK, params={"code": "abc", "state": state})

        assert response.status_code == 400
        assert "autorisation" in response.json()["detail"]
        assert client.app.state.services.store.find_by_identity("alice") is None

    def test_unexpected_token_response_is_a_client_error(self, client, jira) -> None:
        state = _install(client)
        jira.queue_token(access_token="T1")

        response = client.get(CALLBACK, params={"code": "abc", "state": state})

        assert response.status_code == 400
        assert "T1" not in response.text

    def test_fetch_upstream_failure_stays_bad_gateway(self, jira) -> None:
        with _client(jira, DEFAULT_IDENTITY_KEY="alice") as client:
            state = _install(client)
            client.get(CALLBACK, params={"code": "abc", "state": state})
            jira.search_statuses = [401]

            response = client.get("/api/v1/monitor/fetch")

        assert response.status_code == 502

    def test_missing_configuration_names_the_key(self, jira) -> None:
        with _client(jira, JIRA_CLIENT_ID=None) as client:
            response = client.get(INSTALL, follow_redirects=False)

        assert response.status_code == 400
        assert "JIRA_CLIENT_ID" in response.json()["detail"]


class TestMonitorEndpoints:
    def test_fetch_without_authorization_is_unavailable(self, client) -> None:
        response = client.get("/api/v1/monitor/fetch")

        assert response.status_code == 503

    def test_fetch_after_install(self, jira) -> None:
        jira.search_payload = {"issues": [issue("A-1", "In Progress"), issue("A-2", "Done")]}
        with _client(jira, DEFAULT_IDENTITY_KEY="alice") as client:
            state = _install(client)
            client.get(CALLBACK, params={"code": "abc", "state": state})

            response = client.get("/api/v1/monitor/fetch")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["statusCounts"] == {"In Progress": 1}
        assert body["issues"][0]["summary"] == "Issue A-1"
        assert "timeOpenDays" in body["issues"][0]

    def test_refresh_without_credential(self, client) -> None:
        response = client.post("/api/v1/monitor/refresh")

        assert response.json() == {"status": "no_credential", "expiresAt": None}

    def test_cron_lifecycle(self, client) -> None:
        assert client.get("/api/v1/monitor/cron").json()["running"] is False

        started = client.post("/api/v1/monitor/cron/start").json()
        assert started["running"] is True
        assert client.post("/api/v1/monitor/cron/start").json()["message"] == "Cron déjà actif"
        assert client.get("/api/v1/monitor/cron").json()["running"] is True

        stopped = client.post("/api/v1/monitor/cron/stop").json()
        assert stopped["running"] is False
        assert client.get("/api/v1/monitor/cron").json()["running"] is False
