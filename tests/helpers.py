"""Outils de test : horloge contrôlée, faux serveurs Atlassian, configuration isolée."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from jira_monitor.core.config import Settings

T0 = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)

AUTH_HOST = "auth.atlassian.com"
API_HOST = "api.atlassian.com"
CLOUD_ID = "cloud-1"


class FakeClock:
    """Horloge contrôlée par le test (UTC)."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeJira:
    """
    Faux serveurs Atlassian (auth + API) derrière un httpx.MockTransport.

    Chaque requête est enregistrée ; les réponses sont pilotées par les
    attributs publics, et ``token_delay`` ralentit le token endpoint pour
    laisser plusieurs appelants se chevaucher.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.token_responses: List[httpx.Response] = []
        self.resources: Any = [{"id": CLOUD_ID, "name": "acme", "url": "https://acme.atlassian.net"}]
        self.search_payload: Any = {"issues": []}
        self.search_statuses: List[int] = []
        self.write_status: Callable[[httpx.Request], int] = lambda request: 204
        self.token_delay: float = 0.0
        self._issued = 0

    # -- helpers --------------------------------------------------------------

    def queue_token(self, status: int = 200, **payload) -> None:
        self.token_responses.append(httpx.Response(status, json=payload))

    def token_requests(self) -> List[Dict[str, Any]]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.url.host == AUTH_HOST and r.url.path == "/oauth/token"
        ]

    def writes(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method in ("PUT", "POST") and r.url.host == API_HOST]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    # -- routage --------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == AUTH_HOST and path == "/oauth/token":
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            if self.token_responses:
                return self.token_responses.pop(0)
            self._issued += 1
            return httpx.Response(
                200,
                json={"access_token": f"T{self._issued}", "refresh_token": f"R{self._issued}", "expires_in": 3600},
            )

        if path == "/oauth/token/accessible-resources":
            return httpx.Response(200, json=self.resources)

        if path.endswith("/rest/api/3/search"):
            if self.search_statuses:
                return httpx.Response(self.search_statuses.pop(0))
            return httpx.Response(200, json=self.search_payload)

        if "/rest/api/3/issue/" in path:
            return httpx.Response(self.write_status(request))

        return httpx.Response(404)


def make_settings(**overrides) -> Settings:
    values: Dict[str, Any] = dict(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
        JIRA_CLIENT_ID="client-id",
        JIRA_CLIENT_SECRET="client-secret",
        JIRA_REDIRECT_URI="https://monitor.example.com/api/v1/auth/callback",
        SCHEDULER_AUTOSTART=False,
        HTTP_RETRY_BACKOFF_SECONDS=0,
        DEFAULT_JQL="project = TEST",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def issue(key: str, status: Optional[str], created: str = "2025-05-18T09:00:00.000+0000", **fields) -> Dict[str, Any]:
    body: Dict[str, Any] = {"summary": f"Issue {key}", "created": created}
    if status is not None:
        body["status"] = {"name": status}
    body.update(fields)
    return {"key": key, "fields": body}
