import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx

from jira_monitor.core.config import Settings
from jira_monitor.core.exceptions import NotAuthorizedError, ProtocolError, UpstreamError
from jira_monitor.models.credential import Credential

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}

# Codes pour lesquels une lecture peut être rejouée sans risque
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ApiTarget:
    """Où et comment appeler l'API Jira (base URL + authentification)."""

    base_url: str
    headers: Dict[str, str] = field(default_factory=dict)
    auth: Optional[httpx.Auth] = None

    def issue_url(self, issue_key: str) -> str:
        return f"{self.base_url}/rest/api/3/issue/{issue_key}"


def api_target(settings: Settings, credential: Optional[Credential]) -> ApiTarget:
    if settings.uses_basic_auth:
        settings.require("JIRA_SITE_URL", "JIRA_BASIC_EMAIL", "JIRA_BASIC_API_TOKEN")
        return ApiTarget(
            base_url=settings.JIRA_SITE_URL.rstrip("/"),
            headers=dict(JSON_HEADERS),
            auth=httpx.BasicAuth(settings.JIRA_BASIC_EMAIL, settings.JIRA_BASIC_API_TOKEN),
        )

    if credential is None:
        raise NotAuthorizedError("Aucune credential Jira disponible pour appeler l'API")

    headers = dict(JSON_HEADERS)
    headers["Authorization"] = f"Bearer {credential.access_token}"
    return ApiTarget(
        base_url=f"{settings.JIRA_API_URL.rstrip('/')}/ex/jira/{credential.tenant_id}",
        headers=headers,
    )


def _path(url: str) -> str:
    # Jamais de query string dans les messages d'erreur
    parts = urlsplit(url)
    return f"{parts.netloc}{parts.path}"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    json: Any = None,
    params: Optional[Dict[str, Any]] = None,
    auth: Optional[httpx.Auth] = None,
    retries: int = 0,
    backoff: float = 0.5,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Exécute un appel HTTP et renvoie le JSON décodé (None si corps vide).

    Seules les lectures (GET) sont rejouées, avec un délai exponentiel, sur
    erreur de transport, 429 ou 5xx. Les grants OAuth et les écritures ne le
    sont jamais : un code d'autorisation ou un refresh_token consommé ne peut
    pas être réutilisé.
    """
    method = method.upper()
    max_retries = retries if method == "GET" else 0
    attempt = 0

    while True:
        try:
            response = await client.request(
                method, url, headers=headers, json=json, params=params, auth=auth
            )
        except httpx.HTTPError as exc:
            if attempt < max_retries:
                delay = backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "%s %s : %s, nouvelle tentative %d/%d dans %.1fs",
                    method, _path(url), exc.__class__.__name__, attempt, max_retries, delay,
                )
                await sleep_fn(delay)
                continue
            raise UpstreamError(
                f"Échec de transport pour {method} {_path(url)} : {exc.__class__.__name__}"
            ) from exc

        if response.status_code in RETRYABLE_STATUSES and attempt < max_retries:
            delay = backoff * (2 ** attempt)
            attempt += 1
            logger.warning(
                "%s %s a répondu %d, nouvelle tentative %d/%d dans %.1fs",
                method, _path(url), response.status_code, attempt, max_retries, delay,
            )
            await sleep_fn(delay)
            continue

        if not response.is_success:
            logger.debug("Corps de l'erreur %s %s : %s", method, _path(url), response.text)
            raise UpstreamError(
                f"{method} {_path(url)} a répondu {response.status_code}",
                upstream_status=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Réponse non JSON pour {method} {_path(url)}", body=response.text
            ) from exc
