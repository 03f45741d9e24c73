import logging
from typing import Any, Optional

import httpx

from jira_monitor.core.config import Settings
from jira_monitor.models.credential import Credential
from jira_monitor.services.jira_http import api_target, request_json

logger = logging.getLogger(__name__)


class IssueQueryEngine:
    """Exécute une requête JQL sur /rest/api/3/search et renvoie le JSON brut."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http = http_client

    async def search(self, credential: Optional[Credential], jql: str) -> Any:
        target = api_target(self.settings, credential)
        url = f"{target.base_url}/rest/api/3/search"
        logger.info("Recherche Jira avec JQL=%r", jql)

        data = await request_json(
            self.http,
            "GET",
            url,
            headers=target.headers,
            params={"jql": jql},
            auth=target.auth,
            retries=self.settings.HTTP_READ_RETRIES,
            backoff=self.settings.HTTP_RETRY_BACKOFF_SECONDS,
        )
        if isinstance(data, dict) and isinstance(data.get("issues"), list):
            logger.info("Jira a renvoyé %d issues", len(data["issues"]))
        return data
