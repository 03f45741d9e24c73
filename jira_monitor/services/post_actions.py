import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from jira_monitor.core.config import Settings
from jira_monitor.core.exceptions import JiraMonitorError
from jira_monitor.models.credential import Credential
from jira_monitor.services.jira_http import api_target, request_json

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], Awaitable[Credential]]


def adf_comment(text: str) -> Dict[str, Any]:
    """Commentaire au format Atlassian Document Format (un paragraphe)."""
    return {
        "body": {
            "type": "doc",
            "version": 1,
            "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": text}]}
            ],
        }
    }


class PostActionExecutor:
    """
    Actions automatiques sur une issue ouverte, dans cet ordre :
    champ personnalisé, transition A, transition B, commentaire.

    C'est un lot best-effort, pas une transaction : un échec est journalisé,
    n'annule rien et n'empêche pas les étapes suivantes.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http = http_client

    def steps(self) -> List[Tuple[str, str, str, Dict[str, Any]]]:
        # (libellé, méthode, suffixe de l'URL de l'issue, payload)
        field = {self.settings.POST_ACTION_FIELD_ID: {"value": self.settings.POST_ACTION_FIELD_VALUE}}
        steps = [("champ personnalisé", "PUT", "", {"fields": field})]
        for transition_id in self.settings.POST_ACTION_TRANSITIONS:
            steps.append(
                (f"transition {transition_id}", "POST", "/transitions", {"transition": {"id": transition_id}})
            )
        steps.append(("commentaire", "POST", "/comment", adf_comment(self.settings.POST_ACTION_COMMENT)))
        return steps

    async def apply(
        self,
        issue_key: str,
        credential: Optional[Credential],
        credential_provider: Optional[CredentialProvider] = None,
    ) -> int:
        """
        Exécute la séquence pour une issue ; renvoie le nombre d'étapes en échec.

        Si ``credential_provider`` est fourni, il est appelé avant chaque étape
        pour utiliser le token courant (il a pu être renouvelé pendant le lot).
        """
        failures = 0
        for label, method, suffix, payload in self.steps():
            try:
                if credential_provider is not None:
                    credential = await credential_provider()
                target = api_target(self.settings, credential)
                await request_json(
                    self.http,
                    method,
                    target.issue_url(issue_key) + suffix,
                    headers=target.headers,
                    json=payload,
                    auth=target.auth,
                )
            except JiraMonitorError as exc:
                failures += 1
                logger.error("Post action '%s' en échec pour l'issue %s : %s", label, issue_key, exc)

        if failures:
            logger.warning("Post actions terminées pour l'issue %s avec %d échec(s)", issue_key, failures)
        else:
            logger.info("Post actions terminées pour l'issue %s", issue_key)
        return failures
