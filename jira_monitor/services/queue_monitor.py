import logging
from functools import partial
from typing import Iterable, Optional

from jira_monitor.core.config import Settings
from jira_monitor.schemas.auth import RefreshStatus
from jira_monitor.schemas.issues import ProcessedIssues
from jira_monitor.services.issue_query import IssueQueryEngine
from jira_monitor.services.post_actions import PostActionExecutor
from jira_monitor.services.token_authority import TokenAuthority
from jira_monitor.services.triage import IssueTriagePipeline, normalize_status

logger = logging.getLogger(__name__)


def is_open(status: str, markers: Iterable[str]) -> bool:
    # Correspondance par sous-chaîne ("Open", "Reopened", "Aberto"...)
    normalized = normalize_status(status)
    return any(normalize_status(marker) in normalized for marker in markers)


class QueueMonitor:
    """
    Surveillance de la file Jira :
    1) garantit un token valide (juste avant chaque recherche),
    2) exécute la JQL,
    3) passe le JSON brut au pipeline de triage,
    4) applique les post actions aux issues ouvertes.
    """

    def __init__(
        self,
        settings: Settings,
        authority: TokenAuthority,
        query_engine: IssueQueryEngine,
        pipeline: IssueTriagePipeline,
        executor: PostActionExecutor,
    ):
        self.settings = settings
        self.authority = authority
        self.query_engine = query_engine
        self.pipeline = pipeline
        self.executor = executor

    async def fetch_and_process(
        self, identity_key: Optional[str] = None, jql: Optional[str] = None
    ) -> ProcessedIssues:
        identity_key = identity_key or self.settings.DEFAULT_IDENTITY_KEY
        jql = jql or self.settings.DEFAULT_JQL
        logger.info("Début de fetch_and_process pour identity_key=%r", identity_key)

        credential = None
        provider = None
        if not self.settings.uses_basic_auth:
            credential = await self.authority.ensure_fresh(identity_key)
            provider = partial(self.authority.ensure_fresh, identity_key)

        raw = await self.query_engine.search(credential, jql)
        result = self.pipeline.process(raw)
        logger.info(
            "Triage terminé pour identity_key=%r : %d issues, statuts %s",
            identity_key, result.total, result.counts_by_status,
        )

        if self.settings.POST_ACTIONS_ENABLED:
            await self._run_post_actions(result, credential, provider)
        return result

    async def _run_post_actions(self, result: ProcessedIssues, credential, provider) -> None:
        open_issues = [
            item for item in result.items
            if is_open(item.status, self.settings.OPEN_STATUS_MARKERS)
        ]
        for item in open_issues:
            try:
                await self.executor.apply(item.key, credential, provider)
            except Exception:
                # Une issue en échec ne bloque pas les suivantes
                logger.exception("Post actions interrompues pour l'issue %s", item.key)

    async def check_and_refresh(self, identity_key: Optional[str] = None) -> RefreshStatus:
        identity_key = identity_key or self.settings.DEFAULT_IDENTITY_KEY
        credential = self.authority.store.find_by_identity(identity_key)
        if credential is None:
            logger.warning("Aucune credential pour identity_key=%r : vérification ignorée", identity_key)
            return RefreshStatus(status="no_credential")

        if not self.authority.needs_refresh(credential):
            logger.info("Token encore valide pour identity_key=%r", identity_key)
            return RefreshStatus(status="still_valid", expires_at=credential.expires_at)

        refreshed = await self.authority.ensure_fresh(identity_key)
        return RefreshStatus(status="refreshed", expires_at=refreshed.expires_at)
