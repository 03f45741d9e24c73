from dataclasses import dataclass

import httpx
from sqlalchemy.engine import Engine

from jira_monitor.core.clock import Clock, utcnow
from jira_monitor.core.config import Settings
from jira_monitor.services.credential_store import CredentialStore
from jira_monitor.services.issue_query import IssueQueryEngine
from jira_monitor.services.post_actions import PostActionExecutor
from jira_monitor.services.queue_monitor import QueueMonitor
from jira_monitor.services.token_authority import TokenAuthority
from jira_monitor.services.triage import IssueTriagePipeline
from jira_monitor.workers.scheduler import MonitorScheduler


@dataclass
class ServiceContainer:
    settings: Settings
    store: CredentialStore
    authority: TokenAuthority
    monitor: QueueMonitor
    scheduler: MonitorScheduler


def build_services(
    settings: Settings, engine: Engine, http_client: httpx.AsyncClient, clock: Clock = utcnow
) -> ServiceContainer:
    """Assemble les composants : tout est passé explicitement par constructeur."""
    store = CredentialStore(engine, clock)
    authority = TokenAuthority(settings, store, http_client, clock)
    monitor = QueueMonitor(
        settings,
        authority,
        IssueQueryEngine(settings, http_client),
        IssueTriagePipeline(settings.EXCLUDED_STATUSES, clock),
        PostActionExecutor(settings, http_client),
    )
    scheduler = MonitorScheduler(settings, monitor, clock)
    return ServiceContainer(settings, store, authority, monitor, scheduler)
