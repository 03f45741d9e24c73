from typing import Optional

from fastapi import APIRouter, Depends, Query

from jira_monitor.api import deps
from jira_monitor.schemas.auth import CronStatus, RefreshStatus
from jira_monitor.schemas.issues import ProcessedIssues
from jira_monitor.services.container import ServiceContainer

router = APIRouter()


@router.get("/fetch", response_model=ProcessedIssues)
async def fetch_issues(
    identity_key: Optional[str] = Query(default=None, alias="identityKey"),
    jql: Optional[str] = None,
    services: ServiceContainer = Depends(deps.get_services),
):
    """
    Exécute immédiatement la recherche Jira, filtre, regroupe et renvoie
    le résumé des issues (les post actions sont appliquées aux issues ouvertes).
    """
    return await services.monitor.fetch_and_process(identity_key, jql)


@router.post("/refresh", response_model=RefreshStatus)
async def refresh_token(services: ServiceContainer = Depends(deps.get_services)):
    """Force la vérification du token (renouvelé seulement s'il est proche de l'expiration)."""
    return await services.monitor.check_and_refresh()


@router.get("/cron", response_model=CronStatus)
async def cron_status(services: ServiceContainer = Depends(deps.get_services)):
    running = services.scheduler.running
    return CronStatus(message="Cron actif" if running else "Cron arrêté", running=running)


@router.post("/cron/start", response_model=CronStatus)
async def start_cron(services: ServiceContainer = Depends(deps.get_services)):
    started = services.scheduler.start()
    return CronStatus(message="Cron démarré" if started else "Cron déjà actif", running=True)


@router.post("/cron/stop", response_model=CronStatus)
async def stop_cron(services: ServiceContainer = Depends(deps.get_services)):
    stopped = await services.scheduler.stop()
    return CronStatus(message="Cron arrêté" if stopped else "Cron déjà arrêté", running=False)
