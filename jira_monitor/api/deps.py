from fastapi import Request

from jira_monitor.core.security import AntiCsrfGuard
from jira_monitor.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Les services sont construits une fois dans le lifespan de l'application."""
    return request.app.state.services


def get_csrf_guard(request: Request) -> AntiCsrfGuard:
    # La session (cookie signé) ne contient que le state en attente, jamais de token
    return AntiCsrfGuard(request.session)
