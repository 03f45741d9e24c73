import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.responses import RedirectResponse

from jira_monitor.api import deps
from jira_monitor.core.clock import utcnow
from jira_monitor.core.exceptions import AuthorizationError, ProtocolError, UpstreamError
from jira_monitor.core.security import AntiCsrfGuard
from jira_monitor.schemas.auth import CallbackResponse
from jira_monitor.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()

IDENTITY_SESSION_KEY = "identity_key"
CONFIRMATION_SESSION_KEY = "jira_authorized"


@router.get("/install")
async def install(
    request: Request,
    identity_key: Optional[str] = Query(default=None, alias="identityKey"),
    services: ServiceContainer = Depends(deps.get_services),
    guard: AntiCsrfGuard = Depends(deps.get_csrf_guard),
):
    """
    Lance le flux OAuth : génère le state anti-CSRF lié à l'identité,
    puis redirige le navigateur vers l'écran de consentement Jira.
    """
    owner = identity_key or services.settings.DEFAULT_IDENTITY_KEY
    nonce = guard.issue(owner)
    request.session[IDENTITY_SESSION_KEY] = owner

    auth_url = services.authority.build_authorization_url(nonce)
    logger.info("Redirection vers l'autorisation Jira pour identity_key=%r", owner)
    return RedirectResponse(url=auth_url)


@router.get("/callback", response_model=CallbackResponse)
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    services: ServiceContainer = Depends(deps.get_services),
    guard: AntiCsrfGuard = Depends(deps.get_csrf_guard),
):
    """Reçoit code + state, valide le state puis échange le code contre les tokens."""
    # 1. Validation du state (avant toute autre chose)
    owner = request.session.get(IDENTITY_SESSION_KEY)
    guard.consume(state or "", owner or "")

    # 2. L'utilisateur a refusé le consentement, ou Jira n'a pas renvoyé de code
    if error or not code:
        raise AuthorizationError(f"Autorisation refusée par Jira : {error or 'code absent'}")

    # 3. Échange du code et sauvegarde des tokens en base
    # Un code refusé ou une réponse Jira inattendue est un échec d'autorisation (4xx)
    try:
        result = await services.authority.exchange_code(code, owner)
    except (UpstreamError, ProtocolError) as exc:
        raise AuthorizationError(f"Échec de l'autorisation Jira : {exc.message}") from exc

    # Confirmation pour l'affichage uniquement : pas de token en session
    request.session[CONFIRMATION_SESSION_KEY] = {
        "tenantId": result.tenant_id,
        "at": utcnow().isoformat(),
    }
    return CallbackResponse(
        message="Autorisation terminée avec succès !",
        tenant_id=result.tenant_id,
        expires_in=result.expires_in,
    )
