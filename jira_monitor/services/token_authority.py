import asyncio
import logging
from datetime import timedelta
from functools import partial
from typing import Any, Dict

import httpx
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from jira_monitor.core.clock import Clock, utcnow
from jira_monitor.core.config import Settings
from jira_monitor.core.exceptions import (
    AuthorizationError,
    JiraMonitorError,
    NotAuthorizedError,
    ProtocolError,
    RefreshFailedError,
)
from jira_monitor.models.credential import Credential
from jira_monitor.schemas.auth import AuthorizationResult
from jira_monitor.services.credential_store import CredentialStore
from jira_monitor.services.jira_http import JSON_HEADERS, request_json

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def _expires_in(payload: Dict[str, Any]) -> int:
    value = payload.get("expires_in", DEFAULT_EXPIRES_IN)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProtocolError("expires_in invalide dans la réponse du token endpoint", body=payload)


class TokenAuthority:
    """
    Propriétaire des grants OAuth 2.0 (authorization_code et refresh_token) de Jira.

    Toutes les écritures passent par le CredentialStore : c'est l'unique source de
    vérité pour les tokens, la session HTTP n'en contient jamais.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.http = http_client
        self._clock = clock
        # Refresh en cours, par identité (single-flight)
        self._inflight: Dict[str, "asyncio.Task[Credential]"] = {}

    @property
    def token_url(self) -> str:
        return f"{self.settings.JIRA_AUTH_URL.rstrip('/')}/oauth/token"

    @property
    def resources_url(self) -> str:
        return f"{self.settings.JIRA_API_URL.rstrip('/')}/oauth/token/accessible-resources"

    def build_authorization_url(self, nonce: str) -> str:
        """
        URL d'autorisation Jira Cloud (3LO).
        prompt=consent force l'écran de consentement, donc l'émission d'un
        refresh_token même si l'application a déjà été autorisée.
        """
        self.settings.require("JIRA_CLIENT_ID", "JIRA_REDIRECT_URI")
        return prepare_grant_uri(
            f"{self.settings.JIRA_AUTH_URL.rstrip('/')}/authorize",
            client_id=self.settings.JIRA_CLIENT_ID,
            response_type="code",
            redirect_uri=self.settings.JIRA_REDIRECT_URI,
            scope=self.settings.JIRA_SCOPES,
            state=nonce,
            audience=self.settings.JIRA_AUDIENCE,
            prompt="consent",
        )

    async def _post_token(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        # Jamais rejoué : un code ou un refresh_token déjà consommé serait refusé
        data = await request_json(self.http, "POST", self.token_url, headers=JSON_HEADERS, json=payload)
        if not isinstance(data, dict):
            raise ProtocolError("Le token endpoint n'a pas renvoyé d'objet JSON", body=data)
        return data

    async def _resolve_tenant(self, access_token: str) -> str:
        resources = await request_json(
            self.http,
            "GET",
            self.resources_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            retries=self.settings.HTTP_READ_RETRIES,
            backoff=self.settings.HTTP_RETRY_BACKOFF_SECONDS,
        )
        logger.debug("Réponse complète de accessible-resources : %s", resources)

        if not isinstance(resources, list):
            raise ProtocolError("accessible-resources n'a pas renvoyé de liste", body=resources)
        if not resources:
            raise AuthorizationError("Aucune ressource accessible retournée par Jira")

        first = resources[0]
        tenant_id = first.get("id") if isinstance(first, dict) else None
        if not tenant_id:
            raise ProtocolError("Ressource accessible sans identifiant", body=resources)
        return str(tenant_id)

    async def exchange_code(self, code: str, identity_key: str) -> AuthorizationResult:
        """
        Échange le code d'autorisation contre les tokens, résout le cloudId
        et persiste le tout. Seuls tenantId et expiresIn sont renvoyés.
        """
        client = self.settings.oauth_client()

        # 1. Échange du code contre les tokens
        data = await self._post_token({
            "grant_type": "authorization_code",
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "code": code,
            "redirect_uri": client.redirect_uri,
        })
        logger.debug("Champs reçus du token endpoint : %s", sorted(data))

        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if not access_token or not refresh_token:
            raise ProtocolError("Jira n'a pas renvoyé access_token et refresh_token", body=data)
        expires_in = _expires_in(data)

        # 2. Quelle ressource (cloudId) ce grant autorise-t-il ?
        tenant_id = await self._resolve_tenant(access_token)

        # 3. Sauvegarde en base
        expires_at = self._clock() + timedelta(seconds=expires_in)
        self.store.upsert(identity_key, tenant_id, access_token, refresh_token, expires_at)
        logger.info(
            "Autorisation terminée pour identity_key=%r (tenant %s, expire dans %ss)",
            identity_key, tenant_id, expires_in,
        )
        return AuthorizationResult(tenant_id=tenant_id, expires_in=expires_in)

    def needs_refresh(self, credential: Credential) -> bool:
        return credential.ms_left(self._clock()) < self.settings.REFRESH_BUFFER_MS

    async def ensure_fresh(self, identity_key: str) -> Credential:
        """
        Renvoie une credential valide au moins REFRESH_BUFFER_MS, en la
        renouvelant si besoin.

        Les appels concurrents pour une même identité partagent un seul
        refresh (succès ou échec). Entre la lecture du registre, la lecture en
        base et l'enregistrement de la tâche il n'y a aucun point de
        suspension : c'est atomique vis-à-vis de l'event loop.
        """
        inflight = self._inflight.get(identity_key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        credential = self.store.find_by_identity(identity_key)
        if credential is None:
            raise NotAuthorizedError(
                f"Aucune credential Jira pour identity_key={identity_key!r} : lancez l'installation"
            )

        ms_left = credential.ms_left(self._clock())
        if ms_left >= self.settings.REFRESH_BUFFER_MS:
            return credential

        logger.info(
            "Token proche de l'expiration pour identity_key=%r (reste %d ms), renouvellement",
            identity_key, ms_left,
        )
        task = asyncio.ensure_future(self._refresh(credential))
        self._inflight[identity_key] = task
        task.add_done_callback(partial(self._forget, identity_key))
        # shield : l'annulation d'un appelant n'annule pas le refresh partagé
        return await asyncio.shield(task)

    def _forget(self, identity_key: str, task: "asyncio.Task[Credential]") -> None:
        if self._inflight.get(identity_key) is task:
            del self._inflight[identity_key]
        if not task.cancelled():
            # Marque l'exception comme consommée même si tous les appelants ont été annulés
            task.exception()

    async def _refresh(self, credential: Credential) -> Credential:
        identity_key = credential.identity_key
        client = self.settings.oauth_client()

        try:
            data = await self._post_token({
                "grant_type": "refresh_token",
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "refresh_token": credential.refresh_token,
            })
            access_token = data.get("access_token")
            if not access_token:
                raise ProtocolError("Le refresh n'a pas renvoyé d'access_token", body=data)
            expires_in = _expires_in(data)
        except JiraMonitorError as exc:
            # Rien n'est écrit : la prochaine tentative repart du dernier état connu
            logger.error("Échec du refresh pour identity_key=%r : %s", identity_key, exc)
            raise RefreshFailedError(
                f"Échec du renouvellement du token pour identity_key={identity_key!r} : {exc}"
            ) from exc

        expires_at = self._clock() + timedelta(seconds=expires_in)
        # Jira peut ne pas renvoyer de nouveau refresh_token : l'ancien est alors conservé
        affected = self.store.update_tokens(
            identity_key, access_token, expires_at, data.get("refresh_token") or None
        )
        if not affected:
            raise NotAuthorizedError(
                f"La credential de identity_key={identity_key!r} a été supprimée pendant le refresh"
            )

        logger.info("Token Jira renouvelé pour identity_key=%r (expire dans %ss)", identity_key, expires_in)
        refreshed = self.store.find_by_identity(identity_key)
        if refreshed is None:
            raise NotAuthorizedError(
                f"La credential de identity_key={identity_key!r} a été supprimée pendant le refresh"
            )
        return refreshed
