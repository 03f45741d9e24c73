from typing import Any, Optional


class JiraMonitorError(Exception):
    """Erreur applicative : le handler FastAPI la traduit en réponse HTTP."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(JiraMonitorError):
    """Paramètre obligatoire absent de la configuration."""

    status_code = 400


class CsrfError(JiraMonitorError):
    """State OAuth absent, rejoué ou lié à un autre contexte."""

    status_code = 400


class AuthorizationError(JiraMonitorError):
    """Le grant ne donne accès à aucune ressource utilisable."""

    status_code = 400


class NotAuthorizedError(JiraMonitorError):
    """Aucune credential enregistrée pour cette identité."""

    status_code = 503


class UpstreamError(JiraMonitorError):
    """Erreur de transport ou réponse non-2xx de l'API distante."""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class ProtocolError(JiraMonitorError):
    """La réponse distante ne respecte pas le contrat attendu.

    Le corps brut reste dans ``body`` pour le diagnostic ; il n'apparaît
    jamais dans le message.
    """

    status_code = 502

    def __init__(self, message: str, body: Any = None):
        super().__init__(message)
        self.body = body


class RefreshFailedError(JiraMonitorError):
    """Le refresh_token grant a échoué ; la credential stockée est intacte."""

    status_code = 502
