import hmac
import logging
from datetime import datetime, timedelta
from typing import MutableMapping

from authlib.common.security import generate_token

from jira_monitor.core.clock import Clock, as_utc, utcnow
from jira_monitor.core.exceptions import CsrfError

logger = logging.getLogger(__name__)

PENDING_KEY = "jira_oauth_pending"
NONCE_LENGTH = 48


class AntiCsrfGuard:
    """
    State anti-CSRF du flux d'autorisation.

    La valeur est liée au contexte (identity_key) qui lance l'installation,
    stockée dans la session signée, et consommée une seule fois au callback.
    """

    def __init__(
        self,
        storage: MutableMapping,
        ttl: timedelta = timedelta(minutes=10),
        clock: Clock = utcnow,
    ):
        self.storage = storage
        self.ttl = ttl
        self._clock = clock

    def issue(self, owner_context: str) -> str:
        nonce = generate_token(NONCE_LENGTH)
        # Une nouvelle installation remplace toute autorisation en attente
        self.storage[PENDING_KEY] = {
            "nonce": nonce,
            "owner": owner_context,
            "issued_at": self._clock().isoformat(),
        }
        logger.debug("State généré pour owner=%r", owner_context)
        return nonce

    def consume(self, nonce: str, owner_context: str) -> None:
        pending = self.storage.get(PENDING_KEY)
        if not pending or not nonce:
            raise CsrfError("State invalide ou absent")

        issued_at = as_utc(datetime.fromisoformat(pending["issued_at"]))
        if self._clock() - issued_at > self.ttl:
            self.storage.pop(PENDING_KEY, None)
            raise CsrfError("State expiré : relancez l'installation")

        same_nonce = hmac.compare_digest(str(pending["nonce"]), str(nonce))
        if not same_nonce or pending["owner"] != owner_context:
            logger.warning("State refusé pour owner=%r", owner_context)
            raise CsrfError("State invalide ou absent")

        # Usage unique : plus de rejeu possible
        del self.storage[PENDING_KEY]
