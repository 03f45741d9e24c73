import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from jira_monitor.core.clock import Clock, utcnow
from jira_monitor.models.credential import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    CRUD sur la table jira_credentials.
    Chaque opération ouvre sa propre session et se termine par un seul commit :
    une ligne n'est jamais visible à moitié mise à jour.
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow):
        self.engine = engine
        self._clock = clock

    def upsert(
        self,
        identity_key: str,
        tenant_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> Credential:
        """Crée la ligne de l'identité ou remplace ses tokens ; jamais de doublon."""
        try:
            return self._upsert_once(identity_key, tenant_id, access_token, refresh_token, expires_at)
        except IntegrityError:
            # Un autre écrivain a créé la ligne entre notre lecture et notre insert :
            # on rejoue, cette fois la ligne existe et on passe par la mise à jour.
            logger.info("Conflit d'insertion pour identity_key=%r, nouvelle tentative", identity_key)
            return self._upsert_once(identity_key, tenant_id, access_token, refresh_token, expires_at)

    def _upsert_once(self, identity_key, tenant_id, access_token, refresh_token, expires_at) -> Credential:
        now = self._clock()
        with Session(self.engine) as session:
            credential = session.exec(
                select(Credential).where(Credential.identity_key == identity_key)
            ).first()

            if credential:
                logger.info("Credential existante pour identity_key=%r : mise à jour", identity_key)
            else:
                logger.info("Aucune credential pour identity_key=%r : création", identity_key)
                credential = Credential(identity_key=identity_key, created_at=now)

            credential.tenant_id = tenant_id
            credential.access_token = access_token
            credential.refresh_token = refresh_token
            credential.expires_at = expires_at
            credential.updated_at = now

            session.add(credential)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise
            session.refresh(credential)
            return credential

    def find_by_identity(self, identity_key: str) -> Optional[Credential]:
        with Session(self.engine) as session:
            credential = session.exec(
                select(Credential).where(Credential.identity_key == identity_key)
            ).first()
        if credential is None:
            logger.debug("Aucune credential trouvée pour identity_key=%r", identity_key)
        return credential

    def update_tokens(
        self,
        identity_key: str,
        new_access_token: str,
        new_expires_at: datetime,
        new_refresh_token: Optional[str] = None,
    ) -> int:
        """
        Mise à jour partielle après un refresh.
        Le refresh_token n'est remplacé que si un nouveau est fourni.
        Retourne le nombre de lignes modifiées (0 ou 1).
        """
        with Session(self.engine) as session:
            credential = session.exec(
                select(Credential)
                .where(Credential.identity_key == identity_key)
                .with_for_update()
            ).first()
            if credential is None:
                logger.warning("update_tokens : aucune credential pour identity_key=%r", identity_key)
                return 0

            credential.access_token = new_access_token
            credential.expires_at = new_expires_at
            if new_refresh_token:
                credential.refresh_token = new_refresh_token
            credential.updated_at = self._clock()

            session.add(credential)
            session.commit()

        logger.info(
            "Tokens mis à jour pour identity_key=%r (refresh_token %s)",
            identity_key,
            "renouvelé" if new_refresh_token else "conservé",
        )
        return 1

    def delete_by_identity(self, identity_key: str) -> None:
        with Session(self.engine) as session:
            for credential in session.exec(
                select(Credential).where(Credential.identity_key == identity_key)
            ).all():
                session.delete(credential)
            session.commit()
        logger.info("Credentials supprimées pour identity_key=%r", identity_key)
