from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import AutoString, Field, SQLModel

from jira_monitor.core.clock import as_utc, utcnow


class Credential(SQLModel, table=True):
    """Jeu de tokens OAuth Jira pour une identité (une seule ligne par identity_key)."""

    __tablename__ = "jira_credentials"

    id: Optional[int] = Field(default=None, primary_key=True)
    identity_key: str = Field(unique=True, index=True, max_length=128)

    # cloudId renvoyé par accessible-resources, requis pour chaque appel API
    tenant_id: str = Field(max_length=64)

    access_token: str = Field(sa_type=AutoString)
    refresh_token: str = Field(sa_type=AutoString)
    expires_at: datetime = Field(sa_type=DateTime(timezone=True))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    def ms_left(self, now: datetime) -> float:
        return (as_utc(self.expires_at) - as_utc(now)).total_seconds() * 1000

    def __repr__(self) -> str:
        # Jamais de token dans les représentations (logs, tracebacks)
        return (
            f"Credential(identity_key={self.identity_key!r}, tenant_id={self.tenant_id!r}, "
            f"expires_at={self.expires_at!r})"
        )
