from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from jira_monitor.core.config import settings


def build_engine(url: str, echo: bool = False) -> Engine:
    """Crée le moteur SQLAlchemy.

    Pour SQLite on autorise l'accès multi-thread (le serveur et le TestClient
    n'utilisent pas le même thread) et la base mémoire partage une seule
    connexion, sinon chaque connexion verrait une base vide.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    # Les modèles doivent être importés pour que SQLModel "voie" les tables
    from jira_monitor.models.credential import Credential  # noqa: F401

    SQLModel.metadata.create_all(engine)


engine = build_engine(settings.DATABASE_URL)
