import logging
from typing import Generator

import pytest

from jira_monitor.core.config import Settings
from jira_monitor.core.logging import LOGGER_NAME
from jira_monitor.db.session import build_engine, init_db
from jira_monitor.services.credential_store import CredentialStore
from tests.helpers import FakeClock, FakeJira, make_settings


@pytest.fixture(autouse=True)
def _reset_app_logger() -> Generator[None, None, None]:
    """Le lifespan configure le logger ``jira_monitor`` : on le remet à zéro pour caplog."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    # Base mémoire : une seule connexion partagée (StaticPool)
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, clock) -> CredentialStore:
    return CredentialStore(engine, clock)


@pytest.fixture
def jira() -> FakeJira:
    return FakeJira()
