# tests/conftest.py
import os

# must be set before dispatch.core.config is imported anywhere
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from dispatch.core.db import get_db, make_engine  # noqa: E402
from dispatch.core.policy import DEFAULT_POLICY  # noqa: E402
from dispatch.models.registry import Base  # noqa: E402
from dispatch.services.realtime import ManagerBroadcaster  # noqa: E402
from dispatch.services.side_effects import SideEffects  # noqa: E402
from tests.factories import NOW  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    """One in-memory database per test run; the schema is built from the ORM metadata."""
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def db(engine):
    """
    Isolation pattern:
      - connection per test
      - OUTER transaction begun before anything else
      - session joins it with SAVEPOINTs, so service-level commit/rollback
        only release / roll back a savepoint

    Teardown:
      - close session
      - rollback ONLY outer transaction
      - close connection

    ВАЖНО: сервисы сами делают rollback при ошибке, поэтому тесты
    коммитят подготовленные данные перед вызовом сервиса.
    """
    connection = engine.connect()
    outer = connection.begin()

    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        if outer.is_active:
            outer.rollback()
        connection.close()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def policy():
    return DEFAULT_POLICY


@pytest.fixture()
def broadcaster() -> ManagerBroadcaster:
    """Private channel per test: module-level subscribers never see test events."""
    return ManagerBroadcaster()


@pytest.fixture()
def effects(db, broadcaster) -> SideEffects:
    return SideEffects(db, broadcaster=broadcaster)


# -----------------------------------------------------------------------------
# API
# -----------------------------------------------------------------------------


@pytest.fixture()
def api_db(db):
    return db


@pytest.fixture()
def client(api_db):
    from dispatch.main import app

    def _override_get_db():
        # the test owns the session; endpoints must not close it
        yield api_db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_db, None)
