"""Pytest configuration and shared fixtures."""
import itertools

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labeltrack.database import Base
from labeltrack.models.domain import Label, LabelBatch  # noqa: F401
from labeltrack.models.audit import LabelEvent  # noqa: F401
from labeltrack.services.event_log import EventLog
from labeltrack.services.label_store import LabelStore
from labeltrack.services.lifecycle_engine import LifecycleEngine


def _memory_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Create a fresh in-memory database for each test."""
    TestingSessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def lifecycle(db_session):
    """Lifecycle engine over a shared store/log pair."""
    return LifecycleEngine(LabelStore(db_session), EventLog(db_session))


@pytest.fixture
def sample_label(lifecycle):
    """A single freshly generated, UNASSIGNED label."""
    _, labels = lifecycle.generate("sku_vodka_750", 1, notes="Shelf restock", actor_id="user_123")
    return labels[0]


@pytest.fixture
def sequential_codes():
    """Build deterministic code factories: BM-00000001, BM-00000002, ..."""
    def _factory(start=1, prefix="BM"):
        counter = itertools.count(start)
        return lambda: f"{prefix}-{next(counter):08d}"
    return _factory
