"""Pytest configuration and shared fixtures."""
import os

# The application module creates its tables at import; keep that in memory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from rowaudit.database import Base, enable_sqlite_savepoints
# Import models to register them with SQLAlchemy Base
from rowaudit.models.audit import AuditUser, Changeset, AuditedTable, Field, Action, Change
from rowaudit.services.audit_log import AuditLog
from rowaudit.services.hooks import AuditHooks
from host_models import HostBase


@pytest.fixture
def engine():
    """Create a fresh in-memory database for each test."""
    # One shared connection so the API test client sees the same database
    engine = enable_sqlite_savepoints(create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    ))
    Base.metadata.create_all(engine)
    HostBase.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    """A plain session: audit rows are only written by explicit calls."""
    session = session_factory()

    yield session

    session.close()


@pytest.fixture
def audit_log(db_session):
    return AuditLog(db_session)


@pytest.fixture
def audited_session(session_factory):
    """A session whose flushes of Audited classes are recorded automatically."""
    hooks = AuditHooks()
    hooks.attach(session_factory)
    session = session_factory()

    yield session

    session.close()
    hooks.detach(session_factory)
