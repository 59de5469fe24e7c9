"""
Shared test fixtures for septo-worker.

Provides:
- engine: In-memory SQLite engine with all tables created
- db_session: Session bound to that engine
- session_factory: sessionmaker on the same engine, for worker tests
- client: FastAPI TestClient with DB dependency override
- make_job: Helper inserting a queued job
"""

import os

# Force sqlite for tests; must be set before any septo_worker imports.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from septo_worker.dtos.job_dto import JobCreate
from septo_worker.entities.base import Base
from septo_worker.repositories.job_repo import JobRepository

# Import ALL entity modules so Base.metadata.create_all() registers them.
import septo_worker.entities.job  # noqa: F401


@pytest.fixture
def engine():
    """In-memory SQLite for unit tests. Never hits production DB."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_job(session_factory):
    """Insert a queued job and return its id."""

    def _make(target_url: str = "https://github.com/octocat", **kwargs) -> str:
        with session_factory() as session:
            job = JobRepository(session).create_job(JobCreate(target_url=target_url, **kwargs))
            return job.id

    return _make


@pytest.fixture
def fetch_job(session_factory):
    """Read a job back through a fresh session."""

    def _fetch(job_id: str):
        with session_factory() as session:
            job = JobRepository(session).get_by_id(job_id)
            session.expunge(job)
            return job

    return _fetch


@pytest.fixture
def client(db_session: Session):
    """FastAPI TestClient with DB dependency overridden to use in-memory SQLite."""
    from fastapi.testclient import TestClient
    from septo_worker.core.database import get_db
    from septo_worker.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()
