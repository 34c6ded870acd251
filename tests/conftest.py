"""Shared pytest fixtures and configuration."""

import os

# Set test environment variables before the app reads its config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EMAIL_SERVER_HOST"] = ""
os.environ["LOGFIRE_TOKEN"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from buyer_intake.database import get_db, init_db, make_engine
from buyer_intake.main import app
from buyer_intake.rate_limit import SlidingWindowRateLimiter
from buyer_intake.storage import LocalFileStore
from tests.utils.factories import issue_session, make_user


@pytest.fixture
def engine():
    """A private in-memory database per test."""
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def owner(db_session):
    return make_user(db_session, name="Owner Agent")


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, name="Other Agent")


@pytest.fixture
def client(session_factory, tmp_path):
    """TestClient wired to the test database, fresh limiter and upload dir."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limiter = SlidingWindowRateLimiter()
    app.state.file_store = LocalFileStore(tmp_path / "uploads")
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(db_session, owner):
    return {"Authorization": f"Bearer {issue_session(db_session, owner)}"}


@pytest.fixture
def other_headers(db_session, other_user):
    return {"Authorization": f"Bearer {issue_session(db_session, other_user)}"}
