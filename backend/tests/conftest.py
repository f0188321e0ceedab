"""Pytest fixtures for the refresh token subsystem.

SQL-backed tests get a fresh application and in-memory SQLite database per
test. Service tests that do not need Flask run against the in-memory store
with a frozen clock and deterministic randomness.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from functools import partial

import pytest
from refreshguard.core.extensions import db as _db  # Flask-SQLAlchemy instance
from refreshguard.factory import create_app  # application factory under test
from refreshguard.services._shared.ports import InMemoryRefreshTokenStore
from refreshguard.services.refresh_tokens import RefreshTokenService
from refreshguard.uow import (
    InMemoryUnitOfWork,
    SQLAlchemyReadOnlyUnitOfWork,
    SQLAlchemyUnitOfWork,
)
from tests.factories import SQLAlchemySession
from tests.helpers.clock import FrozenClock
from tests.helpers.randomness import SequenceRandomSource

BASE_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class TestConfig:
    """Testing configuration for creating the Flask app.

    Notes
    -----
    - Uses an in-memory SQLite database for speed.
    - Keeps Redis disabled; Redis adapter tests use fakeredis directly.
    """

    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = None
    LOG_LEVEL = "WARNING"
    REFRESH_TOKEN_STORE = "sqlalchemy"
    REFRESH_TOKEN_LIFETIME_SECONDS = 7 * 24 * 3600
    REFRESH_TOKEN_RETENTION_DAYS = 30
    REFRESH_TOKEN_BYTES = 32


@pytest.fixture
def app():
    """Create a Flask application configured for testing, inside an app context."""
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    app = create_app(TestConfig)
    with app.app_context():
        yield app


@pytest.fixture
def db(app):
    """Create all tables for the test and drop them afterwards."""
    _db.create_all()
    yield _db
    _db.session.remove()
    _db.drop_all()


@pytest.fixture
def session(db):
    """Expose the Flask-scoped session and wire it to Factory Boy."""
    SQLAlchemySession.set(db.session)
    yield db.session
    SQLAlchemySession.set(None)


@pytest.fixture
def clock():
    """Frozen UTC clock starting at :data:`BASE_NOW`."""
    return FrozenClock(BASE_NOW)


@pytest.fixture
def random_source():
    """Deterministic, never-repeating byte source."""
    return SequenceRandomSource()


@pytest.fixture
def memory_store():
    return InMemoryRefreshTokenStore()


@pytest.fixture
def memory_service(memory_store, clock, random_source):
    """Service over the in-memory store."""
    return RefreshTokenService(
        uow_factory=partial(InMemoryUnitOfWork, memory_store),
        clock=clock,
        random_source=random_source,
    )


@pytest.fixture
def sql_service(db, clock):
    """Service over the SQLAlchemy store (system randomness)."""
    return RefreshTokenService(
        uow_factory=SQLAlchemyUnitOfWork,
        ro_uow_factory=SQLAlchemyReadOnlyUnitOfWork,
        clock=clock,
    )


@pytest.fixture(scope="session")
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk
