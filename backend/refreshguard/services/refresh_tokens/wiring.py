"""Build the refresh token service from Flask configuration."""

from __future__ import annotations

from datetime import timedelta
from functools import partial

from flask import Flask, current_app

from refreshguard.core.config import STORE_BACKENDS
from refreshguard.core.extensions import get_redis
from refreshguard.infra.redis.redis_refresh_token_store import RedisUnitOfWork
from refreshguard.services._shared.ports import InMemoryRefreshTokenStore
from refreshguard.services.refresh_tokens.dto import RefreshTokenConfig
from refreshguard.services.refresh_tokens.service import RefreshTokenService
from refreshguard.uow import (
    InMemoryUnitOfWork,
    SQLAlchemyReadOnlyUnitOfWork,
    SQLAlchemyUnitOfWork,
)

EXTENSION_KEY = "refresh_token_service"


def config_from_app(app: Flask) -> RefreshTokenConfig:
    """Translate ``REFRESH_TOKEN_*`` settings into a :class:`RefreshTokenConfig`."""
    return RefreshTokenConfig(
        lifetime=timedelta(seconds=int(app.config.get("REFRESH_TOKEN_LIFETIME_SECONDS", 604800))),
        retention=timedelta(days=int(app.config.get("REFRESH_TOKEN_RETENTION_DAYS", 30))),
        token_bytes=int(app.config.get("REFRESH_TOKEN_BYTES", 32)),
    )


def build_refresh_token_service(app: Flask) -> RefreshTokenService:
    """
    Wire :class:`RefreshTokenService` to the backend named by ``REFRESH_TOKEN_STORE``.

    - ``sqlalchemy``: Flask-SQLAlchemy session, read-only UoW for queries.
    - ``redis``: WATCH/MULTI/EXEC over the client from ``REDIS_URL``.
    - ``memory``: process-local store (single process only; lost on restart).

    :raises RuntimeError: On an unknown backend, or ``redis`` without ``REDIS_URL``.
    """
    backend = str(app.config.get("REFRESH_TOKEN_STORE", "sqlalchemy")).strip().lower()
    if backend not in STORE_BACKENDS:
        raise RuntimeError(
            f"Unknown REFRESH_TOKEN_STORE {backend!r}; expected one of {sorted(STORE_BACKENDS)}"
        )

    config = config_from_app(app)

    if backend == "redis":
        return RefreshTokenService(uow_factory=partial(RedisUnitOfWork, get_redis()), config=config)

    if backend == "memory":
        store = InMemoryRefreshTokenStore()
        return RefreshTokenService(uow_factory=partial(InMemoryUnitOfWork, store), config=config)

    return RefreshTokenService(
        uow_factory=SQLAlchemyUnitOfWork,
        ro_uow_factory=SQLAlchemyReadOnlyUnitOfWork,
        config=config,
    )


def init_app(app: Flask) -> None:
    """Build the service once and register it under ``app.extensions``."""
    app.extensions[EXTENSION_KEY] = build_refresh_token_service(app)


def get_refresh_token_service() -> RefreshTokenService:
    """Return the service bound to the current application."""
    return current_app.extensions[EXTENSION_KEY]
