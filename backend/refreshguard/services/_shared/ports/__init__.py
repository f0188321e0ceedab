"""
refreshguard.services._shared.ports
===================================

Collection of *ports* (hexagonal interfaces) that define the contracts
for refresh token persistence.

These ports decouple the service layer from concrete implementations of
token storage.

Modules
-------
- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore`, :class:`~.RefreshTokenRecord`,
    :class:`~.NewRefreshToken` and :class:`~.TokenState`, plus the
    :class:`~.InMemoryRefreshTokenStore` adapter.

Design Notes
------------
Ports follow the *Dependency Inversion Principle (DIP)* to keep the service
layer independent from implementation details. Concrete adapters live under
``refreshguard.repositories`` (SQLAlchemy) and ``refreshguard.infra`` (Redis).
"""

from __future__ import annotations

from .refresh_token_store import (
    InMemoryRefreshTokenStore,
    NewRefreshToken,
    RefreshTokenRecord,
    RefreshTokenStore,
    TokenState,
)

__all__ = [
    "RefreshTokenStore",
    "RefreshTokenRecord",
    "NewRefreshToken",
    "TokenState",
    "InMemoryRefreshTokenStore",
]
