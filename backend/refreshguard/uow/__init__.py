"""Unit of Work abstractions and concrete implementations.

This package re-exports the SQLAlchemy-backed and in-memory units of work,
alongside the abstract contracts that service layers depend on. The Redis
unit of work lives with its adapter in :mod:`refreshguard.infra.redis`.
"""

from .base import UnitOfWork
from .memory_uow import InMemoryUnitOfWork
from .sqlalchemy_uow import SQLAlchemyReadOnlyUnitOfWork, SQLAlchemyUnitOfWork

__all__ = [
    "UnitOfWork",
    "InMemoryUnitOfWork",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyReadOnlyUnitOfWork",
]
