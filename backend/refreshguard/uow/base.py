"""
Abstract Unit of Work contracts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from refreshguard.services._shared.ports import RefreshTokenStore


class UnitOfWork(ABC):
    """
    Coordinates a transactional boundary for a use-case.

    Responsibilities:
    - Provide access to the token store bound to the same transaction.
    - Commit on success, rollback on error.

    Concrete implementations expose the store as ``refresh_tokens``.
    """

    refresh_tokens: RefreshTokenStore

    @abstractmethod
    def __enter__(self) -> UnitOfWork: ...
    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> None: ...
    @abstractmethod
    def commit(self) -> None: ...
    @abstractmethod
    def rollback(self) -> None: ...
