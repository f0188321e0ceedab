"""
In-memory implementation of UnitOfWork for tests and local development.
"""

from __future__ import annotations

from refreshguard.services._shared.ports import InMemoryRefreshTokenStore
from refreshguard.uow.base import UnitOfWork


class InMemoryUnitOfWork(UnitOfWork):
    """
    Serialize transactions over a shared :class:`InMemoryRefreshTokenStore`.

    The store lock is held from ``__enter__`` to ``__exit__``, so concurrent
    units of work run one after another. Rollback restores the snapshot
    taken on entry.
    """

    def __init__(self, store: InMemoryRefreshTokenStore) -> None:
        self.refresh_tokens = store
        self._snapshot = None

    def __enter__(self) -> InMemoryUnitOfWork:
        self.refresh_tokens.lock.acquire()
        self._snapshot = self.refresh_tokens.snapshot()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self._snapshot = None
            self.refresh_tokens.lock.release()

    def commit(self) -> None:
        # Writes are already applied; keep the current state as the new baseline.
        self._snapshot = self.refresh_tokens.snapshot()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self.refresh_tokens.restore(self._snapshot)
