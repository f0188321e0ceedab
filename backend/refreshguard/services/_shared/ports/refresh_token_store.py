from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, auto
from typing import Protocol

from refreshguard.services._shared.errors import DuplicateHashError


class TokenState(Enum):
    """Lifecycle state of a refresh token record at a given instant."""

    ACTIVE = auto()
    EXPIRED = auto()
    ROTATED = auto()
    REVOKED = auto()


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Read-model for one issued (or historical) refresh token.

    :ivar id: Store-assigned identifier.
    :ivar user_id: Owner user id (opaque).
    :ivar token_hash: SHA-256 hex digest of the raw token; never the raw value.
    :ivar token_family: Lineage id shared by every rotation descendant of one login.
    :ivar expires_at: Absolute expiration (UTC), fixed at creation.
    :ivar created_at: Issuance instant (UTC).
    :ivar revoked_at: Revocation instant; ``None`` while active. Write-once.
    :ivar replaced_by_token_id: Successor id when revoked by rotation. Write-once.
    """

    id: int
    user_id: str
    token_hash: str
    token_family: str
    expires_at: datetime
    created_at: datetime
    revoked_at: datetime | None = None
    replaced_by_token_id: int | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)

    def state(self, now: datetime) -> TokenState:
        """Derive the lifecycle state; ``EXPIRED`` only applies to unrevoked records."""
        if self.replaced_by_token_id is not None:
            return TokenState.ROTATED
        if self.is_revoked:
            return TokenState.REVOKED
        if self.is_expired(now):
            return TokenState.EXPIRED
        return TokenState.ACTIVE


@dataclass(frozen=True, slots=True)
class NewRefreshToken:
    """Insert payload for a brand-new, active refresh token."""

    user_id: str
    token_hash: str
    token_family: str
    expires_at: datetime
    created_at: datetime


class RefreshTokenStore(Protocol):
    """
    Persistence contract for refresh token records.

    Every call runs inside the caller's Unit of Work, which is the atomicity
    boundary. Revocations are conditional writes keyed on the record still
    being active, so ``revoked_at`` and ``replaced_by_token_id`` are never
    overwritten once set.
    """

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Fetch a record by its token digest."""

    def insert(self, token: NewRefreshToken) -> RefreshTokenRecord:
        """
        Persist a new active record.

        :raises DuplicateHashError: If ``token.token_hash`` already exists.
        """

    def mark_revoked(
        self,
        token_id: int,
        revoked_at: datetime,
        replaced_by_token_id: int | None = None,
    ) -> bool:
        """
        Revoke a single record if it is still active.

        :returns: ``True`` if this call performed the transition; ``False``
            when the record was already revoked or does not exist.
        """

    def revoke_all_active_for_family(self, token_family: str, revoked_at: datetime) -> int:
        """Revoke every unrevoked record of a lineage. :returns: Records affected."""

    def revoke_all_active_for_user(self, user_id: str, revoked_at: datetime) -> int:
        """Revoke every unrevoked record of a user. :returns: Records affected."""

    def count_active(self, user_id: str, now: datetime) -> int:
        """Count unrevoked, unexpired records of a user."""

    def find_most_recent_active(self, user_id: str, now: datetime) -> RefreshTokenRecord | None:
        """Return the newest unrevoked, unexpired record of a user."""

    def delete_expired_before(self, cutoff: datetime) -> int:
        """Hard-delete records with ``expires_at < cutoff``. :returns: Rows deleted."""

    def list_family(self, token_family: str) -> list[RefreshTokenRecord]:
        """Return a lineage ordered by issuance."""


_Snapshot = tuple[dict[int, RefreshTokenRecord], dict[str, int]]


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh token store.

    .. note::
       Calls are not transactional on their own. Wrap them in
       :class:`~refreshguard.uow.memory_uow.InMemoryUnitOfWork`, which holds
       :attr:`lock` for the whole transaction and restores a snapshot on
       rollback.
    """

    def __init__(self) -> None:
        self._by_id: dict[int, RefreshTokenRecord] = {}
        self._id_by_hash: dict[str, int] = {}
        self._seq = 0
        self.lock = threading.RLock()

    # ------------------------- snapshots -------------------------

    def snapshot(self) -> _Snapshot:
        # Records are immutable, shallow copies are enough. Ids are never reused.
        return dict(self._by_id), dict(self._id_by_hash)

    def restore(self, snapshot: _Snapshot) -> None:
        by_id, id_by_hash = snapshot
        self._by_id = dict(by_id)
        self._id_by_hash = dict(id_by_hash)

    # -------------------------- API ----------------------------

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        token_id = self._id_by_hash.get(token_hash)
        if token_id is None:
            return None
        return self._by_id.get(token_id)

    def insert(self, token: NewRefreshToken) -> RefreshTokenRecord:
        with self.lock:
            if token.token_hash in self._id_by_hash:
                raise DuplicateHashError(token.token_hash)
            self._seq += 1
            record = RefreshTokenRecord(
                id=self._seq,
                user_id=token.user_id,
                token_hash=token.token_hash,
                token_family=token.token_family,
                expires_at=token.expires_at,
                created_at=token.created_at,
            )
            self._by_id[record.id] = record
            self._id_by_hash[record.token_hash] = record.id
            return record

    def mark_revoked(
        self,
        token_id: int,
        revoked_at: datetime,
        replaced_by_token_id: int | None = None,
    ) -> bool:
        with self.lock:
            record = self._by_id.get(token_id)
            if record is None or record.is_revoked:
                return False
            self._by_id[token_id] = replace(
                record,
                revoked_at=revoked_at,
                replaced_by_token_id=replaced_by_token_id,
            )
            return True

    def revoke_all_active_for_family(self, token_family: str, revoked_at: datetime) -> int:
        with self.lock:
            ids = [r.id for r in self._by_id.values() if r.token_family == token_family]
            return sum(self.mark_revoked(token_id, revoked_at) for token_id in ids)

    def revoke_all_active_for_user(self, user_id: str, revoked_at: datetime) -> int:
        with self.lock:
            ids = [r.id for r in self._by_id.values() if r.user_id == user_id]
            return sum(self.mark_revoked(token_id, revoked_at) for token_id in ids)

    def count_active(self, user_id: str, now: datetime) -> int:
        return sum(1 for r in self._by_id.values() if r.user_id == user_id and r.is_active(now))

    def find_most_recent_active(self, user_id: str, now: datetime) -> RefreshTokenRecord | None:
        active = [r for r in self._by_id.values() if r.user_id == user_id and r.is_active(now)]
        if not active:
            return None
        return max(active, key=lambda r: (r.created_at, r.id))

    def delete_expired_before(self, cutoff: datetime) -> int:
        with self.lock:
            doomed = [r for r in self._by_id.values() if r.expires_at < cutoff]
            for record in doomed:
                del self._by_id[record.id]
                self._id_by_hash.pop(record.token_hash, None)
            return len(doomed)

    def list_family(self, token_family: str) -> list[RefreshTokenRecord]:
        return sorted(
            (r for r in self._by_id.values() if r.token_family == token_family),
            key=lambda r: r.id,
        )
