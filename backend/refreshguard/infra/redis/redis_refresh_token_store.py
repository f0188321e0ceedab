# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import redis  # type: ignore[import-untyped]
from redis.client import Pipeline  # type: ignore[import-untyped]
from redis.exceptions import RedisError, WatchError  # type: ignore[import-untyped]

from refreshguard.services._shared.errors import (
    ConcurrentUpdateError,
    DuplicateHashError,
    StorageFailureError,
)
from refreshguard.services._shared.ports import (
    NewRefreshToken,
    RefreshTokenRecord,
    RefreshTokenStore,
)
from refreshguard.uow.base import UnitOfWork

_Op = Callable[[Pipeline], Any]

# Key layout
K_SEQ = "rt:seq"
K_EXPIRY = "rt:exp"


def _s(value: Any, default: str = "") -> str:
    """Decode a Redis reply (bytes or str) into ``str``."""
    if value is None:
        return default
    if isinstance(value, bytes | bytearray):
        return value.decode()
    return str(value)


class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh token store using optimistic transactions.

    Every key read is WATCHed on the unit of work's pipeline first; writes are
    buffered and sent in one ``MULTI``/``EXEC`` by :meth:`execute`. If any
    watched key changed in the meantime, Redis discards the whole batch and
    :class:`ConcurrentUpdateError` is raised.

    Layout
    ------
    - ``rt:{id}``: hash with the record fields (datetimes as ISO-8601).
    - ``rt:h:{token_hash}``: id lookup; its existence enforces hash uniqueness.
    - ``rt:f:{family}`` / ``rt:u:{user_id}``: sets of ids.
    - ``rt:exp``: sorted set of ids scored by expiration timestamp.
    - ``rt:seq``: id counter.

    :param r: A Redis client (already connected).
    :param pipe: Transactional pipeline owned by the unit of work.
    """

    def __init__(self, r: redis.Redis, pipe: Pipeline) -> None:
        self.r = r
        self.pipe = pipe
        self._ops: list[_Op] = []
        # Records written in this transaction, keyed by id, and their hashes.
        self._overlay: dict[int, RefreshTokenRecord] = {}
        self._overlay_hashes: dict[str, int] = {}
        self._deleted: set[int] = set()

    # -------------------- helpers --------------------

    @staticmethod
    def _k(token_id: int) -> str:
        return f"rt:{token_id}"

    @staticmethod
    def _kh(token_hash: str) -> str:
        return f"rt:h:{token_hash}"

    @staticmethod
    def _kf(token_family: str) -> str:
        return f"rt:f:{token_family}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"rt:u:{user_id}"

    @staticmethod
    def _dt(raw: str) -> datetime | None:
        return datetime.fromisoformat(raw) if raw else None

    def _watch(self, *keys: str) -> None:
        # WATCH switches the pipeline into immediate mode for the reads that follow.
        self.pipe.watch(*keys)

    def _load(self, token_id: int) -> RefreshTokenRecord | None:
        if token_id in self._deleted:
            return None
        if token_id in self._overlay:
            return self._overlay[token_id]
        key = self._k(token_id)
        self._watch(key)
        h = self.pipe.hgetall(key)
        if not h:
            return None
        fields = {_s(k): _s(v) for k, v in h.items()}
        replaced_by = fields.get("replaced_by_token_id", "")
        return RefreshTokenRecord(
            id=token_id,
            user_id=fields["user_id"],
            token_hash=fields["token_hash"],
            token_family=fields["token_family"],
            expires_at=datetime.fromisoformat(fields["expires_at"]),
            created_at=datetime.fromisoformat(fields["created_at"]),
            revoked_at=self._dt(fields.get("revoked_at", "")),
            replaced_by_token_id=int(replaced_by) if replaced_by else None,
        )

    def _members(self, key: str) -> set[int]:
        self._watch(key)
        return {int(_s(m)) for m in self.pipe.smembers(key)}

    def _records(self, ids: Iterable[int]) -> list[RefreshTokenRecord]:
        out: list[RefreshTokenRecord] = []
        for token_id in sorted(set(ids)):
            record = self._load(token_id)
            if record is not None:
                out.append(record)
        return out

    def _family_ids(self, token_family: str) -> set[int]:
        ids = self._members(self._kf(token_family))
        ids.update(i for i, r in self._overlay.items() if r.token_family == token_family)
        return ids

    def _user_ids(self, user_id: str) -> set[int]:
        ids = self._members(self._ku(user_id))
        ids.update(i for i, r in self._overlay.items() if r.user_id == user_id)
        return ids

    # -------------------- API ------------------------

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        token_id = self._overlay_hashes.get(token_hash)
        if token_id is None:
            key = self._kh(token_hash)
            self._watch(key)
            raw = self.pipe.get(key)
            if raw is None:
                return None
            token_id = int(_s(raw))
        return self._load(token_id)

    def insert(self, token: NewRefreshToken) -> RefreshTokenRecord:
        """
        Stage a new active record.

        The hash index key is watched, so a concurrent insert of the same
        hash makes this transaction fail instead of overwriting it.
        """
        if token.token_hash in self._overlay_hashes:
            raise DuplicateHashError(token.token_hash)
        kh = self._kh(token.token_hash)
        self._watch(kh)
        if self.pipe.exists(kh):
            raise DuplicateHashError(token.token_hash)

        # Ids come from a counter outside the transaction; gaps are harmless.
        token_id = int(self.r.incr(K_SEQ))
        record = RefreshTokenRecord(
            id=token_id,
            user_id=token.user_id,
            token_hash=token.token_hash,
            token_family=token.token_family,
            expires_at=token.expires_at,
            created_at=token.created_at,
        )
        mapping = {
            "user_id": record.user_id,
            "token_hash": record.token_hash,
            "token_family": record.token_family,
            "expires_at": record.expires_at.isoformat(),
            "created_at": record.created_at.isoformat(),
            "revoked_at": "",
            "replaced_by_token_id": "",
        }

        def _op(p: Pipeline, k: str = self._k(token_id), m: dict[str, str] = mapping) -> None:
            p.hset(k, mapping=m)
            p.set(kh, str(token_id))
            p.sadd(self._kf(record.token_family), token_id)
            p.sadd(self._ku(record.user_id), token_id)
            p.zadd(K_EXPIRY, {str(token_id): record.expires_at.timestamp()})

        self._ops.append(_op)
        self._overlay[token_id] = record
        self._overlay_hashes[record.token_hash] = token_id
        return record

    def mark_revoked(
        self,
        token_id: int,
        revoked_at: datetime,
        replaced_by_token_id: int | None = None,
    ) -> bool:
        record = self._load(token_id)
        if record is None or record.is_revoked:
            return False

        fields = {"revoked_at": revoked_at.isoformat()}
        if replaced_by_token_id is not None:
            fields["replaced_by_token_id"] = str(replaced_by_token_id)

        def _op(p: Pipeline, k: str = self._k(token_id), m: dict[str, str] = fields) -> None:
            p.hset(k, mapping=m)

        self._ops.append(_op)
        self._overlay[token_id] = RefreshTokenRecord(
            id=record.id,
            user_id=record.user_id,
            token_hash=record.token_hash,
            token_family=record.token_family,
            expires_at=record.expires_at,
            created_at=record.created_at,
            revoked_at=revoked_at,
            replaced_by_token_id=replaced_by_token_id,
        )
        return True

    def revoke_all_active_for_family(self, token_family: str, revoked_at: datetime) -> int:
        ids = self._family_ids(token_family)
        return sum(self.mark_revoked(token_id, revoked_at) for token_id in sorted(ids))

    def revoke_all_active_for_user(self, user_id: str, revoked_at: datetime) -> int:
        ids = self._user_ids(user_id)
        return sum(self.mark_revoked(token_id, revoked_at) for token_id in sorted(ids))

    def count_active(self, user_id: str, now: datetime) -> int:
        return sum(1 for r in self._records(self._user_ids(user_id)) if r.is_active(now))

    def find_most_recent_active(self, user_id: str, now: datetime) -> RefreshTokenRecord | None:
        active = [r for r in self._records(self._user_ids(user_id)) if r.is_active(now)]
        if not active:
            return None
        return max(active, key=lambda r: (r.created_at, r.id))

    def delete_expired_before(self, cutoff: datetime) -> int:
        """
        Stage deletion of every record with ``expires_at < cutoff``.

        Candidates come from the expiry index (inclusive bound, float scores)
        and are re-checked against the exact stored ``expires_at``.
        """
        candidates = [
            int(_s(m)) for m in self.r.zrangebyscore(K_EXPIRY, "-inf", cutoff.timestamp())
        ]
        deleted = 0
        for token_id in candidates:
            record = self._load(token_id)
            if record is None:
                # Index entry without a record: drop the dangling member.
                self._ops.append(lambda p, m=str(token_id): p.zrem(K_EXPIRY, m))
                continue
            if record.expires_at >= cutoff:
                continue

            def _op(p: Pipeline, rec: RefreshTokenRecord = record) -> None:
                p.delete(self._k(rec.id), self._kh(rec.token_hash))
                p.srem(self._kf(rec.token_family), rec.id)
                p.srem(self._ku(rec.user_id), rec.id)
                p.zrem(K_EXPIRY, str(rec.id))

            self._ops.append(_op)
            self._deleted.add(token_id)
            self._overlay.pop(token_id, None)
            self._overlay_hashes.pop(record.token_hash, None)
            deleted += 1
        return deleted

    def list_family(self, token_family: str) -> list[RefreshTokenRecord]:
        return self._records(self._family_ids(token_family))

    # -------------------- transaction ----------------

    def execute(self) -> None:
        """
        Send buffered writes as one ``MULTI``/``EXEC``.

        :raises ConcurrentUpdateError: If a watched key changed since it was read.
        """
        try:
            if not self._ops:
                return
            self.pipe.multi()
            for op in self._ops:
                op(self.pipe)
            self.pipe.execute()
        except WatchError as exc:
            raise ConcurrentUpdateError() from exc
        finally:
            self.discard()

    def discard(self) -> None:
        """Drop buffered writes and release every WATCH."""
        self._ops.clear()
        self._overlay.clear()
        self._overlay_hashes.clear()
        self._deleted.clear()
        self.pipe.reset()


class RedisUnitOfWork(UnitOfWork):
    """
    Unit of Work over a transactional Redis pipeline.

    Commits on clean exit, discards on error. Redis errors surface as
    :class:`StorageFailureError`; a lost optimistic race surfaces as
    :class:`ConcurrentUpdateError`.

    :param r: A Redis client (already connected).
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r
        self._pipe: Pipeline | None = None

    def __enter__(self) -> RedisUnitOfWork:
        self._pipe = self.r.pipeline(transaction=True)
        self.refresh_tokens = RedisRefreshTokenStore(self.r, self._pipe)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self._pipe = None

        if isinstance(exc, RedisError):
            raise StorageFailureError(f"Redis operation failed: {exc}") from exc

    def commit(self) -> None:
        store = self.refresh_tokens
        try:
            store.execute()
        except RedisError as exc:
            raise StorageFailureError(f"Redis commit failed: {exc}") from exc

    def rollback(self) -> None:
        self.refresh_tokens.discard()
