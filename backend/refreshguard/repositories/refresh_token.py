"""Refresh token repository: the SQLAlchemy adapter of the token store port."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError

from refreshguard.models.refresh_token import RefreshToken
from refreshguard.repositories.base import BaseRepository
from refreshguard.services._shared.errors import DuplicateHashError, violates
from refreshguard.services._shared.ports import (
    NewRefreshToken,
    RefreshTokenRecord,
    RefreshTokenStore,
)

# PostgreSQL reports the constraint name, SQLite the column.
_HASH_CONSTRAINTS = ("uq_refresh_tokens_token_hash", "refresh_tokens.token_hash")


class RefreshTokenRepository(BaseRepository[RefreshToken], RefreshTokenStore):
    """Persistence-only repository for :class:`RefreshToken`.

    Revocations are conditional ``UPDATE ... WHERE revoked_at IS NULL``
    statements, so two writers racing on the same record cannot both win and
    a revoked record is never rewritten. Reads refresh any instance already
    in the identity map, because bulk statements bypass it.
    """

    model = RefreshToken

    # ---------------------------- Lookups ----------------------------

    def _select(self) -> Select[Any]:
        return select(RefreshToken).execution_options(populate_existing=True)

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Fetch a record by token digest.

        :param token_hash: Hex SHA-256 digest of the raw token.
        :type token_hash: str
        :returns: Record or ``None`` when unknown.
        :rtype: RefreshTokenRecord | None
        """
        stmt = self._select().where(RefreshToken.token_hash == token_hash)
        row = self.session.execute(stmt).scalars().first()
        return row.to_record() if row is not None else None

    def find_most_recent_active(self, user_id: str, now: datetime) -> RefreshTokenRecord | None:
        stmt = (
            self._select()
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .limit(1)
        )
        row = self.session.execute(stmt).scalars().first()
        return row.to_record() if row is not None else None

    def list_family(self, token_family: str) -> list[RefreshTokenRecord]:
        stmt = (
            self._select()
            .where(RefreshToken.token_family == token_family)
            .order_by(RefreshToken.id.asc())
        )
        return [row.to_record() for row in self.session.execute(stmt).scalars()]

    def count_active(self, user_id: str, now: datetime) -> int:
        """Count records with ``revoked_at IS NULL`` and ``expires_at > now``."""
        stmt = (
            select(func.count())
            .select_from(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
        )
        return int(self.session.execute(stmt).scalar_one())

    # ---------------------------- Writes ----------------------------

    def insert(self, token: NewRefreshToken) -> RefreshTokenRecord:
        """Persist a new active record and flush to obtain its id.

        :raises DuplicateHashError: When the unique hash index fires.
        """
        row = RefreshToken(
            user_id=token.user_id,
            token_hash=token.token_hash,
            token_family=token.token_family,
            expires_at=token.expires_at,
            created_at=token.created_at,
        )
        try:
            self.add(row)
        except IntegrityError as exc:
            if any(violates(exc, name) for name in _HASH_CONSTRAINTS):
                raise DuplicateHashError(token.token_hash) from exc
            raise
        return row.to_record()

    def mark_revoked(
        self,
        token_id: int,
        revoked_at: datetime,
        replaced_by_token_id: int | None = None,
    ) -> bool:
        values: dict[str, Any] = {"revoked_at": revoked_at}
        if replaced_by_token_id is not None:
            values["replaced_by_token_id"] = replaced_by_token_id
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.revoked_at.is_(None))
            .values(**values)
        )
        return self._rowcount(stmt) == 1

    def revoke_all_active_for_family(self, token_family: str, revoked_at: datetime) -> int:
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.token_family == token_family,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=revoked_at)
        )
        return self._rowcount(stmt)

    def revoke_all_active_for_user(self, user_id: str, revoked_at: datetime) -> int:
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=revoked_at)
        )
        return self._rowcount(stmt)

    def delete_expired_before(self, cutoff: datetime) -> int:
        stmt = delete(RefreshToken).where(RefreshToken.expires_at < cutoff)
        return self._rowcount(stmt)

    # ---------------------------- Internals ----------------------------

    def _rowcount(self, stmt: Any) -> int:
        result = cast(CursorResult[Any], self.session.execute(stmt))
        return int(result.rowcount)
