"""Refresh token model: one issued (or historical) session-renewal token."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from refreshguard.core.extensions import db
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenRecord

from .base import PKMixin, ReprMixin, UTCDateTime, utcnow


class RefreshToken(PKMixin, ReprMixin, db.Model):
    """
    Persistent refresh token record.

    Only the SHA-256 digest of the raw token is stored. Records are kept past
    expiry for forensic review and hard-deleted by the cleanup sweep once the
    retention window has elapsed.

    Fields
    ------
    user_id : str
        Opaque owner identifier (matches the external user store's key).
    token_hash : str
        Hex digest of the raw token. Globally unique and immutable.
    token_family : str
        Rotation lineage shared by every descendant of one login. Immutable.
    expires_at : datetime
        Absolute expiration (UTC). Never extended.
    created_at : datetime
        Issuance instant (UTC).
    revoked_at : datetime | None
        Revocation instant. ``None`` means active. Write-once.
    replaced_by_token_id : int | None
        Successor id when revoked by rotation. Write-once.
    """

    __tablename__ = "refresh_tokens"

    # Columns
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    token_family: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    replaced_by_token_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("refresh_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Constraints & indexes
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_refresh_tokens_token_hash"),
        Index("ix_refresh_tokens_user_id", "user_id"),
        Index("ix_refresh_tokens_token_family", "token_family"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    # -------------------- Mapping --------------------
    def to_record(self) -> RefreshTokenRecord:
        """Detach the row into an immutable :class:`RefreshTokenRecord`."""
        return RefreshTokenRecord(
            id=self.id,
            user_id=self.user_id,
            token_hash=self.token_hash,
            token_family=self.token_family,
            expires_at=self.expires_at,
            created_at=self.created_at,
            revoked_at=self.revoked_at,
            replaced_by_token_id=self.replaced_by_token_id,
        )

    # -------------------- Validators --------------------
    @validates("token_hash", "token_family")
    def _immutable(self, key: str, value: str) -> str:
        """
        Reject blank values and any change once assigned.

        :raises ValueError: If blank or if the field already holds another value.
        """
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{key} is required.")
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is immutable.")
        return value

    @validates("revoked_at", "replaced_by_token_id")
    def _write_once(self, key: str, value: Any) -> Any:
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is write-once.")
        return value
