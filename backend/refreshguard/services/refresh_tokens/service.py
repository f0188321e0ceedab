# refreshguard/services/refresh_tokens/service.py
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from refreshguard.core.clock import Clock, SystemClock
from refreshguard.core.logger import SECURITY, security_logger
from refreshguard.services._shared.base import BaseService, UnitOfWorkFactory
from refreshguard.services._shared.errors import ConcurrentUpdateError, StorageFailureError
from refreshguard.services._shared.ports import (
    NewRefreshToken,
    RefreshTokenRecord,
    RefreshTokenStore,
)
from refreshguard.services.refresh_tokens.crypto import (
    SecureRandomSource,
    SystemRandomSource,
    TokenHasher,
    encode_token,
    new_token_family,
    sha256_hex,
)
from refreshguard.services.refresh_tokens.dto import IssuedToken, RefreshTokenConfig
from refreshguard.services.refresh_tokens.result import Err, Ok, TokenErrorKind, TokenResult

logger = logging.getLogger(__name__)


class _RotationRaceLost(Exception):
    """The presented record was revoked by someone else between read and write."""


class RefreshTokenService(BaseService):
    """
    Refresh token lifecycle: issuance, single-use rotation, revocation and cleanup.

    The service is stateless; every public operation runs in its own Unit of
    Work, and all coordination between concurrent callers lives in the store.

    Security
    --------
    - Only the digest of a raw token is ever persisted.
    - Each token is **single-use**: a successful rotation revokes it and links
      it to its successor in the same transaction.
    - Presenting a revoked token is treated as **theft**: the whole family is
      revoked, including any successor issued to a legitimate caller. False
      positive lockouts are preferred over tolerating a replay.
    - A rotation is never retried here. If a rotation's commit outcome is
      unknown, retrying could turn a legitimate request into a reuse signal.
    """

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        ro_uow_factory: UnitOfWorkFactory | None = None,
        clock: Clock | None = None,
        random_source: SecureRandomSource | None = None,
        hasher: TokenHasher = sha256_hex,
        family_factory: Callable[[], str] = new_token_family,
        config: RefreshTokenConfig | None = None,
    ) -> None:
        """
        Initialize the service with its collaborators.

        :param uow_factory: Builds the read-write Unit of Work for each operation.
        :param ro_uow_factory: Builds read-only Units of Work for queries.
        :param clock: Time source (UTC, timezone-aware).
        :param random_source: Cryptographically secure byte source.
        :param hasher: One-way digest mapping a raw token to its stored form.
        :param family_factory: Generates lineage ids for first logins.
        :param config: Lifetime, retention and entropy settings.
        """
        super().__init__(uow_factory=uow_factory, ro_uow_factory=ro_uow_factory)
        self.clock = clock or SystemClock()
        self.random = random_source or SystemRandomSource()
        self.hasher = hasher
        self.family_factory = family_factory
        self.cfg = config or RefreshTokenConfig()

    # ------------------------------------------------------------------ #
    # Issuance
    # ------------------------------------------------------------------ #

    def create_refresh_token(self, user_id: str, family: str | None = None) -> TokenResult:
        """
        Issue a new active token for ``user_id``.

        :param user_id: Owner identifier.
        :param family: Lineage to continue; a new one is generated when ``None``.
        :returns: ``Ok`` with the raw token (shown once) and its record, or
            ``Err(STORAGE_FAILURE)``. Safe to retry on storage failure.
        """
        now = self.clock.now()
        try:
            with self.rw_uow() as uow:
                issued = self._issue(
                    uow.refresh_tokens, user_id, family or self.family_factory(), now=now
                )
        except StorageFailureError as exc:
            logger.error(
                "Refresh token issuance failed",
                exc_info=True,
                extra={"operation": "create", "user_id": user_id},
            )
            return Err(TokenErrorKind.STORAGE_FAILURE, str(exc), retryable=True)

        logger.debug(
            "Issued refresh token",
            extra={
                "user_id": user_id,
                "token_family": issued.record.token_family,
                "token_id": issued.record.id,
            },
        )
        return Ok(issued)

    def _issue(
        self, store: RefreshTokenStore, user_id: str, family: str, *, now: datetime
    ) -> IssuedToken:
        raw_token = encode_token(self.random.token_bytes(self.cfg.token_bytes))
        record = store.insert(
            NewRefreshToken(
                user_id=user_id,
                token_hash=self.hasher(raw_token),
                token_family=family,
                expires_at=now + self.cfg.lifetime,
                created_at=now,
            )
        )
        return IssuedToken(raw_token=raw_token, record=record)

    # ------------------------------------------------------------------ #
    # Validation and rotation
    # ------------------------------------------------------------------ #

    def validate_and_rotate(self, raw_token: str) -> TokenResult:
        """
        Validate a presented token and rotate it into a successor.

        Checks run in this order: unknown, revoked (reuse), expired. The
        revoked check comes first so that replaying an expired but already
        rotated token is still reported as reuse.

        :param raw_token: Token presented by the client.
        :returns: ``Ok`` with the successor, or ``Err`` with one of
            ``INVALID_TOKEN``, ``TOKEN_REUSE_DETECTED``, ``TOKEN_EXPIRED`` or
            ``STORAGE_FAILURE``. Storage failures are not retryable unless
            ``Err.retryable`` says otherwise.
        """
        token_hash = self.hasher(raw_token)
        now = self.clock.now()
        try:
            with self.rw_uow() as uow:
                return self._rotate(uow.refresh_tokens, token_hash, now)
        except (_RotationRaceLost, ConcurrentUpdateError):
            logger.info("Rotation lost a concurrent update; re-checking presented token")
            return self._resolve_lost_race(token_hash)
        except StorageFailureError as exc:
            logger.error(
                "Refresh token rotation failed", exc_info=True, extra={"operation": "rotate"}
            )
            # The outcome of the commit is unknown; the token may already be spent.
            return Err(TokenErrorKind.STORAGE_FAILURE, str(exc))

    def _rotate(self, store: RefreshTokenStore, token_hash: str, now: datetime) -> TokenResult:
        record = store.find_by_hash(token_hash)
        if record is None:
            logger.debug("Refresh token not found")
            return Err(TokenErrorKind.INVALID_TOKEN, "Refresh token is not recognized.")

        if record.is_revoked:
            return self._respond_to_reuse(store, record, now)

        if record.is_expired(now):
            logger.debug("Refresh token expired", extra={"token_id": record.id})
            return Err(TokenErrorKind.TOKEN_EXPIRED, "Refresh token has expired.")

        issued = self._issue(store, record.user_id, record.token_family, now=now)
        if not store.mark_revoked(record.id, now, replaced_by_token_id=issued.record.id):
            # Roll back the successor; the caller re-evaluates in a new transaction.
            raise _RotationRaceLost()

        logger.debug(
            "Rotated refresh token",
            extra={
                "user_id": record.user_id,
                "token_family": record.token_family,
                "token_id": issued.record.id,
            },
        )
        return Ok(issued)

    def _respond_to_reuse(
        self, store: RefreshTokenStore, record: RefreshTokenRecord, now: datetime
    ) -> Err:
        security_logger().log(
            SECURITY,
            "Refresh token reuse detected; revoking token family",
            extra={
                "user_id": record.user_id,
                "token_family": record.token_family,
                "token_id": record.id,
            },
        )
        revoked = store.revoke_all_active_for_family(record.token_family, now)
        logger.warning(
            "Revoked %d refresh tokens in family",
            revoked,
            extra={"token_family": record.token_family, "count": revoked},
        )
        return Err(
            TokenErrorKind.TOKEN_REUSE_DETECTED,
            "Refresh token reuse detected. Please sign in again.",
        )

    def _resolve_lost_race(self, token_hash: str) -> TokenResult:
        """
        Re-read the presented token after a lost race, without rotating again.

        A concurrent request normally revoked it, so this takes the reuse path.
        If it is somehow still active, nothing was rotated and the caller gets
        a storage failure.
        """
        now = self.clock.now()
        try:
            with self.rw_uow() as uow:
                store = uow.refresh_tokens
                record = store.find_by_hash(token_hash)
                if record is None:
                    return Err(TokenErrorKind.INVALID_TOKEN, "Refresh token is not recognized.")
                if record.is_revoked:
                    return self._respond_to_reuse(store, record, now)
        except StorageFailureError as exc:
            logger.error(
                "Refresh token re-check failed", exc_info=True, extra={"operation": "rotate"}
            )
            return Err(TokenErrorKind.STORAGE_FAILURE, str(exc))

        return Err(
            TokenErrorKind.STORAGE_FAILURE,
            "Rotation aborted by a concurrent update; the token was left unchanged.",
            retryable=True,
        )

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def revoke_token(self, raw_token: str) -> None:
        """
        Revoke one token (logout). Unknown or already revoked tokens are a no-op.

        :raises StorageFailureError: If the store is unavailable.
        """
        token_hash = self.hasher(raw_token)
        now = self.clock.now()
        with self._storage_guard("revoke_token"):
            with self.rw_uow() as uow:
                store = uow.refresh_tokens
                record = store.find_by_hash(token_hash)
                if record is None or record.is_revoked:
                    return
                store.mark_revoked(record.id, now)
        logger.debug("Revoked refresh token", extra={"token_id": record.id})

    def revoke_all_user_tokens(self, user_id: str) -> int:
        """
        Revoke every active token of a user ("log out everywhere").

        :returns: Number of tokens revoked.
        :raises StorageFailureError: If the store is unavailable.
        """
        now = self.clock.now()
        with self._storage_guard("revoke_all_user_tokens", user_id=user_id):
            with self.rw_uow() as uow:
                revoked = uow.refresh_tokens.revoke_all_active_for_user(user_id, now)
        logger.info(
            "Revoked %d refresh tokens for user",
            revoked,
            extra={"user_id": user_id, "count": revoked},
        )
        return revoked

    def revoke_token_family(self, token_family: str) -> int:
        """
        Revoke every active token of a lineage.

        :returns: Number of tokens revoked.
        :raises StorageFailureError: If the store is unavailable.
        """
        now = self.clock.now()
        with self._storage_guard("revoke_token_family", token_family=token_family):
            with self.rw_uow() as uow:
                revoked = uow.refresh_tokens.revoke_all_active_for_family(token_family, now)
        logger.warning(
            "Revoked %d refresh tokens in family",
            revoked,
            extra={"token_family": token_family, "count": revoked},
        )
        return revoked

    # ------------------------------------------------------------------ #
    # Maintenance and queries
    # ------------------------------------------------------------------ #

    def cleanup_expired_tokens(self) -> int:
        """
        Hard-delete tokens that expired more than the retention window ago.

        Active tokens are never touched: the cutoff is always in the past.

        :returns: Number of records deleted.
        :raises StorageFailureError: If the store is unavailable. Safe to retry.
        """
        cutoff = self.clock.now() - self.cfg.retention
        with self._storage_guard("cleanup_expired_tokens"):
            with self.rw_uow() as uow:
                deleted = uow.refresh_tokens.delete_expired_before(cutoff)
        logger.info("Cleaned up %d expired refresh tokens", deleted, extra={"count": deleted})
        return deleted

    def get_active_token_count(self, user_id: str) -> int:
        """Count unrevoked, unexpired tokens of a user."""
        now = self.clock.now()
        with self._storage_guard("get_active_token_count", user_id=user_id):
            with self.ro_uow() as uow:
                return uow.refresh_tokens.count_active(user_id, now)

    def find_most_recent_active_token(self, user_id: str) -> RefreshTokenRecord | None:
        """Return the newest active token record of a user, if any."""
        now = self.clock.now()
        with self._storage_guard("find_most_recent_active_token", user_id=user_id):
            with self.ro_uow() as uow:
                return uow.refresh_tokens.find_most_recent_active(user_id, now)

    def get_token_family(self, token_family: str) -> list[RefreshTokenRecord]:
        """Return a lineage in issuance order, for forensic review."""
        with self._storage_guard("get_token_family", token_family=token_family):
            with self.ro_uow() as uow:
                return uow.refresh_tokens.list_family(token_family)

    @contextmanager
    def _storage_guard(self, operation: str, **extra: str) -> Iterator[None]:
        try:
            yield
        except StorageFailureError:
            logger.error(
                "Refresh token operation %s failed",
                operation,
                exc_info=True,
                extra={"operation": operation, **extra},
            )
            raise
