"""
Unit tests for RefreshTokenService over the in-memory store.

Covers issuance, single-use rotation, reuse detection with family cascade,
expiry, logout, bulk revocation, cleanup retention and storage failures.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import partial

import pytest
from refreshguard.core.logger import SECURITY, SECURITY_LOGGER_NAME
from refreshguard.services._shared.errors import StorageFailureError
from refreshguard.services._shared.ports import InMemoryRefreshTokenStore, TokenState
from refreshguard.services.refresh_tokens import (
    Err,
    Ok,
    RefreshTokenConfig,
    RefreshTokenService,
    TokenErrorKind,
)
from refreshguard.services.refresh_tokens.crypto import sha256_hex
from refreshguard.uow import InMemoryUnitOfWork
from tests.helpers.randomness import CollidingRandomSource


class _FailingRevokeStore(InMemoryRefreshTokenStore):
    def mark_revoked(self, token_id, revoked_at, replaced_by_token_id=None):
        raise StorageFailureError("db down")


def _issue(service, user_id="user-1", family=None):
    result = service.create_refresh_token(user_id, family)
    assert isinstance(result, Ok)
    return result.value


# --------------------------------------------------------------------------- #
# Issuance
# --------------------------------------------------------------------------- #


class TestCreateRefreshToken:
    def test_returns_raw_token_and_stores_only_its_hash(self, memory_service, memory_store, clock):
        issued = _issue(memory_service)

        assert len(issued.raw_token) == 43  # 32 bytes, base64url, unpadded
        assert "=" not in issued.raw_token
        assert issued.record.token_hash == sha256_hex(issued.raw_token)
        assert issued.record.token_hash != issued.raw_token
        assert memory_store.find_by_hash(issued.raw_token) is None
        assert memory_store.find_by_hash(sha256_hex(issued.raw_token)) == issued.record

    def test_sets_expiry_from_lifetime_and_creation_time(self, memory_service, clock):
        issued = _issue(memory_service)

        assert issued.record.created_at == clock.now()
        assert issued.record.expires_at == clock.now() + timedelta(days=7)
        assert issued.record.state(clock.now()) is TokenState.ACTIVE

    def test_generates_new_family_when_none_given(self, memory_service):
        first = _issue(memory_service)
        second = _issue(memory_service)

        assert first.record.token_family
        assert first.record.token_family != second.record.token_family

    def test_keeps_given_family(self, memory_service):
        issued = _issue(memory_service, family="family-x")
        assert issued.record.token_family == "family-x"

    def test_raw_token_is_masked_in_repr(self, memory_service):
        issued = _issue(memory_service)
        assert issued.raw_token not in repr(issued)

    def test_duplicate_hash_is_a_retryable_storage_failure(self, memory_store, clock):
        service = RefreshTokenService(
            uow_factory=partial(InMemoryUnitOfWork, memory_store),
            clock=clock,
            random_source=CollidingRandomSource(),
        )
        first = _issue(service)

        result = service.create_refresh_token("user-2")

        assert isinstance(result, Err)
        assert result.kind is TokenErrorKind.STORAGE_FAILURE
        assert result.retryable is True
        # The first record is untouched and nothing else was written.
        assert memory_store.find_by_hash(first.record.token_hash) == first.record
        assert service.get_active_token_count("user-2") == 0


# --------------------------------------------------------------------------- #
# Rotation
# --------------------------------------------------------------------------- #


class TestValidateAndRotate:
    def test_single_use_rotation(self, memory_service):
        """
        GIVEN a freshly created token
        WHEN it is rotated once and then presented again
        THEN the first call succeeds and the second reports reuse.
        """
        token = _issue(memory_service)

        first = memory_service.validate_and_rotate(token.raw_token)
        second = memory_service.validate_and_rotate(token.raw_token)

        assert isinstance(first, Ok)
        assert isinstance(second, Err)
        assert second.kind is TokenErrorKind.TOKEN_REUSE_DETECTED
        assert second.retryable is False

    def test_end_to_end_login_refresh_replay(self, memory_service, clock):
        """
        GIVEN login token A in family F
        WHEN A is refreshed into B and then A is replayed
        THEN A links to B, the replay is reuse, and B ends up revoked too.
        """
        a = _issue(memory_service, user_id="alice")

        rotated = memory_service.validate_and_rotate(a.raw_token)
        assert isinstance(rotated, Ok)
        b = rotated.value
        assert b.record.token_family == a.record.token_family
        assert b.record.user_id == "alice"
        assert b.raw_token != a.raw_token

        family = {r.id: r for r in memory_service.get_token_family(a.record.token_family)}
        assert family[a.record.id].revoked_at == clock.now()
        assert family[a.record.id].replaced_by_token_id == b.record.id
        assert family[a.record.id].state(clock.now()) is TokenState.ROTATED
        assert family[b.record.id].is_active(clock.now())

        replay = memory_service.validate_and_rotate(a.raw_token)

        assert isinstance(replay, Err)
        assert replay.kind is TokenErrorKind.TOKEN_REUSE_DETECTED
        family = {r.id: r for r in memory_service.get_token_family(a.record.token_family)}
        assert family[b.record.id].is_revoked
        assert family[b.record.id].replaced_by_token_id is None
        assert family[b.record.id].state(clock.now()) is TokenState.REVOKED

    def test_family_cascade_revokes_every_descendant(self, memory_service):
        root = _issue(memory_service, user_id="bob")
        other_login = _issue(memory_service, user_id="bob")
        raw = root.raw_token
        for _ in range(3):
            raw = memory_service.validate_and_rotate(raw).value.raw_token

        result = memory_service.validate_and_rotate(root.raw_token)

        assert result.kind is TokenErrorKind.TOKEN_REUSE_DETECTED
        family = memory_service.get_token_family(root.record.token_family)
        assert len(family) == 4
        assert all(r.is_revoked for r in family)
        # Only the reused lineage is revoked; the other login survives.
        assert memory_service.get_active_token_count("bob") == 1
        recent = memory_service.find_most_recent_active_token("bob")
        assert recent is not None
        assert recent.id == other_login.record.id

    def test_family_continuity_over_many_rotations(self, memory_service, clock):
        token = _issue(memory_service)
        family = token.record.token_family
        raw = token.raw_token

        for _ in range(5):
            clock.advance(minutes=10)
            result = memory_service.validate_and_rotate(raw)
            assert isinstance(result, Ok)
            assert result.value.record.token_family == family
            assert result.value.record.token_hash == sha256_hex(result.value.raw_token)
            raw = result.value.raw_token

        chain = memory_service.get_token_family(family)
        assert len(chain) == 6
        for older, newer in zip(chain, chain[1:]):
            assert older.replaced_by_token_id == newer.id
        assert chain[-1].is_active(clock.now())

    def test_successor_gets_a_fresh_expiry(self, memory_service, clock):
        token = _issue(memory_service)
        clock.advance(days=6)

        successor = memory_service.validate_and_rotate(token.raw_token).value

        assert successor.record.expires_at == clock.now() + timedelta(days=7)
        original = memory_service.get_token_family(token.record.token_family)[0]
        assert original.expires_at == token.record.expires_at

    def test_unknown_token_is_invalid(self, memory_service):
        result = memory_service.validate_and_rotate("not-a-real-token")

        assert isinstance(result, Err)
        assert result.kind is TokenErrorKind.INVALID_TOKEN

    def test_expired_token(self, memory_service, clock):
        token = _issue(memory_service)
        clock.set(token.record.expires_at)  # expiry is inclusive

        result = memory_service.validate_and_rotate(token.raw_token)

        assert result.kind is TokenErrorKind.TOKEN_EXPIRED
        # Expiry does not revoke or rotate anything.
        family = memory_service.get_token_family(token.record.token_family)
        assert len(family) == 1
        assert not family[0].is_revoked

    def test_revoked_and_expired_token_reports_reuse(self, memory_service, clock):
        token = _issue(memory_service)
        successor = memory_service.validate_and_rotate(token.raw_token).value
        clock.advance(days=8)

        result = memory_service.validate_and_rotate(token.raw_token)

        assert result.kind is TokenErrorKind.TOKEN_REUSE_DETECTED
        family = {r.id: r for r in memory_service.get_token_family(token.record.token_family)}
        assert family[successor.record.id].is_revoked

    def test_failed_successor_insert_leaves_presented_token_active(self, memory_store, clock):
        """
        GIVEN a random source that repeats itself
        WHEN rotation cannot insert the successor
        THEN nothing is committed: the presented token is still active.
        """
        service = RefreshTokenService(
            uow_factory=partial(InMemoryUnitOfWork, memory_store),
            clock=clock,
            random_source=CollidingRandomSource(),
        )
        token = _issue(service)

        result = service.validate_and_rotate(token.raw_token)

        assert result.kind is TokenErrorKind.STORAGE_FAILURE
        [record] = service.get_token_family(token.record.token_family)
        assert record.is_active(clock.now())
        assert record.replaced_by_token_id is None

    def test_rotation_storage_failure_is_not_retryable(self, clock, random_source):
        """
        GIVEN a store that fails while revoking the presented token
        WHEN the token is rotated
        THEN the caller gets a storage failure it must not retry blindly.
        """
        service = RefreshTokenService(
            uow_factory=partial(InMemoryUnitOfWork, _FailingRevokeStore()),
            clock=clock,
            random_source=random_source,
        )
        token = _issue(service)

        result = service.validate_and_rotate(token.raw_token)

        assert isinstance(result, Err)
        assert result.kind is TokenErrorKind.STORAGE_FAILURE
        assert result.retryable is False
        assert "db down" in result.message

    def test_reuse_is_logged_at_security_level(self, memory_service, caplog):
        token = _issue(memory_service, user_id="carol")
        memory_service.validate_and_rotate(token.raw_token)

        with caplog.at_level(logging.DEBUG):
            memory_service.validate_and_rotate(token.raw_token)

        [audit] = [r for r in caplog.records if r.name == SECURITY_LOGGER_NAME]
        assert audit.levelno == SECURITY
        assert audit.levelname == "SECURITY"
        assert audit.user_id == "carol"
        assert audit.token_family == token.record.token_family
        assert token.raw_token not in audit.getMessage()

    def test_invalid_token_is_not_a_security_event(self, memory_service, caplog):
        with caplog.at_level(logging.DEBUG):
            memory_service.validate_and_rotate("garbage")

        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


# --------------------------------------------------------------------------- #
# Revocation
# --------------------------------------------------------------------------- #


class TestRevocation:
    def test_revoke_token_is_a_plain_logout(self, memory_service, clock):
        token = _issue(memory_service)

        memory_service.revoke_token(token.raw_token)

        [record] = memory_service.get_token_family(token.record.token_family)
        assert record.revoked_at == clock.now()
        assert record.replaced_by_token_id is None
        assert record.state(clock.now()) is TokenState.REVOKED

    def test_revoke_token_is_idempotent(self, memory_service, clock):
        token = _issue(memory_service)
        memory_service.revoke_token(token.raw_token)
        first_revoked_at = clock.now()
        clock.advance(hours=1)

        memory_service.revoke_token(token.raw_token)
        memory_service.revoke_token("unknown-token")

        [record] = memory_service.get_token_family(token.record.token_family)
        assert record.revoked_at == first_revoked_at

    def test_revoke_all_user_tokens_is_scoped_to_user(self, memory_service):
        _issue(memory_service, user_id="u1")
        _issue(memory_service, user_id="u1")
        other = _issue(memory_service, user_id="u2")

        revoked = memory_service.revoke_all_user_tokens("u1")

        assert revoked == 2
        assert memory_service.get_active_token_count("u1") == 0
        assert memory_service.get_active_token_count("u2") == 1
        assert memory_service.find_most_recent_active_token("u2") == other.record

    def test_revoke_token_family_counts_only_active(self, memory_service):
        token = _issue(memory_service)
        memory_service.validate_and_rotate(token.raw_token)

        assert memory_service.revoke_token_family(token.record.token_family) == 1
        assert memory_service.revoke_token_family(token.record.token_family) == 0

    def test_revoke_token_family_logs_warning(self, memory_service, caplog):
        token = _issue(memory_service)

        with caplog.at_level(logging.WARNING):
            memory_service.revoke_token_family(token.record.token_family)

        assert any(
            r.levelno == logging.WARNING and getattr(r, "count", None) == 1
            for r in caplog.records
        )


# --------------------------------------------------------------------------- #
# Cleanup and queries
# --------------------------------------------------------------------------- #


class TestCleanupAndQueries:
    def test_retention_boundary(self, memory_service, memory_store, clock):
        """
        GIVEN one record expired 30 days and 1 second ago and one expired 29 days ago
        WHEN the cleanup sweep runs
        THEN only the older one is deleted.
        """
        now = clock.now()
        lifetime = timedelta(days=7)

        clock.set(now - timedelta(days=30, seconds=1) - lifetime)
        stale = _issue(memory_service)
        clock.set(now - timedelta(days=29) - lifetime)
        recent = _issue(memory_service)
        clock.set(now)
        active = _issue(memory_service)

        deleted = memory_service.cleanup_expired_tokens()

        assert deleted == 1
        assert memory_store.find_by_hash(stale.record.token_hash) is None
        assert memory_store.find_by_hash(recent.record.token_hash) is not None
        assert memory_store.find_by_hash(active.record.token_hash) is not None

    def test_cleanup_never_deletes_active_tokens(self, memory_store, clock, random_source):
        service = RefreshTokenService(
            uow_factory=partial(InMemoryUnitOfWork, memory_store),
            clock=clock,
            random_source=random_source,
            config=RefreshTokenConfig(retention=timedelta(0)),
        )
        token = _issue(service)
        clock.advance(days=6)

        assert service.cleanup_expired_tokens() == 0
        assert memory_store.find_by_hash(token.record.token_hash) is not None

    def test_cleanup_logs_count(self, memory_service, caplog):
        with caplog.at_level(logging.INFO):
            memory_service.cleanup_expired_tokens()

        assert any(getattr(r, "count", None) == 0 for r in caplog.records)

    def test_active_count_ignores_revoked_and_expired(self, memory_service, clock):
        _issue(memory_service, user_id="dave")
        revoked = _issue(memory_service, user_id="dave")
        memory_service.revoke_token(revoked.raw_token)
        clock.advance(days=3)
        fresh = _issue(memory_service, user_id="dave")

        assert memory_service.get_active_token_count("dave") == 2

        clock.advance(days=5)  # first token now expired
        assert memory_service.get_active_token_count("dave") == 1
        assert memory_service.find_most_recent_active_token("dave") == fresh.record

    def test_most_recent_active_is_none_without_tokens(self, memory_service):
        assert memory_service.find_most_recent_active_token("nobody") is None


# --------------------------------------------------------------------------- #
# Configuration and results
# --------------------------------------------------------------------------- #


class TestConfigAndResults:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"token_bytes": 16},
            {"lifetime": timedelta(0)},
            {"retention": timedelta(days=-1)},
        ],
    )
    def test_config_rejects_unsafe_values(self, kwargs):
        with pytest.raises(ValueError):
            RefreshTokenConfig(**kwargs)

    def test_config_defaults(self):
        cfg = RefreshTokenConfig()
        assert cfg.lifetime == timedelta(days=7)
        assert cfg.retention == timedelta(days=30)
        assert cfg.token_bytes == 32

    def test_err_is_not_retryable_by_default(self):
        assert all(not Err(kind).retryable for kind in TokenErrorKind)

    def test_larger_token_bytes_yield_longer_tokens(self, memory_store, clock, random_source):
        service = RefreshTokenService(
            uow_factory=partial(InMemoryUnitOfWork, memory_store),
            clock=clock,
            random_source=random_source,
            config=RefreshTokenConfig(token_bytes=48),
        )
        assert len(_issue(service).raw_token) == 64
