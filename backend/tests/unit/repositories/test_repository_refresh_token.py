"""
Unit tests for RefreshTokenRepository (SQLAlchemy adapter of the token store).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from refreshguard.repositories import RefreshTokenRepository
from refreshguard.services._shared.errors import DuplicateHashError
from refreshguard.services._shared.ports import NewRefreshToken, TokenState
from tests.factories.refresh_token import RefreshTokenFactory

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def repo(session):
    return RefreshTokenRepository(session=session)


def _new(token_hash: str, *, user_id: str = "u1", family: str = "fam", created_at=NOW):
    return NewRefreshToken(
        user_id=user_id,
        token_hash=token_hash,
        token_family=family,
        expires_at=created_at + timedelta(days=7),
        created_at=created_at,
    )


class TestRefreshTokenRepository:
    def test_insert_assigns_id_and_find_by_hash(self, repo):
        record = repo.insert(_new("h1"))

        assert record.id is not None
        found = repo.find_by_hash("h1")
        assert found == record
        assert found.state(NOW) is TokenState.ACTIVE
        assert repo.find_by_hash("missing") is None

    def test_insert_duplicate_hash_raises(self, repo, session):
        repo.insert(_new("dup"))
        session.commit()

        with pytest.raises(DuplicateHashError) as excinfo:
            repo.insert(_new("dup", user_id="u2", family="other"))
        session.rollback()

        assert excinfo.value.token_hash == "dup"
        assert repo.count_active("u2", NOW) == 0

    def test_mark_revoked_is_conditional(self, repo):
        a = repo.insert(_new("a"))
        b = repo.insert(_new("b"))

        assert repo.mark_revoked(a.id, NOW, replaced_by_token_id=b.id) is True
        # Second writer loses and cannot overwrite the link.
        assert repo.mark_revoked(a.id, NOW + timedelta(seconds=5)) is False

        stored = repo.find_by_hash("a")
        assert stored.revoked_at == NOW
        assert stored.replaced_by_token_id == b.id
        assert stored.state(NOW) is TokenState.ROTATED
        assert repo.mark_revoked(9999, NOW) is False

    def test_revoke_all_for_family_counts_only_active(self, repo):
        first = repo.insert(_new("f1"))
        repo.insert(_new("f2"))
        repo.insert(_new("other", family="other"))
        repo.mark_revoked(first.id, NOW)

        assert repo.revoke_all_active_for_family("fam", NOW) == 1
        assert repo.revoke_all_active_for_family("fam", NOW) == 0
        assert repo.find_by_hash("other").revoked_at is None

    def test_revoke_all_for_user_is_scoped(self, repo):
        repo.insert(_new("x1", user_id="u1", family="f1"))
        repo.insert(_new("x2", user_id="u1", family="f2"))
        repo.insert(_new("y1", user_id="u2", family="f3"))

        assert repo.revoke_all_active_for_user("u1", NOW) == 2
        assert repo.count_active("u1", NOW) == 0
        assert repo.count_active("u2", NOW) == 1

    def test_count_active_excludes_expired_at_boundary(self, repo, session):
        RefreshTokenFactory(user_id="u1", created_at=NOW - timedelta(days=7))  # expires == NOW
        RefreshTokenFactory(user_id="u1", created_at=NOW - timedelta(days=1))
        session.flush()

        assert repo.count_active("u1", NOW) == 1

    def test_find_most_recent_active_orders_by_creation(self, repo):
        repo.insert(_new("old", created_at=NOW - timedelta(days=1)))
        newest = repo.insert(_new("new", created_at=NOW - timedelta(minutes=5)))

        assert repo.find_most_recent_active("u1", NOW) == newest
        repo.mark_revoked(newest.id, NOW)
        assert repo.find_most_recent_active("u1", NOW).token_hash == "old"
        assert repo.find_most_recent_active("nobody", NOW) is None

    def test_delete_expired_before_is_strict(self, repo):
        cutoff = NOW - timedelta(days=30)
        repo.insert(_new("gone", created_at=cutoff - timedelta(days=8)))
        repo.insert(_new("edge", created_at=cutoff - timedelta(days=7)))  # expires == cutoff
        repo.insert(_new("live"))

        assert repo.delete_expired_before(cutoff) == 1
        assert repo.find_by_hash("gone") is None
        assert repo.find_by_hash("edge") is not None
        assert repo.find_by_hash("live") is not None

    def test_list_family_in_id_order(self, repo):
        ids = [repo.insert(_new(f"l{i}")).id for i in range(3)]
        repo.insert(_new("elsewhere", family="other"))

        assert [r.id for r in repo.list_family("fam")] == ids
        assert repo.list_family("unknown") == []

    def test_get_by_primary_key(self, repo):
        record = repo.insert(_new("pk"))

        row = repo.get(record.id)

        assert row.token_hash == "pk"
        assert row.to_record() == record
        assert repo.get(12345) is None
