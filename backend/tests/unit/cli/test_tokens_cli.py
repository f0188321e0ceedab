"""Tests for the ``flask tokens`` maintenance commands."""

from __future__ import annotations

from datetime import timedelta

import pytest
from refreshguard.models.base import utcnow
from refreshguard.services._shared.errors import StorageFailureError
from refreshguard.services.refresh_tokens.wiring import EXTENSION_KEY
from tests.factories.refresh_token import RefreshTokenFactory


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestTokensCli:
    def test_count(self, runner, session):
        RefreshTokenFactory.create_batch(2, user_id="u1")
        session.commit()

        result = runner.invoke(args=["tokens", "count", "u1"])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "2"

    def test_revoke_user(self, runner, session):
        RefreshTokenFactory.create_batch(2, user_id="u1")
        RefreshTokenFactory(user_id="u2")
        session.commit()

        result = runner.invoke(args=["tokens", "revoke-user", "u1"])

        assert result.exit_code == 0, result.output
        assert "Revoked 2 refresh token(s) for user u1." in result.output
        assert runner.invoke(args=["tokens", "count", "u2"]).output.strip() == "1"

    def test_revoke_family(self, runner, session):
        RefreshTokenFactory.create_batch(3, token_family="fam-1")
        session.commit()

        result = runner.invoke(args=["tokens", "revoke-family", "fam-1"])

        assert result.exit_code == 0, result.output
        assert "Revoked 3 refresh token(s) in family fam-1." in result.output

    def test_cleanup(self, runner, session):
        RefreshTokenFactory(created_at=utcnow() - timedelta(days=40))
        RefreshTokenFactory()
        session.commit()

        result = runner.invoke(args=["tokens", "cleanup"])

        assert result.exit_code == 0, result.output
        assert "Deleted 1 expired refresh token(s)." in result.output

    def test_cleanup_failure_exits_non_zero(self, app, runner, db, monkeypatch):
        def _unavailable():
            raise StorageFailureError("database is down")

        monkeypatch.setattr(app.extensions[EXTENSION_KEY], "cleanup_expired_tokens", _unavailable)

        result = runner.invoke(args=["tokens", "cleanup"])

        assert result.exit_code == 1
        assert "Cleanup failed: database is down" in result.output

    def test_init_db_in_testing(self, runner, db):
        result = runner.invoke(args=["tokens", "init-db"])

        assert result.exit_code == 0, result.output
        assert "Database schema created." in result.output

    def test_init_db_refused_outside_debug_or_testing(self, app, runner, db):
        app.config.update(TESTING=False, DEBUG=False)

        result = runner.invoke(args=["tokens", "init-db"])

        assert result.exit_code == 2
        assert "restricted to non-production" in result.output
