"""Flask CLI commands for refresh token maintenance."""

from __future__ import annotations

import logging

import click
from flask import current_app
from flask.cli import with_appcontext

from refreshguard.core.extensions import db
from refreshguard.services._shared.errors import StorageFailureError
from refreshguard.services.refresh_tokens.jobs import run_cleanup
from refreshguard.services.refresh_tokens.wiring import get_refresh_token_service

LOGGER = logging.getLogger(__name__)


def _ensure_non_production() -> None:
    """Abort destructive commands when running in production."""
    config = current_app.config
    app_env = str(config.get("APP_ENV", "")).lower()
    is_debug = bool(config.get("DEBUG"))
    is_testing = bool(config.get("TESTING"))
    if app_env == "production" or not (is_debug or is_testing):
        raise click.UsageError(
            "The 'flask tokens init-db' command is restricted to non-production environments."
        )


@click.group("tokens")
def tokens_cli() -> None:
    """Refresh token maintenance commands."""


@tokens_cli.command("cleanup")
@with_appcontext
def cleanup_command() -> None:
    """Delete tokens expired for longer than the retention window."""
    try:
        deleted = run_cleanup(get_refresh_token_service())
    except StorageFailureError as exc:
        raise click.ClickException(f"Cleanup failed: {exc}") from exc
    click.echo(f"Deleted {deleted} expired refresh token(s).")


@tokens_cli.command("revoke-user")
@click.argument("user_id")
@with_appcontext
def revoke_user_command(user_id: str) -> None:
    """Revoke every active token of USER_ID (log out everywhere)."""
    try:
        revoked = get_refresh_token_service().revoke_all_user_tokens(user_id)
    except StorageFailureError as exc:
        raise click.ClickException(f"Revocation failed: {exc}") from exc
    click.echo(f"Revoked {revoked} refresh token(s) for user {user_id}.")


@tokens_cli.command("revoke-family")
@click.argument("family")
@with_appcontext
def revoke_family_command(family: str) -> None:
    """Revoke every active token of the lineage FAMILY."""
    try:
        revoked = get_refresh_token_service().revoke_token_family(family)
    except StorageFailureError as exc:
        raise click.ClickException(f"Revocation failed: {exc}") from exc
    click.echo(f"Revoked {revoked} refresh token(s) in family {family}.")


@tokens_cli.command("count")
@click.argument("user_id")
@with_appcontext
def count_command(user_id: str) -> None:
    """Print the number of active tokens of USER_ID."""
    try:
        count = get_refresh_token_service().get_active_token_count(user_id)
    except StorageFailureError as exc:
        raise click.ClickException(f"Count failed: {exc}") from exc
    click.echo(str(count))


@tokens_cli.command("init-db")
@with_appcontext
def init_db_command() -> None:
    """Create the SQL schema directly (development only; use migrations elsewhere)."""
    _ensure_non_production()
    db.create_all()
    LOGGER.info("Created refresh token schema")
    click.echo("Database schema created.")
