"""Scheduler-facing job entry points (cron, systemd timers, ``flask tokens cleanup``)."""

from __future__ import annotations

import logging

from refreshguard.services._shared.errors import StorageFailureError
from refreshguard.services.refresh_tokens.service import RefreshTokenService

logger = logging.getLogger(__name__)


def run_cleanup(service: RefreshTokenService) -> int:
    """
    Run the daily expired-token sweep.

    Intended to run once a day during low traffic. It needs no coordination
    with live requests because it only targets records past the retention
    cutoff.

    :param service: Configured refresh token service.
    :returns: Number of records deleted.
    :raises StorageFailureError: Re-raised after logging so schedulers see the failure.
    """
    logger.info("Starting scheduled cleanup of expired refresh tokens")
    try:
        deleted = service.cleanup_expired_tokens()
    except StorageFailureError:
        logger.error("Error during scheduled refresh token cleanup", exc_info=True)
        raise
    logger.info(
        "Completed scheduled cleanup of expired refresh tokens",
        extra={"count": deleted},
    )
    return deleted
