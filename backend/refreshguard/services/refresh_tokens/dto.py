# refreshguard/services/refresh_tokens/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from refreshguard.services._shared.ports import RefreshTokenRecord

# Minimum entropy per raw token (256 bits)
MIN_TOKEN_BYTES = 32

# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class IssuedToken:
    """
    A freshly issued refresh token.

    :param raw_token: Opaque token handed to the client exactly once. It is
        never stored and cannot be recovered later.
    :type raw_token: str
    :param record: Persisted record (holding only the token digest).
    :type record: RefreshTokenRecord
    """

    raw_token: str
    record: RefreshTokenRecord

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks.
        return f"IssuedToken(raw_token='***', record={self.record!r})"


# ------------------------------ Config DTO -------------------------------- #


@dataclass(frozen=True, slots=True)
class RefreshTokenConfig:
    """
    Refresh token issuance and retention settings.

    :param lifetime: Lifetime of each newly issued token.
    :type lifetime: timedelta
    :param retention: Grace window after expiry before cleanup hard-deletes a record.
    :type retention: timedelta
    :param token_bytes: Random bytes per raw token (at least 32).
    :type token_bytes: int
    :raises ValueError: On non-positive lifetime, negative retention or too
        little entropy.
    """

    lifetime: timedelta = timedelta(days=7)
    retention: timedelta = timedelta(days=30)
    token_bytes: int = MIN_TOKEN_BYTES

    def __post_init__(self) -> None:
        if self.token_bytes < MIN_TOKEN_BYTES:
            raise ValueError(f"token_bytes must be >= {MIN_TOKEN_BYTES} (256 bits).")
        if self.lifetime <= timedelta(0):
            raise ValueError("lifetime must be positive.")
        if self.retention < timedelta(0):
            raise ValueError("retention must not be negative.")
