"""Tagged results returned by issuance and rotation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from refreshguard.services.refresh_tokens.dto import IssuedToken


class TokenErrorKind(Enum):
    """Distinguishable failure kinds surfaced to callers."""

    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    STORAGE_FAILURE = "storage_failure"


@dataclass(frozen=True, slots=True)
class Ok:
    """
    Successful issuance or rotation.

    :param value: The new raw token and its record.
    :type value: IssuedToken
    """

    value: IssuedToken
    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Err:
    """
    Failed issuance or rotation.

    :param kind: Failure kind.
    :type kind: TokenErrorKind
    :param message: Human-readable detail, safe to log; never contains the raw token.
    :type message: str
    :param retryable: Whether repeating the same call is safe. Only set where
        nothing was committed and the presented token is still usable.
    :type retryable: bool
    """

    kind: TokenErrorKind
    message: str = ""
    retryable: bool = False
    ok: ClassVar[bool] = False


TokenResult = Ok | Err

__all__ = ["Err", "Ok", "TokenErrorKind", "TokenResult"]
