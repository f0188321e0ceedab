"""Refresh token rotation and reuse detection."""

from refreshguard.services.refresh_tokens.dto import IssuedToken, RefreshTokenConfig
from refreshguard.services.refresh_tokens.result import Err, Ok, TokenErrorKind, TokenResult
from refreshguard.services.refresh_tokens.service import RefreshTokenService

__all__ = [
    "Err",
    "IssuedToken",
    "Ok",
    "RefreshTokenConfig",
    "RefreshTokenService",
    "TokenErrorKind",
    "TokenResult",
]
