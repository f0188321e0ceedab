"""Repository package exposing persistence-layer access for refresh tokens."""

from __future__ import annotations

from refreshguard.repositories.base import BaseRepository
from refreshguard.repositories.refresh_token import RefreshTokenRepository

__all__ = [
    "BaseRepository",
    "RefreshTokenRepository",
]
