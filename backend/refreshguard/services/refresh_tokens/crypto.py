"""Token material: secure random bytes, text encoding, digests and lineage ids."""

from __future__ import annotations

import base64
import hashlib
import secrets
from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

TokenHasher = Callable[[str], str]


class SecureRandomSource(Protocol):
    """Cryptographically secure random byte generator."""

    def token_bytes(self, n: int) -> bytes: ...


class SystemRandomSource:
    """OS CSPRNG via :mod:`secrets`."""

    def token_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)


def encode_token(raw: bytes) -> str:
    """
    Encode random bytes as URL-safe base64 without padding.

    32 bytes yield a 43-character token.
    """
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def sha256_hex(raw_token: str) -> str:
    """Return the lowercase hex SHA-256 digest of ``raw_token`` (UTF-8)."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def new_token_family() -> str:
    """Generate a fresh lineage identifier for a first login."""
    return str(uuid4())


__all__ = [
    "SecureRandomSource",
    "SystemRandomSource",
    "TokenHasher",
    "encode_token",
    "new_token_family",
    "sha256_hex",
]
