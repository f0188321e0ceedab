"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and should never import or depend
on Flask or HTTP directly. They serve as stable contracts between stores,
units of work, and application services.

Units of Work translate driver errors (SQLAlchemy, Redis) into
:class:`StorageFailureError` so services never need to know which storage
engine is behind a port.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError


def violates(exc: IntegrityError, constraint_name: str) -> bool:
    """
    Check whether an IntegrityError originates from a specific constraint.

    PostgreSQL includes the constraint name in the message; SQLite reports the
    offending ``table.column`` instead, so callers may pass either form.

    Parameters
    ----------
    exc : IntegrityError
        The exception raised by SQLAlchemy during flush/commit.
    constraint_name : str
        Constraint name (e.g. ``'uq_refresh_tokens_token_hash'``) or
        ``table.column`` reference to match.

    Returns
    -------
    bool
        True if the IntegrityError matches the given constraint.
    """
    message = str(exc.orig).lower() if exc.orig else ""
    return constraint_name.lower() in message


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from stores or domain logic.
    """

    pass


# --------------------------------------------------------------------------- #
# Storage errors
# --------------------------------------------------------------------------- #


class StorageFailureError(ServiceError):
    """
    Raised when the persistence layer could not complete an operation.

    The failure is transient from the caller's point of view: nothing was
    committed. Only issuance and cleanup may be retried blindly.
    """

    def __init__(self, message: str = "Refresh token storage is unavailable") -> None:
        super().__init__(message)


@dataclass(slots=True)
class DuplicateHashError(StorageFailureError):
    """
    Raised when a token hash already exists in the store.

    Under correct random generation this never happens; it signals a broken
    random source or a storage invariant violation.

    :param token_hash: The colliding digest.
    :type token_hash: str
    """

    token_hash: str

    def __str__(self) -> str:
        return f"Refresh token hash already stored: {self.token_hash[:12]}..."


class ConcurrentUpdateError(StorageFailureError):
    """
    Raised when an optimistic transaction lost against a concurrent writer.

    The unit of work has been rolled back; none of its writes took effect.
    """

    def __init__(self, message: str = "Refresh token records changed concurrently") -> None:
        super().__init__(message)
