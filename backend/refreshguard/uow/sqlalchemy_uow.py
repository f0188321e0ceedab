"""
SQLAlchemy implementation of UnitOfWork for Flask.
"""

from __future__ import annotations

from contextlib import suppress

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import InvalidRequestError, SQLAlchemyError
from sqlalchemy.orm import Session, SessionTransaction

from refreshguard.core.extensions import db
from refreshguard.repositories import RefreshTokenRepository
from refreshguard.services._shared.errors import StorageFailureError
from refreshguard.uow.base import UnitOfWork


class SQLAlchemyRepositoryContainer:
    """Provide repository instances that share a SQLAlchemy session."""

    def __init__(self, *, session: Session) -> None:
        self.session = session
        self.refresh_tokens = RefreshTokenRepository(session=self.session)


class SQLAlchemyUnitOfWork(SQLAlchemyRepositoryContainer, UnitOfWork):
    """
    SQLAlchemy-backed UoW using the Flask-scoped session.

    The same session is shared across all repositories for a consistent transaction.
    Driver errors are rolled back and re-raised as :class:`StorageFailureError`;
    any other exception is rolled back and propagated untouched.
    """

    def __init__(self) -> None:
        super().__init__(session=db.session)

    def __enter__(self) -> SQLAlchemyUnitOfWork:
        # No-op: the session is lazily started on the first statement.
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            try:
                self.commit()
            except SQLAlchemyError as commit_exc:
                self.rollback()
                raise StorageFailureError(f"Commit failed: {commit_exc}") from commit_exc
            return

        self.rollback()
        if isinstance(exc, SQLAlchemyError):
            raise StorageFailureError(f"Statement failed: {exc}") from exc

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class SQLAlchemyReadOnlyUnitOfWork(SQLAlchemyRepositoryContainer, UnitOfWork):
    """
    Read-only Unit of Work for token lookups and counts.

    Owns a fresh transaction when the session is idle, otherwise attaches to
    the running one. While open, ORM flushes and DML statements raise
    ``RuntimeError``. On PostgreSQL an owned transaction is also marked
    ``READ ONLY``. The owned transaction is always rolled back on exit.
    """

    _WRITE_PREFIXES = ("insert", "update", "delete", "replace", "merge")

    def __init__(self) -> None:
        super().__init__(session=db.session)
        self._txn: SessionTransaction | None = None
        self._conn: Connection | None = None

    def __enter__(self) -> SQLAlchemyReadOnlyUnitOfWork:
        try:
            self._txn = self.session.begin()
        except InvalidRequestError:
            # Already inside a transaction; reads join it.
            self._txn = None

        try:
            self._conn = self.session.connection()
            event.listen(self.session, "before_flush", self._block_flush)
            event.listen(self._conn, "before_cursor_execute", self._block_dml)
            if self._txn is not None and self._conn.dialect.name == "postgresql":
                self.session.execute(text("SET TRANSACTION READ ONLY"))
        except SQLAlchemyError as exc:
            self._release()
            raise StorageFailureError(f"Could not open a read transaction: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._release()
        if isinstance(exc, SQLAlchemyError):
            raise StorageFailureError(f"Read failed: {exc}") from exc

    def commit(self) -> None:
        raise RuntimeError("Read-only UnitOfWork does not allow commit().")

    def rollback(self) -> None:
        self.session.rollback()

    def _release(self) -> None:
        if event.contains(self.session, "before_flush", self._block_flush):
            event.remove(self.session, "before_flush", self._block_flush)
        if self._conn is not None:
            if event.contains(self._conn, "before_cursor_execute", self._block_dml):
                event.remove(self._conn, "before_cursor_execute", self._block_dml)
            self._conn = None
        if self._txn is not None:
            with suppress(SQLAlchemyError):
                self._txn.rollback()
            self._txn = None

    def _block_flush(self, session, flush_context, instances) -> None:
        if session.new or session.dirty or session.deleted:
            raise RuntimeError("Read-only UnitOfWork: ORM flush blocked.")

    def _block_dml(self, conn, cursor, statement, parameters, context, executemany) -> None:
        verb = statement.lstrip().split(None, 1)[0].lower() if statement else ""
        if verb.startswith(self._WRITE_PREFIXES):
            raise RuntimeError(f"Read-only UnitOfWork: SQL statement blocked: {verb.upper()}")
