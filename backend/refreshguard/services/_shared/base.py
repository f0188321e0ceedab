# refreshguard/services/_shared/base.py
from __future__ import annotations

from collections.abc import Callable

from refreshguard.uow.base import UnitOfWork

UnitOfWorkFactory = Callable[[], UnitOfWork]


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Provide helpers to run read-only and read-write units of work.
    * Keep services thin, orchestration-only, no web/ORM leakage.

    Notes
    -----
    - Services must never touch the global session; always use a Unit of Work.
    - Unit of Work factories are injected so the same service runs over the
      SQL, Redis or in-memory store.
    """

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        ro_uow_factory: UnitOfWorkFactory | None = None,
    ) -> None:
        """
        Initialize the base service.

        :param uow_factory: Builds a fresh read-write Unit of Work per operation.
        :type uow_factory: Callable[[], UnitOfWork]
        :param ro_uow_factory: Builds a read-only Unit of Work. Falls back to
            ``uow_factory`` when the backend has no read-only variant.
        :type ro_uow_factory: Callable[[], UnitOfWork] | None
        """
        self._uow_factory = uow_factory
        self._ro_uow_factory = ro_uow_factory or uow_factory

    # -------------------------- UoW helpers ---------------------------------

    def rw_uow(self) -> UnitOfWork:
        """
        Create a read-write Unit of Work.

        :returns: Read-write UoW instance.
        :rtype: UnitOfWork
        """
        return self._uow_factory()

    def ro_uow(self) -> UnitOfWork:
        """
        Create a read-only Unit of Work.

        :returns: Read-only UoW instance.
        :rtype: UnitOfWork
        """
        return self._ro_uow_factory()
