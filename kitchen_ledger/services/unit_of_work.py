"""
Unit of work: the transaction boundary of every mutating operation.

A purchase inserts a movement, updates a stock row and posts
a journal entry. Those writes must land together or not at all,
so every service method that writes runs inside a UnitOfWork:

    uow = UnitOfWork(session)
    result = uow.run(do_the_writes, ...)

run() begins, calls the operation, then commits when the
operation returned Ok and rolls back when it returned Err or
raised. Operations call other operations (the order bridge
consumes stock and posts entries; updating a purchase deletes
and recreates it). A nested begin joins the outer unit instead
of opening a new transaction, and a failure anywhere inside
makes the whole unit fail.

All services sharing a UnitOfWork share its session.
"""

import logging

from sqlalchemy.orm import Session

from kitchen_ledger.services.result import Err, ErrorKind

logger = logging.getLogger(__name__)


class UnitOfWork:

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0
        self._failure: Err | None = None

    @property
    def active(self) -> bool:
        """True while an operation is running inside this unit."""
        return self._depth > 0

    def begin(self) -> None:
        if self._depth == 0:
            self._failure = None
        self._depth += 1

    def commit(self) -> None:
        """
        Commit the unit, or just leave a nested level.

        Only the outermost commit reaches the database. If a nested
        level already failed, the outermost commit rolls back.
        """
        if self._depth == 0:
            raise RuntimeError("commit() called outside a unit of work")
        self._depth -= 1
        if self._depth > 0:
            return
        if self._failure is not None:
            self.session.rollback()
        else:
            self.session.commit()

    def rollback(self, failure: Err | None = None) -> None:
        """Roll back the unit. A nested rollback dooms the outer unit."""
        if self._depth == 0:
            raise RuntimeError("rollback() called outside a unit of work")
        self._depth -= 1
        if self._failure is None:
            self._failure = failure or Err(
                ErrorKind.ABORTED, "a nested operation raised"
            )
        if self._depth == 0:
            self.session.rollback()

    def run(self, operation, *args, **kwargs):
        """
        Run operation(*args, **kwargs) as one unit of work.

        The operation must return Ok or Err. Exceptions roll back
        the unit and propagate to the caller.
        """
        outermost = self._depth == 0
        self.begin()
        try:
            result = operation(*args, **kwargs)
        except Exception:
            self.rollback()
            raise

        if result.is_err:
            if outermost:
                logger.warning(
                    "%s rolled back: %s %s",
                    getattr(operation, "__name__", "operation"),
                    result.kind.value,
                    result.detail,
                )
            self.rollback(result)
            return result

        failure = self._failure
        self.commit()
        if outermost and failure is not None:
            # A nested operation failed but the caller carried on;
            # nothing was committed, so report the nested failure.
            return failure
        return result
