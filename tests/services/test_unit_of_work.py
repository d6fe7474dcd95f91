"""
Tests for the UnitOfWork and the Result type.
"""

import pytest

from kitchen_ledger.models.account import Account
from kitchen_ledger.models.enums import AccountType, NormalBalance
from kitchen_ledger.services.result import Err, ErrorKind, Ok, OperationError
from kitchen_ledger.services.unit_of_work import UnitOfWork


def add_account(session, code):
    session.add(Account(
        code=code,
        name=f"Account {code}",
        account_type=AccountType.ASSET,
        normal_balance=NormalBalance.DEBIT,
    ))
    session.flush()
    return Ok(code)


def count_accounts(session):
    return session.query(Account).count()


class TestResult:

    def test_ok_unwraps_to_value(self):
        assert Ok(5).unwrap() == 5
        assert Ok(5).is_ok and not Ok(5).is_err

    def test_err_unwrap_raises_operation_error(self):
        with pytest.raises(OperationError, match="NOT_FOUND: missing"):
            Err(ErrorKind.NOT_FOUND, "missing").unwrap()

    def test_operation_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            Err(ErrorKind.VALIDATION, "bad").unwrap()


class TestRun:

    def test_ok_commits(self, db_session):
        uow = UnitOfWork(db_session)

        result = uow.run(add_account, db_session, "1000")

        assert result == Ok("1000")
        db_session.rollback()
        assert count_accounts(db_session) == 1

    def test_err_rolls_back(self, db_session):
        uow = UnitOfWork(db_session)

        def failing():
            add_account(db_session, "1000")
            return Err(ErrorKind.VALIDATION, "stop")

        result = uow.run(failing)

        assert result.kind == ErrorKind.VALIDATION
        assert count_accounts(db_session) == 0
        assert not uow.active

    def test_exception_rolls_back_and_propagates(self, db_session):
        uow = UnitOfWork(db_session)

        def exploding():
            add_account(db_session, "1000")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            uow.run(exploding)

        assert count_accounts(db_session) == 0
        assert not uow.active


class TestNesting:

    def test_nested_units_commit_together(self, db_session):
        uow = UnitOfWork(db_session)

        def outer():
            assert uow.active
            uow.run(add_account, db_session, "1000")
            return uow.run(add_account, db_session, "1100")

        result = uow.run(outer)

        assert result == Ok("1100")
        db_session.rollback()
        assert count_accounts(db_session) == 2

    def test_nested_failure_rolls_back_outer_writes(self, db_session):
        uow = UnitOfWork(db_session)

        def outer():
            add_account(db_session, "1000")
            return uow.run(lambda: Err(ErrorKind.NOT_FOUND, "inner"))

        result = uow.run(outer)

        assert result.kind == ErrorKind.NOT_FOUND
        assert count_accounts(db_session) == 0

    def test_ignored_nested_failure_still_fails_the_unit(self, db_session):
        uow = UnitOfWork(db_session)

        def outer():
            add_account(db_session, "1000")
            uow.run(lambda: Err(ErrorKind.INSUFFICIENT_STOCK, "inner"))
            return Ok("carried on")

        result = uow.run(outer)

        assert result.is_err
        assert result.kind == ErrorKind.INSUFFICIENT_STOCK
        assert count_accounts(db_session) == 0

    def test_unit_is_reusable_after_failure(self, db_session):
        uow = UnitOfWork(db_session)
        uow.run(lambda: Err(ErrorKind.VALIDATION, "first"))

        result = uow.run(add_account, db_session, "1000")

        assert result.is_ok
        assert count_accounts(db_session) == 1

    def test_commit_outside_unit_raises(self, db_session):
        with pytest.raises(RuntimeError):
            UnitOfWork(db_session).commit()
