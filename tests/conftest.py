"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch
the real database. Tables are created before each test and
dropped after it, so every test starts from empty books.
"""

import os

# Must be set before kitchen_ledger builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from kitchen_ledger.models import Base
from kitchen_ledger.services.chart_of_accounts import (
    DEFAULT_ACCOUNTS,
    seed_chart_of_accounts,
)
from kitchen_ledger.services.ledger_service import LedgerService
from kitchen_ledger.services.unit_of_work import UnitOfWork


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def uow(db_session):
    return UnitOfWork(db_session)


@pytest.fixture
def chart(uow):
    """
    Seed the default chart of accounts and return it as a
    code -> Account mapping.
    """
    ledger = LedgerService(uow)
    seed_chart_of_accounts(ledger)
    return {
        code: ledger.get_account_by_code(code)
        for code, *_ in DEFAULT_ACCOUNTS
    }
