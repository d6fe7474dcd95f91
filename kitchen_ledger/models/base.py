"""
Database engine, session management, and base model.

This module is the foundation for all database operations.
Every model inherits from Base. Every unit of work gets a
session from SessionLocal().
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from kitchen_ledger.config import get_settings

settings = get_settings()

# --- Engine ---
# pool_pre_ping=True tests connections before using them,
# which handles cases where the database restarted or a
# connection went stale.
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
)

# --- Session Factory ---
# autocommit=False means we explicitly control when changes
# are saved. A purchase writes a movement, a stock row and a
# journal entry, and those must land together or not at all.
# autoflush=False means SQLAlchemy won't send SQL to the
# database until we explicitly flush or commit.
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


# --- Base Model Class ---
# Every database model (Account, JournalEntry, InventoryItem, etc.)
# inherits from this class. SQLAlchemy uses it to track
# all models and generate the correct SQL for table creation.
class Base(DeclarativeBase):
    pass
