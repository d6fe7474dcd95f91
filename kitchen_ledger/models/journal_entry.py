"""
Journal entry model.

An entry groups the debit and credit lines of one business
event: a purchase, an order moving into prep, a payment.
The lines of an entry always balance. An entry can later be
amended, but only by swapping all of its lines at once.
"""

import datetime

from sqlalchemy import String, Date, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base
from kitchen_ledger.models.enums import JournalEntryType


class JournalEntry(Base):
    """
    The header of a double-entry posting.

    `reference` ties the entry to an outside record, for example
    "Order #42" or "Purchase FLOUR @ CASA_AG". The order bridge
    and the verification checks find entries by entry_type and
    reference, so the format of references matters.
    """

    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    entry_type: Mapped[JournalEntryType] = mapped_column(
        SAEnum(JournalEntryType, name="journal_entry_type_enum"),
        nullable=False,
        index=True,
    )
    reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    description: Mapped[str] = mapped_column(
        String(255), nullable=False, default=""
    )
    payee: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.datetime.utcnow
    )

    # Lines are owned by the entry: deleting the entry or
    # replacing its line collection deletes the old lines.
    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.id",
    )

    @property
    def total_debits(self) -> int:
        return sum(line.debit_cents for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit_cents for line in self.lines)

    def __repr__(self) -> str:
        return (
            f"<JournalEntry #{self.id} {self.entry_type.value} "
            f"{self.reference!r}>"
        )
