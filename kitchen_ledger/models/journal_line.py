"""
Journal line model.

Each line moves money into or out of one account. A line is
either a debit or a credit: one side carries the amount, the
other side is zero.
"""

from sqlalchemy import String, BigInteger, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base


class JournalLine(Base):
    """
    One debit or credit inside a journal entry.

    Amounts are non-negative integer cents and never both zero.
    Like the balance rule, this is enforced by the LedgerService
    and the request schemas, not by the model.
    """

    __tablename__ = "journal_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    journal_entry_id: Mapped[int] = mapped_column(
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False, index=True
    )
    debit_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    credit_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    description: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")
    account: Mapped["Account"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<JournalLine account={self.account_id} "
            f"Dr {self.debit_cents} Cr {self.credit_cents}>"
        )
