"""
Order payment model.

A payment may be split: the customer portion settles the
order (or sits in customer deposits), the partner portion is
owed to a partner through a payable account.
"""

from datetime import date, datetime

from sqlalchemy import (
    String, Integer, Boolean, Date, DateTime, ForeignKey,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id"), nullable=False, index=True
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deposit: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    customer_amount_cents: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    partner_amount_cents: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    paid_to_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    partner_payable_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    order: Mapped["Order"] = relationship(back_populates="payments")
    paid_to_account: Mapped["Account"] = relationship(
        foreign_keys=[paid_to_account_id]
    )
    partner_payable_account: Mapped["Account"] = relationship(
        foreign_keys=[partner_payable_account_id]
    )

    @property
    def customer_portion_cents(self) -> int:
        """The part of the payment that settles the customer's order."""
        if self.customer_amount_cents is not None:
            return self.customer_amount_cents
        return self.amount_cents

    @property
    def partner_portion_cents(self) -> int:
        return self.partner_amount_cents or 0

    @property
    def reference(self) -> str:
        return f"Order #{self.order_id} payment #{self.id}"
