"""
Inventory movement model.

The movement log is append-only in normal operation. Each row
records one physical change of stock and the cost it carried:

    PURCHASE   to_location only
    USAGE      from_location only
    WRITE_OFF  from_location only
    RETURN     from_location only (undoes a purchase)
    TRANSFER   from_location and to_location

Movements are only removed by the explicit delete/update
operations and by the duplicate repair, all of which also
correct the stock record.
"""

from datetime import date, datetime

from sqlalchemy import (
    String, Integer, Date, DateTime, ForeignKey, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base
from kitchen_ledger.models.enums import MovementType


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ingredient_id: Mapped[int] = mapped_column(
        ForeignKey("ingredients.id"), nullable=False, index=True
    )
    from_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id"), nullable=True, index=True
    )
    to_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[MovementType] = mapped_column(
        SAEnum(MovementType, name="movement_type_enum"),
        nullable=False,
        index=True,
    )
    unit_cost_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_cost_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # Correlates the movement with whatever caused it,
    # e.g. ("order", 42) or ("manual", None)
    source_type: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    source_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    movement_date: Mapped[date] = mapped_column(
        Date, nullable=False, index=True
    )
    paid_from_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id"), nullable=True
    )
    # The INVENTORY_PURCHASE entry a purchase posted
    journal_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("journal_entries.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    ingredient: Mapped["Ingredient"] = relationship()
    from_location: Mapped["Location"] = relationship(
        foreign_keys=[from_location_id]
    )
    to_location: Mapped["Location"] = relationship(
        foreign_keys=[to_location_id]
    )
    paid_from_account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement #{self.id} {self.movement_type.value} "
            f"qty={self.quantity} unit={self.unit_cost_cents}>"
        )
