"""
Stock record model.

One row per (ingredient, location) pair, created the first
time a movement touches the pair and never deleted. It caches
the quantity on hand and the moving average cost; the movement
log is the source of truth for the quantity.
"""

from datetime import datetime

from sqlalchemy import (
    Integer, Boolean, DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base


class InventoryItem(Base):
    """
    Quantity and average cost of one ingredient at one location.

    quantity_on_hand may go negative when usage is recorded
    before the matching purchase. negative_stock mirrors the
    sign so negative rows can be listed without scanning.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint(
            "ingredient_id", "location_id",
            name="uq_inventory_items_ingredient_location",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ingredient_id: Mapped[int] = mapped_column(
        ForeignKey("ingredients.id"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id"), nullable=False, index=True
    )
    quantity_on_hand: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    avg_cost_per_unit_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    negative_stock: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    ingredient: Mapped["Ingredient"] = relationship(
        back_populates="stock_items"
    )
    location: Mapped["Location"] = relationship()

    @property
    def value_cents(self) -> int:
        return self.quantity_on_hand * self.avg_cost_per_unit_cents

    def set_quantity(self, quantity: int) -> None:
        """Set quantity_on_hand and keep negative_stock in step."""
        self.quantity_on_hand = quantity
        self.negative_stock = quantity < 0

    def __repr__(self) -> str:
        return (
            f"<InventoryItem ingredient={self.ingredient_id} "
            f"location={self.location_id} qty={self.quantity_on_hand} "
            f"avg={self.avg_cost_per_unit_cents}>"
        )
