"""
Ingredient model.

Anything the kitchen keeps in stock is an ingredient: flour,
ribbons, boxes, baking moulds. The inventory_type decides
which ledger accounts carry its cost.
"""

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base
from kitchen_ledger.models.enums import InventoryCategory


class Ingredient(Base):
    __tablename__ = "ingredients"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Base unit every quantity is counted in (grams, pieces, ...)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="g")
    inventory_type: Mapped[InventoryCategory] = mapped_column(
        SAEnum(InventoryCategory, name="inventory_category_enum"),
        nullable=False,
        default=InventoryCategory.INGREDIENTS,
    )
    # Fallback cost for stock that has no purchase history yet
    cost_per_unit_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    stock_items: Mapped[list["InventoryItem"]] = relationship(
        back_populates="ingredient"
    )

    def __repr__(self) -> str:
        return f"<Ingredient {self.code} ({self.inventory_type.value})>"
