"""
Recipe models.

A product can have several recipes over time. The one that
applies to an order is the latest recipe whose effective_date
is on or before the order's delivery date.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import (
    String, Date, Numeric, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base


class Recipe(Base):
    __tablename__ = "recipes"
    __table_args__ = (
        UniqueConstraint(
            "product_id", "effective_date",
            name="uq_recipes_product_effective_date",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id"), nullable=False, index=True
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product: Mapped["Product"] = relationship(back_populates="recipes")
    lines: Mapped[list["RecipeLine"]] = relationship(
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeLine.id",
    )


class RecipeLine(Base):
    """One ingredient of a recipe, by ingredient code."""

    __tablename__ = "recipe_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    recipe_id: Mapped[int] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_code: Mapped[str] = mapped_column(String(50), nullable=False)
    # Fractional amounts are rounded when stock is consumed
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False
    )

    recipe: Mapped["Recipe"] = relationship(back_populates="lines")
