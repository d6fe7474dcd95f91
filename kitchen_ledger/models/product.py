"""Product model: what customers order and what recipes describe."""

from sqlalchemy import String, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    sku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    recipes: Mapped[list["Recipe"]] = relationship(
        back_populates="product",
        order_by="Recipe.effective_date",
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku} {self.price_cents}>"
