"""
Order models.

Orders are owned by the orders domain. They live in this
schema because the order bridge needs to read them: status,
delivery date, product and price, discount, shipping, prep
location and any per-order ingredient overrides.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Boolean, Date, DateTime, Numeric, ForeignKey,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kitchen_ledger.models.base import Base
from kitchen_ledger.models.enums import OrderStatus, DiscountType


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default=""
    )
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, name="order_status_enum"),
        nullable=False,
        default=OrderStatus.NEW_ORDER,
    )
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_delivery_date: Mapped[date | None] = mapped_column(
        Date, nullable=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    prep_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id"), nullable=True
    )
    customer_paid_shipping: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    # Overrides the shipping product's price when set
    shipping_fee_cents: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    discount_type: Mapped[DiscountType | None] = mapped_column(
        SAEnum(DiscountType, name="discount_type_enum"), nullable=True
    )
    # Currency units for FLAT, percent for PERCENTAGE
    discount_value: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    is_gift: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    product: Mapped["Product"] = relationship()
    prep_location: Mapped["Location"] = relationship()
    ingredients: Mapped[list["OrderIngredient"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderIngredient.id",
    )
    payments: Mapped[list["OrderPayment"]] = relationship(
        back_populates="order",
        order_by="OrderPayment.id",
    )

    @property
    def reference(self) -> str:
        """The journal reference every entry of this order carries."""
        return f"Order #{self.id}"

    def __repr__(self) -> str:
        return f"<Order #{self.id} {self.status.value}>"


class OrderIngredient(Base):
    """Replaces the product recipe for a single order."""

    __tablename__ = "order_ingredients"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_code: Mapped[str] = mapped_column(String(50), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False
    )
    location_code: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )

    order: Mapped["Order"] = relationship(back_populates="ingredients")
