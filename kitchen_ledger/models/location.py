"""Storage location model (a kitchen, a warehouse, a pantry)."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from kitchen_ledger.models.base import Base


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Location {self.code}>"
