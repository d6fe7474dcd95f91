"""
Pydantic schemas for inventory operations.

Quantities are integer base units of the ingredient (grams,
pieces). Costs are integer cents.
"""

from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator

from kitchen_ledger.models.enums import InventoryCategory


class IngredientCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    unit: str = Field(default="g", min_length=1, max_length=20)
    inventory_type: InventoryCategory = InventoryCategory.INGREDIENTS
    cost_per_unit_cents: int = Field(default=0, ge=0)

    @field_validator("code")
    @classmethod
    def code_is_uppercase(cls, v: str) -> str:
        return v.strip().upper()


class LocationCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)

    @field_validator("code")
    @classmethod
    def code_is_uppercase(cls, v: str) -> str:
        return v.strip().upper()


class PurchaseRequest(BaseModel):
    """
    A purchase as the buyer sees it: a quantity and what it cost
    in total. The unit cost is derived from the two.

    paid_from_account_id defaults to the cash account.
    """
    ingredient_code: str = Field(min_length=1)
    location_code: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    total_cost_cents: int = Field(ge=0)
    purchase_date: date
    paid_from_account_id: int | None = None
    source_type: str = "manual"
    source_id: int | None = None


class TransferRequest(BaseModel):
    """Move stock of one ingredient between two locations."""
    ingredient_code: str = Field(min_length=1)
    from_location_code: str = Field(min_length=1)
    to_location_code: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    transfer_date: date
    source_type: str = "manual"
    source_id: int | None = None

    @model_validator(mode="after")
    def locations_must_differ(self) -> "TransferRequest":
        if self.from_location_code == self.to_location_code:
            raise ValueError("origin and destination must differ")
        return self


class IngredientRequirement(BaseModel):
    """Stock that NEW_ORDER orders will need at one prep location."""
    location_id: int
    location_code: str
    ingredient_id: int
    ingredient_code: str
    unit: str
    total_required: int
    on_hand: int
    shortage: int
    needed_by: date | None = None
