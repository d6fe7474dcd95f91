"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from kitchen_ledger.models.base import Base
from kitchen_ledger.models.enums import (
    AccountType,
    NormalBalance,
    JournalEntryType,
    MovementType,
    InventoryCategory,
    OrderStatus,
    DiscountType,
)
from kitchen_ledger.models.account import Account
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.journal_line import JournalLine
from kitchen_ledger.models.ingredient import Ingredient
from kitchen_ledger.models.location import Location
from kitchen_ledger.models.inventory_item import InventoryItem
from kitchen_ledger.models.inventory_movement import InventoryMovement
from kitchen_ledger.models.product import Product
from kitchen_ledger.models.recipe import Recipe, RecipeLine
from kitchen_ledger.models.order import Order, OrderIngredient
from kitchen_ledger.models.order_payment import OrderPayment

__all__ = [
    "Base",
    "AccountType",
    "NormalBalance",
    "JournalEntryType",
    "MovementType",
    "InventoryCategory",
    "OrderStatus",
    "DiscountType",
    "Account",
    "JournalEntry",
    "JournalLine",
    "Ingredient",
    "Location",
    "InventoryItem",
    "InventoryMovement",
    "Product",
    "Recipe",
    "RecipeLine",
    "Order",
    "OrderIngredient",
    "OrderPayment",
]
