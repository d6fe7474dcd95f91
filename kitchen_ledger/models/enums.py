"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored. An invalid account_type
or movement_type is caught at the database level, not just
in Python validation.
"""

import enum


class AccountType(str, enum.Enum):
    """The five fundamental accounting categories."""
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class NormalBalance(str, enum.Enum):
    """Side on which an account's balance grows."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class JournalEntryType(str, enum.Enum):
    """What kind of business event a journal entry records."""
    SALE = "SALE"
    EXPENSE = "EXPENSE"
    INVESTMENT = "INVESTMENT"
    WITHDRAWAL = "WITHDRAWAL"
    INVENTORY_PURCHASE = "INVENTORY_PURCHASE"
    INTERNAL_TRANSFER = "INTERNAL_TRANSFER"
    RECONCILIATION = "RECONCILIATION"
    YEAR_END_CLOSE = "YEAR_END_CLOSE"
    DEPRECIATION = "DEPRECIATION"
    OTHER = "OTHER"
    ORDER_IN_PREP = "ORDER_IN_PREP"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_CANCELED = "ORDER_CANCELED"
    ORDER_PAYMENT = "ORDER_PAYMENT"


class MovementType(str, enum.Enum):
    """Physical stock movements."""
    PURCHASE = "PURCHASE"
    USAGE = "USAGE"
    TRANSFER = "TRANSFER"
    WRITE_OFF = "WRITE_OFF"
    RETURN = "RETURN"


class InventoryCategory(str, enum.Enum):
    """
    Which inventory account an ingredient is carried in.

    The account codes for each category live in
    services.chart_of_accounts.CATEGORY_ACCOUNTS.
    """
    INGREDIENTS = "INGREDIENTS"
    PACKING = "PACKING"
    KITCHEN = "KITCHEN"
    OTHER = "OTHER"


class OrderStatus(str, enum.Enum):
    NEW_ORDER = "NEW_ORDER"
    IN_PREP = "IN_PREP"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class DiscountType(str, enum.Enum):
    FLAT = "FLAT"
    PERCENTAGE = "PERCENTAGE"
