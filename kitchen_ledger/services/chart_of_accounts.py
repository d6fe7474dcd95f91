"""
Fixed chart of accounts.

The inventory engine, the order bridge and the verification
checks post to and read from accounts by code. These are the
codes they assume exist. seed_chart_of_accounts() creates any
that are missing.
"""

from dataclasses import dataclass

from kitchen_ledger.models.enums import (
    AccountType,
    InventoryCategory,
    NormalBalance,
)
from kitchen_ledger.schemas.ledger import AccountCreate

# --- Assets ---
CASH = "1000"
ACCOUNTS_RECEIVABLE = "1100"
INGREDIENTS_INVENTORY = "1200"
PACKING_INVENTORY = "1210"
WIP_INVENTORY = "1220"
KITCHEN_INVENTORY = "1300"

# --- Liabilities ---
PARTNER_PAYABLE = "2100"
CUSTOMER_DEPOSITS = "2200"

# --- Equity ---
OWNERS_EQUITY = "3000"
RETAINED_EARNINGS = "3050"
OWNERS_DRAWINGS = "3100"

# --- Revenue ---
SALES = "4000"
SALES_DISCOUNTS = "4010"
GIFT_CONTRIBUTIONS = "4100"

# --- Expenses ---
INGREDIENTS_COGS = "5000"
PACKAGING_COGS = "5010"
WASTE_SHRINKAGE = "6060"
SAMPLES_GIFTS = "6070"
OTHER_EXPENSES = "6099"


@dataclass(frozen=True)
class CategoryAccounts:
    """Where stock of one inventory category is carried and expensed."""
    inventory_code: str
    usage_code: str
    label: str


# Each category maps to the account holding its stock value and
# the account charged when stock is used outside an order.
CATEGORY_ACCOUNTS: dict[InventoryCategory, CategoryAccounts] = {
    InventoryCategory.INGREDIENTS: CategoryAccounts(
        INGREDIENTS_INVENTORY, INGREDIENTS_COGS, "Ingredients (1200)"
    ),
    InventoryCategory.PACKING: CategoryAccounts(
        PACKING_INVENTORY, PACKAGING_COGS, "Packing (1210)"
    ),
    InventoryCategory.KITCHEN: CategoryAccounts(
        KITCHEN_INVENTORY, OTHER_EXPENSES, "Kitchen Equipment (1300)"
    ),
    InventoryCategory.OTHER: CategoryAccounts(
        INGREDIENTS_INVENTORY, INGREDIENTS_COGS, "Ingredients (1200)"
    ),
}

# The distinct inventory accounts, in reporting order
INVENTORY_ACCOUNT_CODES = (
    INGREDIENTS_INVENTORY,
    PACKING_INVENTORY,
    KITCHEN_INVENTORY,
)


def accounts_for(category: InventoryCategory) -> CategoryAccounts:
    return CATEGORY_ACCOUNTS[InventoryCategory(category)]


def categories_for_inventory_account(code: str) -> list[InventoryCategory]:
    """All categories whose stock is carried in the given account."""
    return [
        category for category, accounts in CATEGORY_ACCOUNTS.items()
        if accounts.inventory_code == code
    ]


def label_for_inventory_account(code: str) -> str:
    for accounts in CATEGORY_ACCOUNTS.values():
        if accounts.inventory_code == code:
            return accounts.label
    return code


# code, name, type, is_cash, is_cogs
DEFAULT_ACCOUNTS = [
    (CASH, "Cash", AccountType.ASSET, True, False),
    (ACCOUNTS_RECEIVABLE, "Accounts Receivable", AccountType.ASSET, False, False),
    (INGREDIENTS_INVENTORY, "Ingredients Inventory", AccountType.ASSET, False, False),
    (PACKING_INVENTORY, "Packing Inventory", AccountType.ASSET, False, False),
    (WIP_INVENTORY, "Work In Progress Inventory", AccountType.ASSET, False, False),
    (KITCHEN_INVENTORY, "Kitchen Equipment", AccountType.ASSET, False, False),
    (PARTNER_PAYABLE, "Accounts Payable - Partners", AccountType.LIABILITY, False, False),
    (CUSTOMER_DEPOSITS, "Customer Deposits", AccountType.LIABILITY, False, False),
    (OWNERS_EQUITY, "Owner's Equity", AccountType.EQUITY, False, False),
    (RETAINED_EARNINGS, "Retained Earnings", AccountType.EQUITY, False, False),
    (OWNERS_DRAWINGS, "Owner's Drawings", AccountType.EQUITY, False, False),
    (SALES, "Sales", AccountType.REVENUE, False, False),
    (SALES_DISCOUNTS, "Sales Discounts", AccountType.REVENUE, False, False),
    (GIFT_CONTRIBUTIONS, "Gift Contributions", AccountType.REVENUE, False, False),
    (INGREDIENTS_COGS, "Ingredients COGS", AccountType.EXPENSE, False, True),
    (PACKAGING_COGS, "Packaging COGS", AccountType.EXPENSE, False, True),
    (WASTE_SHRINKAGE, "Waste & Shrinkage", AccountType.EXPENSE, False, False),
    (SAMPLES_GIFTS, "Samples & Gifts", AccountType.EXPENSE, False, False),
    (OTHER_EXPENSES, "Other Expenses", AccountType.EXPENSE, False, False),
]

# Contra accounts grow on the side opposite to their type
CONTRA_ACCOUNTS = {
    SALES_DISCOUNTS: NormalBalance.DEBIT,
    OWNERS_DRAWINGS: NormalBalance.DEBIT,
}


def seed_chart_of_accounts(ledger) -> list:
    """
    Create every default account that does not exist yet.

    Safe to run repeatedly. Returns the accounts it created.
    """
    created = []
    for code, name, account_type, is_cash, is_cogs in DEFAULT_ACCOUNTS:
        if ledger.get_account_by_code(code) is not None:
            continue
        result = ledger.create_account(AccountCreate(
            code=code,
            name=name,
            account_type=account_type,
            normal_balance=CONTRA_ACCOUNTS.get(code),
            is_cash=is_cash,
            is_cogs=is_cogs,
        ))
        created.append(result.unwrap())
    return created
