"""
Pydantic schemas for ledger operations.

Requests are validated here before the LedgerService touches
the database. Balance and account existence need the database,
so those checks live in the service instead.
"""

import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from kitchen_ledger.models.enums import (
    AccountType,
    JournalEntryType,
    NormalBalance,
)

# Debit-normal account types; everything else is credit-normal
DEBIT_NORMAL_TYPES = (AccountType.ASSET, AccountType.EXPENSE)


# --- Request Schemas ---

class AccountCreate(BaseModel):
    """
    Request to create a ledger account.

    normal_balance defaults from the account type. Pass it
    explicitly for contra accounts such as sales discounts.
    """
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
    account_type: AccountType
    normal_balance: NormalBalance | None = None
    is_cash: bool = False
    is_cogs: bool = False

    @model_validator(mode="after")
    def default_normal_balance(self) -> "AccountCreate":
        if self.normal_balance is None:
            if self.account_type in DEBIT_NORMAL_TYPES:
                self.normal_balance = NormalBalance.DEBIT
            else:
                self.normal_balance = NormalBalance.CREDIT
        return self


class JournalLineCreate(BaseModel):
    """A single line: a debit or a credit against one account."""
    account_id: int
    debit_cents: int = Field(default=0, ge=0)
    credit_cents: int = Field(default=0, ge=0)
    description: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def one_side_must_carry_an_amount(self) -> "JournalLineCreate":
        if self.debit_cents == 0 and self.credit_cents == 0:
            raise ValueError("a line must carry a debit or a credit")
        return self


class JournalEntryCreate(BaseModel):
    """
    A complete journal entry.

    An entry with no lines is accepted: it balances trivially
    and serves as a marker (for example a gift order delivered
    at zero cost).
    """
    date: datetime.date
    entry_type: JournalEntryType
    reference: str | None = Field(default=None, max_length=255)
    description: str = Field(default="", max_length=255)
    payee: str | None = Field(default=None, max_length=100)
    lines: list[JournalLineCreate] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return v.strip()

