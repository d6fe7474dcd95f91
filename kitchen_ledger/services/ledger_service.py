"""
Ledger service: the double-entry journal.

This service enforces the fundamental rules:
1. Every entry must balance (debits = credits)
2. Lines reference accounts that exist and are active
3. Entries are amended only by swapping all of their lines
4. Balances are derived from lines, never stored

No other service writes journal entries directly. The
inventory engine, the order bridge and the repairs all post
through this service.
"""

import datetime
import logging

from sqlalchemy import select, func

from kitchen_ledger.models.account import Account
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.journal_line import JournalLine
from kitchen_ledger.models.enums import (
    AccountType,
    JournalEntryType,
    NormalBalance,
)
from kitchen_ledger.schemas.ledger import (
    AccountCreate,
    JournalEntryCreate,
    JournalLineCreate,
)
from kitchen_ledger.services import chart_of_accounts as coa
from kitchen_ledger.services.result import Err, ErrorKind, Ok, Result
from kitchen_ledger.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Internal transfers only move value between balance sheet accounts
TRANSFERABLE_TYPES = (AccountType.ASSET, AccountType.LIABILITY)


def debit(account_id: int, cents: int, description: str | None = None):
    return JournalLineCreate(
        account_id=account_id, debit_cents=cents, description=description
    )


def credit(account_id: int, cents: int, description: str | None = None):
    return JournalLineCreate(
        account_id=account_id, credit_cents=cents, description=description
    )


class LedgerService:
    """
    All ledger operations pass through this service.

    Mutations run inside the service's UnitOfWork. Called from
    another service's operation they join that operation's unit,
    so the entry is committed or rolled back together with the
    stock changes around it.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session

    # --- Accounts ---

    def create_account(self, request: AccountCreate) -> Result:
        return self.uow.run(self._create_account, request)

    def _create_account(self, request: AccountCreate) -> Result:
        if self.get_account_by_code(request.code) is not None:
            return Err(
                ErrorKind.ALREADY_EXISTS,
                f"Account with code '{request.code}' already exists",
            )

        account = Account(
            code=request.code,
            name=request.name,
            account_type=request.account_type,
            normal_balance=request.normal_balance,
            is_cash=request.is_cash,
            is_cogs=request.is_cogs,
        )
        self.db.add(account)
        self.db.flush()
        logger.info("Created account %s %s", account.code, account.name)
        return Ok(account)

    def get_account(self, account_id: int) -> Account | None:
        return self.db.get(Account, account_id)

    def get_account_by_code(self, code: str) -> Account | None:
        return self.db.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def require_account(self, code: str) -> Result:
        account = self.get_account_by_code(code)
        if account is None:
            return Err(ErrorKind.NOT_FOUND, f"Account {code} not found")
        return Ok(account)

    # --- Entries ---

    def _validate_lines(self, lines: list[JournalLineCreate]) -> Err | None:
        """
        Check that every account exists and is active, then that
        the lines balance. Returns the first failure found.
        """
        account_ids = {line.account_id for line in lines}
        accounts = self.db.execute(
            select(Account).where(Account.id.in_(account_ids))
        ).scalars().all()
        accounts_by_id = {a.id: a for a in accounts}

        missing = account_ids - set(accounts_by_id.keys())
        if missing:
            return Err(
                ErrorKind.NOT_FOUND, f"Accounts not found: {sorted(missing)}"
            )

        for account in accounts_by_id.values():
            if not account.is_active:
                return Err(
                    ErrorKind.VALIDATION, f"Account {account.code} is not active"
                )

        total_debits = sum(line.debit_cents for line in lines)
        total_credits = sum(line.credit_cents for line in lines)
        if total_debits != total_credits:
            return Err(
                ErrorKind.UNBALANCED_ENTRY,
                f"Entry does not balance: "
                f"debits={total_debits}, credits={total_credits}",
            )
        return None

    def post_entry(self, request: JournalEntryCreate) -> Result:
        """
        Post a balanced journal entry.

        Nothing is ever auto-balanced: an entry whose debits and
        credits differ is rejected with UNBALANCED_ENTRY and no
        rows are written.
        """
        return self.uow.run(self._post_entry, request)

    def _post_entry(self, request: JournalEntryCreate) -> Result:
        failure = self._validate_lines(request.lines)
        if failure is not None:
            return failure

        entry = JournalEntry(
            date=request.date,
            entry_type=request.entry_type,
            reference=request.reference,
            description=request.description,
            payee=request.payee,
        )
        entry.lines = [
            JournalLine(
                account_id=line.account_id,
                debit_cents=line.debit_cents,
                credit_cents=line.credit_cents,
                description=line.description,
            )
            for line in request.lines
        ]
        self.db.add(entry)
        self.db.flush()
        logger.info(
            "Posted %s entry #%d %r (%d cents)",
            entry.entry_type.value, entry.id, entry.reference,
            entry.total_debits,
        )
        return Ok(entry)

    def replace_entry_lines(
        self,
        entry_id: int,
        lines: list[JournalLineCreate],
        date: datetime.date | None = None,
        description: str | None = None,
    ) -> Result:
        """Swap every line of an existing entry, with the posting checks."""
        return self.uow.run(
            self._replace_entry_lines, entry_id, lines, date, description
        )

    def _replace_entry_lines(self, entry_id, lines, date, description):
        entry = self.get_entry(entry_id)
        if entry is None:
            return Err(ErrorKind.NOT_FOUND, f"Journal entry {entry_id} not found")

        failure = self._validate_lines(lines)
        if failure is not None:
            return failure

        # delete-orphan removes the old lines on flush
        entry.lines = [
            JournalLine(
                account_id=line.account_id,
                debit_cents=line.debit_cents,
                credit_cents=line.credit_cents,
                description=line.description,
            )
            for line in lines
        ]
        if date is not None:
            entry.date = date
        if description is not None:
            entry.description = description
        self.db.flush()
        logger.info("Replaced lines of entry #%d", entry.id)
        return Ok(entry)

    def delete_entry(self, entry_id: int) -> Result:
        return self.uow.run(self._delete_entry, entry_id)

    def _delete_entry(self, entry_id: int) -> Result:
        entry = self.get_entry(entry_id)
        if entry is None:
            return Err(ErrorKind.NOT_FOUND, f"Journal entry {entry_id} not found")
        reference = entry.reference
        self.db.delete(entry)
        self.db.flush()
        logger.info("Deleted entry #%d %r", entry_id, reference)
        return Ok(entry_id)

    def get_entry(self, entry_id: int) -> JournalEntry | None:
        return self.db.get(JournalEntry, entry_id)

    def find_entries(
        self,
        entry_type: JournalEntryType | None = None,
        reference: str | None = None,
    ) -> list[JournalEntry]:
        """Entries matching the given type and/or reference, oldest first."""
        query = select(JournalEntry).order_by(JournalEntry.id)
        if entry_type is not None:
            query = query.where(JournalEntry.entry_type == entry_type)
        if reference is not None:
            query = query.where(JournalEntry.reference == reference)
        return list(self.db.execute(query).scalars().all())

    def list_entry_lines(self, entry_id: int) -> list[JournalLine]:
        lines = self.db.execute(
            select(JournalLine)
            .where(JournalLine.journal_entry_id == entry_id)
            .order_by(JournalLine.id)
        ).scalars().all()
        return list(lines)

    # --- Balances ---

    def account_balance(
        self, account_id: int, as_of: datetime.date | None = None
    ) -> int:
        """
        Balance of an account from its lines.

        Only lines of entries dated on or before as_of count
        (all lines when as_of is None).

        Debit-normal accounts: balance = debits - credits
        Credit-normal accounts: balance = credits - debits
        """
        account = self.get_account(account_id)
        if account is None:
            raise ValueError(f"Account {account_id} not found")

        query = (
            select(
                func.coalesce(func.sum(JournalLine.debit_cents), 0),
                func.coalesce(func.sum(JournalLine.credit_cents), 0),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalLine.account_id == account_id)
        )
        if as_of is not None:
            query = query.where(JournalEntry.date <= as_of)
        total_debits, total_credits = self.db.execute(query).one()

        if account.normal_balance == NormalBalance.DEBIT:
            return int(total_debits) - int(total_credits)
        return int(total_credits) - int(total_debits)

    # --- Owner and treasury postings ---

    def record_internal_transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount_cents: int,
        transfer_date: datetime.date,
        description: str = "",
    ) -> Result:
        """Move value between two asset or liability accounts."""
        return self.uow.run(
            self._record_internal_transfer,
            from_account_id, to_account_id, amount_cents,
            transfer_date, description,
        )

    def _record_internal_transfer(
        self, from_account_id, to_account_id, amount_cents,
        transfer_date, description,
    ):
        if from_account_id == to_account_id:
            return Err(ErrorKind.VALIDATION, "Cannot transfer to the same account")
        if amount_cents <= 0:
            return Err(ErrorKind.VALIDATION, "Transfer amount must be positive")

        for account_id in (from_account_id, to_account_id):
            account = self.get_account(account_id)
            if account is None:
                return Err(ErrorKind.NOT_FOUND, f"Account {account_id} not found")
            if account.account_type not in TRANSFERABLE_TYPES:
                return Err(
                    ErrorKind.VALIDATION,
                    f"Account {account.code} is {account.account_type.value}; "
                    f"transfers need asset or liability accounts",
                )

        return self._post_entry(JournalEntryCreate(
            date=transfer_date,
            entry_type=JournalEntryType.INTERNAL_TRANSFER,
            description=description or "Internal transfer",
            lines=[
                debit(to_account_id, amount_cents),
                credit(from_account_id, amount_cents),
            ],
        ))

    def record_capital_contribution(
        self,
        direction: str,
        cash_account_id: int,
        amount_cents: int,
        contribution_date: datetime.date,
        description: str | None = None,
    ) -> Result:
        """
        Record owner money going into ("in") or out of ("out")
        the business against owner's equity.

        "out" is the older way of taking money out and posts the
        debit to equity itself. record_withdrawal() posts to
        owner's drawings instead; the withdrawal_accounts check
        flags the older form.
        """
        return self.uow.run(
            self._record_capital_contribution,
            direction, cash_account_id, amount_cents,
            contribution_date, description,
        )

    def _record_capital_contribution(
        self, direction, cash_account_id, amount_cents,
        contribution_date, description,
    ):
        if direction not in ("in", "out"):
            return Err(
                ErrorKind.UNKNOWN_DIRECTION,
                f"Unknown direction {direction!r}; expected 'in' or 'out'",
            )
        if amount_cents <= 0:
            return Err(ErrorKind.VALIDATION, "Amount must be positive")

        result = self.require_account(coa.OWNERS_EQUITY)
        if result.is_err:
            return result
        equity = result.value
        if self.get_account(cash_account_id) is None:
            return Err(ErrorKind.NOT_FOUND, f"Account {cash_account_id} not found")

        if direction == "in":
            entry_type = JournalEntryType.INVESTMENT
            lines = [
                debit(cash_account_id, amount_cents),
                credit(equity.id, amount_cents),
            ]
            default_description = "Capital contribution"
        else:
            entry_type = JournalEntryType.WITHDRAWAL
            lines = [
                debit(equity.id, amount_cents),
                credit(cash_account_id, amount_cents),
            ]
            default_description = "Capital withdrawal"

        return self._post_entry(JournalEntryCreate(
            date=contribution_date,
            entry_type=entry_type,
            description=description or default_description,
            lines=lines,
        ))

    def record_withdrawal(
        self,
        cash_account_id: int,
        amount_cents: int,
        withdrawal_date: datetime.date,
        description: str = "",
    ) -> Result:
        """Owner takes money out: Dr owner's drawings / Cr cash."""
        return self.uow.run(
            self._record_withdrawal,
            cash_account_id, amount_cents, withdrawal_date, description,
        )

    def _record_withdrawal(
        self, cash_account_id, amount_cents, withdrawal_date, description
    ):
        if amount_cents <= 0:
            return Err(ErrorKind.VALIDATION, "Amount must be positive")
        result = self.require_account(coa.OWNERS_DRAWINGS)
        if result.is_err:
            return result
        if self.get_account(cash_account_id) is None:
            return Err(ErrorKind.NOT_FOUND, f"Account {cash_account_id} not found")

        return self._post_entry(JournalEntryCreate(
            date=withdrawal_date,
            entry_type=JournalEntryType.WITHDRAWAL,
            description=description or "Owner withdrawal",
            lines=[
                debit(result.value.id, amount_cents),
                credit(cash_account_id, amount_cents),
            ],
        ))
