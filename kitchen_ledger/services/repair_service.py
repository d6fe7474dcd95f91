"""
Repair service: compensating actions for failed checks.

Each repair finds what its check would flag and fixes it one
item at a time. Every item runs in its own unit of work, so a
failing item is rolled back alone, reported as an outcome with
ok=False, and the rest of the batch still runs. A repair on
data its check considers clean returns an empty list.

Repairs prefer the least invasive fix: duplicate rows are
deleted before any compensating entry is posted.
"""

import logging
from datetime import date

from sqlalchemy import select

from kitchen_ledger.config import get_settings
from kitchen_ledger.models.enums import JournalEntryType, OrderStatus
from kitchen_ledger.models.inventory_item import InventoryItem
from kitchen_ledger.models.inventory_movement import InventoryMovement
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.journal_line import JournalLine
from kitchen_ledger.models.order import Order
from kitchen_ledger.schemas.ledger import JournalEntryCreate, JournalLineCreate
from kitchen_ledger.schemas.verification import RepairOutcome
from kitchen_ledger.services import chart_of_accounts as coa
from kitchen_ledger.services.inventory_service import InventoryService
from kitchen_ledger.services.ledger_service import LedgerService, credit, debit
from kitchen_ledger.services.result import Err, ErrorKind, Ok, Result
from kitchen_ledger.services.unit_of_work import UnitOfWork
from kitchen_ledger.services.verification_service import (
    MOVEMENT_IDENTITY,
    VerificationService,
    format_cents,
)

logger = logging.getLogger(__name__)

REPAIRABLE = (
    "inventory_quantities",
    "inventory_cost_accounting",
    "movement_costs",
    "duplicate_movements",
    "duplicate_cogs_entries",
    "withdrawal_accounts",
    "gift_order_accounting",
    "ar_balance",
    "customer_deposits",
)

COST_ADJUSTMENT_REFERENCE = "Inventory Cost Adjustment"
STALE_WITHDRAWAL_REFERENCE = "Withdrawal Account Correction"


class RepairService:

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session
        self.ledger = LedgerService(uow)
        self.inventory = InventoryService(uow)
        self.verification = VerificationService(uow)
        self.settings = get_settings()

    def is_repairable(self, name: str) -> bool:
        return name in REPAIRABLE

    def run_repair(self, name: str) -> Result:
        """
        Run the repair for a check by name.

        Returns Ok(list of RepairOutcome), or Err(UNKNOWN_REPAIR)
        for a check without a repair. Must be called outside any
        unit of work: each item commits on its own.
        """
        if not self.is_repairable(name):
            return Err(ErrorKind.UNKNOWN_REPAIR, f"No repair for check {name!r}")
        if self.uow.active:
            raise RuntimeError("run_repair() cannot run inside a unit of work")

        outcomes = getattr(self, f"repair_{name}")()
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "Repair %s: %d action(s), %d failed", name, len(outcomes), failed
        )
        return Ok(outcomes)

    def _attempt(self, outcomes: list, action: str, operation, *args) -> None:
        """
        Run one corrective item as its own unit of work.

        The operation returns Ok(RepairOutcome), or Ok(None) when
        there turned out to be nothing to do. Failures are recorded
        under `action`.
        """
        try:
            result = self.uow.run(operation, *args)
        except Exception as exc:
            logger.exception("Repair step failed: %s", action)
            outcomes.append(RepairOutcome(action=action, details=str(exc), ok=False))
            return
        if result.is_err:
            outcomes.append(RepairOutcome(
                action=action,
                details=f"{result.kind.value}: {result.detail}",
                ok=False,
            ))
        elif result.value is not None:
            outcomes.append(result.value)

    # --- Inventory ---

    def repair_inventory_quantities(self) -> list[RepairOutcome]:
        outcomes = []
        for item, calculated in self.verification.quantity_mismatches():
            label = f"{item.ingredient.code} @ {item.location.code}"
            self._attempt(
                outcomes, f"Set quantity of {label}",
                self._set_stock_quantity, item.id, calculated,
            )
        return outcomes

    def _set_stock_quantity(self, item_id: int, quantity: int) -> Result:
        item = self.db.get(InventoryItem, item_id)
        if item is None:
            return Err(ErrorKind.NOT_FOUND, f"Stock record {item_id} not found")
        previous = item.quantity_on_hand
        item.set_quantity(quantity)
        self.db.flush()
        return Ok(RepairOutcome(
            action=(
                f"Set {item.ingredient.code} @ {item.location.code} "
                f"quantity to {quantity}"
            ),
            details=f"Was {previous}",
        ))

    def repair_inventory_cost_accounting(self) -> list[RepairOutcome]:
        outcomes = []
        cleanup = self.repair_duplicate_cogs_entries()
        if cleanup:
            outcomes.append(RepairOutcome(
                action="Duplicate cleanup",
                details="; ".join(outcome.action for outcome in cleanup),
                ok=all(outcome.ok for outcome in cleanup),
            ))

        for code, value, balance in self.verification.cost_differences():
            self._attempt(
                outcomes,
                f"Adjust {coa.label_for_inventory_account(code)}",
                self._post_cost_adjustment, code, value - balance,
            )
        return outcomes

    def _post_cost_adjustment(self, inventory_code: str, difference: int) -> Result:
        """difference = items value - account balance."""
        result = self.ledger.require_account(inventory_code)
        if result.is_err:
            return result
        inventory_account = result.value
        result = self.ledger.require_account(coa.WASTE_SHRINKAGE)
        if result.is_err:
            return result
        shrinkage = result.value

        label = coa.label_for_inventory_account(inventory_code)
        amount = abs(difference)
        if difference > 0:
            lines = [
                debit(inventory_account.id, amount, f"Raise {label} to item value"),
                credit(shrinkage.id, amount, "Inventory cost adjustment"),
            ]
        else:
            lines = [
                debit(shrinkage.id, amount, "Inventory cost adjustment"),
                credit(inventory_account.id, amount, f"Lower {label} to item value"),
            ]
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=date.today(),
            entry_type=JournalEntryType.OTHER,
            reference=COST_ADJUSTMENT_REFERENCE,
            description=f"Align {label} with the value of its stock",
            lines=lines,
        ))
        if posted.is_err:
            return posted
        return Ok(RepairOutcome(
            action=f"Posted inventory cost adjustment #{posted.value.id}",
            details=f"{label}: {format_cents(difference)}",
        ))

    def repair_movement_costs(self) -> list[RepairOutcome]:
        outcomes = []
        if self.inventory.zero_cost_movements():
            self._attempt(outcomes, "Backfill movement costs", self._backfill_costs)
        return outcomes

    def _backfill_costs(self) -> Result:
        result = self.inventory.backfill_movement_costs()
        if result.is_err or result.value == 0:
            return result if result.is_err else Ok(None)
        return Ok(RepairOutcome(
            action=f"Backfilled costs for {result.value} movement(s)",
            details="Unit cost from purchase history or the ingredient default",
        ))

    def repair_duplicate_movements(self) -> list[RepairOutcome]:
        outcomes = []
        for group in self.verification.duplicate_movement_groups():
            identity = group[:len(MOVEMENT_IDENTITY)]
            movement_type = identity[3].value
            self._attempt(
                outcomes, f"Delete duplicate {movement_type} movements",
                self._delete_duplicate_movements, identity,
            )
        if outcomes:
            # Deleted movements leave the cached quantities behind
            outcomes.extend(self.repair_inventory_quantities())
        return outcomes

    def _delete_duplicate_movements(self, identity: tuple) -> Result:
        conditions = [
            column.is_(None) if value is None else column == value
            for column, value in zip(MOVEMENT_IDENTITY, identity)
        ]
        movements = self.db.execute(
            select(InventoryMovement)
            .where(*conditions)
            .order_by(InventoryMovement.id)
        ).scalars().all()
        extras = movements[1:]
        if not extras:
            return Ok(None)

        kept = movements[0]
        description = (
            f"{kept.ingredient.name} qty={kept.quantity} on {kept.movement_date}"
        )
        for movement in extras:
            self.db.delete(movement)
        self.db.flush()
        return Ok(RepairOutcome(
            action=(
                f"Deleted {len(extras)} duplicate "
                f"{kept.movement_type.value} movement(s)"
            ),
            details=f"{description}, kept movement #{kept.id}",
        ))

    # --- Journal ---

    def repair_duplicate_cogs_entries(self) -> list[RepairOutcome]:
        outcomes = []
        for entry_type, reference, _ in self.verification.duplicate_entry_groups():
            entry_ids = [
                entry.id for entry in self.ledger.find_entries(entry_type, reference)
            ]
            for entry_id in entry_ids[1:]:
                self._attempt(
                    outcomes, f"Delete duplicate entry #{entry_id}",
                    self._delete_duplicate_entry, entry_id,
                )
        return outcomes

    def _delete_duplicate_entry(self, entry_id: int) -> Result:
        entry = self.ledger.get_entry(entry_id)
        if entry is None:
            return Ok(None)
        entry_type = entry.entry_type.value.lower()
        reference = entry.reference
        deleted = self.ledger.delete_entry(entry_id)
        if deleted.is_err:
            return deleted
        return Ok(RepairOutcome(
            action=f"Deleted duplicate {entry_type} entry #{entry_id} for {reference}",
            details="Kept the first entry",
        ))

    def repair_withdrawal_accounts(self) -> list[RepairOutcome]:
        outcomes = []
        line_ids = [
            line.id for line in self.verification.withdrawal_lines_on_equity()
        ]
        if line_ids:
            self._attempt(
                outcomes, "Move withdrawal lines to Owner's Drawings",
                self._move_withdrawal_lines, line_ids,
            )
        # Left over from posting corrections instead of fixing lines
        for entry in self.ledger.find_entries(reference=STALE_WITHDRAWAL_REFERENCE):
            self._attempt(
                outcomes, f"Delete stale correction entry #{entry.id}",
                self._delete_stale_correction, entry.id,
            )
        return outcomes

    def _move_withdrawal_lines(self, line_ids: list[int]) -> Result:
        result = self.ledger.require_account(coa.OWNERS_DRAWINGS)
        if result.is_err:
            return result
        drawings = result.value

        total = 0
        for line_id in line_ids:
            line = self.db.get(JournalLine, line_id)
            line.account_id = drawings.id
            total += line.debit_cents
        self.db.flush()
        return Ok(RepairOutcome(
            action=f"Updated {len(line_ids)} journal line(s) in-place",
            details=(
                f"Changed account from Owner's Equity ({coa.OWNERS_EQUITY}) to "
                f"Owner's Drawings ({coa.OWNERS_DRAWINGS}), "
                f"total {format_cents(total)}"
            ),
        ))

    def _delete_stale_correction(self, entry_id: int) -> Result:
        deleted = self.ledger.delete_entry(entry_id)
        if deleted.is_err:
            return deleted
        return Ok(RepairOutcome(
            action=f"Deleted stale correction entry #{entry_id}",
            details="No longer needed",
        ))

    # --- Orders ---

    def repair_gift_order_accounting(self) -> list[RepairOutcome]:
        outcomes = []
        for order in self.verification.sale_style_gift_orders():
            self._attempt(
                outcomes, f"Convert order #{order.id} to gift accounting",
                self._convert_to_gift, order.id,
            )
        return outcomes

    def _convert_to_gift(self, order_id: int) -> Result:
        """
        Undo the sale posting of a gift order and expense its cost.

        One OTHER entry under the order's reference reverses every
        line of its delivered entries, moves the WIP they relieved
        to samples & gifts, and turns what the customer paid into
        a gift contribution.
        """
        order = self.db.get(Order, order_id)
        if order is None:
            return Err(ErrorKind.NOT_FOUND, f"Order #{order_id} not found")
        codes = (
            coa.SAMPLES_GIFTS,
            coa.WIP_INVENTORY,
            coa.ACCOUNTS_RECEIVABLE,
            coa.CUSTOMER_DEPOSITS,
            coa.GIFT_CONTRIBUTIONS,
        )
        accounts = []
        for code in codes:
            result = self.ledger.require_account(code)
            if result.is_err:
                return result
            accounts.append(result.value)
        samples, wip, ar, deposits_account, gifts = accounts

        delivered = self.ledger.find_entries(
            JournalEntryType.ORDER_DELIVERED, order.reference
        )
        lines = []
        wip_relieved = 0
        for entry in delivered:
            for line in entry.lines:
                lines.append(JournalLineCreate(
                    account_id=line.account_id,
                    debit_cents=line.credit_cents,
                    credit_cents=line.debit_cents,
                    description=f"Reverse: {line.description or ''}".strip(),
                ))
                if line.account_id == wip.id:
                    wip_relieved += line.credit_cents - line.debit_cents
        if wip_relieved > 0:
            lines.append(debit(
                samples.id, wip_relieved,
                f"Samples & Gifts expense for order #{order.id}",
            ))
            lines.append(credit(
                wip.id, wip_relieved, f"Relieve WIP for gift order #{order.id}"
            ))

        payment_entries = self.db.execute(
            select(JournalEntry)
            .where(
                JournalEntry.entry_type == JournalEntryType.ORDER_PAYMENT,
                JournalEntry.reference.like(f"{order.reference} payment #%"),
            )
            .order_by(JournalEntry.id)
        ).scalars().all()
        reclassified = 0
        for entry in payment_entries:
            for line in entry.lines:
                if line.credit_cents <= 0:
                    continue
                if line.account_id not in (ar.id, deposits_account.id):
                    continue
                lines.append(debit(
                    line.account_id, line.credit_cents,
                    f"Reclassify payment of gift order #{order.id}",
                ))
                lines.append(credit(
                    gifts.id, line.credit_cents,
                    f"Gift contribution for order #{order.id}",
                ))
                reclassified += line.credit_cents

        entry_date = delivered[0].date if delivered else date.today()
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=entry_date,
            entry_type=JournalEntryType.OTHER,
            reference=order.reference,
            description=(
                f"Correct order #{order.id}: convert sale accounting to gift/sample"
            ),
            lines=lines,
        ))
        if posted.is_err:
            return posted
        return Ok(RepairOutcome(
            action=f"Converted order #{order.id} to gift accounting",
            details=(
                f"Expensed {format_cents(wip_relieved)} to Samples & Gifts, "
                f"reclassified {format_cents(reclassified)} of payments"
            ),
        ))

    def repair_ar_balance(self) -> list[RepairOutcome]:
        outcomes = []
        ar = self.ledger.get_account_by_code(coa.ACCOUNTS_RECEIVABLE)
        if ar is None:
            return outcomes
        gl_ar = self.verification.gl_balance_by_order(ar.id)
        for order, expected in self.verification.expected_ar_by_order():
            difference = expected - gl_ar.get(order.id, 0)
            if difference != 0:
                self._attempt(
                    outcomes, f"Correct AR of order #{order.id}",
                    self._post_ar_correction, order.id, difference,
                )
        return outcomes

    def _post_ar_correction(self, order_id: int, difference: int) -> Result:
        """difference = expected AR - GL AR, settled against sales."""
        result = self.ledger.require_account(coa.ACCOUNTS_RECEIVABLE)
        if result.is_err:
            return result
        ar = result.value
        result = self.ledger.require_account(coa.SALES)
        if result.is_err:
            return result
        sales = result.value

        amount = abs(difference)
        if difference > 0:
            lines = [
                debit(ar.id, amount, f"Raise AR for order #{order_id}"),
                credit(sales.id, amount, f"AR correction for order #{order_id}"),
            ]
        else:
            lines = [
                debit(sales.id, amount, f"AR correction for order #{order_id}"),
                credit(ar.id, amount, f"Lower AR for order #{order_id}"),
            ]
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=date.today(),
            entry_type=JournalEntryType.OTHER,
            reference=f"Order #{order_id} AR correction",
            description=f"Align receivable of order #{order_id} with payments",
            lines=lines,
        ))
        if posted.is_err:
            return posted
        return Ok(RepairOutcome(
            action=f"Posted AR correction for order #{order_id}",
            details=f"Adjusted AR by {format_cents(difference)}",
        ))

    def repair_customer_deposits(self) -> list[RepairOutcome]:
        outcomes = []
        deposits_account = self.ledger.get_account_by_code(coa.CUSTOMER_DEPOSITS)
        if deposits_account is None:
            return outcomes
        balances = self.verification.gl_balance_by_order(
            deposits_account.id, credit_normal=True
        )
        for order_id in sorted(balances):
            balance = balances[order_id]
            order = self.db.get(Order, order_id)
            if order is None or order.status != OrderStatus.DELIVERED:
                continue
            if balance > 0:
                self._attempt(
                    outcomes, f"Transfer deposits of order #{order_id}",
                    self._transfer_deposits, order_id, balance,
                )
        return outcomes

    def _transfer_deposits(self, order_id: int, amount: int) -> Result:
        result = self.ledger.require_account(coa.CUSTOMER_DEPOSITS)
        if result.is_err:
            return result
        deposits_account = result.value
        result = self.ledger.require_account(coa.ACCOUNTS_RECEIVABLE)
        if result.is_err:
            return result
        ar = result.value

        posted = self.ledger.post_entry(JournalEntryCreate(
            date=date.today(),
            entry_type=JournalEntryType.OTHER,
            reference=f"Order #{order_id} deposit transfer",
            description=f"Apply deposits of delivered order #{order_id}",
            lines=[
                debit(
                    deposits_account.id, amount,
                    f"Transfer Customer Deposits to AR for order #{order_id}",
                ),
                credit(ar.id, amount, f"Reduce AR by deposits for order #{order_id}"),
            ],
        ))
        if posted.is_err:
            return posted
        return Ok(RepairOutcome(
            action=f"Transferred deposits of order #{order_id} to AR",
            details=format_cents(amount),
        ))
