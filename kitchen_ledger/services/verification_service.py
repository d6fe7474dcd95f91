"""
Verification service: consistency checks between the ledger
and the inventory.

Each check reads persisted state and returns either
Ok(stats) or Err(CHECK_FAILED) whose `issues` hold one
human-readable line per problem found. Checks never write,
so running them twice without changes in between gives
equal results.

    inventory_quantities       stock records agree with the movement log
    inventory_cost_accounting  inventory accounts agree with stock value
    movement_costs             no usage or write-off left at zero cost
    duplicate_movements        no movement recorded twice
    wip_balance                WIP account agrees with order postings
    order_wip_consistency      delivered orders relieved all of their WIP
    journal_entries_balanced   every entry balances
    duplicate_cogs_entries     one in-prep / delivered entry per order
    withdrawal_accounts        withdrawals debit drawings, not equity
    gift_order_accounting      delivered gifts are expensed, not sold
    ar_balance                 per-order receivables match what is owed
    customer_deposits          per-order deposits match their state

The mechanically fixable problems have a repair in
RepairService.
"""

import logging
import re
from collections import defaultdict

from sqlalchemy import select, func

from kitchen_ledger.config import get_settings
from kitchen_ledger.models.enums import (
    JournalEntryType,
    MovementType,
    OrderStatus,
)
from kitchen_ledger.models.ingredient import Ingredient
from kitchen_ledger.models.inventory_item import InventoryItem
from kitchen_ledger.models.inventory_movement import InventoryMovement
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.journal_line import JournalLine
from kitchen_ledger.models.order import Order
from kitchen_ledger.models.order_payment import OrderPayment
from kitchen_ledger.services import chart_of_accounts as coa
from kitchen_ledger.services.inventory_service import (
    INBOUND_TYPES,
    OUTBOUND_TYPES,
    InventoryService,
)
from kitchen_ledger.services.ledger_service import LedgerService
from kitchen_ledger.services.order_accounting_service import (
    OrderAccountingService,
)
from kitchen_ledger.services.result import Err, ErrorKind, Ok, Result
from kitchen_ledger.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

ORDER_REFERENCE = re.compile(r"Order #(\d+)")

# Accounts whose balance on a gift order's entries shows it was
# booked as a sale
SALE_STYLE_ACCOUNTS = (
    coa.SALES,
    coa.SALES_DISCOUNTS,
    coa.INGREDIENTS_COGS,
    coa.PACKAGING_COGS,
)

# Columns that identify the same physical movement
MOVEMENT_IDENTITY = (
    InventoryMovement.ingredient_id,
    InventoryMovement.from_location_id,
    InventoryMovement.to_location_id,
    InventoryMovement.movement_type,
    InventoryMovement.quantity,
    InventoryMovement.movement_date,
    InventoryMovement.source_type,
    InventoryMovement.source_id,
)


def order_id_from_reference(reference: str | None) -> int | None:
    if not reference:
        return None
    match = ORDER_REFERENCE.match(reference)
    return int(match.group(1)) if match else None


def format_cents(cents: int) -> str:
    """12345 -> '123.45 MXN' (in the configured currency)."""
    sign = "-" if cents < 0 else ""
    units, remainder = divmod(abs(cents), 100)
    return f"{sign}{units}.{remainder:02d} {get_settings().CURRENCY}"


def check_failed(issues: list[str]) -> Err:
    return Err(
        ErrorKind.CHECK_FAILED,
        f"{len(issues)} issue(s) found",
        tuple(issues),
    )


class VerificationService:

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session
        self.ledger = LedgerService(uow)
        self.inventory = InventoryService(uow)
        self.orders = OrderAccountingService(uow)
        self.settings = get_settings()

    # --- Shared queries ---

    def calculated_quantities(self) -> dict[tuple[int, int], int]:
        """Quantity of every (ingredient, location) per the movement log."""
        quantities = defaultdict(int)
        inbound = self.db.execute(
            select(
                InventoryMovement.ingredient_id,
                InventoryMovement.to_location_id,
                func.sum(InventoryMovement.quantity),
            )
            .where(
                InventoryMovement.movement_type.in_(INBOUND_TYPES),
                InventoryMovement.to_location_id.is_not(None),
            )
            .group_by(
                InventoryMovement.ingredient_id,
                InventoryMovement.to_location_id,
            )
        ).all()
        for ingredient_id, location_id, quantity in inbound:
            quantities[(ingredient_id, location_id)] += int(quantity)

        outbound = self.db.execute(
            select(
                InventoryMovement.ingredient_id,
                InventoryMovement.from_location_id,
                func.sum(InventoryMovement.quantity),
            )
            .where(
                InventoryMovement.movement_type.in_(OUTBOUND_TYPES),
                InventoryMovement.from_location_id.is_not(None),
            )
            .group_by(
                InventoryMovement.ingredient_id,
                InventoryMovement.from_location_id,
            )
        ).all()
        for ingredient_id, location_id, quantity in outbound:
            quantities[(ingredient_id, location_id)] -= int(quantity)
        return dict(quantities)

    def quantity_mismatches(self) -> list[tuple[InventoryItem, int]]:
        """Stock records whose quantity differs from the movement log."""
        calculated = self.calculated_quantities()
        return [
            (item, calculated.get((item.ingredient_id, item.location_id), 0))
            for item in self.inventory.list_stock_items()
            if item.quantity_on_hand
            != calculated.get((item.ingredient_id, item.location_id), 0)
        ]

    def inventory_value_for_account(self, inventory_code: str) -> int:
        """Sum of quantity * average over items carried in the account."""
        categories = coa.categories_for_inventory_account(inventory_code)
        value = self.db.execute(
            select(func.coalesce(func.sum(
                InventoryItem.quantity_on_hand
                * InventoryItem.avg_cost_per_unit_cents
            ), 0))
            .join(Ingredient, InventoryItem.ingredient_id == Ingredient.id)
            .where(Ingredient.inventory_type.in_(categories))
        ).scalar()
        return int(value)

    def _totals(self, account_id: int) -> tuple[int, int]:
        debits, credits = self.db.execute(
            select(
                func.coalesce(func.sum(JournalLine.debit_cents), 0),
                func.coalesce(func.sum(JournalLine.credit_cents), 0),
            ).where(JournalLine.account_id == account_id)
        ).one()
        return int(debits), int(credits)

    def account_debit_balance(self, account_id: int) -> int:
        debits, credits = self._totals(account_id)
        return debits - credits

    def cost_differences(self) -> list[tuple[str, int, int]]:
        """
        (inventory account code, items value, account balance) for
        every inventory account off by at least the tolerance.
        """
        differences = []
        for code in coa.INVENTORY_ACCOUNT_CODES:
            account = self.ledger.get_account_by_code(code)
            if account is None:
                continue
            value = self.inventory_value_for_account(code)
            balance = self.account_debit_balance(account.id)
            if abs(value - balance) >= self.settings.COST_TOLERANCE_CENTS:
                differences.append((code, value, balance))
        return differences

    def gl_balance_by_order(
        self, account_id: int, credit_normal: bool = False
    ) -> dict[int, int]:
        """
        Balance of an account per order, over every entry whose
        reference starts with "Order #<id>" (the order's own entries,
        its payments and any corrections).
        """
        rows = self.db.execute(
            select(
                JournalEntry.reference,
                func.sum(JournalLine.debit_cents),
                func.sum(JournalLine.credit_cents),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalLine.account_id == account_id,
                JournalEntry.reference.like("Order #%"),
            )
            .group_by(JournalEntry.reference)
        ).all()

        balances = defaultdict(int)
        for reference, debits, credits in rows:
            order_id = order_id_from_reference(reference)
            if order_id is None:
                continue
            balance = int(debits or 0) - int(credits or 0)
            balances[order_id] += -balance if credit_normal else balance
        return dict(balances)

    def duplicate_entry_groups(self) -> list[tuple[JournalEntryType, str, int]]:
        """(entry type, reference, count) for repeated order entries."""
        rows = self.db.execute(
            select(
                JournalEntry.entry_type,
                JournalEntry.reference,
                func.count(JournalEntry.id),
            )
            .where(
                JournalEntry.entry_type.in_([
                    JournalEntryType.ORDER_IN_PREP,
                    JournalEntryType.ORDER_DELIVERED,
                ]),
                JournalEntry.reference.like("Order #%"),
            )
            .group_by(JournalEntry.entry_type, JournalEntry.reference)
            .having(func.count(JournalEntry.id) > 1)
            .order_by(JournalEntry.entry_type, JournalEntry.reference)
        ).all()
        return [(entry_type, reference, count) for entry_type, reference, count in rows]

    def duplicate_movement_groups(self) -> list[tuple]:
        """Identity columns plus copy count of repeated movements."""
        rows = self.db.execute(
            select(*MOVEMENT_IDENTITY, func.count(InventoryMovement.id))
            .group_by(*MOVEMENT_IDENTITY)
            .having(func.count(InventoryMovement.id) > 1)
        ).all()
        return [tuple(row) for row in rows]

    def withdrawal_lines_on_equity(self) -> list[JournalLine]:
        equity = self.ledger.get_account_by_code(coa.OWNERS_EQUITY)
        if equity is None:
            return []
        return list(self.db.execute(
            select(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.entry_type == JournalEntryType.WITHDRAWAL,
                JournalLine.account_id == equity.id,
                JournalLine.debit_cents > 0,
            )
            .order_by(JournalLine.id)
        ).scalars().all())

    def sale_style_gift_orders(self) -> list[Order]:
        """
        Delivered gift orders booked like a sale: no entry of the
        order touches samples & gifts, while its entries leave a
        balance on sales or COGS.
        """
        samples = self.ledger.get_account_by_code(coa.SAMPLES_GIFTS)
        if samples is None:
            return []
        sale_style_ids = []
        for code in SALE_STYLE_ACCOUNTS:
            account = self.ledger.get_account_by_code(code)
            if account is not None:
                sale_style_ids.append(account.id)

        gift_orders = self.db.execute(
            select(Order)
            .where(Order.is_gift.is_(True), Order.status == OrderStatus.DELIVERED)
            .order_by(Order.id)
        ).scalars().all()

        affected = []
        for order in gift_orders:
            lines = self.db.execute(
                select(JournalLine)
                .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
                .where(JournalEntry.reference == order.reference)
            ).scalars().all()
            if any(line.account_id == samples.id for line in lines):
                continue
            sale_balance = defaultdict(int)
            for line in lines:
                if line.account_id in sale_style_ids:
                    sale_balance[line.account_id] += (
                        line.debit_cents - line.credit_cents
                    )
            if any(sale_balance.values()):
                affected.append(order)
        return affected

    def expected_ar_by_order(self) -> list[tuple[Order, int]]:
        """(order, receivable still owed) for delivered sales."""
        orders = self.db.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.DELIVERED,
                Order.is_gift.is_(False),
            )
            .order_by(Order.id)
        ).scalars().all()
        expected = []
        for order in orders:
            product_total, shipping = self.orders.order_total_cents(order)
            paid = self.orders.customer_payments_cents(order.id)
            expected.append((order, max(product_total + shipping - paid, 0)))
        return expected

    def deposits_by_order(self) -> dict[int, int]:
        """Customer portion of deposit payments, per order."""
        payments = self.db.execute(
            select(OrderPayment).where(OrderPayment.is_deposit.is_(True))
        ).scalars().all()
        deposits = defaultdict(int)
        for payment in payments:
            deposits[payment.order_id] += payment.customer_portion_cents
        return dict(deposits)

    # --- Checks ---

    def verify_inventory_quantities(self) -> Result:
        mismatches = self.quantity_mismatches()
        if not mismatches:
            return Ok({"checked_items": len(self.inventory.list_stock_items())})
        return check_failed([
            f"Inventory mismatch: {item.ingredient.name} @ {item.location.name}"
            f" - System: {item.quantity_on_hand}, Calculated: {calculated}"
            for item, calculated in mismatches
        ])

    def verify_inventory_cost_accounting(self) -> Result:
        differences = self.cost_differences()
        if not differences:
            return Ok({
                "inventory_value": self.inventory.total_inventory_value_cents()
            })
        return check_failed([
            f"{coa.label_for_inventory_account(code)} mismatch: "
            f"Items={format_cents(value)}, Account={format_cents(balance)}, "
            f"Difference={format_cents(abs(value - balance))}"
            for code, value, balance in differences
        ])

    def verify_movement_costs(self) -> Result:
        zero_cost = len(self.inventory.zero_cost_movements())
        total = self.db.execute(
            select(func.count(InventoryMovement.id)).where(
                InventoryMovement.movement_type.in_(
                    [MovementType.USAGE, MovementType.WRITE_OFF]
                ),
                InventoryMovement.from_location_id.is_not(None),
            )
        ).scalar()
        if zero_cost == 0:
            return Ok({"checked": int(total), "zero_cost": 0})
        return check_failed([
            f"Found {zero_cost} of {total} usage/write-off movement(s) with "
            f"$0 cost that may need backfilling"
        ])

    def verify_duplicate_movements(self) -> Result:
        groups = self.duplicate_movement_groups()
        if not groups:
            return Ok({"duplicate_groups": 0})
        issues = []
        for (ingredient_id, _, _, movement_type, quantity, movement_date,
             source_type, source_id, count) in groups:
            ingredient = self.db.get(Ingredient, ingredient_id)
            name = ingredient.name if ingredient else f"ID:{ingredient_id}"
            issues.append(
                f"Duplicate {movement_type.value}: {name} qty={quantity} "
                f"on {movement_date} ({count} copies, "
                f"source: {source_type}/{source_id})"
            )
        return check_failed(issues)

    def orders_in_prep(self) -> int:
        """Orders with an in-prep entry but no delivered or canceled one."""
        def order_ids(entry_type):
            references = self.db.execute(
                select(JournalEntry.reference)
                .where(JournalEntry.entry_type == entry_type)
            ).scalars().all()
            return {
                order_id for order_id in map(order_id_from_reference, references)
                if order_id is not None
            }

        return len(
            order_ids(JournalEntryType.ORDER_IN_PREP)
            - order_ids(JournalEntryType.ORDER_DELIVERED)
            - order_ids(JournalEntryType.ORDER_CANCELED)
        )

    def order_wip_net(self, wip_id: int) -> int:
        """In-prep WIP debits less delivered and canceled WIP credits."""
        def wip_sum(column, entry_types):
            amount = self.db.execute(
                select(func.coalesce(func.sum(column), 0))
                .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
                .where(
                    JournalEntry.entry_type.in_(entry_types),
                    JournalLine.account_id == wip_id,
                )
            ).scalar()
            return int(amount)

        return wip_sum(
            JournalLine.debit_cents, [JournalEntryType.ORDER_IN_PREP]
        ) - wip_sum(
            JournalLine.credit_cents,
            [JournalEntryType.ORDER_DELIVERED, JournalEntryType.ORDER_CANCELED],
        )

    def verify_wip_balance(self) -> Result:
        wip = self.ledger.get_account_by_code(coa.WIP_INVENTORY)
        if wip is None:
            debits = credits = expected = 0
        else:
            debits, credits = self._totals(wip.id)
            expected = self.order_wip_net(wip.id)
        balance = debits - credits
        if balance != expected:
            return check_failed([
                f"WIP balance mismatch: Account={format_cents(balance)}, "
                f"Orders={format_cents(expected)} "
                f"(difference {format_cents(balance - expected)})"
            ])
        return Ok({
            "wip_balance": balance,
            "total_debits": debits,
            "total_credits": credits,
            "orders_in_prep": self.orders_in_prep(),
        })

    def _wip_amount(self, entry_type, reference, wip_id, side) -> int:
        column = getattr(JournalLine, side)
        amount = self.db.execute(
            select(column)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.entry_type == entry_type,
                JournalEntry.reference == reference,
                JournalLine.account_id == wip_id,
                column > 0,
            )
            .order_by(JournalLine.id)
            .limit(1)
        ).scalar_one_or_none()
        return int(amount or 0)

    def verify_order_wip_consistency(self) -> Result:
        wip = self.ledger.get_account_by_code(coa.WIP_INVENTORY)
        references = self.db.execute(
            select(JournalEntry.reference)
            .where(JournalEntry.entry_type == JournalEntryType.ORDER_IN_PREP)
        ).scalars().all()
        order_ids = sorted({
            order_id for order_id in map(order_id_from_reference, references)
            if order_id is not None
        })
        if wip is None:
            return Ok({"checked_orders": len(order_ids)})

        issues = []
        for order_id in order_ids:
            reference = f"Order #{order_id}"
            delivered = self.ledger.find_entries(
                JournalEntryType.ORDER_DELIVERED, reference
            )
            if not delivered:
                continue
            wip_debit = self._wip_amount(
                JournalEntryType.ORDER_IN_PREP, reference, wip.id, "debit_cents"
            )
            wip_credit = self._wip_amount(
                JournalEntryType.ORDER_DELIVERED, reference, wip.id, "credit_cents"
            )
            if wip_debit != wip_credit:
                issues.append(
                    f"Order #{order_id}: WIP debit ({wip_debit}) "
                    f"!= credit ({wip_credit})"
                )
        if issues:
            return check_failed(issues)
        return Ok({"checked_orders": len(order_ids)})

    def verify_journal_entries_balanced(self) -> Result:
        debits = func.sum(JournalLine.debit_cents)
        credits = func.sum(JournalLine.credit_cents)
        unbalanced = self.db.execute(
            select(JournalEntry.id, JournalEntry.entry_type, debits, credits)
            .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .group_by(JournalEntry.id, JournalEntry.entry_type)
            .having(debits != credits)
            .order_by(JournalEntry.id)
        ).all()
        if not unbalanced:
            checked = self.db.execute(
                select(func.count(JournalEntry.id))
            ).scalar()
            return Ok({"checked_entries": int(checked)})
        return check_failed([
            f"Journal Entry #{entry_id} ({entry_type.value}): "
            f"Debits={int(total_debits)}, Credits={int(total_credits)}"
            for entry_id, entry_type, total_debits, total_credits in unbalanced
        ])

    def verify_duplicate_cogs_entries(self) -> Result:
        groups = self.duplicate_entry_groups()
        if not groups:
            return Ok({"duplicate_groups": 0})
        return check_failed([
            f"Duplicate {entry_type.value.lower()}: {reference} has "
            f"{count} entries (expected 1)"
            for entry_type, reference, count in groups
        ])

    def verify_withdrawal_accounts(self) -> Result:
        lines = self.withdrawal_lines_on_equity()
        if not lines:
            return Ok({"incorrect_lines": 0})
        total = sum(line.debit_cents for line in lines)
        return check_failed([
            f"Found {len(lines)} withdrawal(s) incorrectly debiting Owner's "
            f"Equity (3000) instead of Owner's Drawings (3100). "
            f"Total: {format_cents(total)}"
        ])

    def verify_gift_order_accounting(self) -> Result:
        affected = self.sale_style_gift_orders()
        if not affected:
            return Ok({"sale_style_gift_orders": 0})
        order_list = ", ".join(f"#{order.id}" for order in affected)
        return check_failed([
            f"Found {len(affected)} delivered gift order(s) with sale-style "
            f"accounting instead of gift accounting: Order(s) {order_list}"
        ])

    def verify_ar_balance(self) -> Result:
        ar = self.ledger.get_account_by_code(coa.ACCOUNTS_RECEIVABLE)
        if ar is None:
            return check_failed([
                f"Accounts Receivable account ({coa.ACCOUNTS_RECEIVABLE}) not found"
            ])
        expected = self.expected_ar_by_order()
        gl_ar = self.gl_balance_by_order(ar.id)
        issues = []
        for order, expected_ar in expected:
            actual = gl_ar.get(order.id, 0)
            if actual != expected_ar:
                issues.append(
                    f"Order #{order.id}: Expected AR={format_cents(expected_ar)}, "
                    f"GL AR={format_cents(actual)}, "
                    f"Difference={format_cents(expected_ar - actual)}"
                )
        if issues:
            return check_failed(issues)
        return Ok({"checked_orders": len(expected)})

    def verify_customer_deposits(self) -> Result:
        deposits_account = self.ledger.get_account_by_code(coa.CUSTOMER_DEPOSITS)
        if deposits_account is None:
            return check_failed([
                f"Customer Deposits account ({coa.CUSTOMER_DEPOSITS}) not found"
            ])
        deposits = self.deposits_by_order()
        gl_deposits = self.gl_balance_by_order(
            deposits_account.id, credit_normal=True
        )
        issues = []
        for order_id in sorted(deposits):
            order = self.db.get(Order, order_id)
            if order is None:
                continue
            expected = 0 if order.status == OrderStatus.DELIVERED else deposits[order_id]
            actual = gl_deposits.get(order_id, 0)
            if actual != expected:
                issues.append(
                    f"Order #{order_id} ({order.status.value}): Expected deposits "
                    f"balance={format_cents(expected)}, "
                    f"GL shows={format_cents(actual)}"
                )
        if issues:
            return check_failed(issues)
        return Ok({"checked_orders": len(deposits)})

    # --- Batch ---

    def checks(self) -> list[tuple[str, object]]:
        """Every check by name, in reporting order."""
        return [
            ("inventory_quantities", self.verify_inventory_quantities),
            ("inventory_cost_accounting", self.verify_inventory_cost_accounting),
            ("movement_costs", self.verify_movement_costs),
            ("duplicate_movements", self.verify_duplicate_movements),
            ("wip_balance", self.verify_wip_balance),
            ("order_wip_consistency", self.verify_order_wip_consistency),
            ("journal_entries_balanced", self.verify_journal_entries_balanced),
            ("duplicate_cogs_entries", self.verify_duplicate_cogs_entries),
            ("withdrawal_accounts", self.verify_withdrawal_accounts),
            ("gift_order_accounting", self.verify_gift_order_accounting),
            ("ar_balance", self.verify_ar_balance),
            ("customer_deposits", self.verify_customer_deposits),
        ]

    def run_all_checks(self) -> dict[str, Result]:
        results = {}
        for name, check in self.checks():
            results[name] = check()
            if results[name].is_err:
                logger.warning(
                    "Check %s failed with %d issue(s)",
                    name, len(results[name].issues),
                )
        return results
