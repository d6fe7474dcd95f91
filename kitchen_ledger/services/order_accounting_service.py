"""
Order accounting: turns order lifecycle events into postings.

    NEW_ORDER -> IN_PREP     consume stock, move its cost to WIP
    IN_PREP   -> DELIVERED   recognise the sale, relieve WIP to COGS
    NEW_ORDER -> DELIVERED   recognise the sale (nothing in WIP)
    any open  -> CANCELED    put the stock back, reverse the WIP entry

Every entry of an order carries the reference "Order #<id>",
and each transition posts at most one entry of its type for
that reference: repeating a transition returns the entry that
is already there.

Payments post their own entries ("Order #<id> payment #<pid>")
as they arrive. A deposit sits in customer deposits until the
order is delivered; a regular payment settles receivables.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select

from kitchen_ledger.config import get_settings
from kitchen_ledger.models.enums import (
    DiscountType,
    JournalEntryType,
    OrderStatus,
)
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.order import Order
from kitchen_ledger.models.order_payment import OrderPayment
from kitchen_ledger.models.product import Product
from kitchen_ledger.schemas.ledger import JournalEntryCreate, JournalLineCreate
from kitchen_ledger.services import chart_of_accounts as coa
from kitchen_ledger.services.inventory_service import (
    BREAKDOWN_KEYS,
    InventoryService,
)
from kitchen_ledger.services.ledger_service import LedgerService, credit, debit
from kitchen_ledger.services.result import Err, ErrorKind, Ok, Result
from kitchen_ledger.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Allowed moves between order states. Repeating the current
# state is always allowed.
TRANSITIONS = {
    OrderStatus.NEW_ORDER: {
        OrderStatus.IN_PREP,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELED,
    },
    OrderStatus.IN_PREP: {OrderStatus.DELIVERED, OrderStatus.CANCELED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELED: set(),
}

# Inventory account -> COGS account used when an order is delivered.
# Kitchen equipment worn by an order is costed with ingredients.
COGS_ACCOUNTS = {
    coa.INGREDIENTS_INVENTORY: coa.INGREDIENTS_COGS,
    coa.KITCHEN_INVENTORY: coa.INGREDIENTS_COGS,
    coa.PACKING_INVENTORY: coa.PACKAGING_COGS,
}


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def drop_zero_lines(lines: list[JournalLineCreate | None]) -> list:
    return [line for line in lines if line is not None]


def line_if(make_line, account_id, cents, description):
    """A debit/credit line, or None for a zero amount."""
    if cents <= 0:
        return None
    return make_line(account_id, cents, description)


class OrderAccountingService:

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session
        self.ledger = LedgerService(uow)
        self.inventory = InventoryService(uow)
        self.settings = get_settings()

    # --- Helpers ---

    def _accounts(self, *codes: str) -> Result:
        """Look up several accounts by code; Err on the first missing."""
        accounts = []
        for code in codes:
            result = self.ledger.require_account(code)
            if result.is_err:
                return result
            accounts.append(result.value)
        return Ok(accounts)

    def _first_entry(
        self, entry_type: JournalEntryType, reference: str
    ) -> JournalEntry | None:
        entries = self.ledger.find_entries(entry_type, reference)
        return entries[0] if entries else None

    def production_cost_cents(self, order_id: int) -> int:
        """WIP debit of the order's in-prep entry (0 without one)."""
        entry = self._first_entry(
            JournalEntryType.ORDER_IN_PREP, f"Order #{order_id}"
        )
        if entry is None:
            return 0
        return sum(
            line.debit_cents for line in entry.lines
            if line.account.code == coa.WIP_INVENTORY
        )

    def production_cost_breakdown(self, order_id: int) -> dict[str, int]:
        """
        Credit amounts of the in-prep entry keyed by inventory
        account code: what each inventory account gave to WIP.
        """
        breakdown = {code: 0 for code in coa.INVENTORY_ACCOUNT_CODES}
        entry = self._first_entry(
            JournalEntryType.ORDER_IN_PREP, f"Order #{order_id}"
        )
        if entry is None:
            return breakdown
        for line in entry.lines:
            if line.account.code in breakdown:
                breakdown[line.account.code] += line.credit_cents
        return breakdown

    # --- Totals ---

    def shipping_cents(self, order: Order) -> int:
        """
        Shipping charged to the customer: the order's own fee, or
        the price of the shipping product.
        """
        if not order.customer_paid_shipping:
            return 0
        if order.shipping_fee_cents is not None:
            return order.shipping_fee_cents
        product = self.db.execute(
            select(Product).where(Product.sku == self.settings.SHIPPING_SKU)
        ).scalar_one_or_none()
        return product.price_cents if product is not None else 0

    def discount_cents(self, order: Order) -> int:
        """The discount on the product total, never more than it."""
        base = order.product.price_cents * (order.quantity or 1)
        if order.discount_type is None or not order.discount_value:
            return 0
        value = Decimal(str(order.discount_value))
        if order.discount_type == DiscountType.FLAT:
            discount = _round_cents(value * 100)
        else:
            discount = _round_cents(Decimal(base) * value / 100)
        return min(max(discount, 0), base)

    def order_total_cents(self, order: Order) -> tuple[int, int]:
        """(discounted product total, shipping) in cents."""
        base = order.product.price_cents * (order.quantity or 1)
        product_total = max(base - self.discount_cents(order), 0)
        return product_total, self.shipping_cents(order)

    def customer_payments_cents(
        self,
        order_id: int,
        deposits: bool | None = None,
        up_to: date | None = None,
    ) -> int:
        """Customer portions of an order's payments."""
        query = select(OrderPayment).where(OrderPayment.order_id == order_id)
        if deposits is not None:
            query = query.where(OrderPayment.is_deposit == deposits)
        if up_to is not None:
            query = query.where(OrderPayment.payment_date <= up_to)
        payments = self.db.execute(query).scalars().all()
        return sum(payment.customer_portion_cents for payment in payments)

    # --- Status transitions ---

    def handle_status_change(
        self, order: Order, new_status: OrderStatus
    ) -> Result:
        """
        Apply the accounting for moving an order to new_status and
        set the order's status, as one unit of work.

        Returns Ok(entry) with the entry for the transition (None
        when the transition posts nothing).
        """
        return self.uow.run(self._handle_status_change, order, new_status)

    def _handle_status_change(self, order: Order, new_status: OrderStatus):
        new_status = OrderStatus(new_status)
        current = order.status or OrderStatus.NEW_ORDER
        if new_status != current and new_status not in TRANSITIONS[current]:
            return Err(
                ErrorKind.INVALID_TRANSITION,
                f"Order #{order.id} cannot go from "
                f"{current.value} to {new_status.value}",
            )

        if new_status == OrderStatus.IN_PREP:
            result = self._record_in_prep(order)
        elif new_status == OrderStatus.DELIVERED:
            result = self._record_delivered(order)
        elif new_status == OrderStatus.CANCELED:
            result = self._record_canceled(order)
        else:
            # Creating an order is not an accounting event
            result = Ok(None)
        if result.is_err:
            return result

        order.status = new_status
        self.db.flush()
        logger.info("Order #%d is now %s", order.id, new_status.value)
        return result

    def _record_in_prep(self, order: Order) -> Result:
        reference = order.reference
        existing = self._first_entry(JournalEntryType.ORDER_IN_PREP, reference)
        if existing is not None:
            return Ok(existing)

        consumed = self.inventory.consume_for_order(order)
        if consumed.is_err:
            return consumed
        breakdown = consumed.value

        result = self._accounts(coa.WIP_INVENTORY)
        if result.is_err:
            return result
        wip = result.value[0]

        lines = []
        if breakdown["total"] > 0:
            lines.append(debit(
                wip.id, breakdown["total"], f"WIP for order #{order.id}"
            ))
            for code in coa.INVENTORY_ACCOUNT_CODES:
                share = breakdown[BREAKDOWN_KEYS[code]]
                if share <= 0:
                    continue
                account = self.ledger.get_account_by_code(code)
                if account is None:
                    return Err(ErrorKind.NOT_FOUND, f"Account {code} not found")
                lines.append(credit(
                    account.id, share,
                    f"{coa.label_for_inventory_account(code)} used for "
                    f"order #{order.id}",
                ))

        return self.ledger.post_entry(JournalEntryCreate(
            date=order.delivery_date or date.today(),
            entry_type=JournalEntryType.ORDER_IN_PREP,
            reference=reference,
            description=f"Move ingredients to WIP for order #{order.id}",
            lines=lines,
        ))

    def _record_delivered(self, order: Order) -> Result:
        reference = order.reference
        existing = self._first_entry(JournalEntryType.ORDER_DELIVERED, reference)
        if existing is not None:
            return Ok(existing)
        if order.is_gift:
            return self._record_gift_delivered(order)
        return self._record_sale_delivered(order)

    def _record_gift_delivered(self, order: Order) -> Result:
        cost_cents = self.production_cost_cents(order.id)
        result = self._accounts(coa.SAMPLES_GIFTS, coa.WIP_INVENTORY)
        if result.is_err:
            return result
        samples, wip = result.value

        # A gift with no recorded cost still gets a marker entry
        lines = drop_zero_lines([
            line_if(
                debit, samples.id, cost_cents,
                f"Samples & Gifts expense for order #{order.id}",
            ),
            line_if(
                credit, wip.id, cost_cents,
                f"Relieve WIP for gift order #{order.id}",
            ),
        ])
        return self.ledger.post_entry(JournalEntryCreate(
            date=self._delivery_date(order),
            entry_type=JournalEntryType.ORDER_DELIVERED,
            reference=order.reference,
            description=f"Gift/sample order #{order.id} delivered",
            lines=lines,
        ))

    def _record_sale_delivered(self, order: Order) -> Result:
        result = self._accounts(
            coa.ACCOUNTS_RECEIVABLE,
            coa.SALES,
            coa.SALES_DISCOUNTS,
            coa.CUSTOMER_DEPOSITS,
            coa.WIP_INVENTORY,
        )
        if result.is_err:
            return result
        ar, sales, discounts, deposits_account, wip = result.value

        delivery_date = self._delivery_date(order)
        product_total, shipping = self.order_total_cents(order)
        discount = self.discount_cents(order)
        net_revenue = product_total + shipping
        gross_revenue = net_revenue + discount
        deposits = self.customer_payments_cents(
            order.id, deposits=True, up_to=delivery_date
        )
        cost_cents = self.production_cost_cents(order.id)

        lines = [
            # Revenue: gross sales with the discount shown separately
            line_if(
                debit, ar.id, net_revenue,
                f"Recognize AR for order #{order.id}",
            ),
            line_if(
                debit, discounts.id, discount,
                f"Sales discount for order #{order.id}",
            ),
            line_if(
                credit, sales.id, gross_revenue,
                f"Gross sales for order #{order.id}",
            ),
            # Deposits received so far now settle the receivable
            line_if(
                debit, deposits_account.id, deposits,
                f"Transfer Customer Deposits to AR for order #{order.id}",
            ),
            line_if(
                credit, ar.id, deposits,
                f"Reduce AR by deposit amount for order #{order.id}",
            ),
        ]

        if cost_cents > 0:
            cogs = {}
            for code, share in self.production_cost_breakdown(order.id).items():
                cogs_code = COGS_ACCOUNTS[code]
                cogs[cogs_code] = cogs.get(cogs_code, 0) + share
            for cogs_code, cents in cogs.items():
                account = self.ledger.get_account_by_code(cogs_code)
                if account is None:
                    return Err(
                        ErrorKind.NOT_FOUND, f"Account {cogs_code} not found"
                    )
                lines.append(line_if(
                    debit, account.id, cents,
                    f"{account.name} for order #{order.id}",
                ))
            lines.append(credit(
                wip.id, cost_cents, f"Relieve WIP for order #{order.id}"
            ))

        return self.ledger.post_entry(JournalEntryCreate(
            date=delivery_date,
            entry_type=JournalEntryType.ORDER_DELIVERED,
            reference=order.reference,
            description=f"Delivered order #{order.id}",
            lines=drop_zero_lines(lines),
        ))

    def _record_canceled(self, order: Order) -> Result:
        reference = order.reference
        in_prep = self._first_entry(JournalEntryType.ORDER_IN_PREP, reference)
        if in_prep is None:
            # Never reached prep: nothing was consumed or posted
            return Ok(None)
        already_canceled = self._first_entry(
            JournalEntryType.ORDER_CANCELED, reference
        )
        if already_canceled is not None:
            return Ok(already_canceled)
        if self._first_entry(JournalEntryType.ORDER_DELIVERED, reference):
            return Ok(None)

        restored = self.inventory.reverse_order_consumption(order.id)
        if restored.is_err:
            return restored

        reversal_lines = [
            JournalLineCreate(
                account_id=line.account_id,
                debit_cents=line.credit_cents,
                credit_cents=line.debit_cents,
                description=f"Reversal: {line.description or ''}".strip(),
            )
            for line in in_prep.lines
        ]
        return self.ledger.post_entry(JournalEntryCreate(
            date=date.today(),
            entry_type=JournalEntryType.ORDER_CANCELED,
            reference=reference,
            description=f"Reverse WIP for canceled order #{order.id}",
            lines=reversal_lines,
        ))

    @staticmethod
    def _delivery_date(order: Order) -> date:
        return order.actual_delivery_date or order.delivery_date or date.today()

    # --- Payments ---

    def _payment_lines(self, payment: OrderPayment) -> Result:
        """
        Dr the receiving account for the full amount; Cr receivables
        (or customer deposits) for the customer's part and the
        partner payable for the partner's part.
        """
        order = payment.order
        paid_to = payment.paid_to_account
        if paid_to is None:
            return Err(ErrorKind.VALIDATION, "Payment has no paid-to account")

        settles_code = (
            coa.CUSTOMER_DEPOSITS if payment.is_deposit
            else coa.ACCOUNTS_RECEIVABLE
        )
        result = self.ledger.require_account(settles_code)
        if result.is_err:
            return result
        settles = result.value
        settles_description = (
            f"Increase Customer Deposits for order #{order.id}"
            if payment.is_deposit
            else f"Reduce Accounts Receivable for order #{order.id}"
        )

        lines = [debit(
            paid_to.id, payment.amount_cents,
            f"Payment received ({paid_to.code} {paid_to.name})",
        )]
        partner_cents = payment.partner_portion_cents
        if partner_cents > 0:
            partner_account = payment.partner_payable_account
            if partner_account is None:
                return Err(
                    ErrorKind.VALIDATION,
                    f"Payment #{payment.id} splits with a partner but has "
                    f"no partner payable account",
                )
            lines.append(line_if(
                credit, settles.id, payment.customer_portion_cents,
                f"{settles_description} (customer portion)",
            ))
            lines.append(credit(
                partner_account.id, partner_cents,
                f"Accounts Payable to partner for order #{order.id}",
            ))
        else:
            lines.append(credit(settles.id, payment.amount_cents, settles_description))
        return Ok(drop_zero_lines(lines))

    def record_payment(self, payment: OrderPayment) -> Result:
        """Post the entry for a payment received against an order."""
        return self.uow.run(self._record_payment, payment)

    def _record_payment(self, payment: OrderPayment) -> Result:
        if payment.amount_cents <= 0:
            return Err(ErrorKind.VALIDATION, "Payment amount must be positive")
        result = self._payment_lines(payment)
        if result.is_err:
            return result
        return self.ledger.post_entry(JournalEntryCreate(
            date=payment.payment_date,
            entry_type=JournalEntryType.ORDER_PAYMENT,
            reference=payment.reference,
            description=f"Payment from {payment.order.customer_name}",
            lines=result.value,
        ))

    def update_payment_entry(self, payment: OrderPayment) -> Result:
        """
        Bring a payment's entry in line with the payment after it
        was edited. Posts the entry if the payment never had one.
        """
        return self.uow.run(self._update_payment_entry, payment)

    def _update_payment_entry(self, payment: OrderPayment) -> Result:
        entries = self.ledger.find_entries(reference=payment.reference)
        if not entries:
            return self._record_payment(payment)

        result = self._payment_lines(payment)
        if result.is_err:
            return result
        return self.ledger.replace_entry_lines(
            entries[0].id,
            result.value,
            date=payment.payment_date,
            description=f"Payment from {payment.order.customer_name}",
        )
