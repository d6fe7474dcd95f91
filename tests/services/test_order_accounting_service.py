"""
Tests for the OrderAccountingService: order transitions and
payments turned into journal entries.
"""

from datetime import date
from decimal import Decimal

from kitchen_ledger.models.enums import (
    DiscountType,
    JournalEntryType,
    OrderStatus,
)
from kitchen_ledger.models.order import Order
from kitchen_ledger.models.order_payment import OrderPayment
from kitchen_ledger.models.product import Product
from kitchen_ledger.models.recipe import Recipe, RecipeLine
from kitchen_ledger.schemas.inventory import (
    IngredientCreate,
    LocationCreate,
    PurchaseRequest,
)
from kitchen_ledger.services.order_accounting_service import OrderAccountingService
from kitchen_ledger.services.result import ErrorKind

DELIVERY = date(2024, 3, 10)


def setup_kitchen(uow):
    """Helper: 1000 g of FLOUR at CASA_AG, 5 cents per gram."""
    service = OrderAccountingService(uow)
    inventory = service.inventory
    inventory.create_ingredient(IngredientCreate(code="FLOUR", name="Flour")).unwrap()
    inventory.create_location(LocationCreate(code="CASA_AG", name="Casa AG")).unwrap()
    inventory.create_purchase(PurchaseRequest(
        ingredient_code="FLOUR",
        location_code="CASA_AG",
        quantity=1000,
        total_cost_cents=5000,
        purchase_date=date(2024, 3, 1),
    )).unwrap()
    return service


def make_order(uow, **fields):
    """Helper: one cake at 250.00 using 250 g of flour."""
    product = uow.session.query(Product).filter_by(sku="CAKE").one_or_none()
    if product is None:
        product = Product(sku="CAKE", name="Cake", price_cents=25000)
        uow.session.add(Recipe(
            product=product,
            effective_date=date(2024, 1, 1),
            lines=[RecipeLine(ingredient_code="FLOUR", quantity=Decimal("250"))],
        ))
    order = Order(
        customer_name="Ana",
        product=product,
        quantity=1,
        delivery_date=DELIVERY,
        status=OrderStatus.NEW_ORDER,
        **fields,
    )
    uow.session.add(order)
    uow.session.commit()
    return order


def pay(uow, chart, order, amount_cents, is_deposit=False,
        payment_date=date(2024, 3, 5), **fields):
    payment = OrderPayment(
        order=order,
        payment_date=payment_date,
        amount_cents=amount_cents,
        is_deposit=is_deposit,
        paid_to_account_id=chart["1000"].id,
        **fields,
    )
    uow.session.add(payment)
    uow.session.flush()
    return payment


def balance(service, code):
    ledger = service.ledger
    return ledger.account_balance(ledger.get_account_by_code(code).id)


class TestInPrep:

    def test_in_prep_moves_cost_to_wip(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)

        entry = service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()

        assert entry.entry_type == JournalEntryType.ORDER_IN_PREP
        assert entry.reference == f"Order #{order.id}"
        assert order.status == OrderStatus.IN_PREP
        assert balance(service, "1220") == 1250
        assert balance(service, "1200") == 3750
        assert service.production_cost_cents(order.id) == 1250
        assert service.production_cost_breakdown(order.id)["1200"] == 1250

    def test_repeating_in_prep_posts_once(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)

        first = service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()
        second = service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()

        assert first.id == second.id
        assert len(service.ledger.find_entries(JournalEntryType.ORDER_IN_PREP)) == 1
        assert balance(service, "1220") == 1250

    def test_missing_ingredient_rolls_back(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        order.product.recipes[0].lines[0].ingredient_code = "SUGAR"
        uow.session.commit()

        result = service.handle_status_change(order, OrderStatus.IN_PREP)

        assert result.kind == ErrorKind.NOT_FOUND
        assert order.status == OrderStatus.NEW_ORDER
        assert service.ledger.find_entries(JournalEntryType.ORDER_IN_PREP) == []


class TestDelivered:

    def test_sale_recognises_revenue_and_cogs(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()

        entry = service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()

        assert entry.total_debits == entry.total_credits == 26250
        assert balance(service, "1100") == 25000
        assert balance(service, "4000") == 25000
        assert balance(service, "5000") == 1250
        assert balance(service, "1220") == 0

    def test_discount_shown_separately(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(
            uow, discount_type=DiscountType.FLAT, discount_value=Decimal("50.00")
        )

        service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()

        assert balance(service, "1100") == 20000
        assert balance(service, "4010") == 5000
        assert balance(service, "4000") == 25000

    def test_percentage_discount(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(
            uow, discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10")
        )
        assert service.discount_cents(order) == 2500
        assert service.order_total_cents(order) == (22500, 0)

    def test_shipping_from_shipping_product(self, uow, chart):
        service = setup_kitchen(uow)
        uow.session.add(Product(sku="ENVIO", name="Envio", price_cents=8000))
        order = make_order(uow, customer_paid_shipping=True)

        assert service.order_total_cents(order) == (25000, 8000)

    def test_deposit_settles_receivable(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        payment = pay(uow, chart, order, 10000, is_deposit=True)
        service.record_payment(payment).unwrap()
        assert balance(service, "2200") == 10000

        service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()

        assert balance(service, "2200") == 0
        assert balance(service, "1100") == 15000

    def test_gift_is_expensed(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow, is_gift=True)
        service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()

        service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()

        assert balance(service, "6070") == 1250
        assert balance(service, "1220") == 0
        assert balance(service, "4000") == 0
        assert balance(service, "1100") == 0

    def test_delivered_orders_cannot_go_back(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()

        result = service.handle_status_change(order, OrderStatus.IN_PREP)

        assert result.kind == ErrorKind.INVALID_TRANSITION
        assert order.status == OrderStatus.DELIVERED


class TestCanceled:

    def test_cancel_after_prep_restores_stock(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        service.handle_status_change(order, OrderStatus.IN_PREP).unwrap()

        entry = service.handle_status_change(order, OrderStatus.CANCELED).unwrap()

        assert entry.entry_type == JournalEntryType.ORDER_CANCELED
        assert balance(service, "1220") == 0
        assert balance(service, "1200") == 5000
        flour = service.inventory.get_ingredient_by_code("FLOUR")
        casa = service.inventory.get_location_by_code("CASA_AG")
        stock = service.inventory.get_or_create_stock(flour.id, casa.id)
        assert stock.quantity_on_hand == 1000

    def test_cancel_new_order_posts_nothing(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)

        result = service.handle_status_change(order, OrderStatus.CANCELED)

        assert result.unwrap() is None
        assert order.status == OrderStatus.CANCELED
        assert service.ledger.find_entries(JournalEntryType.ORDER_CANCELED) == []


class TestPayments:

    def test_payment_reduces_receivable(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        service.handle_status_change(order, OrderStatus.DELIVERED).unwrap()
        payment = pay(uow, chart, order, 25000, payment_date=DELIVERY)

        entry = service.record_payment(payment).unwrap()

        assert entry.reference == f"Order #{order.id} payment #{payment.id}"
        assert balance(service, "1100") == 0
        assert service.customer_payments_cents(order.id) == 25000

    def test_partner_split(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        payment = pay(
            uow, chart, order, 10000,
            customer_amount_cents=7000,
            partner_amount_cents=3000,
            partner_payable_account_id=chart["2100"].id,
        )

        service.record_payment(payment).unwrap()

        assert balance(service, "1000") == 5000
        assert balance(service, "1100") == -7000
        assert balance(service, "2100") == 3000

    def test_partner_split_needs_payable_account(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        payment = pay(
            uow, chart, order, 10000,
            customer_amount_cents=7000,
            partner_amount_cents=3000,
        )

        result = service.record_payment(payment)

        assert result.kind == ErrorKind.VALIDATION

    def test_update_payment_entry(self, uow, chart):
        service = setup_kitchen(uow)
        order = make_order(uow)
        payment = pay(uow, chart, order, 10000)
        entry = service.record_payment(payment).unwrap()
        entry_id = entry.id

        payment.amount_cents = 12000
        updated = service.update_payment_entry(payment).unwrap()

        assert updated.id == entry_id
        assert balance(service, "1100") == -12000
        assert len(service.ledger.find_entries(JournalEntryType.ORDER_PAYMENT)) == 1
