"""
Tests for the InventoryService: moving-average costing and the
journal entries that mirror each movement.
"""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from kitchen_ledger.models.enums import (
    InventoryCategory,
    JournalEntryType,
    MovementType,
    OrderStatus,
)
from kitchen_ledger.models.order import Order, OrderIngredient
from kitchen_ledger.models.product import Product
from kitchen_ledger.models.recipe import Recipe, RecipeLine
from kitchen_ledger.schemas.inventory import (
    IngredientCreate,
    LocationCreate,
    PurchaseRequest,
    TransferRequest,
)
from kitchen_ledger.services.inventory_service import (
    InventoryService,
    round_half_away,
    weighted_average,
)
from kitchen_ledger.services.ledger_service import LedgerService
from kitchen_ledger.services.result import ErrorKind

DAY = date(2024, 3, 1)


def setup_catalog(uow, category=InventoryCategory.INGREDIENTS):
    """Helper: FLOUR at two locations, WAREHOUSE and CASA_AG."""
    service = InventoryService(uow)
    service.create_ingredient(IngredientCreate(
        code="flour", name="Flour", inventory_type=category,
    )).unwrap()
    service.create_location(LocationCreate(code="WAREHOUSE", name="Warehouse")).unwrap()
    service.create_location(LocationCreate(code="CASA_AG", name="Casa AG")).unwrap()
    return service


def buy(service, quantity, total_cost_cents, location="WAREHOUSE", day=DAY):
    return service.create_purchase(PurchaseRequest(
        ingredient_code="FLOUR",
        location_code=location,
        quantity=quantity,
        total_cost_cents=total_cost_cents,
        purchase_date=day,
    ))


def stock_of(service, location="WAREHOUSE"):
    return service.get_or_create_stock(
        service.get_ingredient_by_code("FLOUR").id,
        service.get_location_by_code(location).id,
    )


def balance(uow, code):
    ledger = LedgerService(uow)
    return ledger.account_balance(ledger.get_account_by_code(code).id)


class TestRounding:

    def test_ties_round_away_from_zero(self):
        assert round_half_away(5, 2) == 3
        assert round_half_away(-5, 2) == -3
        assert round_half_away(8000, 1500) == 5

    def test_weighted_average(self):
        assert weighted_average(0, 0, 500, 5) == 5
        assert weighted_average(100, 4, 100, 7) == 6
        assert weighted_average(-200, 5, 100, 5) == 0


class TestCatalog:

    def test_codes_are_uppercased(self, uow, chart):
        service = setup_catalog(uow)
        assert service.get_ingredient_by_code("FLOUR").name == "Flour"

    def test_duplicate_ingredient_rejected(self, uow, chart):
        service = setup_catalog(uow)
        result = service.create_ingredient(IngredientCreate(code="FLOUR", name="Again"))
        assert result.kind == ErrorKind.ALREADY_EXISTS


class TestPurchase:

    def test_first_purchase_sets_average(self, uow, chart):
        service = setup_catalog(uow)
        movement = buy(service, 1000, 5000).unwrap()

        stock = stock_of(service)
        assert movement.movement_type == MovementType.PURCHASE
        assert movement.unit_cost_cents == 5
        assert stock.quantity_on_hand == 1000
        assert stock.avg_cost_per_unit_cents == 5

    def test_average_recomputed_from_history(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        buy(service, 500, 3000).unwrap()

        stock = stock_of(service)
        assert stock.quantity_on_hand == 1500
        assert stock.avg_cost_per_unit_cents == 5

    def test_purchase_posts_entry(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()

        entries = service.ledger.find_entries(JournalEntryType.INVENTORY_PURCHASE)
        assert [entry.reference for entry in entries] == ["Purchase FLOUR @ WAREHOUSE"]
        assert balance(uow, "1200") == 5000
        assert balance(uow, "1000") == -5000

    def test_packing_is_carried_in_its_own_account(self, uow, chart):
        service = setup_catalog(uow, InventoryCategory.PACKING)
        buy(service, 10, 700).unwrap()

        assert balance(uow, "1210") == 700
        assert balance(uow, "1200") == 0

    def test_unknown_ingredient(self, uow, chart):
        service = setup_catalog(uow)
        result = service.record_purchase(
            "SUGAR", "WAREHOUSE", 10, chart["1000"].id, 5, DAY
        )
        assert result.kind == ErrorKind.NOT_FOUND
        assert service.list_recent_movements() == []

    def test_zero_quantity_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            PurchaseRequest(
                ingredient_code="FLOUR", location_code="WAREHOUSE",
                quantity=0, total_cost_cents=100, purchase_date=DAY,
            )


class TestUsageAndWriteOff:

    def test_usage_carries_average_cost(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()

        movement = service.record_usage("FLOUR", "WAREHOUSE", 200, DAY).unwrap()

        assert movement.total_cost_cents == 1000
        assert stock_of(service).quantity_on_hand == 800
        assert stock_of(service).avg_cost_per_unit_cents == 5
        assert balance(uow, "5000") == 1000
        assert balance(uow, "1200") == 4000

    def test_usage_may_go_negative(self, uow, chart):
        service = setup_catalog(uow)

        result = service.record_usage("FLOUR", "CASA_AG", 200, DAY)

        assert result.is_ok
        stock = stock_of(service, "CASA_AG")
        assert stock.quantity_on_hand == -200
        assert stock.negative_stock is True
        assert service.list_negative_stock_items() == [stock]

    def test_order_usage_posts_no_entry(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()

        service.record_usage("FLOUR", "WAREHOUSE", 200, DAY, "order", 1).unwrap()

        assert service.ledger.find_entries(JournalEntryType.EXPENSE) == []

    def test_write_off_expenses_waste(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()

        service.record_write_off("FLOUR", "WAREHOUSE", 100, DAY).unwrap()

        assert balance(uow, "6060") == 500
        assert stock_of(service).quantity_on_hand == 900

    def test_write_off_needs_stock(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 100, 500).unwrap()

        result = service.record_write_off("FLOUR", "WAREHOUSE", 101, DAY)

        assert result.kind == ErrorKind.INSUFFICIENT_STOCK
        assert stock_of(service).quantity_on_hand == 100
        assert balance(uow, "6060") == 0


class TestTransfer:

    def test_transfer_to_empty_location(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()

        movement = service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 500, DAY).unwrap()

        assert movement.unit_cost_cents == 5
        destination = stock_of(service, "CASA_AG")
        assert destination.quantity_on_hand == 500
        assert destination.avg_cost_per_unit_cents == 5
        assert stock_of(service).quantity_on_hand == 500
        assert balance(uow, "1200") == 5000

    def test_transfer_blends_destination_average(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 100, 400).unwrap()
        buy(service, 100, 700, location="CASA_AG").unwrap()

        service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 100, DAY).unwrap()

        assert stock_of(service, "CASA_AG").avg_cost_per_unit_cents == 6

    def test_transfer_needs_stock(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 100, 500).unwrap()

        result = service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 500, DAY)

        assert result.kind == ErrorKind.INSUFFICIENT_STOCK
        assert stock_of(service).quantity_on_hand == 100

    def test_transfer_to_same_location_rejected(self, uow, chart):
        service = setup_catalog(uow)
        result = service.transfer("FLOUR", "WAREHOUSE", "WAREHOUSE", 5, DAY)
        assert result.kind == ErrorKind.VALIDATION

    def test_delete_transfer_restores_quantities(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        movement = service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 300, DAY).unwrap()

        service.delete_transfer(movement.id).unwrap()

        assert stock_of(service).quantity_on_hand == 1000
        assert stock_of(service).avg_cost_per_unit_cents == 5
        assert stock_of(service, "CASA_AG").quantity_on_hand == 0
        assert stock_of(service, "CASA_AG").avg_cost_per_unit_cents == 0

    def test_delete_transfer_rejects_purchase(self, uow, chart):
        service = setup_catalog(uow)
        purchase = buy(service, 1000, 5000).unwrap()
        result = service.delete_transfer(purchase.id)
        assert result.kind == ErrorKind.NOT_A_TRANSFER

    def test_update_transfer(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        movement = service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 300, DAY).unwrap()

        service.update_transfer(movement.id, TransferRequest(
            ingredient_code="FLOUR",
            from_location_code="WAREHOUSE",
            to_location_code="CASA_AG",
            quantity=400,
            transfer_date=DAY,
        )).unwrap()

        assert stock_of(service).quantity_on_hand == 600
        assert stock_of(service, "CASA_AG").quantity_on_hand == 400


class TestReverseAndEditPurchases:

    def test_delete_purchase_restores_quantity(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        second = buy(service, 500, 3000, day=date(2024, 3, 2)).unwrap()

        service.delete_purchase(second.id).unwrap()

        assert stock_of(service).quantity_on_hand == 1000
        assert balance(uow, "1200") == 5000

    def test_delete_only_purchase_zeroes_average(self, uow, chart):
        service = setup_catalog(uow)
        purchase = buy(service, 1000, 5000).unwrap()

        service.delete_purchase(purchase.id).unwrap()

        assert stock_of(service).quantity_on_hand == 0
        assert stock_of(service).avg_cost_per_unit_cents == 0
        assert service.ledger.find_entries(JournalEntryType.INVENTORY_PURCHASE) == []

    def test_delete_first_of_two_same_day_purchases(self, uow, chart):
        service = setup_catalog(uow)
        first = buy(service, 100, 500).unwrap()
        second = buy(service, 10, 100).unwrap()
        first_id, first_entry_id = first.id, first.journal_entry_id

        service.delete_purchase(first_id).unwrap()

        entries = service.ledger.find_entries(JournalEntryType.INVENTORY_PURCHASE)
        assert [entry.id for entry in entries] == [second.journal_entry_id]
        assert service.ledger.get_entry(first_entry_id) is None
        assert stock_of(service).quantity_on_hand == 10
        assert balance(uow, "1200") == 100
        assert balance(uow, "1000") == -100

    def test_unlinked_purchase_matches_entry_by_amount(self, uow, chart):
        service = setup_catalog(uow)
        first = buy(service, 100, 500).unwrap()
        second = buy(service, 10, 100).unwrap()
        first.journal_entry_id = None
        second.journal_entry_id = None
        uow.session.commit()

        service.delete_purchase(first.id).unwrap()

        [entry] = service.ledger.find_entries(JournalEntryType.INVENTORY_PURCHASE)
        assert entry.total_debits == 100
        assert balance(uow, "1200") == 100

    def test_update_one_of_two_same_day_purchases(self, uow, chart):
        service = setup_catalog(uow)
        first = buy(service, 100, 500).unwrap()
        buy(service, 10, 100).unwrap()

        service.update_purchase(first.id, PurchaseRequest(
            ingredient_code="FLOUR",
            location_code="WAREHOUSE",
            quantity=200,
            total_cost_cents=1000,
            purchase_date=DAY,
        )).unwrap()

        assert stock_of(service).quantity_on_hand == 210
        assert balance(uow, "1200") == 1100
        assert balance(uow, "1000") == -1100

    def test_delete_purchase_rejects_usage(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        usage = service.record_usage("FLOUR", "WAREHOUSE", 10, DAY).unwrap()

        result = service.delete_purchase(usage.id)

        assert result.kind == ErrorKind.NOT_A_PURCHASE

    def test_update_purchase(self, uow, chart):
        service = setup_catalog(uow)
        purchase = buy(service, 1000, 5000).unwrap()

        updated = service.update_purchase(purchase.id, PurchaseRequest(
            ingredient_code="FLOUR",
            location_code="WAREHOUSE",
            quantity=800,
            total_cost_cents=4800,
            purchase_date=DAY,
        )).unwrap()

        assert updated.quantity == 800
        assert stock_of(service).quantity_on_hand == 800
        assert stock_of(service).avg_cost_per_unit_cents == 6
        assert balance(uow, "1200") == 4800

    def test_return_purchase(self, uow, chart):
        service = setup_catalog(uow)
        purchase = buy(service, 1000, 5000).unwrap()

        movement = service.return_purchase(purchase.id, DAY).unwrap()

        assert movement.movement_type == MovementType.RETURN
        assert movement.source_id == purchase.id
        assert stock_of(service).quantity_on_hand == 0
        assert balance(uow, "1200") == 0
        assert balance(uow, "1000") == 0

    def test_return_needs_the_stock(self, uow, chart):
        service = setup_catalog(uow)
        purchase = buy(service, 1000, 5000).unwrap()
        service.record_usage("FLOUR", "WAREHOUSE", 1, DAY).unwrap()

        result = service.return_purchase(purchase.id, DAY)

        assert result.kind == ErrorKind.INSUFFICIENT_QUANTITY
        assert stock_of(service).quantity_on_hand == 999


class TestQuantitiesFromHistory:

    def test_calculated_quantity_matches_stock(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        service.transfer("FLOUR", "WAREHOUSE", "CASA_AG", 300, DAY).unwrap()
        service.record_usage("FLOUR", "CASA_AG", 100, DAY).unwrap()
        service.record_write_off("FLOUR", "WAREHOUSE", 50, DAY).unwrap()

        flour = service.get_ingredient_by_code("FLOUR")
        for code in ("WAREHOUSE", "CASA_AG"):
            location = service.get_location_by_code(code)
            assert (
                service.calculated_quantity(flour.id, location.id)
                == stock_of(service, code).quantity_on_hand
            )

    def test_item_value_from_movements(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000).unwrap()
        service.record_usage("FLOUR", "WAREHOUSE", 200, DAY).unwrap()

        flour = service.get_ingredient_by_code("FLOUR")
        warehouse = service.get_location_by_code("WAREHOUSE")
        assert service.inventory_item_value_cents(flour.id, warehouse.id) == 4000
        assert service.total_inventory_value_cents() == 4000


class TestBackfill:

    def test_backfill_zero_cost_usage(self, uow, chart):
        service = setup_catalog(uow)
        usage = service.record_usage("FLOUR", "WAREHOUSE", 100, DAY).unwrap()
        assert usage.total_cost_cents == 0
        buy(service, 1000, 5000, day=date(2024, 2, 1)).unwrap()

        assert service.backfill_movement_costs().unwrap() == 1
        assert usage.unit_cost_cents == 5
        assert usage.total_cost_cents == 500
        assert service.zero_cost_movements() == []

    def test_backfill_falls_back_to_default_cost(self, uow, chart):
        service = setup_catalog(uow)
        service.get_ingredient_by_code("FLOUR").cost_per_unit_cents = 3
        service.db.commit()
        usage = service.record_usage("FLOUR", "WAREHOUSE", 10, DAY).unwrap()
        usage.unit_cost_cents = 0
        usage.total_cost_cents = 0
        service.db.commit()

        assert service.backfill_movement_costs().unwrap() == 1
        assert usage.total_cost_cents == 30


class TestOrders:

    def make_order(self, uow, quantity=1, overrides=()):
        product = Product(sku="PAN", name="Pan de elote", price_cents=25000)
        recipe = Recipe(
            product=product,
            effective_date=date(2024, 1, 1),
            lines=[RecipeLine(ingredient_code="FLOUR", quantity=Decimal("250"))],
        )
        order = Order(
            customer_name="Ana",
            product=product,
            quantity=quantity,
            delivery_date=date(2024, 3, 10),
            status=OrderStatus.NEW_ORDER,
            ingredients=[
                OrderIngredient(ingredient_code=code, quantity=Decimal(qty))
                for code, qty in overrides
            ],
        )
        uow.session.add_all([product, recipe, order])
        uow.session.commit()
        return order

    def test_recipe_scales_with_order_quantity(self, uow, chart):
        service = setup_catalog(uow)
        order = self.make_order(uow, quantity=2)
        assert service.order_requirements(order) == [("FLOUR", 500, "CASA_AG")]

    def test_overrides_replace_recipe(self, uow, chart):
        service = setup_catalog(uow)
        order = self.make_order(uow, quantity=2, overrides=[("FLOUR", "120.5")])
        assert service.order_requirements(order) == [("FLOUR", 121, "CASA_AG")]

    def test_consume_and_reverse(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 1000, 5000, location="CASA_AG").unwrap()
        order = self.make_order(uow)

        breakdown = service.consume_for_order(order).unwrap()

        assert breakdown == {
            "ingredients": 1250, "packing": 0, "kitchen": 0, "total": 1250,
        }
        assert stock_of(service, "CASA_AG").quantity_on_hand == 750

        assert service.reverse_order_consumption(order.id).unwrap() == 1
        assert stock_of(service, "CASA_AG").quantity_on_hand == 1000
        assert stock_of(service, "CASA_AG").avg_cost_per_unit_cents == 5

    def test_required_ingredients_for_new_orders(self, uow, chart):
        service = setup_catalog(uow)
        buy(service, 300, 1500, location="CASA_AG").unwrap()
        self.make_order(uow, quantity=2)

        [requirement] = service.required_ingredients_for_new_orders()

        assert requirement.ingredient_code == "FLOUR"
        assert requirement.location_code == "CASA_AG"
        assert requirement.total_required == 500
        assert requirement.on_hand == 300
        assert requirement.shortage == 200
        assert requirement.needed_by == date(2024, 3, 10)
