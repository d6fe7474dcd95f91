"""
Inventory service: the moving-average costing engine.

Every stock change is recorded as a movement, applied to the
(ingredient, location) stock record and, when it changes the
value carried in the books, mirrored by a journal entry:

    purchase    Dr inventory        / Cr paid-from account
    usage       Dr usage account    / Cr inventory
    write-off   Dr waste/shrinkage  / Cr inventory
    return      Dr paid-from        / Cr inventory
    transfer    no entry (value stays in the same account)

Usage sourced from an order posts no entry here; the order
bridge moves the cost through WIP instead.

Average cost rules:
- a purchase recomputes the average from the full purchase
  history of the pair, so the average is always
  round(sum of purchase cost / sum of purchase quantity)
- a transfer carries the origin's average and blends it into
  the destination with one weighted step
- usage and write-offs never change the average

All arithmetic is integer cents. Rounding is to the nearest
cent, ties away from zero.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func, or_

from kitchen_ledger.config import get_settings
from kitchen_ledger.models.account import Account
from kitchen_ledger.models.enums import (
    JournalEntryType,
    MovementType,
    OrderStatus,
)
from kitchen_ledger.models.ingredient import Ingredient
from kitchen_ledger.models.inventory_item import InventoryItem
from kitchen_ledger.models.inventory_movement import InventoryMovement
from kitchen_ledger.models.journal_entry import JournalEntry
from kitchen_ledger.models.location import Location
from kitchen_ledger.models.order import Order
from kitchen_ledger.models.recipe import Recipe
from kitchen_ledger.schemas.inventory import (
    IngredientCreate,
    IngredientRequirement,
    LocationCreate,
    PurchaseRequest,
    TransferRequest,
)
from kitchen_ledger.schemas.ledger import JournalEntryCreate
from kitchen_ledger.services import chart_of_accounts as coa
from kitchen_ledger.services.ledger_service import LedgerService, credit, debit
from kitchen_ledger.services.result import Err, ErrorKind, Ok, Result
from kitchen_ledger.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Movement types that add stock at to_location / remove it at from_location
INBOUND_TYPES = (MovementType.PURCHASE, MovementType.TRANSFER)
OUTBOUND_TYPES = (
    MovementType.USAGE,
    MovementType.WRITE_OFF,
    MovementType.TRANSFER,
    MovementType.RETURN,
)

ORDER_SOURCE = "order"

# Breakdown keys of consume_for_order(), by inventory account
BREAKDOWN_KEYS = {
    coa.INGREDIENTS_INVENTORY: "ingredients",
    coa.PACKING_INVENTORY: "packing",
    coa.KITCHEN_INVENTORY: "kitchen",
}


# --- Rounding ---

def round_half_away(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, ties away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("division by zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    if numerator >= 0:
        return (2 * numerator + denominator) // (2 * denominator)
    return -((2 * -numerator + denominator) // (2 * denominator))


def round_quantity(value) -> int:
    """Round a recipe quantity to whole base units."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def weighted_average(
    old_quantity: int, old_cost: int, quantity: int, unit_cost: int
) -> int:
    """Average cost after adding quantity at unit_cost to a stock."""
    new_quantity = old_quantity + quantity
    if new_quantity <= 0:
        return 0
    return round_half_away(
        old_quantity * old_cost + quantity * unit_cost, new_quantity
    )


class InventoryService:

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.db = uow.session
        self.ledger = LedgerService(uow)
        self.settings = get_settings()

    # --- Lookups ---

    def get_ingredient_by_code(self, code: str) -> Ingredient | None:
        return self.db.execute(
            select(Ingredient).where(Ingredient.code == code)
        ).scalar_one_or_none()

    def get_location_by_code(self, code: str) -> Location | None:
        return self.db.execute(
            select(Location).where(Location.code == code)
        ).scalar_one_or_none()

    def _require_ingredient(self, code: str) -> Result:
        ingredient = self.get_ingredient_by_code(code)
        if ingredient is None:
            return Err(ErrorKind.NOT_FOUND, f"Ingredient {code} not found")
        return Ok(ingredient)

    def _require_location(self, code: str) -> Result:
        location = self.get_location_by_code(code)
        if location is None:
            return Err(ErrorKind.NOT_FOUND, f"Location {code} not found")
        return Ok(location)

    def _category_accounts(self, ingredient: Ingredient) -> Result:
        """The (inventory, usage) accounts for the ingredient's category."""
        accounts = coa.accounts_for(ingredient.inventory_type)
        inventory = self.ledger.require_account(accounts.inventory_code)
        if inventory.is_err:
            return inventory
        usage = self.ledger.require_account(accounts.usage_code)
        if usage.is_err:
            return usage
        return Ok((inventory.value, usage.value))

    def get_movement(self, movement_id: int) -> InventoryMovement | None:
        return self.db.get(InventoryMovement, movement_id)

    def get_or_create_stock(
        self, ingredient_id: int, location_id: int, lock: bool = False
    ) -> InventoryItem:
        """
        Return the stock record for the pair, creating an empty one
        the first time the pair is touched.

        With lock=True the row is selected FOR UPDATE, so two
        purchases of the same pair take turns.
        """
        query = select(InventoryItem).where(
            InventoryItem.ingredient_id == ingredient_id,
            InventoryItem.location_id == location_id,
        )
        if lock:
            query = query.with_for_update()
        stock = self.db.execute(query).scalar_one_or_none()
        if stock is None:
            stock = InventoryItem(
                ingredient_id=ingredient_id,
                location_id=location_id,
                quantity_on_hand=0,
                avg_cost_per_unit_cents=0,
                negative_stock=False,
            )
            self.db.add(stock)
            self.db.flush()
        return stock

    # --- Catalog ---

    def create_ingredient(self, request: IngredientCreate) -> Result:
        return self.uow.run(self._create_ingredient, request)

    def _create_ingredient(self, request: IngredientCreate) -> Result:
        if self.get_ingredient_by_code(request.code) is not None:
            return Err(
                ErrorKind.ALREADY_EXISTS,
                f"Ingredient {request.code} already exists",
            )
        ingredient = Ingredient(
            code=request.code,
            name=request.name,
            unit=request.unit,
            inventory_type=request.inventory_type,
            cost_per_unit_cents=request.cost_per_unit_cents,
        )
        self.db.add(ingredient)
        self.db.flush()
        return Ok(ingredient)

    def create_location(self, request: LocationCreate) -> Result:
        return self.uow.run(self._create_location, request)

    def _create_location(self, request: LocationCreate) -> Result:
        if self.get_location_by_code(request.code) is not None:
            return Err(
                ErrorKind.ALREADY_EXISTS,
                f"Location {request.code} already exists",
            )
        location = Location(code=request.code, name=request.name)
        self.db.add(location)
        self.db.flush()
        return Ok(location)

    # --- Average cost ---

    def purchase_average_cost(
        self, ingredient_id: int, location_id: int, as_of: date | None = None
    ) -> int | None:
        """
        round(sum of purchase cost / sum of purchase quantity) over
        every PURCHASE into the pair, or None without purchases.
        """
        query = select(
            func.coalesce(func.sum(InventoryMovement.quantity), 0),
            func.coalesce(func.sum(InventoryMovement.total_cost_cents), 0),
        ).where(
            InventoryMovement.movement_type == MovementType.PURCHASE,
            InventoryMovement.ingredient_id == ingredient_id,
            InventoryMovement.to_location_id == location_id,
        )
        if as_of is not None:
            query = query.where(InventoryMovement.movement_date <= as_of)
        total_quantity, total_cost = self.db.execute(query).one()
        if int(total_quantity) <= 0:
            return None
        return round_half_away(int(total_cost), int(total_quantity))

    def _current_unit_cost(
        self, stock: InventoryItem, ingredient: Ingredient
    ) -> int:
        """Cost at which stock leaves: the average, else the default."""
        if stock.avg_cost_per_unit_cents > 0:
            return stock.avg_cost_per_unit_cents
        return ingredient.cost_per_unit_cents

    # --- Purchases ---

    def record_purchase(
        self,
        ingredient_code: str,
        location_code: str,
        quantity: int,
        paid_from_account_id: int,
        unit_cost_cents: int,
        movement_date: date,
        source_type: str | None = None,
        source_id: int | None = None,
        total_cost_cents: int | None = None,
    ) -> Result:
        """
        Receive stock at a location and pay for it from an account.

        total_cost_cents defaults to quantity * unit_cost_cents. Pass
        it when the buyer knows the exact total, so the books carry
        what was actually paid rather than a rounded product.
        """
        return self.uow.run(
            self._record_purchase,
            ingredient_code, location_code, quantity, paid_from_account_id,
            unit_cost_cents, movement_date, source_type, source_id,
            total_cost_cents,
        )

    def _record_purchase(
        self, ingredient_code, location_code, quantity, paid_from_account_id,
        unit_cost_cents, movement_date, source_type=None, source_id=None,
        total_cost_cents=None,
    ):
        if quantity <= 0:
            return Err(ErrorKind.VALIDATION, "Quantity must be positive")
        if unit_cost_cents < 0:
            return Err(ErrorKind.VALIDATION, "Unit cost cannot be negative")

        result = self._require_ingredient(ingredient_code)
        if result.is_err:
            return result
        ingredient = result.value
        result = self._require_location(location_code)
        if result.is_err:
            return result
        location = result.value
        paid_from = self.db.get(Account, paid_from_account_id)
        if paid_from is None:
            return Err(
                ErrorKind.NOT_FOUND, f"Account {paid_from_account_id} not found"
            )
        result = self._category_accounts(ingredient)
        if result.is_err:
            return result
        inventory_account, _ = result.value

        stock = self.get_or_create_stock(
            ingredient.id, location.id, lock=self.settings.LOCK_STOCK_ROWS
        )
        if total_cost_cents is None:
            total_cost_cents = quantity * unit_cost_cents

        movement = InventoryMovement(
            ingredient_id=ingredient.id,
            to_location_id=location.id,
            quantity=quantity,
            movement_type=MovementType.PURCHASE,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=total_cost_cents,
            source_type=source_type,
            source_id=source_id,
            note=f"Purchase into {location.code}",
            movement_date=movement_date,
            paid_from_account_id=paid_from.id,
        )
        self.db.add(movement)
        self.db.flush()

        average = self.purchase_average_cost(ingredient.id, location.id)
        stock.avg_cost_per_unit_cents = (
            average if average is not None else unit_cost_cents
        )
        stock.set_quantity(stock.quantity_on_hand + quantity)
        self.db.flush()

        reference = f"Purchase {ingredient.code} @ {location.code}"
        lines = []
        if total_cost_cents > 0:
            lines = [
                debit(inventory_account.id, total_cost_cents),
                credit(paid_from.id, total_cost_cents),
            ]
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=movement_date,
            entry_type=JournalEntryType.INVENTORY_PURCHASE,
            reference=reference,
            description=reference,
            lines=lines,
        ))
        if posted.is_err:
            return posted
        movement.journal_entry_id = posted.value.id
        self.db.flush()

        logger.info(
            "Purchased %d %s into %s for %d cents (avg now %d)",
            quantity, ingredient.code, location.code, total_cost_cents,
            stock.avg_cost_per_unit_cents,
        )
        return Ok(movement)

    def create_purchase(self, request: PurchaseRequest) -> Result:
        """Record a purchase given its total cost."""
        return self.uow.run(self._create_purchase, request)

    def _create_purchase(self, request: PurchaseRequest) -> Result:
        paid_from_account_id = request.paid_from_account_id
        if paid_from_account_id is None:
            cash = self.ledger.require_account(coa.CASH)
            if cash.is_err:
                return cash
            paid_from_account_id = cash.value.id

        unit_cost_cents = round_half_away(
            request.total_cost_cents, request.quantity
        )
        return self._record_purchase(
            request.ingredient_code,
            request.location_code,
            request.quantity,
            paid_from_account_id,
            unit_cost_cents,
            request.purchase_date,
            request.source_type,
            request.source_id,
            total_cost_cents=request.total_cost_cents,
        )

    def return_purchase(
        self,
        movement_id: int,
        return_date: date | None = None,
        note: str | None = None,
    ) -> Result:
        """
        Send (part of) a purchase back to the supplier.

        The whole purchase quantity is returned at the cost it was
        bought at. The purchase row itself stays, so the average
        recomputed from history is an approximation.
        """
        return self.uow.run(self._return_purchase, movement_id, return_date, note)

    def _return_purchase(self, movement_id, return_date, note):
        purchase = self.get_movement(movement_id)
        if purchase is None:
            return Err(ErrorKind.NOT_FOUND, f"Movement {movement_id} not found")
        if purchase.movement_type != MovementType.PURCHASE:
            return Err(
                ErrorKind.NOT_A_PURCHASE,
                f"Movement {movement_id} is a {purchase.movement_type.value}",
            )

        ingredient = purchase.ingredient
        location = purchase.to_location
        stock = self.get_or_create_stock(ingredient.id, location.id)
        if stock.quantity_on_hand < purchase.quantity:
            return Err(
                ErrorKind.INSUFFICIENT_QUANTITY,
                f"{ingredient.code} @ {location.code}: on hand "
                f"{stock.quantity_on_hand}, purchase was {purchase.quantity}",
            )

        result = self._category_accounts(ingredient)
        if result.is_err:
            return result
        inventory_account, _ = result.value
        paid_from_account_id = purchase.paid_from_account_id
        if paid_from_account_id is None:
            cash = self.ledger.require_account(coa.CASH)
            if cash.is_err:
                return cash
            paid_from_account_id = cash.value.id

        return_date = return_date or date.today()
        movement = InventoryMovement(
            ingredient_id=ingredient.id,
            from_location_id=location.id,
            quantity=purchase.quantity,
            movement_type=MovementType.RETURN,
            unit_cost_cents=purchase.unit_cost_cents,
            total_cost_cents=purchase.total_cost_cents,
            source_type="purchase",
            source_id=purchase.id,
            note=note or f"Return of purchase #{purchase.id}",
            movement_date=return_date,
            paid_from_account_id=paid_from_account_id,
        )
        self.db.add(movement)
        stock.set_quantity(stock.quantity_on_hand - purchase.quantity)
        average = self.purchase_average_cost(ingredient.id, location.id)
        if average is not None:
            stock.avg_cost_per_unit_cents = average
        self.db.flush()

        reference = f"Return {ingredient.code} @ {location.code}"
        lines = []
        if purchase.total_cost_cents > 0:
            lines = [
                debit(paid_from_account_id, purchase.total_cost_cents),
                credit(inventory_account.id, purchase.total_cost_cents),
            ]
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=return_date,
            entry_type=JournalEntryType.INVENTORY_PURCHASE,
            reference=reference,
            description=reference,
            lines=lines,
        ))
        if posted.is_err:
            return posted

        logger.info(
            "Returned purchase #%d (%d %s from %s)",
            purchase.id, purchase.quantity, ingredient.code, location.code,
        )
        return Ok(movement)

    def delete_purchase(self, movement_id: int) -> Result:
        """
        Remove a purchase and its journal entry.

        The quantity is restored exactly. The average is not
        recomputed: it drops to 0 when the stock is emptied and
        otherwise stays as it was.
        """
        return self.uow.run(self._delete_purchase, movement_id)

    def _delete_purchase(self, movement_id: int) -> Result:
        purchase = self.get_movement(movement_id)
        if purchase is None:
            return Err(ErrorKind.NOT_FOUND, f"Movement {movement_id} not found")
        if purchase.movement_type != MovementType.PURCHASE:
            return Err(
                ErrorKind.NOT_A_PURCHASE,
                f"Movement {movement_id} is a {purchase.movement_type.value}",
            )
        return self._reverse_purchase(purchase)

    def _reverse_purchase(self, purchase: InventoryMovement) -> Result:
        ingredient = purchase.ingredient
        location = purchase.to_location
        stock = self.get_or_create_stock(ingredient.id, location.id)

        new_quantity = stock.quantity_on_hand - purchase.quantity
        if new_quantity <= 0:
            stock.avg_cost_per_unit_cents = 0
        stock.set_quantity(new_quantity)

        entry = self._purchase_entry(purchase)
        purchase_id = purchase.id
        self.db.delete(purchase)
        self.db.flush()
        if entry is not None:
            deleted = self.ledger.delete_entry(entry.id)
            if deleted.is_err:
                return deleted

        logger.info(
            "Deleted purchase #%d (%s @ %s)",
            purchase_id, ingredient.code, location.code,
        )
        return Ok(purchase_id)

    def _purchase_entry(self, purchase: InventoryMovement) -> JournalEntry | None:
        """
        The journal entry a purchase posted.

        Purchases recorded before entries were linked are matched by
        reference and date, preferring the entry for the same amount.
        """
        if purchase.journal_entry_id is not None:
            return self.ledger.get_entry(purchase.journal_entry_id)

        reference = (
            f"Purchase {purchase.ingredient.code} @ {purchase.to_location.code}"
        )
        candidates = self.db.execute(
            select(JournalEntry)
            .where(
                JournalEntry.entry_type == JournalEntryType.INVENTORY_PURCHASE,
                JournalEntry.reference == reference,
                JournalEntry.date == purchase.movement_date,
            )
            .order_by(JournalEntry.id.desc())
        ).scalars().all()
        for entry in candidates:
            if entry.total_debits == purchase.total_cost_cents:
                return entry
        return candidates[0] if candidates else None

    def update_purchase(
        self, movement_id: int, request: PurchaseRequest
    ) -> Result:
        """Replace a purchase: reverse it, then record the request."""
        return self.uow.run(self._update_purchase, movement_id, request)

    def _update_purchase(self, movement_id, request):
        reversed_ = self._delete_purchase(movement_id)
        if reversed_.is_err:
            return reversed_
        return self._create_purchase(request)

    # --- Usage and write-offs ---

    def record_usage(
        self,
        ingredient_code: str,
        location_code: str,
        quantity: int,
        movement_date: date,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> Result:
        """
        Consume stock at its current cost.

        Usage never fails for lack of stock: the quantity may go
        negative, which sets the stock's negative_stock flag.
        """
        return self.uow.run(
            self._record_usage,
            ingredient_code, location_code, quantity, movement_date,
            source_type, source_id,
        )

    def _record_usage(
        self, ingredient_code, location_code, quantity, movement_date,
        source_type=None, source_id=None,
    ):
        if quantity <= 0:
            return Err(ErrorKind.VALIDATION, "Quantity must be positive")
        result = self._require_ingredient(ingredient_code)
        if result.is_err:
            return result
        ingredient = result.value
        result = self._require_location(location_code)
        if result.is_err:
            return result
        location = result.value
        result = self._category_accounts(ingredient)
        if result.is_err:
            return result
        inventory_account, usage_account = result.value

        stock = self.get_or_create_stock(ingredient.id, location.id)
        unit_cost_cents = self._current_unit_cost(stock, ingredient)
        total_cost_cents = quantity * unit_cost_cents

        movement = InventoryMovement(
            ingredient_id=ingredient.id,
            from_location_id=location.id,
            quantity=quantity,
            movement_type=MovementType.USAGE,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=total_cost_cents,
            source_type=source_type,
            source_id=source_id,
            note=f"Usage from {location.code}",
            movement_date=movement_date,
        )
        self.db.add(movement)
        stock.set_quantity(stock.quantity_on_hand - quantity)
        self.db.flush()

        if stock.negative_stock:
            logger.warning(
                "%s @ %s is negative (%d) after usage",
                ingredient.code, location.code, stock.quantity_on_hand,
            )

        # Order usage is costed through WIP by the order bridge
        if source_type != ORDER_SOURCE:
            reference = f"Usage {ingredient.code} @ {location.code}"
            lines = []
            if total_cost_cents > 0:
                lines = [
                    debit(usage_account.id, total_cost_cents),
                    credit(inventory_account.id, total_cost_cents),
                ]
            posted = self.ledger.post_entry(JournalEntryCreate(
                date=movement_date,
                entry_type=JournalEntryType.EXPENSE,
                reference=reference,
                description=reference,
                lines=lines,
            ))
            if posted.is_err:
                return posted

        return Ok(movement)

    def record_write_off(
        self,
        ingredient_code: str,
        location_code: str,
        quantity: int,
        movement_date: date,
        source_type: str | None = None,
        source_id: int | None = None,
        note: str | None = None,
    ) -> Result:
        """Throw stock away and expense it as waste & shrinkage."""
        return self.uow.run(
            self._record_write_off,
            ingredient_code, location_code, quantity, movement_date,
            source_type, source_id, note,
        )

    def _record_write_off(
        self, ingredient_code, location_code, quantity, movement_date,
        source_type, source_id, note,
    ):
        if quantity <= 0:
            return Err(ErrorKind.VALIDATION, "Quantity must be positive")
        result = self._require_ingredient(ingredient_code)
        if result.is_err:
            return result
        ingredient = result.value
        result = self._require_location(location_code)
        if result.is_err:
            return result
        location = result.value
        result = self._category_accounts(ingredient)
        if result.is_err:
            return result
        inventory_account, _ = result.value
        waste = self.ledger.require_account(coa.WASTE_SHRINKAGE)
        if waste.is_err:
            return waste

        stock = self.get_or_create_stock(ingredient.id, location.id)
        if stock.quantity_on_hand < quantity:
            return Err(
                ErrorKind.INSUFFICIENT_STOCK,
                f"{ingredient.code} @ {location.code}: on hand "
                f"{stock.quantity_on_hand}, requested {quantity}",
            )

        unit_cost_cents = self._current_unit_cost(stock, ingredient)
        total_cost_cents = quantity * unit_cost_cents
        movement = InventoryMovement(
            ingredient_id=ingredient.id,
            from_location_id=location.id,
            quantity=quantity,
            movement_type=MovementType.WRITE_OFF,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=total_cost_cents,
            source_type=source_type,
            source_id=source_id,
            note=note or "Write-off (waste / thrown out)",
            movement_date=movement_date,
        )
        self.db.add(movement)
        stock.set_quantity(stock.quantity_on_hand - quantity)
        self.db.flush()

        reference = f"Write-off {ingredient.code} @ {location.code}"
        lines = []
        if total_cost_cents > 0:
            lines = [
                debit(waste.value.id, total_cost_cents),
                credit(inventory_account.id, total_cost_cents),
            ]
        posted = self.ledger.post_entry(JournalEntryCreate(
            date=movement_date,
            entry_type=JournalEntryType.EXPENSE,
            reference=reference,
            description=reference,
            lines=lines,
        ))
        if posted.is_err:
            return posted

        logger.info(
            "Wrote off %d %s at %s (%d cents)",
            quantity, ingredient.code, location.code, total_cost_cents,
        )
        return Ok(movement)

    # --- Transfers ---

    def transfer(
        self,
        ingredient_code: str,
        from_location_code: str,
        to_location_code: str,
        quantity: int,
        movement_date: date,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> Result:
        """
        Move stock between locations at the origin's average cost.

        The value stays in the same inventory account, so no
        journal entry is posted.
        """
        return self.uow.run(
            self._transfer,
            ingredient_code, from_location_code, to_location_code,
            quantity, movement_date, source_type, source_id,
        )

    def _transfer(
        self, ingredient_code, from_location_code, to_location_code,
        quantity, movement_date, source_type=None, source_id=None,
    ):
        if from_location_code == to_location_code:
            return Err(ErrorKind.VALIDATION, "Origin and destination must differ")
        if quantity <= 0:
            return Err(ErrorKind.VALIDATION, "Quantity must be positive")
        result = self._require_ingredient(ingredient_code)
        if result.is_err:
            return result
        ingredient = result.value
        result = self._require_location(from_location_code)
        if result.is_err:
            return result
        from_location = result.value
        result = self._require_location(to_location_code)
        if result.is_err:
            return result
        to_location = result.value

        from_stock = self.get_or_create_stock(ingredient.id, from_location.id)
        to_stock = self.get_or_create_stock(ingredient.id, to_location.id)
        if from_stock.quantity_on_hand < quantity:
            return Err(
                ErrorKind.INSUFFICIENT_STOCK,
                f"{ingredient.code} @ {from_location.code}: on hand "
                f"{from_stock.quantity_on_hand}, requested {quantity}",
            )

        unit_cost_cents = from_stock.avg_cost_per_unit_cents
        total_cost_cents = quantity * unit_cost_cents

        from_stock.set_quantity(from_stock.quantity_on_hand - quantity)
        to_stock.avg_cost_per_unit_cents = weighted_average(
            to_stock.quantity_on_hand,
            to_stock.avg_cost_per_unit_cents,
            quantity,
            unit_cost_cents,
        )
        to_stock.set_quantity(to_stock.quantity_on_hand + quantity)

        movement = InventoryMovement(
            ingredient_id=ingredient.id,
            from_location_id=from_location.id,
            to_location_id=to_location.id,
            quantity=quantity,
            movement_type=MovementType.TRANSFER,
            unit_cost_cents=unit_cost_cents,
            total_cost_cents=total_cost_cents,
            source_type=source_type,
            source_id=source_id,
            note=(
                f"Transfer {quantity} from {from_location.code} "
                f"to {to_location.code}"
            ),
            movement_date=movement_date,
        )
        self.db.add(movement)
        self.db.flush()
        logger.info(
            "Transferred %d %s from %s to %s",
            quantity, ingredient.code, from_location.code, to_location.code,
        )
        return Ok(movement)

    def delete_transfer(self, movement_id: int) -> Result:
        """
        Undo a transfer.

        The destination's average is left alone (or zeroed when it
        is emptied); the origin blends the stock back in at the
        transfer's unit cost.
        """
        return self.uow.run(self._delete_transfer, movement_id)

    def _delete_transfer(self, movement_id: int) -> Result:
        movement = self.get_movement(movement_id)
        if movement is None:
            return Err(ErrorKind.NOT_FOUND, f"Movement {movement_id} not found")
        if movement.movement_type != MovementType.TRANSFER:
            return Err(
                ErrorKind.NOT_A_TRANSFER,
                f"Movement {movement_id} is a {movement.movement_type.value}",
            )

        quantity = movement.quantity
        to_stock = self.get_or_create_stock(
            movement.ingredient_id, movement.to_location_id
        )
        new_to_quantity = to_stock.quantity_on_hand - quantity
        if new_to_quantity <= 0:
            to_stock.avg_cost_per_unit_cents = 0
        to_stock.set_quantity(new_to_quantity)

        from_stock = self.get_or_create_stock(
            movement.ingredient_id, movement.from_location_id
        )
        from_stock.avg_cost_per_unit_cents = weighted_average(
            from_stock.quantity_on_hand,
            from_stock.avg_cost_per_unit_cents,
            quantity,
            movement.unit_cost_cents,
        )
        from_stock.set_quantity(from_stock.quantity_on_hand + quantity)

        self.db.delete(movement)
        self.db.flush()
        logger.info("Deleted transfer #%d", movement_id)
        return Ok(movement_id)

    def update_transfer(
        self, movement_id: int, request: TransferRequest
    ) -> Result:
        return self.uow.run(self._update_transfer, movement_id, request)

    def _update_transfer(self, movement_id, request):
        reversed_ = self._delete_transfer(movement_id)
        if reversed_.is_err:
            return reversed_
        return self._transfer(
            request.ingredient_code,
            request.from_location_code,
            request.to_location_code,
            request.quantity,
            request.transfer_date,
            request.source_type,
            request.source_id,
        )

    # --- Orders ---

    def recipe_for_product(self, product_id: int, on_date: date) -> Recipe | None:
        """The latest recipe of the product in effect on the date."""
        return self.db.execute(
            select(Recipe)
            .where(
                Recipe.product_id == product_id,
                Recipe.effective_date <= on_date,
            )
            .order_by(Recipe.effective_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _prep_location_code(self, order: Order) -> str:
        if order.prep_location is not None:
            return order.prep_location.code
        return self.settings.DEFAULT_PREP_LOCATION

    def order_requirements(self, order: Order) -> list[tuple[str, int, str]]:
        """
        (ingredient code, quantity, location code) an order consumes.

        Per-order ingredient overrides replace the recipe and give
        absolute quantities. Recipe quantities are per unit of
        product and scale with the order quantity.
        """
        prep_location_code = self._prep_location_code(order)
        if order.ingredients:
            return [
                (
                    line.ingredient_code,
                    round_quantity(line.quantity),
                    line.location_code or prep_location_code,
                )
                for line in order.ingredients
            ]

        recipe = self.recipe_for_product(
            order.product_id, order.delivery_date or date.today()
        )
        if recipe is None:
            return []
        return [
            (
                line.ingredient_code,
                round_quantity(line.quantity * order.quantity),
                prep_location_code,
            )
            for line in recipe.lines
        ]

    def consume_for_order(self, order: Order) -> Result:
        """
        Record usage of everything the order needs, at the prep
        location, and return the cost split by inventory account:

            {"ingredients": ..., "packing": ..., "kitchen": ..., "total": ...}
        """
        return self.uow.run(self._consume_for_order, order)

    def _consume_for_order(self, order: Order) -> Result:
        breakdown = {key: 0 for key in BREAKDOWN_KEYS.values()}
        usage_date = order.delivery_date or date.today()

        for ingredient_code, quantity, location_code in self.order_requirements(order):
            if quantity <= 0:
                continue
            result = self._record_usage(
                ingredient_code, location_code, quantity, usage_date,
                ORDER_SOURCE, order.id,
            )
            if result.is_err:
                return result
            movement = result.value
            accounts = coa.accounts_for(movement.ingredient.inventory_type)
            breakdown[BREAKDOWN_KEYS[accounts.inventory_code]] += (
                movement.total_cost_cents
            )

        breakdown["total"] = sum(breakdown.values())
        logger.info(
            "Consumed stock for order #%d: %d cents", order.id, breakdown["total"]
        )
        return Ok(breakdown)

    def reverse_order_consumption(self, order_id: int) -> Result:
        """Put back every stock usage recorded for an order."""
        return self.uow.run(self._reverse_order_consumption, order_id)

    def _reverse_order_consumption(self, order_id: int) -> Result:
        movements = self.db.execute(
            select(InventoryMovement)
            .where(
                InventoryMovement.movement_type == MovementType.USAGE,
                InventoryMovement.source_type == ORDER_SOURCE,
                InventoryMovement.source_id == order_id,
            )
            .order_by(InventoryMovement.id)
        ).scalars().all()

        for movement in movements:
            stock = self.get_or_create_stock(
                movement.ingredient_id, movement.from_location_id
            )
            stock.avg_cost_per_unit_cents = weighted_average(
                stock.quantity_on_hand,
                stock.avg_cost_per_unit_cents,
                movement.quantity,
                movement.unit_cost_cents,
            )
            stock.set_quantity(stock.quantity_on_hand + movement.quantity)
            self.db.delete(movement)

        self.db.flush()
        logger.info(
            "Restored %d usage movement(s) of order #%d", len(movements), order_id
        )
        return Ok(len(movements))

    # --- Maintenance ---

    def zero_cost_movements(self) -> list[InventoryMovement]:
        """Usage and write-offs that left stock without carrying a cost."""
        return list(self.db.execute(
            select(InventoryMovement)
            .where(
                InventoryMovement.movement_type.in_(
                    [MovementType.USAGE, MovementType.WRITE_OFF]
                ),
                InventoryMovement.quantity > 0,
                InventoryMovement.from_location_id.is_not(None),
                or_(
                    InventoryMovement.unit_cost_cents == 0,
                    InventoryMovement.total_cost_cents == 0,
                ),
            )
            .order_by(InventoryMovement.id)
        ).scalars().all())

    def backfill_movement_costs(self) -> Result:
        """
        Give a cost to usage and write-offs recorded at zero cost.

        The unit cost comes from the pair's purchases up to the
        movement date, then from all of the pair's purchases, then
        from the ingredient's default cost. Returns how many
        movements were updated.
        """
        return self.uow.run(self._backfill_movement_costs)

    def _backfill_movement_costs(self) -> Result:
        updated = 0
        for movement in self.zero_cost_movements():
            unit_cost_cents = self.purchase_average_cost(
                movement.ingredient_id,
                movement.from_location_id,
                as_of=movement.movement_date,
            )
            if not unit_cost_cents:
                unit_cost_cents = self.purchase_average_cost(
                    movement.ingredient_id, movement.from_location_id
                )
            if not unit_cost_cents:
                unit_cost_cents = movement.ingredient.cost_per_unit_cents
            if not unit_cost_cents:
                continue

            movement.unit_cost_cents = unit_cost_cents
            movement.total_cost_cents = unit_cost_cents * movement.quantity
            updated += 1

        self.db.flush()
        if updated:
            logger.info("Backfilled cost of %d movement(s)", updated)
        return Ok(updated)

    # --- Queries ---

    def list_stock_items(self) -> list[InventoryItem]:
        """Every stock record, by ingredient code then location code."""
        return list(self.db.execute(
            select(InventoryItem)
            .join(Ingredient, InventoryItem.ingredient_id == Ingredient.id)
            .join(Location, InventoryItem.location_id == Location.id)
            .order_by(Ingredient.code, Location.code)
        ).scalars().all())

    def list_negative_stock_items(self) -> list[InventoryItem]:
        return [item for item in self.list_stock_items() if item.negative_stock]

    def list_recent_movements(self, limit: int = 50) -> list[InventoryMovement]:
        return list(self.db.execute(
            select(InventoryMovement)
            .order_by(
                InventoryMovement.movement_date.desc(),
                InventoryMovement.id.desc(),
            )
            .limit(limit)
        ).scalars().all())

    def calculated_quantity(self, ingredient_id: int, location_id: int) -> int:
        """Quantity of the pair according to the movement log alone."""
        inbound = self.db.execute(
            select(func.coalesce(func.sum(InventoryMovement.quantity), 0)).where(
                InventoryMovement.ingredient_id == ingredient_id,
                InventoryMovement.to_location_id == location_id,
                InventoryMovement.movement_type.in_(INBOUND_TYPES),
            )
        ).scalar()
        outbound = self.db.execute(
            select(func.coalesce(func.sum(InventoryMovement.quantity), 0)).where(
                InventoryMovement.ingredient_id == ingredient_id,
                InventoryMovement.from_location_id == location_id,
                InventoryMovement.movement_type.in_(OUTBOUND_TYPES),
            )
        ).scalar()
        return int(inbound) - int(outbound)

    def inventory_item_value_cents(
        self, ingredient_id: int, location_id: int
    ) -> int:
        """
        Value of the pair from movement costs: purchases and
        transfers in, minus usage, write-offs, transfers out and
        returns.
        """
        def total(location_column, types):
            return int(self.db.execute(
                select(
                    func.coalesce(func.sum(InventoryMovement.total_cost_cents), 0)
                ).where(
                    InventoryMovement.ingredient_id == ingredient_id,
                    location_column == location_id,
                    InventoryMovement.movement_type.in_(types),
                )
            ).scalar())

        return (
            total(InventoryMovement.to_location_id, INBOUND_TYPES)
            - total(InventoryMovement.from_location_id, OUTBOUND_TYPES)
        )

    def total_inventory_value_cents(self) -> int:
        """Sum of quantity * average cost over every stock record."""
        value = self.db.execute(
            select(func.coalesce(func.sum(
                InventoryItem.quantity_on_hand
                * InventoryItem.avg_cost_per_unit_cents
            ), 0))
        ).scalar()
        return int(value)

    def required_ingredients_for_new_orders(self) -> list[IngredientRequirement]:
        """
        What NEW_ORDER orders will consume, per prep location and
        ingredient, against what is on hand there.
        """
        orders = self.db.execute(
            select(Order)
            .where(Order.status == OrderStatus.NEW_ORDER)
            .order_by(Order.id)
        ).scalars().all()

        needs = defaultdict(lambda: {"quantity": 0, "dates": []})
        for order in orders:
            for code, quantity, location_code in self.order_requirements(order):
                need = needs[(code, location_code)]
                need["quantity"] += quantity
                if order.delivery_date is not None:
                    need["dates"].append(order.delivery_date)

        requirements = []
        for (code, location_code), need in sorted(needs.items()):
            ingredient = self.get_ingredient_by_code(code)
            location = self.get_location_by_code(location_code)
            if ingredient is None or location is None:
                logger.warning(
                    "Skipping requirement for unknown %s @ %s", code, location_code
                )
                continue
            stock = self.db.execute(
                select(InventoryItem).where(
                    InventoryItem.ingredient_id == ingredient.id,
                    InventoryItem.location_id == location.id,
                )
            ).scalar_one_or_none()
            on_hand = stock.quantity_on_hand if stock is not None else 0
            requirements.append(IngredientRequirement(
                location_id=location.id,
                location_code=location.code,
                ingredient_id=ingredient.id,
                ingredient_code=ingredient.code,
                unit=ingredient.unit,
                total_required=need["quantity"],
                on_hand=on_hand,
                shortage=max(need["quantity"] - on_hand, 0),
                needed_by=min(need["dates"]) if need["dates"] else None,
            ))
        return requirements
