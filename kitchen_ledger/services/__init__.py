"""Business logic services."""

from kitchen_ledger.services.unit_of_work import UnitOfWork
from kitchen_ledger.services.ledger_service import LedgerService
from kitchen_ledger.services.inventory_service import InventoryService
from kitchen_ledger.services.order_accounting_service import OrderAccountingService
from kitchen_ledger.services.verification_service import VerificationService
from kitchen_ledger.services.repair_service import RepairService

__all__ = [
    "UnitOfWork",
    "LedgerService",
    "InventoryService",
    "OrderAccountingService",
    "VerificationService",
    "RepairService",
]
