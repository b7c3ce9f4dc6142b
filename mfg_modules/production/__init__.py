"""
Production Module (``mfg_modules.production``).

Responsibility
--------------
Bills of materials and work orders.  Releasing a work order freezes its
exploded component list; build postings backflush those components and
receive the finished goods through the stock ledger.

Architecture position
---------------------
**Modules layer** -- DTOs, ORM, the work order workflow and a service
facade over ``BomExplosionEngine``, ``StockAllocator`` and the ledger.

Failure modes
-------------
* BomMissingError, CyclicBomError on BOM problems.
* OverBuildError when a build exceeds the planned quantity.
* InsufficientStockError when a component cannot be backflushed.
"""

from mfg_modules.production.models import (
    Bom,
    BomLine,
    BomLineRequest,
    CreateBomRequest,
    CreateWorkOrderRequest,
    ReservationStatus,
    StockReservation,
    WorkOrder,
    WorkOrderComponent,
    WorkOrderPriority,
    WorkOrderStatus,
)
from mfg_modules.production.workflows import WORK_ORDER_WORKFLOW

__all__ = [
    "Bom",
    "BomLine",
    "BomLineRequest",
    "CreateBomRequest",
    "CreateWorkOrderRequest",
    "ReservationStatus",
    "StockReservation",
    "WorkOrder",
    "WorkOrderComponent",
    "WorkOrderPriority",
    "WorkOrderStatus",
    "WORK_ORDER_WORKFLOW",
]
