"""
Inventory Module (``mfg_modules.inventory``).

Responsibility
--------------
Issues, returns, bin transfers, reason-coded adjustments and reversals on
the stock ledger, plus on-hand, availability and reorder queries.

Architecture position
---------------------
**Modules layer** -- service facade over ``LedgerService`` and
``StockAllocator``.  Owns no tables: every movement is a ledger entry.

Invariants enforced
-------------------
* On-hand never goes negative; auto-selected issues are all-or-nothing.
* The bin projection always reconciles with the ledger (``reconcile``).
"""

from mfg_modules.inventory.models import (
    LedgerEntryRecord,
    MovementResult,
    ReorderAlert,
    StockLevel,
    VoucherPrefix,
)

__all__ = [
    "LedgerEntryRecord",
    "MovementResult",
    "ReorderAlert",
    "StockLevel",
    "VoucherPrefix",
]
