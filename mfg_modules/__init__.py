"""
Manufacturing Modules.

Thin orchestration layers over the kernel, engines and services.
Each module contains:
- Domain models (status enums, DTOs, request objects)
- ORM persistence for its documents
- Workflows (state machines)
- A service facade that owns the transaction boundary

Modules:
- Procurement: RFQs, quotes, purchase orders, goods receipts
- Inventory: issues, returns, transfers, adjustments, reversals
- Production: BOMs, work orders, build postings with backflush

Stock quantities are written only through the kernel LedgerService.
"""

from mfg_modules import inventory, procurement, production

__all__ = [
    "inventory",
    "procurement",
    "production",
]
