"""
Procurement Module (``mfg_modules.procurement``).

Responsibility
--------------
RFQ -> quote -> purchase order -> goods receipt.  RFQs collect supplier
quotes; an approved quote converts exactly once into a draft PO; an
approved PO authorizes GRN postings into the stock ledger.

Architecture position
---------------------
**Modules layer** -- DTOs, ORM, workflows and a service facade that
delegates status changes to ``mfg_services.workflow_executor`` and stock
postings to ``mfg_kernel.services.ledger_service``.

Failure modes
-------------
* InvalidTransitionError, UnauthorizedError on status changes.
* AlreadyConvertedError on a repeated quote conversion.
* OverReceiptError when a GRN exceeds the ordered quantity.
"""

from mfg_modules.procurement.models import (
    CreatePurchaseOrderRequest,
    CreateQuoteRequest,
    CreateRfqRequest,
    GoodsReceipt,
    GoodsReceiptLine,
    GrnLineRequest,
    OrderDetails,
    PricedLineRequest,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    Quote,
    QuoteLine,
    QuoteStatus,
    Rfq,
    RfqLine,
    RfqLineRequest,
    RfqStatus,
)
from mfg_modules.procurement.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    QUOTE_WORKFLOW,
    RFQ_WORKFLOW,
)

__all__ = [
    "CreatePurchaseOrderRequest",
    "CreateQuoteRequest",
    "CreateRfqRequest",
    "GoodsReceipt",
    "GoodsReceiptLine",
    "GrnLineRequest",
    "OrderDetails",
    "PricedLineRequest",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderStatus",
    "Quote",
    "QuoteLine",
    "QuoteStatus",
    "Rfq",
    "RfqLine",
    "RfqLineRequest",
    "RfqStatus",
    "PURCHASE_ORDER_WORKFLOW",
    "QUOTE_WORKFLOW",
    "RFQ_WORKFLOW",
]
