"""
Procurement Module Service (``mfg_modules.procurement.service``).

Responsibility
--------------
Orchestrates the procure-to-stock cycle -- RFQ and quote capture, purchase
order creation, status transitions, quote-to-PO conversion and goods
receipt -- by delegating status changes to ``WorkflowExecutor`` and stock
postings to the kernel ``LedgerService``.

Architecture position
---------------------
**Modules layer** -- thin ERP glue.  ``ProcurementService`` is the sole
public entry point for procurement operations.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on success,
  ``rollback`` and re-raise on any exception).
* A quote converts to at most one PO: the quote row is locked, a converted
  quote raises AlreadyConvertedError, and ``source_quote_id`` is unique.
* Goods are received only against an ``approved`` PO, and never beyond the
  ordered quantity plus the configured tolerance unless the line is an
  explicit adjustment.

Failure modes
-------------
* InvalidTransitionError / UnauthorizedError from the workflow executor.
* AlreadyConvertedError on a second conversion.
* OverReceiptError, ValidationError on bad payloads.
* Any ledger error (BatchRequiredError, BinOccupiedError, ...) from GRN lines.

Audit relevance
---------------
Structured log events at each commit carry document numbers, actors and
quantities.  Every received quantity is a GRN ledger entry whose voucher is
the GRN number and whose reference is the purchase order.

Usage::

    service = ProcurementService(session, workflow_executor, config, clock=clock)
    quote = service.create_quote(CreateQuoteRequest.from_payload(payload), actor)
    service.transition("quote", quote.id, "pending", actor)
    service.transition("quote", quote.id, "approved", approver)
    po = service.convert_quote_to_po(quote.id, OrderDetails(), buyer)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_config.schema import EngineConfig
from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.dtos import Direction, LedgerEntryRecord, TransactionType
from mfg_kernel.exceptions import (
    AlreadyConvertedError,
    DocumentNotFoundError,
    InvalidTransitionError,
    OverReceiptError,
    ValidationError,
)
from mfg_kernel.logging_config import get_logger
from mfg_kernel.models.warehouse import Warehouse
from mfg_kernel.services.ledger_service import LedgerService
from mfg_kernel.services.sequence_service import SequenceService
from mfg_modules.procurement.models import (
    CreatePurchaseOrderRequest,
    CreateQuoteRequest,
    CreateRfqRequest,
    GoodsReceipt,
    GrnLineRequest,
    OrderDetails,
    PurchaseOrder,
    PurchaseOrderStatus,
    Quote,
    QuoteStatus,
    Rfq,
    RfqStatus,
)
from mfg_modules.procurement.orm import (
    GoodsReceiptLineModel,
    GoodsReceiptModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    QuoteLineModel,
    QuoteModel,
    RfqLineModel,
    RfqModel,
)
from mfg_modules.procurement.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    QUOTE_WORKFLOW,
    RFQ_WORKFLOW,
)
from mfg_services.stock_allocator import StockAllocator
from mfg_services.workflow_executor import WorkflowExecutor

logger = get_logger("modules.procurement.service")

_HUNDRED = Decimal("100")

# document_type -> (ORM class, workflow)
_DOCUMENTS = {
    "rfq": (RfqModel, RFQ_WORKFLOW),
    "quote": (QuoteModel, QUOTE_WORKFLOW),
    "purchase_order": (PurchaseOrderModel, PURCHASE_ORDER_WORKFLOW),
}


def _status_value(status: str | Enum) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class ProcurementService:
    """
    Orchestrates procurement documents and receiving.

    Contract
    --------
    * Every public method returns frozen DTOs (or ledger entry records),
      never ORM instances.
    * Session is committed on success; any exception rolls back and
      propagates.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * No supplier master data or scoring; suppliers are referenced by code.
    * No financial posting of receipts.
    """

    DOCUMENT_TYPES = tuple(_DOCUMENTS)

    def __init__(
        self,
        session: Session,
        workflow_executor: WorkflowExecutor,
        config: EngineConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._executor = workflow_executor
        self._config = config
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)
        self._ledger = LedgerService(
            session,
            clock=self._clock,
            enforce_single_sku_bins=config.inventory.enforce_single_sku_bins,
        )
        self._allocator = StockAllocator(
            session,
            self._ledger,
            enforce_single_sku_bins=config.inventory.enforce_single_sku_bins,
        )

    def _today(self) -> date:
        return self._clock.today()

    def _check_items(self, lines) -> None:
        for line in lines:
            self._ledger.get_item(line.item_id)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_rfq(self, request: CreateRfqRequest, actor: Actor) -> Rfq:
        try:
            self._executor.authority.require(actor, "procurement.rfq.create")
            self._check_items(request.lines)

            rfq = RfqModel(
                number=self._sequences.next_document_number("RFQ", self._clock.now()),
                description=request.description,
                description_ar=request.description_ar,
                request_date=request.request_date or self._today(),
                response_deadline=request.response_deadline,
                status=RfqStatus.DRAFT.value,
                created_by_id=actor.actor_id,
                lines=[
                    RfqLineModel(
                        line_number=idx + 1,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        required_date=line.required_date,
                        created_by_id=actor.actor_id,
                    )
                    for idx, line in enumerate(request.lines)
                ],
            )
            self._session.add(rfq)
            self._session.flush()
            dto = rfq.to_dto()
            self._session.commit()
            logger.info("procurement_rfq_created", extra={
                "rfq_id": str(dto.id),
                "number": dto.number,
                "line_count": len(dto.lines),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def create_quote(self, request: CreateQuoteRequest, actor: Actor) -> Quote:
        """Record a supplier quote; a linked RFQ must exist and be approved."""
        try:
            self._executor.authority.require(actor, "procurement.quote.create")
            self._check_items(request.lines)

            if request.rfq_id is not None:
                rfq = self._session.get(RfqModel, request.rfq_id)
                if rfq is None:
                    raise DocumentNotFoundError("rfq", str(request.rfq_id))
                if rfq.status != RfqStatus.APPROVED.value:
                    raise ValidationError(
                        f"RFQ {rfq.number} is {rfq.status}; quotes link only to approved RFQs",
                        ["rfq_id"],
                    )

            quote_number = request.quote_number or self._sequences.next_document_number(
                "QUOTE", self._clock.now(),
            )
            duplicate = self._session.execute(
                select(QuoteModel.id).where(QuoteModel.quote_number == quote_number)
            ).first()
            if duplicate:
                raise ValidationError(f"Quote number {quote_number} already exists", ["quote_number"])

            total = request.total_amount
            if total is None:
                total = sum((line.line_amount for line in request.lines), Decimal("0"))

            quote = QuoteModel(
                quote_number=quote_number,
                rfq_id=request.rfq_id,
                supplier_code=request.supplier_code,
                quote_date=request.quote_date or self._today(),
                valid_until=request.valid_until,
                currency=request.currency or self._config.procurement.default_currency,
                payment_terms=request.payment_terms,
                total_amount=total,
                status=QuoteStatus.DRAFT.value,
                created_by_id=actor.actor_id,
                lines=[
                    QuoteLineModel(
                        line_number=idx + 1,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        line_amount=line.line_amount,
                        created_by_id=actor.actor_id,
                    )
                    for idx, line in enumerate(request.lines)
                ],
            )
            self._session.add(quote)
            self._session.flush()
            dto = quote.to_dto()
            self._session.commit()
            logger.info("procurement_quote_created", extra={
                "quote_id": str(dto.id),
                "quote_number": dto.quote_number,
                "rfq_id": str(dto.rfq_id) if dto.rfq_id else None,
                "total_amount": str(dto.total_amount),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def create_purchase_order(self, request: CreatePurchaseOrderRequest, actor: Actor) -> PurchaseOrder:
        try:
            self._executor.authority.require(actor, "procurement.po.create")
            self._check_items(request.lines)
            if request.warehouse_id is not None and self._session.get(Warehouse, request.warehouse_id) is None:
                raise DocumentNotFoundError("warehouse", str(request.warehouse_id))

            total = request.total_amount
            if total is None:
                total = sum((line.line_amount for line in request.lines), Decimal("0"))

            po = PurchaseOrderModel(
                number=self._sequences.next_document_number("PO", self._clock.now()),
                supplier_code=request.supplier_code,
                order_date=request.order_date or self._today(),
                delivery_date=request.delivery_date,
                warehouse_id=request.warehouse_id,
                currency=request.currency or self._config.procurement.default_currency,
                payment_terms=request.payment_terms,
                delivery_terms=request.delivery_terms,
                notes=request.notes,
                total_amount=total,
                status=PurchaseOrderStatus.DRAFT.value,
                created_by_id=actor.actor_id,
                lines=[
                    PurchaseOrderLineModel(
                        line_number=idx + 1,
                        item_id=line.item_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        line_amount=line.line_amount,
                        received_quantity=Decimal("0"),
                        created_by_id=actor.actor_id,
                    )
                    for idx, line in enumerate(request.lines)
                ],
            )
            self._session.add(po)
            self._session.flush()
            dto = po.to_dto()
            self._session.commit()
            logger.info("procurement_po_created", extra={
                "po_id": str(dto.id),
                "number": dto.number,
                "supplier_code": dto.supplier_code,
                "line_count": len(dto.lines),
                "total_amount": str(dto.total_amount),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        document_type: str,
        document_id: UUID,
        target_status: str | Enum,
        actor: Actor,
    ) -> Rfq | Quote | PurchaseOrder:
        """Move an RFQ, quote or PO to ``target_status``."""
        if document_type not in _DOCUMENTS:
            raise ValidationError(f"Unknown procurement document type {document_type}", ["document_type"])
        model_cls, workflow = _DOCUMENTS[document_type]
        try:
            document = WorkflowExecutor.lock_document(self._session, model_cls, document_type, document_id)
            self._executor.apply_transition(
                self._session,
                workflow=workflow,
                document_type=document_type,
                document=document,
                target_status=_status_value(target_status),
                actor=actor,
                context={
                    "line_count": len(document.lines),
                    "valid_until": getattr(document, "valid_until", None),
                    "today": self._today(),
                },
            )
            dto = document.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Conversion
    # =========================================================================

    def convert_quote_to_po(
        self,
        quote_id: UUID,
        order_details: OrderDetails | None,
        actor: Actor,
    ) -> PurchaseOrder:
        """
        Materialize an approved quote as a draft purchase order.

        The PO copies supplier, currency, terms, lines and total from the
        quote; ``order_details`` overrides dates, warehouse and terms.  The
        quote moves to ``converted`` and both documents are linked in the
        same transaction.

        Raises:
            AlreadyConvertedError: the quote already produced a PO.
            InvalidTransitionError: the quote is not approved.
            UnauthorizedError: actor lacks ``procurement.quote.convert``.
        """
        details = order_details or OrderDetails()
        try:
            quote = WorkflowExecutor.lock_document(self._session, QuoteModel, "quote", quote_id)
            if quote.converted_po_id is not None or quote.status == QuoteStatus.CONVERTED.value:
                logger.warning("procurement_quote_already_converted", extra={
                    "quote_id": str(quote.id),
                    "po_id": str(quote.converted_po_id) if quote.converted_po_id else None,
                    "actor_id": str(actor.actor_id),
                })
                raise AlreadyConvertedError(
                    str(quote.id),
                    str(quote.converted_po_id) if quote.converted_po_id else None,
                )
            if details.warehouse_id is not None and self._session.get(Warehouse, details.warehouse_id) is None:
                raise DocumentNotFoundError("warehouse", str(details.warehouse_id))

            created: list[PurchaseOrderModel] = []

            def materialize_po(_transition) -> None:
                po = PurchaseOrderModel(
                    number=self._sequences.next_document_number("PO", self._clock.now()),
                    supplier_code=quote.supplier_code,
                    source_quote_id=quote.id,
                    order_date=details.order_date or self._today(),
                    delivery_date=details.delivery_date,
                    warehouse_id=details.warehouse_id,
                    currency=quote.currency,
                    payment_terms=details.payment_terms or quote.payment_terms,
                    delivery_terms=details.delivery_terms,
                    notes=details.notes,
                    total_amount=quote.total_amount,
                    status=PurchaseOrderStatus.DRAFT.value,
                    created_by_id=actor.actor_id,
                    lines=[
                        PurchaseOrderLineModel(
                            line_number=line.line_number,
                            item_id=line.item_id,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            line_amount=line.line_amount,
                            received_quantity=Decimal("0"),
                            created_by_id=actor.actor_id,
                        )
                        for line in quote.lines
                    ],
                )
                self._session.add(po)
                self._session.flush()
                quote.converted_po_id = po.id
                created.append(po)

            self._executor.apply_transition(
                self._session,
                workflow=QUOTE_WORKFLOW,
                document_type="quote",
                document=quote,
                target_status=QuoteStatus.CONVERTED.value,
                actor=actor,
                side_effect=materialize_po,
                internal=True,
            )
            po_dto = created[0].to_dto()
            self._session.commit()
            logger.info("procurement_quote_converted", extra={
                "quote_id": str(quote_id),
                "po_id": str(po_dto.id),
                "po_number": po_dto.number,
                "total_amount": str(po_dto.total_amount),
            })
            return po_dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Receiving
    # =========================================================================

    def post_grn(
        self,
        po_id: UUID,
        lines: Sequence[GrnLineRequest],
        actor: Actor,
        warehouse_id: UUID | None = None,
        receipt_date: date | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Receive goods against an approved purchase order.

        Each line becomes one GRN ledger entry (IN) into its bin, or into
        the put-away bin of the receiving warehouse when no bin is given.
        The GRN number is the voucher of every entry.

        Raises:
            InvalidTransitionError: PO is not approved.
            OverReceiptError: received plus requested exceeds the ordered
                quantity and tolerance, on a line not flagged as adjustment.
        """
        try:
            self._executor.authority.require(actor, "procurement.grn.post")
            if not lines:
                raise ValidationError("GRN requires at least one line", ["lines"])

            po = WorkflowExecutor.lock_document(self._session, PurchaseOrderModel, "purchase_order", po_id)
            if po.status != PurchaseOrderStatus.APPROVED.value:
                raise InvalidTransitionError(
                    "purchase_order",
                    str(po.id),
                    po.status,
                    "received",
                    "goods can only be received against an approved purchase order",
                )

            target_warehouse = warehouse_id or po.warehouse_id
            if target_warehouse is None:
                first_bin = next((ln.bin_id for ln in lines if ln.bin_id is not None), None)
                if first_bin is None:
                    raise ValidationError(
                        "GRN needs a warehouse or a bin on every line",
                        ["warehouse_id"],
                    )
                target_warehouse = self._ledger.get_bin(first_bin).warehouse_id

            tolerance = self._config.procurement.over_receipt_tolerance_percent
            po_lines = {ln.id: ln for ln in po.lines}
            grn_number = self._sequences.next_document_number("GRN", self._clock.now())
            grn = GoodsReceiptModel(
                number=grn_number,
                purchase_order_id=po.id,
                warehouse_id=target_warehouse,
                receipt_date=receipt_date or self._today(),
                created_by_id=actor.actor_id,
            )
            self._session.add(grn)
            self._session.flush()

            entries: list[LedgerEntryRecord] = []
            for idx, line in enumerate(lines):
                po_line = po_lines.get(line.po_line_id)
                if po_line is None:
                    raise ValidationError(
                        f"Line {line.po_line_id} does not belong to PO {po.number}",
                        [f"lines[{idx}].po_line_id"],
                    )
                limit = po_line.quantity * (1 + tolerance / _HUNDRED)
                if not line.is_adjustment and po_line.received_quantity + line.quantity > limit:
                    logger.warning("procurement_over_receipt", extra={
                        "po_id": str(po.id),
                        "po_line_id": str(po_line.id),
                        "ordered": str(po_line.quantity),
                        "received": str(po_line.received_quantity),
                        "requested": str(line.quantity),
                    })
                    raise OverReceiptError(
                        str(po_line.id), po_line.quantity, po_line.received_quantity, line.quantity,
                    )

                bin_id = line.bin_id or self._allocator.resolve_putaway_bin(
                    item_id=po_line.item_id,
                    warehouse_id=target_warehouse,
                    batch_number=line.batch_number,
                )
                entry = self._ledger.post_entry(
                    item_id=po_line.item_id,
                    bin_id=bin_id,
                    quantity=line.quantity,
                    direction=Direction.IN,
                    transaction_type=TransactionType.GRN,
                    voucher_number=grn_number,
                    actor_id=actor.actor_id,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    reference_type="purchase_order",
                    reference_id=po.id,
                    memo=f"{po.number} line {po_line.line_number}",
                )
                po_line.received_quantity += line.quantity
                self._session.add(GoodsReceiptLineModel(
                    goods_receipt_id=grn.id,
                    po_line_id=po_line.id,
                    item_id=po_line.item_id,
                    bin_id=bin_id,
                    quantity=line.quantity,
                    batch_number=line.batch_number,
                    serial_number=line.serial_number,
                    is_adjustment=line.is_adjustment,
                    ledger_entry_id=entry.id,
                    created_by_id=actor.actor_id,
                ))
                entries.append(entry)

            self._session.flush()
            self._session.commit()
            logger.info("procurement_grn_posted", extra={
                "grn_number": grn_number,
                "po_id": str(po.id),
                "po_number": po.number,
                "line_count": len(entries),
                "actor_id": str(actor.actor_id),
            })
            return entries
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_document(self, document_type: str, document_id: UUID) -> Rfq | Quote | PurchaseOrder:
        if document_type not in _DOCUMENTS:
            raise ValidationError(f"Unknown procurement document type {document_type}", ["document_type"])
        model_cls, _ = _DOCUMENTS[document_type]
        document = self._session.get(model_cls, document_id)
        if document is None:
            raise DocumentNotFoundError(document_type, str(document_id))
        return document.to_dto()

    def quotes_for_rfq(self, rfq_id: UUID) -> list[Quote]:
        rows = self._session.execute(
            select(QuoteModel).where(QuoteModel.rfq_id == rfq_id).order_by(QuoteModel.quote_number)
        ).scalars()
        return [q.to_dto() for q in rows]

    def receipts_for_po(self, po_id: UUID) -> list[GoodsReceipt]:
        rows = self._session.execute(
            select(GoodsReceiptModel)
            .where(GoodsReceiptModel.purchase_order_id == po_id)
            .order_by(GoodsReceiptModel.number)
        ).scalars()
        return [g.to_dto() for g in rows]
