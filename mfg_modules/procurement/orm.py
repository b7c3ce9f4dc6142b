"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Database-backed persistence for RFQs, supplier quotes, purchase orders and
goods receipt notes, each with its lines.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProcurementService``.
Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* All quantity and money fields use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``status`` is a String(20) constrained to the document's enum values.
* Documents carry a ``version`` column used as ``version_id_col``; a write
  against a stale version raises StaleDataError.
* ``PurchaseOrderModel.source_quote_id`` is unique: one quote, one PO.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mfg_kernel.db.base import TrackedBase
from mfg_modules.procurement.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    Quote,
    QuoteLine,
    QuoteStatus,
    Rfq,
    RfqLine,
    RfqStatus,
)


def _status_check(enum_cls, name: str) -> CheckConstraint:
    values = ", ".join(f"'{s.value}'" for s in enum_cls)
    return CheckConstraint(f"status IN ({values})", name=name)


# ---------------------------------------------------------------------------
# RFQ
# ---------------------------------------------------------------------------


class RfqModel(TrackedBase):
    """
    A request for quotation.

    Guarantees:
        - ``number`` is unique (``RFQ-YYYY-NNNN``).
        - ``status`` follows draft -> pending -> approved -> closed, with
          rejected reachable from draft and pending.
    """

    __tablename__ = "rfqs"

    __table_args__ = (
        UniqueConstraint("number", name="uq_rfq_number"),
        _status_check(RfqStatus, "ck_rfq_status"),
        Index("idx_rfq_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    description_ar: Mapped[str | None] = mapped_column(String(500), nullable=True)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    response_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RfqStatus.DRAFT.value)
    approved_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    closed_at: Mapped[datetime | None]
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["RfqLineModel"]] = relationship(
        "RfqLineModel",
        back_populates="rfq",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RfqLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Rfq:
        return Rfq(
            id=self.id,
            number=self.number,
            description=self.description,
            description_ar=self.description_ar,
            request_date=self.request_date,
            response_deadline=self.response_deadline,
            status=RfqStatus(self.status),
            approved_at=self.approved_at,
            approved_by_id=self.approved_by_id,
            closed_at=self.closed_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<RfqModel {self.number} [{self.status}]>"


class RfqLineModel(TrackedBase):
    __tablename__ = "rfq_lines"

    __table_args__ = (
        UniqueConstraint("rfq_id", "line_number", name="uq_rfq_line_number"),
    )

    rfq_id: Mapped[UUID] = mapped_column(ForeignKey("rfqs.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    required_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    rfq: Mapped[RfqModel] = relationship("RfqModel", back_populates="lines")

    def to_dto(self) -> RfqLine:
        return RfqLine(
            id=self.id,
            rfq_id=self.rfq_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            required_date=self.required_date,
        )


# ---------------------------------------------------------------------------
# Quote
# ---------------------------------------------------------------------------


class QuoteModel(TrackedBase):
    """
    A supplier quote.

    Guarantees:
        - ``quote_number`` is unique.
        - ``rfq_id`` is nullable; many quotes may reference one RFQ.
        - ``converted_po_id`` is set exactly when status is ``converted``.
    """

    __tablename__ = "quotes"

    __table_args__ = (
        UniqueConstraint("quote_number", name="uq_quote_number"),
        _status_check(QuoteStatus, "ck_quote_status"),
        Index("idx_quote_rfq", "rfq_id"),
        Index("idx_quote_status", "status"),
    )

    quote_number: Mapped[str] = mapped_column(String(50), nullable=False)
    rfq_id: Mapped[UUID | None] = mapped_column(ForeignKey("rfqs.id"), nullable=True)
    supplier_code: Mapped[str] = mapped_column(String(100), nullable=False)
    quote_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_terms: Mapped[str | None] = mapped_column(String(200), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=QuoteStatus.DRAFT.value)
    # No FK: purchase_orders already references quotes
    converted_po_id: Mapped[UUID | None]
    approved_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    converted_at: Mapped[datetime | None]
    converted_by_id: Mapped[UUID | None]
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["QuoteLineModel"]] = relationship(
        "QuoteLineModel",
        back_populates="quote",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="QuoteLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Quote:
        return Quote(
            id=self.id,
            quote_number=self.quote_number,
            supplier_code=self.supplier_code,
            quote_date=self.quote_date,
            currency=self.currency,
            total_amount=self.total_amount,
            status=QuoteStatus(self.status),
            rfq_id=self.rfq_id,
            valid_until=self.valid_until,
            payment_terms=self.payment_terms,
            converted_po_id=self.converted_po_id,
            approved_at=self.approved_at,
            converted_at=self.converted_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<QuoteModel {self.quote_number} [{self.status}]>"


class QuoteLineModel(TrackedBase):
    __tablename__ = "quote_lines"

    __table_args__ = (
        UniqueConstraint("quote_id", "line_number", name="uq_quote_line_number"),
    )

    quote_id: Mapped[UUID] = mapped_column(ForeignKey("quotes.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_amount: Mapped[Decimal] = mapped_column(nullable=False)

    quote: Mapped[QuoteModel] = relationship("QuoteModel", back_populates="lines")

    def to_dto(self) -> QuoteLine:
        return QuoteLine(
            id=self.id,
            quote_id=self.quote_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_amount=self.line_amount,
        )


# ---------------------------------------------------------------------------
# Purchase order
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order.

    Guarantees:
        - ``number`` is unique (``PO-YYYY-NNNN``).
        - ``source_quote_id`` is unique when set.
        - Receiving is allowed only while ``status == 'approved'``.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_po_number"),
        UniqueConstraint("source_quote_id", name="uq_po_source_quote"),
        _status_check(PurchaseOrderStatus, "ck_po_status"),
        Index("idx_po_status", "status"),
        Index("idx_po_supplier", "supplier_code"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_code: Mapped[str] = mapped_column(String(100), nullable=False)
    source_quote_id: Mapped[UUID | None] = mapped_column(ForeignKey("quotes.id"), nullable=True)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    warehouse_id: Mapped[UUID | None] = mapped_column(ForeignKey("warehouses.id"), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_terms: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delivery_terms: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PurchaseOrderStatus.DRAFT.value,
    )
    approved_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    closed_at: Mapped[datetime | None]
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> PurchaseOrder:
        return PurchaseOrder(
            id=self.id,
            number=self.number,
            supplier_code=self.supplier_code,
            order_date=self.order_date,
            currency=self.currency,
            total_amount=self.total_amount,
            status=PurchaseOrderStatus(self.status),
            source_quote_id=self.source_quote_id,
            warehouse_id=self.warehouse_id,
            delivery_date=self.delivery_date,
            payment_terms=self.payment_terms,
            delivery_terms=self.delivery_terms,
            notes=self.notes,
            approved_at=self.approved_at,
            approved_by_id=self.approved_by_id,
            closed_at=self.closed_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.number} [{self.status}]>"


class PurchaseOrderLineModel(TrackedBase):
    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_amount: Mapped[Decimal] = mapped_column(nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    purchase_order: Mapped[PurchaseOrderModel] = relationship(
        "PurchaseOrderModel", back_populates="lines",
    )

    def to_dto(self) -> PurchaseOrderLine:
        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            item_id=self.item_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_amount=self.line_amount,
            received_quantity=self.received_quantity,
        )


# ---------------------------------------------------------------------------
# Goods receipt
# ---------------------------------------------------------------------------


class GoodsReceiptModel(TrackedBase):
    """A posted GRN.  Written once with its ledger entries; never edited."""

    __tablename__ = "goods_receipts"

    __table_args__ = (
        UniqueConstraint("number", name="uq_grn_number"),
        Index("idx_grn_po", "purchase_order_id"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)

    lines: Mapped[list["GoodsReceiptLineModel"]] = relationship(
        "GoodsReceiptLineModel",
        back_populates="goods_receipt",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self) -> GoodsReceipt:
        return GoodsReceipt(
            id=self.id,
            number=self.number,
            purchase_order_id=self.purchase_order_id,
            warehouse_id=self.warehouse_id,
            receipt_date=self.receipt_date,
            lines=tuple(line.to_dto() for line in self.lines),
        )


class GoodsReceiptLineModel(TrackedBase):
    __tablename__ = "goods_receipt_lines"

    goods_receipt_id: Mapped[UUID] = mapped_column(ForeignKey("goods_receipts.id"), nullable=False)
    po_line_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_order_lines.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    bin_id: Mapped[UUID] = mapped_column(ForeignKey("bins.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_adjustment: Mapped[bool] = mapped_column(default=False)
    ledger_entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_ledger_entries.id"), nullable=False,
    )

    goods_receipt: Mapped[GoodsReceiptModel] = relationship(
        "GoodsReceiptModel", back_populates="lines",
    )

    def to_dto(self) -> GoodsReceiptLine:
        return GoodsReceiptLine(
            id=self.id,
            goods_receipt_id=self.goods_receipt_id,
            po_line_id=self.po_line_id,
            item_id=self.item_id,
            bin_id=self.bin_id,
            quantity=self.quantity,
            ledger_entry_id=self.ledger_entry_id,
            batch_number=self.batch_number,
            serial_number=self.serial_number,
            is_adjustment=self.is_adjustment,
        )
