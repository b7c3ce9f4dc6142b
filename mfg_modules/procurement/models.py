"""
Procurement Domain Models.

The nouns of procurement: RFQs, quotes, purchase orders, goods receipts,
plus the request objects the service accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from mfg_kernel.exceptions import ValidationError
from mfg_kernel.logging_config import get_logger
from mfg_modules._payload import PayloadReader

logger = get_logger("modules.procurement.models")

_ZERO = Decimal("0")


class RfqStatus(str, Enum):
    """RFQ lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class QuoteStatus(str, Enum):
    """Supplier quote lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"  # to PO


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


# -----------------------------------------------------------------------------
# Documents
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RfqLine:
    id: UUID
    rfq_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    required_date: date | None = None


@dataclass(frozen=True)
class Rfq:
    """A request for quotation sent to suppliers."""
    id: UUID
    number: str
    description: str
    request_date: date
    status: RfqStatus = RfqStatus.DRAFT
    description_ar: str | None = None
    response_deadline: date | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    closed_at: datetime | None = None
    lines: tuple[RfqLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class QuoteLine:
    id: UUID
    quote_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal


@dataclass(frozen=True)
class Quote:
    """A supplier's priced answer, optionally tied to an RFQ."""
    id: UUID
    quote_number: str
    supplier_code: str
    quote_date: date
    currency: str
    total_amount: Decimal
    status: QuoteStatus = QuoteStatus.DRAFT
    rfq_id: UUID | None = None
    valid_until: date | None = None
    payment_terms: str | None = None
    converted_po_id: UUID | None = None
    approved_at: datetime | None = None
    converted_at: datetime | None = None
    lines: tuple[QuoteLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line item on a purchase order."""
    id: UUID
    purchase_order_id: UUID
    line_number: int
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal
    received_quantity: Decimal = _ZERO

    @property
    def outstanding_quantity(self) -> Decimal:
        return max(self.quantity - self.received_quantity, _ZERO)


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    number: str
    supplier_code: str
    order_date: date
    currency: str
    total_amount: Decimal
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    source_quote_id: UUID | None = None
    warehouse_id: UUID | None = None
    delivery_date: date | None = None
    payment_terms: str | None = None
    delivery_terms: str | None = None
    notes: str | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    closed_at: datetime | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)

    def line(self, line_id: UUID) -> PurchaseOrderLine | None:
        return next((ln for ln in self.lines if ln.id == line_id), None)


@dataclass(frozen=True)
class GoodsReceiptLine:
    id: UUID
    goods_receipt_id: UUID
    po_line_id: UUID
    item_id: UUID
    bin_id: UUID
    quantity: Decimal
    ledger_entry_id: UUID
    batch_number: str | None = None
    serial_number: str | None = None
    is_adjustment: bool = False


@dataclass(frozen=True)
class GoodsReceipt:
    """GRN: stock received against an approved purchase order."""
    id: UUID
    number: str
    purchase_order_id: UUID
    warehouse_id: UUID
    receipt_date: date
    lines: tuple[GoodsReceiptLine, ...] = field(default_factory=tuple)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


def _require_positive(value: Decimal, name: str) -> None:
    if value <= _ZERO:
        raise ValidationError(f"{name} must be positive, got {value}", [name])


@dataclass(frozen=True)
class RfqLineRequest:
    item_id: UUID
    quantity: Decimal
    required_date: date | None = None

    def __post_init__(self):
        _require_positive(self.quantity, "quantity")


@dataclass(frozen=True)
class CreateRfqRequest:
    description: str
    request_date: date | None = None
    description_ar: str | None = None
    response_deadline: date | None = None
    lines: tuple[RfqLineRequest, ...] = ()

    def __post_init__(self):
        if not self.description:
            raise ValidationError("RFQ requires a description", ["description"])
        if (
            self.request_date is not None
            and self.response_deadline is not None
            and self.response_deadline < self.request_date
        ):
            raise ValidationError(
                "Response deadline cannot precede the request date",
                ["response_deadline"],
            )

    @classmethod
    def from_payload(cls, payload: Any) -> CreateRfqRequest:
        reader = PayloadReader(payload)
        description = reader.text("description")
        description_ar = reader.text("description_ar", required=False)
        request_date = reader.date("request_date", required=False)
        deadline = reader.date("response_deadline", required=False)
        lines = []
        for idx, raw in enumerate(reader.items("lines")):
            line = reader.child(raw, f"lines[{idx}].")
            item_id = line.uuid("item_id")
            quantity = line.decimal("quantity")
            required_date = line.date("required_date", required=False)
            if item_id is not None and quantity is not None:
                lines.append((item_id, quantity, required_date))
        reader.raise_if_errors("RFQ")
        return cls(
            description=description,
            description_ar=description_ar,
            request_date=request_date,
            response_deadline=deadline,
            lines=tuple(RfqLineRequest(i, q, d) for i, q, d in lines),
        )


@dataclass(frozen=True)
class PricedLineRequest:
    """Item, quantity and unit price; shared by quotes and purchase orders."""
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal

    def __post_init__(self):
        _require_positive(self.quantity, "quantity")
        if self.unit_price < _ZERO:
            raise ValidationError(f"unit_price cannot be negative, got {self.unit_price}", ["unit_price"])

    @property
    def line_amount(self) -> Decimal:
        return self.quantity * self.unit_price


def _priced_lines(reader: PayloadReader) -> tuple[PricedLineRequest, ...]:
    parsed = []
    for idx, raw in enumerate(reader.items("lines")):
        line = reader.child(raw, f"lines[{idx}].")
        item_id = line.uuid("item_id")
        quantity = line.decimal("quantity")
        unit_price = line.decimal("unit_price")
        if item_id is not None and quantity is not None and unit_price is not None:
            parsed.append((item_id, quantity, unit_price))
    return tuple(PricedLineRequest(i, q, p) for i, q, p in parsed)


@dataclass(frozen=True)
class CreateQuoteRequest:
    supplier_code: str
    lines: tuple[PricedLineRequest, ...] = ()
    rfq_id: UUID | None = None
    quote_number: str | None = None
    quote_date: date | None = None
    valid_until: date | None = None
    currency: str | None = None
    payment_terms: str | None = None
    total_amount: Decimal | None = None

    def __post_init__(self):
        if not self.supplier_code:
            raise ValidationError("Quote requires a supplier", ["supplier_code"])
        if self.total_amount is not None and self.total_amount < _ZERO:
            raise ValidationError("total_amount cannot be negative", ["total_amount"])

    @classmethod
    def from_payload(cls, payload: Any) -> CreateQuoteRequest:
        reader = PayloadReader(payload)
        supplier_code = reader.text("supplier_code")
        rfq_id = reader.uuid("rfq_id", required=False)
        quote_number = reader.text("quote_number", required=False)
        quote_date = reader.date("quote_date", required=False)
        valid_until = reader.date("valid_until", required=False)
        currency = reader.text("currency", required=False)
        payment_terms = reader.text("payment_terms", required=False)
        total_amount = reader.decimal("total_amount", required=False)
        lines = _priced_lines(reader)
        reader.raise_if_errors("quote")
        return cls(
            supplier_code=supplier_code,
            lines=lines,
            rfq_id=rfq_id,
            quote_number=quote_number,
            quote_date=quote_date,
            valid_until=valid_until,
            currency=currency,
            payment_terms=payment_terms,
            total_amount=total_amount,
        )


@dataclass(frozen=True)
class CreatePurchaseOrderRequest:
    supplier_code: str
    lines: tuple[PricedLineRequest, ...] = ()
    order_date: date | None = None
    delivery_date: date | None = None
    warehouse_id: UUID | None = None
    currency: str | None = None
    payment_terms: str | None = None
    delivery_terms: str | None = None
    notes: str | None = None
    total_amount: Decimal | None = None

    def __post_init__(self):
        if not self.supplier_code:
            raise ValidationError("Purchase order requires a supplier", ["supplier_code"])
        if (
            self.order_date is not None
            and self.delivery_date is not None
            and self.delivery_date < self.order_date
        ):
            raise ValidationError("Delivery date cannot precede the order date", ["delivery_date"])

    @classmethod
    def from_payload(cls, payload: Any) -> CreatePurchaseOrderRequest:
        reader = PayloadReader(payload)
        supplier_code = reader.text("supplier_code")
        order_date = reader.date("order_date", required=False)
        delivery_date = reader.date("delivery_date", required=False)
        warehouse_id = reader.uuid("warehouse_id", required=False)
        currency = reader.text("currency", required=False)
        payment_terms = reader.text("payment_terms", required=False)
        delivery_terms = reader.text("delivery_terms", required=False)
        notes = reader.text("notes", required=False)
        total_amount = reader.decimal("total_amount", required=False)
        lines = _priced_lines(reader)
        reader.raise_if_errors("purchase order")
        return cls(
            supplier_code=supplier_code,
            lines=lines,
            order_date=order_date,
            delivery_date=delivery_date,
            warehouse_id=warehouse_id,
            currency=currency,
            payment_terms=payment_terms,
            delivery_terms=delivery_terms,
            notes=notes,
            total_amount=total_amount,
        )


@dataclass(frozen=True)
class OrderDetails:
    """Overrides applied to the PO created from a quote."""
    order_date: date | None = None
    delivery_date: date | None = None
    warehouse_id: UUID | None = None
    payment_terms: str | None = None
    delivery_terms: str | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> OrderDetails:
        reader = PayloadReader(payload or {})
        details = cls(
            order_date=reader.date("order_date", required=False),
            delivery_date=reader.date("delivery_date", required=False),
            warehouse_id=reader.uuid("warehouse_id", required=False),
            payment_terms=reader.text("payment_terms", required=False),
            delivery_terms=reader.text("delivery_terms", required=False),
            notes=reader.text("notes", required=False),
        )
        reader.raise_if_errors("order details")
        return details


@dataclass(frozen=True)
class GrnLineRequest:
    """One receipt line against a PO line.

    ``is_adjustment`` lets the line exceed the ordered quantity.
    """
    po_line_id: UUID
    quantity: Decimal
    bin_id: UUID | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    is_adjustment: bool = False

    def __post_init__(self):
        _require_positive(self.quantity, "quantity")

    @classmethod
    def from_payload(cls, payload: Any) -> GrnLineRequest:
        reader = PayloadReader(payload)
        po_line_id = reader.uuid("po_line_id")
        quantity = reader.decimal("quantity")
        bin_id = reader.uuid("bin_id", required=False)
        batch_number = reader.text("batch_number", required=False)
        serial_number = reader.text("serial_number", required=False)
        is_adjustment = reader.boolean("is_adjustment")
        reader.raise_if_errors("GRN line")
        return cls(
            po_line_id=po_line_id,
            quantity=quantity,
            bin_id=bin_id,
            batch_number=batch_number,
            serial_number=serial_number,
            is_adjustment=is_adjustment,
        )
