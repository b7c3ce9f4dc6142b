"""
Quote to purchase order conversion.

Covers:
- Field copy from quote to PO and order detail overrides
- Quote / PO linkage and the converted status
- Re-conversion and non-approved quotes
- Permission and payload failures leave nothing behind
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from mfg_kernel.exceptions import (
    AlreadyConvertedError,
    DocumentNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from mfg_modules.procurement.models import OrderDetails, PurchaseOrderStatus, QuoteStatus


class TestConvertQuote:
    """Approved quote becomes a draft PO in one transaction."""

    def test_po_copies_quote(self, doc_engine, approved_quote, manager, item):
        po = doc_engine.convert_quote_to_po(approved_quote.id, None, manager)

        assert po.status == PurchaseOrderStatus.DRAFT
        assert po.number == "PO-2024-0001"
        assert po.supplier_code == approved_quote.supplier_code
        assert po.currency == "EUR"
        assert po.payment_terms == "NET30"
        assert po.total_amount == approved_quote.total_amount == Decimal("250")
        assert po.source_quote_id == approved_quote.id
        assert po.order_date == date(2024, 3, 1)

        line = po.lines[0]
        assert line.item_id == item.id
        assert line.quantity == Decimal("100")
        assert line.unit_price == Decimal("2.50")
        assert line.received_quantity == Decimal("0")

    def test_quote_marked_converted(self, doc_engine, approved_quote, manager, deterministic_clock, utc):
        po = doc_engine.convert_quote_to_po(approved_quote.id, None, manager)
        quote = doc_engine.get_document("quote", approved_quote.id)

        assert quote.status == QuoteStatus.CONVERTED
        assert quote.converted_po_id == po.id
        assert utc(quote.converted_at) == deterministic_clock.now()

    def test_order_details_override(self, doc_engine, approved_quote, manager, warehouse):
        po = doc_engine.convert_quote_to_po(
            approved_quote.id,
            {
                "delivery_date": "2024-04-15",
                "warehouse_id": str(warehouse.id),
                "payment_terms": "NET60",
                "delivery_terms": "DAP",
                "notes": "Rush",
            },
            manager,
        )

        assert po.delivery_date == date(2024, 4, 15)
        assert po.warehouse_id == warehouse.id
        assert po.payment_terms == "NET60"
        assert po.delivery_terms == "DAP"
        assert po.notes == "Rush"

    def test_order_details_dataclass(self, doc_engine, approved_quote, manager):
        po = doc_engine.convert_quote_to_po(
            approved_quote.id, OrderDetails(order_date=date(2024, 3, 5)), manager,
        )
        assert po.order_date == date(2024, 3, 5)

    def test_converted_po_follows_po_workflow(self, doc_engine, approved_quote, manager, advance):
        po = doc_engine.convert_quote_to_po(approved_quote.id, None, manager)
        approved = advance("purchase_order", po.id, "pending", "approved")
        assert approved.status == PurchaseOrderStatus.APPROVED

    def test_conversion_logged(self, captured_logs, doc_engine, approved_quote, manager):
        po = doc_engine.convert_quote_to_po(approved_quote.id, None, manager)

        records = [r for r in captured_logs() if r["message"] == "procurement_quote_converted"]
        assert records[0]["po_id"] == str(po.id)


class TestConversionRejected:

    def test_second_conversion(self, doc_engine, approved_quote, manager):
        po = doc_engine.convert_quote_to_po(approved_quote.id, None, manager)

        with pytest.raises(AlreadyConvertedError) as exc_info:
            doc_engine.convert_quote_to_po(approved_quote.id, None, manager)

        assert exc_info.value.po_id == str(po.id)
        assert exc_info.value.code == "ALREADY_CONVERTED"

    @pytest.mark.parametrize("statuses", [(), ("pending",)])
    def test_quote_not_approved(self, doc_engine, make_quote, make_po, advance, item, manager, statuses):
        quote = make_quote([(item.id, 10, "1")])
        if statuses:
            advance("quote", quote.id, *statuses)

        with pytest.raises(InvalidTransitionError):
            doc_engine.convert_quote_to_po(quote.id, None, manager)

        assert doc_engine.get_document("quote", quote.id).converted_po_id is None
        # No PO number was consumed
        assert make_po([(item.id, 1, "1")]).number == "PO-2024-0001"

    def test_rejected_quote(self, doc_engine, make_quote, advance, item, manager):
        quote = make_quote([(item.id, 10, "1")])
        advance("quote", quote.id, "pending", "rejected")

        with pytest.raises(InvalidTransitionError):
            doc_engine.convert_quote_to_po(quote.id, None, manager)

    def test_operator_cannot_convert(self, doc_engine, approved_quote, operator):
        with pytest.raises(UnauthorizedError) as exc_info:
            doc_engine.convert_quote_to_po(approved_quote.id, None, operator)

        assert exc_info.value.permission == "procurement.quote.convert"
        assert doc_engine.get_document("quote", approved_quote.id).status == QuoteStatus.APPROVED

    def test_unknown_warehouse(self, doc_engine, approved_quote, manager):
        with pytest.raises(DocumentNotFoundError):
            doc_engine.convert_quote_to_po(approved_quote.id, {"warehouse_id": str(uuid4())}, manager)
        assert doc_engine.get_document("quote", approved_quote.id).status == QuoteStatus.APPROVED

    def test_bad_order_details(self, doc_engine, approved_quote, manager):
        with pytest.raises(ValidationError) as exc_info:
            doc_engine.convert_quote_to_po(approved_quote.id, {"delivery_date": "next week"}, manager)
        assert exc_info.value.field_errors == ["delivery_date"]

    def test_unknown_quote(self, doc_engine, manager):
        with pytest.raises(DocumentNotFoundError):
            doc_engine.convert_quote_to_po(uuid4(), None, manager)
