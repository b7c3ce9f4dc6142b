"""
Document workflow tests: RFQ, quote and purchase order status machines.

Covers:
- Legal edges, status stamps and document numbering
- Illegal edges, terminal states and engine-only edges
- Guards (has_lines, quote_valid)
- Permission checks per edge, failing closed
- Payload validation
- Optimistic locking on concurrent edits
- Workflow transition log records
- Building an engine straight from a database URL
"""

from datetime import date
from uuid import uuid4

import pytest

from mfg_kernel.exceptions import (
    DocumentNotFoundError,
    InvalidTransitionError,
    ItemNotFoundError,
    OptimisticLockError,
    UnauthorizedError,
    ValidationError,
)
from mfg_modules.procurement.models import PurchaseOrderStatus, RfqStatus
from mfg_modules.procurement.orm import PurchaseOrderModel
from mfg_modules.procurement.workflows import PURCHASE_ORDER_WORKFLOW
from mfg_services.document_engine import DocumentEngine
from mfg_services.rbac_authority import RbacAuthority
from mfg_services.workflow_executor import WorkflowExecutor


class TestRfqWorkflow:
    """Request for quotation lifecycle."""

    def test_created_in_draft_with_number(self, make_rfq, item):
        rfq = make_rfq(item.id)

        assert rfq.status == RfqStatus.DRAFT
        assert rfq.number == "RFQ-2024-0001"
        assert len(rfq.lines) == 1
        assert rfq.request_date == date(2024, 3, 1)

    def test_numbers_are_sequential(self, make_rfq, item):
        first = make_rfq(item.id)
        second = make_rfq(item.id)

        assert (first.number, second.number) == ("RFQ-2024-0001", "RFQ-2024-0002")

    def test_submit_and_approve(self, doc_engine, make_rfq, item, operator, manager, deterministic_clock, utc):
        rfq = make_rfq(item.id)
        pending = doc_engine.transition("rfq", rfq.id, "pending", operator)
        approved = doc_engine.transition("rfq", rfq.id, RfqStatus.APPROVED, manager)

        assert pending.status == RfqStatus.PENDING
        assert approved.status == RfqStatus.APPROVED
        assert utc(approved.approved_at) == deterministic_clock.now()
        assert approved.approved_by_id == manager.actor_id

    def test_close_after_approval(self, make_rfq, advance, item):
        rfq = make_rfq(item.id)
        closed = advance("rfq", rfq.id, "pending", "approved", "closed")

        assert closed.status == RfqStatus.CLOSED
        assert closed.closed_at is not None

    def test_empty_rfq_cannot_be_submitted(self, doc_engine, make_rfq, item, operator):
        rfq = make_rfq(item.id, lines=[])

        with pytest.raises(InvalidTransitionError) as exc_info:
            doc_engine.transition("rfq", rfq.id, "pending", operator)

        assert "has_lines" in str(exc_info.value)
        assert doc_engine.get_document("rfq", rfq.id).status == RfqStatus.DRAFT

    def test_skipping_approval_is_illegal(self, doc_engine, make_rfq, item, manager):
        rfq = make_rfq(item.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            doc_engine.transition("rfq", rfq.id, "approved", manager)

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "approved"
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_unknown_target_status(self, doc_engine, make_rfq, item, manager):
        rfq = make_rfq(item.id)
        with pytest.raises(InvalidTransitionError):
            doc_engine.transition("rfq", rfq.id, "shipped", manager)

    def test_rejected_is_terminal(self, doc_engine, make_rfq, advance, item, manager):
        rfq = make_rfq(item.id)
        advance("rfq", rfq.id, "pending", "rejected")

        for target in ("draft", "pending", "approved", "closed"):
            with pytest.raises(InvalidTransitionError):
                doc_engine.transition("rfq", rfq.id, target, manager)

    def test_missing_document(self, doc_engine, manager):
        with pytest.raises(DocumentNotFoundError):
            doc_engine.transition("rfq", uuid4(), "pending", manager)

    def test_unknown_document_type(self, doc_engine, manager):
        with pytest.raises(ValidationError) as exc_info:
            doc_engine.transition("invoice", uuid4(), "pending", manager)
        assert exc_info.value.field_errors == ["document_type"]


class TestPermissions:
    """Each edge names a permission; missing roles fail closed."""

    def test_operator_cannot_approve(self, doc_engine, make_rfq, item, operator):
        rfq = make_rfq(item.id)
        doc_engine.transition("rfq", rfq.id, "pending", operator)

        with pytest.raises(UnauthorizedError) as exc_info:
            doc_engine.transition("rfq", rfq.id, "approved", operator)

        assert exc_info.value.permission == "procurement.rfq.approve"
        assert doc_engine.get_document("rfq", rfq.id).status == RfqStatus.PENDING

    def test_viewer_cannot_create(self, doc_engine, item, viewer):
        with pytest.raises(UnauthorizedError):
            doc_engine.create_document(
                "rfq",
                {"description": "x", "lines": [{"item_id": str(item.id), "quantity": "1"}]},
                viewer,
            )

    def test_actor_without_roles_is_denied(self, doc_engine, make_rfq, item, make_actor):
        rfq = make_rfq(item.id)
        with pytest.raises(UnauthorizedError) as exc_info:
            doc_engine.transition("rfq", rfq.id, "pending", make_actor())
        assert "no roles" in str(exc_info.value)

    def test_unknown_role_is_denied(self, doc_engine, make_rfq, item, make_actor):
        rfq = make_rfq(item.id)
        with pytest.raises(UnauthorizedError):
            doc_engine.transition("rfq", rfq.id, "pending", make_actor("auditor"))

    def test_permission_checked_after_edge(self, doc_engine, make_rfq, item, viewer):
        rfq = make_rfq(item.id)
        with pytest.raises(InvalidTransitionError):
            doc_engine.transition("rfq", rfq.id, "closed", viewer)

    def test_wildcard_patterns(self, doc_engine, make_actor):
        authority = doc_engine.authority
        assert authority.is_allowed(make_actor("admin"), "anything.at.all")
        assert authority.is_allowed(make_actor("manager"), "production.wo.release")
        assert not authority.is_allowed(make_actor("manager"), "accounting.post")
        assert not authority.is_allowed(make_actor("operator"), "procurement.po.approve")


class TestQuoteWorkflow:

    def test_quote_links_to_approved_rfq(self, doc_engine, make_rfq, make_quote, advance, item):
        rfq = make_rfq(item.id)
        advance("rfq", rfq.id, "pending", "approved")

        quote = make_quote([(item.id, 100, "2.50")], rfq_id=rfq.id)

        assert quote.rfq_id == rfq.id
        assert [q.id for q in doc_engine.quotes_for_rfq(rfq.id)] == [quote.id]

    def test_quote_rejects_unapproved_rfq(self, make_rfq, make_quote, item):
        rfq = make_rfq(item.id)
        with pytest.raises(ValidationError) as exc_info:
            make_quote([(item.id, 100, "2.50")], rfq_id=rfq.id)
        assert exc_info.value.field_errors == ["rfq_id"]

    def test_quote_rejects_missing_rfq(self, make_quote, item):
        with pytest.raises(DocumentNotFoundError):
            make_quote([(item.id, 100, "2.50")], rfq_id=uuid4())

    def test_totals_and_defaults(self, make_quote, item, make_item):
        other = make_item("RAW-002")
        quote = make_quote([(item.id, 100, "2.50"), (other.id, 4, "12.25")])

        assert quote.total_amount == 299
        assert quote.currency == "USD"
        assert quote.quote_number == "QUOTE-2024-0001"
        assert [ln.line_amount for ln in quote.lines] == [250, 49]

    def test_duplicate_quote_number(self, make_quote, item):
        make_quote([(item.id, 1, "1")], quote_number="ACME-77")
        with pytest.raises(ValidationError) as exc_info:
            make_quote([(item.id, 1, "1")], quote_number="ACME-77")
        assert exc_info.value.field_errors == ["quote_number"]

    def test_expired_quote_cannot_be_approved(self, doc_engine, make_quote, advance, item, manager):
        quote = make_quote([(item.id, 10, "1")], valid_until="2024-02-15")
        advance("quote", quote.id, "pending")

        with pytest.raises(InvalidTransitionError) as exc_info:
            doc_engine.transition("quote", quote.id, "approved", manager)
        assert "quote_valid" in str(exc_info.value)

    def test_quote_valid_until_today_can_be_approved(self, make_quote, advance, item):
        quote = make_quote([(item.id, 10, "1")], valid_until="2024-03-01")
        approved = advance("quote", quote.id, "pending", "approved")
        assert approved.status == "approved"

    def test_converted_is_engine_only(self, doc_engine, approved_quote, manager):
        with pytest.raises(InvalidTransitionError) as exc_info:
            doc_engine.transition("quote", approved_quote.id, "converted", manager)
        assert "engine only" in str(exc_info.value)


class TestPurchaseOrderWorkflow:

    def test_full_lifecycle(self, doc_engine, make_po, advance, item, warehouse, manager):
        po = make_po([(item.id, 100, "2.50")], warehouse_id=warehouse.id)
        assert po.status == PurchaseOrderStatus.DRAFT
        assert po.number == "PO-2024-0001"

        approved = advance("purchase_order", po.id, "pending", "approved")
        assert approved.approved_by_id == manager.actor_id

        closed = advance("purchase_order", po.id, "closed")
        assert closed.status == PurchaseOrderStatus.CLOSED

    def test_reject_from_pending(self, make_po, advance, item):
        po = make_po([(item.id, 5, "1")])
        rejected = advance("purchase_order", po.id, "pending", "rejected")
        assert rejected.status == PurchaseOrderStatus.REJECTED

    def test_unknown_warehouse(self, make_po, item):
        with pytest.raises(DocumentNotFoundError):
            make_po([(item.id, 5, "1")], warehouse_id=uuid4())

    def test_unknown_item(self, make_po):
        with pytest.raises(ItemNotFoundError):
            make_po([(uuid4(), 5, "1")])


class TestPayloadValidation:

    def test_missing_fields_reported_together(self, doc_engine, operator):
        with pytest.raises(ValidationError) as exc_info:
            doc_engine.create_document(
                "quote",
                {"lines": [{"item_id": "not-a-uuid", "quantity": "abc", "unit_price": "1"}]},
                operator,
            )

        fields = exc_info.value.field_errors
        assert "supplier_code" in fields
        assert "lines[0].item_id" in fields
        assert "lines[0].quantity" in fields

    def test_negative_line_quantity(self, doc_engine, item, operator):
        with pytest.raises(ValidationError):
            doc_engine.create_document(
                "rfq",
                {"description": "x", "lines": [{"item_id": str(item.id), "quantity": "-5"}]},
                operator,
            )

    def test_payload_must_be_mapping(self, doc_engine, operator):
        with pytest.raises(ValidationError):
            doc_engine.create_document("rfq", ["not", "a", "dict"], operator)

    def test_deadline_before_request_date(self, doc_engine, operator):
        with pytest.raises(ValidationError) as exc_info:
            doc_engine.create_document(
                "rfq",
                {"description": "x", "request_date": "2024-03-10", "response_deadline": "2024-03-01"},
                operator,
            )
        assert exc_info.value.field_errors == ["response_deadline"]


class TestOptimisticLocking:

    def test_stale_document_write_rejected(
        self, session_factory, doc_engine, make_po, advance, item, manager, deterministic_clock,
    ):
        po = make_po([(item.id, 5, "1")])
        advance("purchase_order", po.id, "pending")
        executor = WorkflowExecutor(RbacAuthority(doc_engine.config.rbac), clock=deterministic_clock)

        first, second = session_factory(), session_factory()
        try:
            doc_a = first.get(PurchaseOrderModel, po.id)
            first.commit()
            doc_b = second.get(PurchaseOrderModel, po.id)
            second.commit()

            executor.apply_transition(
                first, workflow=PURCHASE_ORDER_WORKFLOW, document_type="purchase_order",
                document=doc_a, target_status="approved", actor=manager,
            )
            first.commit()

            with pytest.raises(OptimisticLockError) as exc_info:
                executor.apply_transition(
                    second, workflow=PURCHASE_ORDER_WORKFLOW, document_type="purchase_order",
                    document=doc_b, target_status="rejected", actor=manager,
                )
            assert exc_info.value.retryable is True
            second.rollback()
        finally:
            first.close()
            second.close()

        assert doc_engine.get_document("purchase_order", po.id).status == PurchaseOrderStatus.APPROVED


class TestTransitionLogging:

    def test_success_record(self, captured_logs, doc_engine, make_rfq, item, operator):
        rfq = make_rfq(item.id)
        doc_engine.transition("rfq", rfq.id, "pending", operator)

        records = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert records[-1]["outcome"] == "success"
        assert records[-1]["from_state"] == "draft"
        assert records[-1]["to_state"] == "pending"
        assert records[-1]["action"] == "submit"
        assert records[-1]["document_type"] == "rfq"

    def test_denied_record(self, captured_logs, doc_engine, make_rfq, item, viewer):
        rfq = make_rfq(item.id)
        with pytest.raises(UnauthorizedError):
            doc_engine.transition("rfq", rfq.id, "pending", viewer)

        records = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert records[-1]["outcome"] == "unauthorized"
        assert records[-1]["level"] == "WARNING"


class TestFromUrl:

    def test_fresh_database(self, tmp_path, deterministic_clock, admin, operator):
        engine = DocumentEngine.from_url(
            f"sqlite:///{tmp_path / 'fresh.db'}", clock=deterministic_clock, create_schema=True,
        )
        item = engine.create_item(admin, code="RAW-NEW", name="New raw", uom="KG")
        rfq = engine.create_document(
            "rfq", {"description": "First", "lines": [{"item_id": str(item.id), "quantity": "5"}]}, operator,
        )

        assert rfq.number == "RFQ-2024-0001"
        assert engine.get_on_hand(item.id) == 0

    def test_custom_config(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("config_id: plant-9\nversion: 2\n", encoding="utf-8")

        engine = DocumentEngine.from_url(f"sqlite:///{tmp_path / 'cfg.db'}", config_path=path)

        assert engine.config.config_id == "plant-9"
        assert engine.config.rbac.roles == ()
