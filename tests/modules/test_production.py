"""
BOMs, work orders and build postings.

Covers:
- BOM versions, activation and cycle rejection
- Work order creation defaults and the release snapshot
- Backflush consumption and finished goods output per build
- Auto-completion and over-build protection
- Build entries stay tied to their work order
- Component reservations and their release
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from mfg_kernel.domain.dtos import Direction, TransactionType
from mfg_kernel.exceptions import (
    BomMissingError,
    BomNotFoundError,
    CyclicBomError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidTransitionError,
    OverBuildError,
    UnauthorizedError,
    ValidationError,
)
from mfg_modules.production.models import ReservationStatus, WorkOrderStatus
from mfg_modules.production.orm import WorkOrderComponentModel


@pytest.fixture
def started_wo(doc_engine, build_setup, make_work_order, manager, operator):
    """A 10-unit FG-100 work order, released and started."""
    wo = make_work_order(build_setup["fg"].id)
    doc_engine.release_work_order(wo.id, manager)
    return doc_engine.transition("work_order", wo.id, "in_progress", operator)


@pytest.fixture
def reserving_bom(doc_engine, build_setup, manager):
    """Replace the FG-100 BOM with a version that reserves on release."""
    return doc_engine.create_bom(
        {
            "parent_item_id": str(build_setup["fg"].id),
            "version": "2",
            "auto_reserve_enabled": True,
            "lines": [
                {"component_item_id": str(build_setup["raw_a"].id), "quantity_per": "2"},
                {"component_item_id": str(build_setup["raw_b"].id), "quantity_per": "0.5"},
            ],
        },
        manager,
    )


def _bom_payload(parent, *components, **extra):
    payload = {
        "parent_item_id": str(parent.id),
        "version": extra.pop("version", "1"),
        "lines": [
            {"component_item_id": str(c.id), "quantity_per": str(q)} for c, q in components
        ],
    }
    payload.update(extra)
    return payload


# =============================================================================
# BOM maintenance
# =============================================================================


class TestBomMaintenance:

    def test_create_activates_by_default(self, build_setup):
        bom = build_setup["bom"]

        assert bom.is_active
        assert bom.version == "1"
        assert [line.quantity_per for line in bom.lines] == [Decimal("2"), Decimal("0.5")]

    def test_new_version_replaces_active(self, doc_engine, build_setup, reserving_bom):
        assert reserving_bom.is_active
        assert not doc_engine.get_bom(build_setup["bom"].id).is_active

    def test_inactive_version_then_activate(self, doc_engine, build_setup, manager):
        fg, raw_a = build_setup["fg"], build_setup["raw_a"]
        draft = doc_engine.create_bom(_bom_payload(fg, (raw_a, 3), version="3", activate=False), manager)
        assert not draft.is_active

        activated = doc_engine.activate_bom(draft.id, manager)

        assert activated.is_active
        assert not doc_engine.get_bom(build_setup["bom"].id).is_active
        assert doc_engine.get_active_bom(fg.id).id == activated.id

    def test_duplicate_version(self, doc_engine, build_setup, manager):
        with pytest.raises(ValidationError) as exc_info:
            doc_engine.create_bom(_bom_payload(build_setup["fg"], (build_setup["raw_a"], 1)), manager)
        assert exc_info.value.field_errors == ["version"]

    def test_cycle_rejected_on_activation(self, doc_engine, build_setup, manager):
        fg, raw_a = build_setup["fg"], build_setup["raw_a"]

        with pytest.raises(CyclicBomError) as exc_info:
            doc_engine.create_bom(_bom_payload(raw_a, (fg, 1)), manager)

        path = [str(p) for p in exc_info.value.path]
        assert path[0] == path[-1]
        assert str(fg.id) in path and str(raw_a.id) in path

    def test_cyclic_draft_cannot_activate(self, doc_engine, build_setup, manager):
        fg, raw_a = build_setup["fg"], build_setup["raw_a"]
        draft = doc_engine.create_bom(_bom_payload(raw_a, (fg, 1), activate=False), manager)

        with pytest.raises(CyclicBomError):
            doc_engine.activate_bom(draft.id, manager)
        assert not doc_engine.get_bom(draft.id).is_active

    def test_operator_cannot_manage_boms(self, doc_engine, build_setup, operator):
        with pytest.raises(UnauthorizedError) as exc_info:
            doc_engine.create_bom(
                _bom_payload(build_setup["fg"], (build_setup["raw_a"], 1), version="9"), operator,
            )
        assert exc_info.value.permission == "production.bom.manage"

    def test_unknown_bom(self, doc_engine):
        with pytest.raises(BomNotFoundError):
            doc_engine.get_bom(uuid4())

    def test_explosion_preview(self, doc_engine, build_setup):
        result = doc_engine.explode_bom(build_setup["fg"].id, Decimal("10"))

        assert result.quantity_of(build_setup["raw_a"].id) == Decimal("20")
        assert result.quantity_of(build_setup["raw_b"].id) == Decimal("5")


# =============================================================================
# Work order creation and release
# =============================================================================


class TestWorkOrderRelease:

    def test_created_as_draft(self, doc_engine, build_setup, make_work_order):
        wo = make_work_order(build_setup["fg"].id)

        assert wo.number == "WO-2024-0001"
        assert wo.status == WorkOrderStatus.DRAFT
        assert wo.completed_quantity == Decimal("0")
        assert wo.backflush is True
        assert wo.components == ()

    def test_backflush_follows_bom(self, doc_engine, build_setup, make_item, make_work_order, manager):
        kit = make_item("KIT-1")
        doc_engine.create_bom(
            _bom_payload(kit, (build_setup["raw_a"], 1), backflush_enabled=False), manager,
        )

        assert make_work_order(kit.id).backflush is False
        assert make_work_order(kit.id, backflush=True).backflush is True

    def test_release_snapshots_components(self, doc_engine, build_setup, make_work_order, manager):
        wo = make_work_order(build_setup["fg"].id)

        released = doc_engine.release_work_order(wo.id, manager)

        assert released.status == WorkOrderStatus.RELEASED
        assert released.bom_id == build_setup["bom"].id
        assert released.released_by_id == manager.actor_id
        required = {c.item_id: c.required_quantity for c in released.components}
        assert required == {
            build_setup["raw_a"].id: Decimal("20"),
            build_setup["raw_b"].id: Decimal("5"),
        }

    def test_release_without_bom(self, doc_engine, make_item, make_work_order, manager):
        loose = make_item("FG-NOBOM")
        wo = make_work_order(loose.id)

        with pytest.raises(BomMissingError):
            doc_engine.release_work_order(wo.id, manager)

        after = doc_engine.get_document("work_order", wo.id)
        assert after.status == WorkOrderStatus.DRAFT
        assert after.components == ()

    def test_operator_cannot_release(self, doc_engine, build_setup, make_work_order, operator):
        wo = make_work_order(build_setup["fg"].id)

        with pytest.raises(UnauthorizedError):
            doc_engine.release_work_order(wo.id, operator)

    def test_snapshot_ignores_later_bom_changes(
        self, doc_engine, build_setup, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.create_bom(
            _bom_payload(build_setup["fg"], (build_setup["raw_a"], 5), version="2"), manager,
        )
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        entries = doc_engine.post_build(wo.id, Decimal("1"), operator)

        consumed = {e.item_id: e.quantity_out for e in entries if e.transaction_type == TransactionType.BUILD_CONSUME}
        assert consumed[build_setup["raw_a"].id] == Decimal("2")
        assert consumed[build_setup["raw_b"].id] == Decimal("0.5")

    def test_snapshot_is_append_only(self, doc_engine, build_setup, make_work_order, manager, session_factory):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)

        with session_factory() as s:
            component = s.execute(
                select(WorkOrderComponentModel).where(WorkOrderComponentModel.work_order_id == wo.id)
            ).scalars().first()
            component.required_quantity = Decimal("1")
            with pytest.raises(ImmutabilityViolationError):
                s.flush()
            s.rollback()

    def test_completion_is_engine_only(self, doc_engine, started_wo, manager):
        with pytest.raises(InvalidTransitionError):
            doc_engine.transition("work_order", started_wo.id, "completed", manager)


# =============================================================================
# Builds
# =============================================================================


class TestBuild:

    def test_partial_build(self, doc_engine, build_setup, started_wo, operator):
        entries = doc_engine.post_build(started_wo.id, Decimal("4"), operator)

        consume = [e for e in entries if e.transaction_type == TransactionType.BUILD_CONSUME]
        output = [e for e in entries if e.transaction_type == TransactionType.BUILD_OUTPUT]
        assert {e.item_id: e.quantity_out for e in consume} == {
            build_setup["raw_a"].id: Decimal("8"),
            build_setup["raw_b"].id: Decimal("2"),
        }
        assert len(output) == 1
        assert output[0].direction == Direction.IN
        assert output[0].bin_id == build_setup["bins"]["C-01"].id
        assert {e.voucher_number for e in entries} == {"BLD-2024-0001"}
        assert all(e.work_order_id == started_wo.id for e in entries)

        wo = doc_engine.get_document("work_order", started_wo.id)
        assert wo.completed_quantity == Decimal("4")
        assert wo.status == WorkOrderStatus.IN_PROGRESS
        assert doc_engine.get_on_hand(build_setup["raw_a"].id) == Decimal("92")
        assert doc_engine.get_on_hand(build_setup["fg"].id) == Decimal("4")

    def test_output_into_named_bin(self, doc_engine, build_setup, started_wo, make_bin, operator):
        fg_bin = make_bin("FG-01")

        entries = doc_engine.post_build(started_wo.id, Decimal("1"), operator, output_bin_id=fg_bin.id)
        assert entries[-1].bin_id == fg_bin.id

    @pytest.mark.parametrize("transaction_type", [TransactionType.BUILD_OUTPUT, TransactionType.BUILD_CONSUME])
    def test_build_entries_not_reversible(
        self, doc_engine, build_setup, started_wo, operator, manager, transaction_type,
    ):
        entries = doc_engine.post_build(started_wo.id, Decimal("4"), operator)
        target = next(e for e in entries if e.transaction_type == transaction_type)

        with pytest.raises(ValidationError) as exc_info:
            doc_engine.reverse_ledger_entry(target.id, manager)
        assert exc_info.value.field_errors == ["entry_id"]

        wo = doc_engine.get_document("work_order", started_wo.id)
        assert wo.completed_quantity == Decimal("4")
        assert doc_engine.get_on_hand(build_setup["fg"].id) == Decimal("4")
        assert doc_engine.get_on_hand(build_setup["raw_a"].id) == Decimal("92")

    def test_reaching_plan_completes(self, doc_engine, started_wo, operator, deterministic_clock, utc):
        doc_engine.post_build(started_wo.id, Decimal("6"), operator)
        doc_engine.post_build(started_wo.id, Decimal("4"), operator)

        wo = doc_engine.get_document("work_order", started_wo.id)
        assert wo.status == WorkOrderStatus.COMPLETED
        assert wo.completed_quantity == Decimal("10")
        assert utc(wo.completed_at) == deterministic_clock.now()

    @pytest.mark.parametrize("first, second", [(Decimal("11"), None), (Decimal("6"), Decimal("5"))])
    def test_over_build(self, doc_engine, build_setup, started_wo, operator, first, second):
        if second is None:
            with pytest.raises(OverBuildError):
                doc_engine.post_build(started_wo.id, first, operator)
            return
        doc_engine.post_build(started_wo.id, first, operator)
        with pytest.raises(OverBuildError) as exc_info:
            doc_engine.post_build(started_wo.id, second, operator)
        assert exc_info.value.completed == Decimal("6")
        assert doc_engine.get_on_hand(build_setup["fg"].id) == Decimal("6")

    @pytest.mark.parametrize("statuses", [(), ("released",)])
    def test_build_requires_in_progress(
        self, doc_engine, build_setup, make_work_order, manager, operator, statuses,
    ):
        wo = make_work_order(build_setup["fg"].id)
        for status in statuses:
            doc_engine.transition("work_order", wo.id, status, manager)

        with pytest.raises(InvalidTransitionError):
            doc_engine.post_build(wo.id, Decimal("1"), operator)

    def test_build_after_completion(self, doc_engine, started_wo, operator):
        doc_engine.post_build(started_wo.id, Decimal("10"), operator)

        with pytest.raises(InvalidTransitionError):
            doc_engine.post_build(started_wo.id, Decimal("1"), operator)

    def test_component_shortage_posts_nothing(
        self, doc_engine, build_setup, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id, planned=Decimal("200"))
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        with pytest.raises(InsufficientStockError):
            doc_engine.post_build(wo.id, Decimal("60"), operator)

        assert doc_engine.get_entries(work_order_id=wo.id) == []
        assert doc_engine.get_on_hand(build_setup["raw_b"].id) == Decimal("50")
        assert doc_engine.get_document("work_order", wo.id).completed_quantity == Decimal("0")

    def test_no_backflush(self, doc_engine, build_setup, make_work_order, manager, operator):
        wo = make_work_order(build_setup["fg"].id, backflush=False)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        entries = doc_engine.post_build(wo.id, Decimal("5"), operator)

        assert [e.transaction_type for e in entries] == [TransactionType.BUILD_OUTPUT]
        assert doc_engine.get_on_hand(build_setup["raw_a"].id) == Decimal("100")

    def test_line_level_backflush_off(self, doc_engine, build_setup, make_work_order, manager, operator):
        fg, raw_a, raw_b = build_setup["fg"], build_setup["raw_a"], build_setup["raw_b"]
        doc_engine.create_bom(
            {
                "parent_item_id": str(fg.id),
                "version": "2",
                "lines": [
                    {"component_item_id": str(raw_a.id), "quantity_per": "2"},
                    {"component_item_id": str(raw_b.id), "quantity_per": "0.5", "backflush": False},
                ],
            },
            manager,
        )
        wo = make_work_order(fg.id)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        entries = doc_engine.post_build(wo.id, Decimal("2"), operator)

        assert {e.item_id for e in entries if e.transaction_type == TransactionType.BUILD_CONSUME} == {raw_a.id}

    def test_build_logged(self, captured_logs, doc_engine, started_wo, operator):
        doc_engine.post_build(started_wo.id, Decimal("10"), operator)

        records = [r for r in captured_logs() if r["message"] == "production_build_posted"]
        assert records[0]["status"] == "completed"
        assert records[0]["consumed_entries"] == 2


# =============================================================================
# Reservations
# =============================================================================


class TestReservations:

    def test_release_reserves_components(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)

        reservations = doc_engine.get_reservations(wo.id, active_only=True)
        assert {r.item_id: r.quantity for r in reservations} == {
            build_setup["raw_a"].id: Decimal("20"),
            build_setup["raw_b"].id: Decimal("5"),
        }
        level = doc_engine.get_stock_level(build_setup["raw_a"].id)
        assert (level.on_hand, level.reserved, level.available) == (
            Decimal("100"), Decimal("20"), Decimal("80"),
        )

    def test_reserved_stock_unavailable_to_issues(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)

        with pytest.raises(InsufficientStockError) as exc_info:
            doc_engine.post_issue(build_setup["raw_a"].id, Decimal("81"), operator)
        assert exc_info.value.available == Decimal("80")

    def test_build_consumes_reservations(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        doc_engine.post_build(wo.id, Decimal("4"), operator)

        level = doc_engine.get_stock_level(build_setup["raw_a"].id)
        assert (level.on_hand, level.reserved) == (Decimal("92"), Decimal("12"))

        doc_engine.post_build(wo.id, Decimal("6"), operator)

        assert doc_engine.get_stock_level(build_setup["raw_a"].id).reserved == Decimal("0")
        statuses = {r.status for r in doc_engine.get_reservations(wo.id)}
        assert statuses == {ReservationStatus.CONSUMED}

    def test_cancel_releases_reservations(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)
        doc_engine.post_build(wo.id, Decimal("4"), operator)

        cancelled = doc_engine.transition("work_order", wo.id, "cancelled", manager)

        assert cancelled.status == WorkOrderStatus.CANCELLED
        assert doc_engine.get_reservations(wo.id, active_only=True) == []
        level = doc_engine.get_stock_level(build_setup["raw_a"].id)
        assert (level.on_hand, level.available) == (Decimal("92"), Decimal("92"))

    def test_no_reservation_without_backflush(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager,
    ):
        wo = make_work_order(build_setup["fg"].id, backflush=False)
        doc_engine.release_work_order(wo.id, manager)

        assert doc_engine.get_reservations(wo.id) == []

    def test_reservation_shortage_blocks_release(
        self, doc_engine, build_setup, reserving_bom, make_work_order, manager,
    ):
        wo = make_work_order(build_setup["fg"].id, planned=Decimal("60"))

        with pytest.raises(InsufficientStockError):
            doc_engine.release_work_order(wo.id, manager)

        after = doc_engine.get_document("work_order", wo.id)
        assert after.status == WorkOrderStatus.DRAFT
        assert doc_engine.get_stock_level(build_setup["raw_a"].id).reserved == Decimal("0")
