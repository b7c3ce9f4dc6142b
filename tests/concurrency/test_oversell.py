"""
Concurrent postings against the same stock and documents.

Threads are released together through a Barrier so their transactions
overlap.  On PostgreSQL (DATABASE_URL) the row locks decide the winner; on
the SQLite fallback writers are serialized by BEGIN IMMEDIATE.  Either way
the invariants are the same: no negative stock, no double conversion, no
duplicate voucher numbers, no cycle among active BOMs.

Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from mfg_kernel.exceptions import (
    AlreadyConvertedError,
    CyclicBomError,
    InsufficientStockError,
    OverBuildError,
    OverReceiptError,
)

pytestmark = [pytest.mark.postgres, pytest.mark.slow_locks]


def _race(*calls):
    """Run ``calls`` in parallel threads; return each result or raised exception."""
    barrier = Barrier(len(calls))

    def _run(call):
        barrier.wait()
        try:
            return call()
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(_run, call) for call in calls]
        return [f.result(timeout=60) for f in futures]


def _split(outcomes):
    failures = [o for o in outcomes if isinstance(o, Exception)]
    successes = [o for o in outcomes if not isinstance(o, Exception)]
    return successes, failures


def _bom(parent, component):
    """Inactive one-line BOM payload."""
    return {
        "parent_item_id": str(parent.id),
        "version": "1",
        "activate": False,
        "lines": [{"component_item_id": str(component.id), "quantity_per": "1"}],
    }


class TestNoOversell:
    """Two issues that each fit, but not together."""

    @pytest.fixture
    def hundred(self, item, bins, stock):
        stock(item.id, bins["A-01"].id, 100)
        return item

    def test_one_of_two_issues_wins(self, doc_engine, hundred, operator):
        outcomes = _race(
            lambda: doc_engine.post_issue(hundred.id, Decimal("80"), operator),
            lambda: doc_engine.post_issue(hundred.id, Decimal("40"), operator),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStockError)

        winner = successes[0].total_out
        assert doc_engine.get_on_hand(hundred.id) == Decimal("100") - winner
        assert doc_engine.reconcile(hundred.id) == []

    def test_equal_issues(self, doc_engine, hundred, operator):
        outcomes = _race(
            lambda: doc_engine.post_issue(hundred.id, Decimal("80"), operator),
            lambda: doc_engine.post_issue(hundred.id, Decimal("80"), operator),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert isinstance(failures[0], InsufficientStockError)
        assert doc_engine.get_on_hand(hundred.id) == Decimal("20")

    def test_many_small_issues_never_go_negative(self, doc_engine, hundred, operator):
        outcomes = _race(*[
            (lambda: doc_engine.post_issue(hundred.id, Decimal("15"), operator))
            for _ in range(8)
        ])

        successes, failures = _split(outcomes)
        assert len(successes) == 6
        assert all(isinstance(f, InsufficientStockError) for f in failures)
        assert doc_engine.get_on_hand(hundred.id) == Decimal("10")
        assert doc_engine.reconcile() == []

    def test_voucher_numbers_unique(self, doc_engine, hundred, operator):
        outcomes = _race(*[
            (lambda: doc_engine.post_issue(hundred.id, Decimal("1"), operator))
            for _ in range(6)
        ])

        vouchers = sorted(o.voucher_number for o in outcomes)
        assert vouchers == [f"MIN-2024-{n:04d}" for n in range(1, 7)]


class TestDocumentRaces:

    def test_quote_converted_once(self, doc_engine, approved_quote, manager):
        outcomes = _race(
            lambda: doc_engine.convert_quote_to_po(approved_quote.id, None, manager),
            lambda: doc_engine.convert_quote_to_po(approved_quote.id, None, manager),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert isinstance(failures[0], AlreadyConvertedError)
        assert failures[0].po_id == str(successes[0].id)

        quote = doc_engine.get_document("quote", approved_quote.id)
        assert quote.converted_po_id == successes[0].id

    def test_concurrent_receipts_respect_order_quantity(self, doc_engine, approved_po, bins, operator):
        line = {"po_line_id": str(approved_po.lines[0].id), "quantity": "60", "bin_id": str(bins["A-01"].id)}

        outcomes = _race(
            lambda: doc_engine.post_grn(approved_po.id, [line], operator),
            lambda: doc_engine.post_grn(approved_po.id, [line], operator),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert isinstance(failures[0], OverReceiptError)
        po = doc_engine.get_document("purchase_order", approved_po.id)
        assert po.lines[0].received_quantity == Decimal("60")

    def test_concurrent_builds_respect_plan(
        self, doc_engine, build_setup, make_work_order, manager, operator,
    ):
        wo = make_work_order(build_setup["fg"].id)
        doc_engine.release_work_order(wo.id, manager)
        doc_engine.transition("work_order", wo.id, "in_progress", operator)

        outcomes = _race(
            lambda: doc_engine.post_build(wo.id, Decimal("6"), operator),
            lambda: doc_engine.post_build(wo.id, Decimal("6"), operator),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert isinstance(failures[0], OverBuildError)
        assert doc_engine.get_document("work_order", wo.id).completed_quantity == Decimal("6")
        assert doc_engine.get_on_hand(build_setup["raw_a"].id) == Decimal("88")

    def test_crossed_bom_activations_leave_graph_acyclic(self, doc_engine, make_item, manager):
        left = make_item("SUB-LEFT")
        right = make_item("SUB-RIGHT")
        left_bom = doc_engine.create_bom(_bom(left, right), manager)
        right_bom = doc_engine.create_bom(_bom(right, left), manager)

        outcomes = _race(
            lambda: doc_engine.activate_bom(left_bom.id, manager),
            lambda: doc_engine.activate_bom(right_bom.id, manager),
        )

        successes, failures = _split(outcomes)
        assert len(successes) == 1
        assert isinstance(failures[0], CyclicBomError)
        active = [doc_engine.get_active_bom(left.id), doc_engine.get_active_bom(right.id)]
        assert sum(bom is not None for bom in active) == 1
