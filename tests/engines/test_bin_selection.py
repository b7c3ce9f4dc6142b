"""
Tests for the Bin Selection Engine.

Covers:
- Debit ranking: largest available first, bin code breaks ties
- Splitting a debit across bins
- Insufficient stock
- Put-away choice for receipts
- Engine trace records
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mfg_engines.bin_selection import BinCandidate, BinSelectionEngine, PutawayCandidate
from mfg_engines.tracer import compute_input_fingerprint
from mfg_kernel.exceptions import InsufficientStockError, ValidationError


def _candidate(code: str, available: str, batch: str | None = None) -> BinCandidate:
    return BinCandidate(bin_id=f"bin-{code}", bin_code=code, available=Decimal(available), batch_number=batch)


class TestRanking:

    def test_largest_available_first(self):
        ranked = BinSelectionEngine.rank([
            _candidate("A-01", "10"),
            _candidate("A-02", "50"),
            _candidate("A-03", "30"),
        ])
        assert [c.bin_code for c in ranked] == ["A-02", "A-03", "A-01"]

    def test_ties_broken_by_bin_code(self):
        ranked = BinSelectionEngine.rank([
            _candidate("B-01", "20"),
            _candidate("A-07", "20"),
        ])
        assert [c.bin_code for c in ranked] == ["A-07", "B-01"]

    def test_empty_candidates_dropped(self):
        ranked = BinSelectionEngine.rank([
            _candidate("A-01", "0"),
            _candidate("A-02", "5"),
        ])
        assert [c.bin_code for c in ranked] == ["A-02"]


class TestPlanDebit:
    """Debit plans over candidate bins."""

    def setup_method(self):
        self.engine = BinSelectionEngine()

    def test_single_bin_when_largest_covers(self):
        picks = self.engine.plan_debit(
            item_id="RAW",
            quantity=Decimal("40"),
            candidates=[_candidate("A-01", "30"), _candidate("A-02", "50")],
        )

        assert len(picks) == 1
        assert picks[0].bin_code == "A-02"
        assert picks[0].quantity == Decimal("40")

    def test_split_across_bins(self):
        picks = self.engine.plan_debit(
            item_id="RAW",
            quantity=Decimal("70"),
            candidates=[_candidate("A-01", "30"), _candidate("A-02", "50")],
        )

        assert [(p.bin_code, p.quantity) for p in picks] == [
            ("A-02", Decimal("50")),
            ("A-01", Decimal("20")),
        ]

    def test_tie_takes_lowest_code(self):
        picks = self.engine.plan_debit(
            item_id="RAW",
            quantity=Decimal("10"),
            candidates=[_candidate("A-02", "50"), _candidate("A-01", "50")],
        )

        assert picks[0].bin_code == "A-01"

    def test_pick_carries_batch(self):
        picks = self.engine.plan_debit(
            item_id="RAW",
            quantity=Decimal("5"),
            candidates=[_candidate("A-01", "8", batch="LOT-7")],
        )

        assert picks[0].batch_number == "LOT-7"

    def test_insufficient_total_raises(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            self.engine.plan_debit(
                item_id="RAW",
                quantity=Decimal("100"),
                candidates=[_candidate("A-01", "30"), _candidate("A-02", "50")],
            )

        assert exc_info.value.requested == Decimal("100")
        assert exc_info.value.available == Decimal("80")
        assert exc_info.value.shortfall == Decimal("20")
        assert exc_info.value.retryable is True

    def test_no_candidates_raises(self):
        with pytest.raises(InsufficientStockError):
            self.engine.plan_debit(item_id="RAW", quantity=Decimal("1"), candidates=[])

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-5")])
    def test_non_positive_quantity(self, quantity):
        with pytest.raises(ValidationError):
            self.engine.plan_debit(
                item_id="RAW", quantity=quantity, candidates=[_candidate("A-01", "10")],
            )


class TestPlanPutaway:
    """Receiving bin choice."""

    def setup_method(self):
        self.engine = BinSelectionEngine()

    def test_prefers_bin_already_holding_item(self):
        chosen = self.engine.plan_putaway(
            item_id="RAW",
            batch_number=None,
            candidates=[
                PutawayCandidate("b1", "A-01"),
                PutawayCandidate("b2", "C-09", occupant_item_id="RAW"),
            ],
        )
        assert chosen.bin_code == "C-09"

    def test_same_item_other_batch_is_not_a_match(self):
        chosen = self.engine.plan_putaway(
            item_id="RAW",
            batch_number="LOT-2",
            candidates=[
                PutawayCandidate("b1", "A-01", occupant_item_id="RAW", occupant_batch_number="LOT-1"),
                PutawayCandidate("b2", "A-02"),
            ],
        )
        assert chosen.bin_code == "A-02"

    def test_lowest_code_empty_bin(self):
        chosen = self.engine.plan_putaway(
            item_id="RAW",
            batch_number=None,
            candidates=[
                PutawayCandidate("b3", "B-01"),
                PutawayCandidate("b1", "A-01", occupant_item_id="OTHER"),
                PutawayCandidate("b2", "A-02"),
            ],
        )
        assert chosen.bin_code == "A-02"

    def test_inactive_bins_skipped(self):
        chosen = self.engine.plan_putaway(
            item_id="RAW",
            batch_number=None,
            candidates=[
                PutawayCandidate("b1", "A-01", is_active=False),
                PutawayCandidate("b2", "A-02", is_active=False, occupant_item_id="RAW"),
                PutawayCandidate("b3", "A-03"),
            ],
        )
        assert chosen.bin_code == "A-03"

    def test_no_bin_available(self):
        chosen = self.engine.plan_putaway(
            item_id="RAW",
            batch_number=None,
            candidates=[PutawayCandidate("b1", "A-01", occupant_item_id="OTHER")],
        )
        assert chosen is None


class TestEngineTrace:

    def test_plan_debit_emits_trace(self, captured_logs):
        BinSelectionEngine().plan_debit(
            item_id="RAW", quantity=Decimal("1"), candidates=[_candidate("A-01", "1")],
        )

        traces = [r for r in captured_logs() if r["message"] == "MFG_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "bin_selection"
        assert len(traces[-1]["input_fingerprint"]) == 16

    def test_fingerprint_is_stable(self):
        kwargs = {"item_id": "RAW", "quantity": Decimal("5")}
        assert compute_input_fingerprint(("item_id", "quantity"), kwargs) == compute_input_fingerprint(
            ("item_id", "quantity"), dict(kwargs),
        )

    def test_fingerprint_ignores_decimal_scale(self):
        fields = ("item_id", "quantity")
        short = compute_input_fingerprint(fields, {"item_id": "RAW", "quantity": Decimal("10")})
        padded = compute_input_fingerprint(fields, {"item_id": "RAW", "quantity": Decimal("10.000")})
        other = compute_input_fingerprint(fields, {"item_id": "RAW", "quantity": Decimal("11")})

        assert short == padded
        assert short != other

    def test_trace_summarizes_picks(self, captured_logs):
        BinSelectionEngine().plan_debit(
            item_id="RAW", quantity=Decimal("8"),
            candidates=[_candidate("A-01", "5"), _candidate("A-02", "5")],
        )

        trace = [r for r in captured_logs() if r["message"] == "MFG_ENGINE_TRACE"][-1]
        assert trace["outcome"] == "ok"
        assert trace["pick_count"] == 2

    def test_rejected_call_is_traced(self, captured_logs):
        with pytest.raises(InsufficientStockError):
            BinSelectionEngine().plan_debit(
                item_id="RAW", quantity=Decimal("9"), candidates=[_candidate("A-01", "5")],
            )

        trace = [r for r in captured_logs() if r["message"] == "MFG_ENGINE_TRACE"][-1]
        assert trace["outcome"] == "rejected"
        assert trace["error_code"] == "INSUFFICIENT_STOCK"
        assert "pick_count" not in trace


# =============================================================================
# Properties
# =============================================================================


_available = st.integers(min_value=0, max_value=500).map(Decimal)


class TestPlanDebitProperties:

    @given(
        amounts=st.lists(_available, min_size=1, max_size=8),
        data=st.data(),
    )
    @settings(max_examples=100, deadline=None)
    def test_picks_cover_request_within_availability(self, amounts, data):
        candidates = [_candidate(f"A-{idx:02d}", str(a)) for idx, a in enumerate(amounts)]
        total = sum(amounts, Decimal("0"))
        if total == 0:
            return
        quantity = Decimal(data.draw(st.integers(min_value=1, max_value=int(total))))

        picks = BinSelectionEngine().plan_debit(item_id="RAW", quantity=quantity, candidates=candidates)

        by_code = {c.bin_code: c.available for c in candidates}
        assert sum((p.quantity for p in picks), Decimal("0")) == quantity
        assert all(Decimal("0") < p.quantity <= by_code[p.bin_code] for p in picks)
        # Every bin but the last one drawn is emptied
        assert all(p.quantity == by_code[p.bin_code] for p in picks[:-1])
