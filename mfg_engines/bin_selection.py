"""
Module: mfg_engines.bin_selection
Responsibility:
    Decide which bins a debit draws from when the caller gives no bin, and
    which bin receives stock when a receipt names none (put-away).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stock allocator locks
    candidate BinStock rows, converts them to ``BinCandidate`` values and
    posts the returned picks.

Invariants enforced:
    - Debit order: largest available quantity first; ties go to the lowest
      bin code.  A second bin is touched only when the first cannot cover
      the request.
    - All-or-nothing: if total availability is short, InsufficientStockError
      names the shortfall and no picks are returned.
    - Put-away order: the lowest-code active bin already holding the same
      item-batch, otherwise the lowest-code empty active bin.

Failure modes:
    - InsufficientStockError when candidates cannot cover the request.
    - ValidationError on a non-positive request.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from mfg_engines.tracer import traced_engine
from mfg_kernel.exceptions import InsufficientStockError, ValidationError
from mfg_kernel.logging_config import get_logger

logger = get_logger("engines.bin_selection")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class BinCandidate:
    """Stock key that may be debited, with its unreserved quantity."""

    bin_id: Hashable
    bin_code: str
    available: Decimal
    batch_number: str | None = None
    serial_number: str | None = None


@dataclass(frozen=True)
class BinPick:
    bin_id: Hashable
    bin_code: str
    quantity: Decimal
    batch_number: str | None = None
    serial_number: str | None = None


@dataclass(frozen=True)
class PutawayCandidate:
    """A bin considered for put-away and what it currently holds."""

    bin_id: Hashable
    bin_code: str
    is_active: bool = True
    occupant_item_id: Hashable | None = None
    occupant_batch_number: str | None = None


class BinSelectionEngine:
    """
    Deterministic bin choice for debits and receipts.

    Non-goals:
        - FIFO by receipt date and expiry-driven picking are not modelled;
          the rule is quantity-then-code.
    """

    @staticmethod
    def rank(candidates: Sequence[BinCandidate]) -> list[BinCandidate]:
        """Candidates in debit order: available desc, bin code asc."""
        usable = [c for c in candidates if c.available > _ZERO]
        return sorted(usable, key=lambda c: (-c.available, c.bin_code, c.batch_number or "", c.serial_number or ""))

    @traced_engine(
        "bin_selection", "1.0",
        fingerprint_fields=("item_id", "quantity"),
        summarize=lambda picks: {"pick_count": len(picks)},
    )
    def plan_debit(
        self,
        *,
        item_id: Hashable,
        quantity: Decimal,
        candidates: Sequence[BinCandidate],
    ) -> tuple[BinPick, ...]:
        if quantity <= _ZERO:
            raise ValidationError(f"Quantity must be positive, got {quantity}", ["quantity"])

        ranked = self.rank(candidates)
        total = sum((c.available for c in ranked), _ZERO)
        if total < quantity:
            raise InsufficientStockError(str(item_id), quantity, total)

        picks: list[BinPick] = []
        remaining = quantity
        for candidate in ranked:
            if remaining <= _ZERO:
                break
            take = min(candidate.available, remaining)
            picks.append(
                BinPick(
                    bin_id=candidate.bin_id,
                    bin_code=candidate.bin_code,
                    quantity=take,
                    batch_number=candidate.batch_number,
                    serial_number=candidate.serial_number,
                )
            )
            remaining -= take

        if len(picks) > 1:
            logger.info(
                "debit_split_across_bins",
                extra={
                    "item_id": str(item_id),
                    "quantity": quantity,
                    "bins": [p.bin_code for p in picks],
                },
            )
        return tuple(picks)

    @traced_engine(
        "putaway", "1.0",
        fingerprint_fields=("item_id", "batch_number"),
        summarize=lambda chosen: {"bin_code": chosen.bin_code if chosen else None},
    )
    def plan_putaway(
        self,
        *,
        item_id: Hashable,
        batch_number: str | None,
        candidates: Sequence[PutawayCandidate],
    ) -> PutawayCandidate | None:
        active = sorted((c for c in candidates if c.is_active), key=lambda c: c.bin_code)
        for candidate in active:
            if (
                candidate.occupant_item_id == item_id
                and (candidate.occupant_batch_number or None) == (batch_number or None)
            ):
                return candidate
        for candidate in active:
            if candidate.occupant_item_id is None:
                return candidate
        return None
