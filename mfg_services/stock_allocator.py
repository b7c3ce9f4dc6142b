"""
mfg_services.stock_allocator -- Bin choice over live stock.

Responsibility:
    Bridges the pure ``BinSelectionEngine`` and the database.  Locks the
    candidate BinStock rows for an item, hands them to the engine, and
    returns the picks the caller then posts through LedgerService.  Also
    resolves put-away bins for receipts and keeps reservation quantities on
    the projection.

Architecture position:
    Services layer.  Flush-only; used by module services inside their own
    transaction.

Invariants enforced:
    - Candidate rows are locked (``FOR UPDATE``, ordered by bin code then
      id) before the engine sees them, so the plan stays valid until the
      caller's postings land.
    - Batch-controlled items are never auto-selected without a batch.
"""

from __future__ import annotations

from collections.abc import Collection
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_engines.bin_selection import BinCandidate, BinPick, BinSelectionEngine, PutawayCandidate
from mfg_kernel.db.types import ZERO
from mfg_kernel.exceptions import BatchRequiredError, InsufficientStockError, ValidationError
from mfg_kernel.logging_config import get_logger
from mfg_kernel.models.stock import NO_LOT, BinStock
from mfg_kernel.models.warehouse import Bin
from mfg_kernel.services.ledger_service import LedgerService

logger = get_logger("services.stock_allocator")


class StockAllocator:

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        engine: BinSelectionEngine | None = None,
        enforce_single_sku_bins: bool = True,
    ):
        self._session = session
        self._ledger = ledger
        self._engine = engine or BinSelectionEngine()
        self._enforce_single_sku_bins = enforce_single_sku_bins

    def _lock_candidates(
        self,
        item_id: UUID,
        batch_number: str | None,
        serial_number: str | None,
        warehouse_id: UUID | None,
        exclude_bin_ids: Collection[UUID] = (),
    ) -> list[BinCandidate]:
        stmt = (
            select(BinStock, Bin.code)
            .join(Bin, Bin.id == BinStock.bin_id)
            .where(BinStock.item_id == item_id, BinStock.quantity > 0)
            .order_by(Bin.code, BinStock.id)
            .with_for_update(of=BinStock)
            .execution_options(populate_existing=True)
        )
        if batch_number is not None:
            stmt = stmt.where(BinStock.batch_number == batch_number)
        if serial_number is not None:
            stmt = stmt.where(BinStock.serial_number == serial_number)
        if warehouse_id is not None:
            stmt = stmt.where(BinStock.warehouse_id == warehouse_id)
        if exclude_bin_ids:
            stmt = stmt.where(BinStock.bin_id.not_in(list(exclude_bin_ids)))
        return [
            BinCandidate(
                bin_id=row.bin_id,
                bin_code=code,
                available=row.available,
                batch_number=row.batch_number or None,
                serial_number=row.serial_number or None,
            )
            for row, code in self._session.execute(stmt)
        ]

    def plan_debit(
        self,
        *,
        item_id: UUID,
        quantity: Decimal,
        bin_id: UUID | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
        warehouse_id: UUID | None = None,
        exclude_bin_ids: Collection[UUID] = (),
        require_identifier: bool = True,
    ) -> tuple[BinPick, ...]:
        """
        Decide where a debit comes from.

        With an explicit bin the plan is that bin alone; LedgerService
        verifies availability when the pick is posted.  Without one, the
        engine's largest-available-first rule applies across the locked
        candidates.

        ``require_identifier=False`` lets a tracked item draw from any batch
        or serial; each pick still carries the identifier it came from.

        Raises:
            BatchRequiredError: tracked item, no identifier, no explicit bin.
            InsufficientStockError: candidates cannot cover the request.
        """
        item = self._ledger.get_item(item_id)
        if require_identifier or bin_id is not None:
            if item.requires_batch and not batch_number:
                raise BatchRequiredError(str(item_id), "batch_number")
            if item.requires_serial and not serial_number:
                raise BatchRequiredError(str(item_id), "serial_number")

        if bin_id is not None:
            bin_ = self._ledger.get_bin(bin_id)
            return (
                BinPick(
                    bin_id=bin_.id,
                    bin_code=bin_.code,
                    quantity=quantity,
                    batch_number=batch_number,
                    serial_number=serial_number,
                ),
            )

        candidates = self._lock_candidates(
            item_id, batch_number, serial_number, warehouse_id, exclude_bin_ids,
        )
        try:
            return self._engine.plan_debit(item_id=item_id, quantity=quantity, candidates=candidates)
        except InsufficientStockError as exc:
            logger.warning(
                "insufficient_stock",
                extra={
                    "item_id": str(item_id),
                    "requested": quantity,
                    "available": exc.available,
                    "warehouse_id": str(warehouse_id) if warehouse_id else None,
                },
            )
            raise

    def resolve_putaway_bin(
        self,
        *,
        item_id: UUID,
        warehouse_id: UUID,
        batch_number: str | None = None,
    ) -> UUID:
        """Pick a receiving bin when the caller names none."""
        bins = self._session.execute(
            select(Bin).where(Bin.warehouse_id == warehouse_id).order_by(Bin.code)
        ).scalars().all()
        stock_rows = self._session.execute(
            select(BinStock).where(BinStock.warehouse_id == warehouse_id, BinStock.quantity > 0)
        ).scalars().all()

        holdings: dict[UUID, list[BinStock]] = {}
        for row in stock_rows:
            holdings.setdefault(row.bin_id, []).append(row)

        candidates = []
        for bin_ in bins:
            held = holdings.get(bin_.id, [])
            match = next(
                (r for r in held if r.item_id == item_id and r.batch_number == (batch_number or NO_LOT)),
                None,
            )
            occupant = match or (held[0] if held else None)
            candidates.append(
                PutawayCandidate(
                    bin_id=bin_.id,
                    bin_code=bin_.code,
                    is_active=bin_.is_active,
                    occupant_item_id=occupant.item_id if occupant else None,
                    occupant_batch_number=(occupant.batch_number or None) if occupant else None,
                )
            )

        chosen = self._engine.plan_putaway(item_id=item_id, batch_number=batch_number, candidates=candidates)
        if chosen is None and not self._enforce_single_sku_bins:
            chosen = next((c for c in candidates if c.is_active), None)
        if chosen is None:
            raise ValidationError(
                f"No bin in warehouse {warehouse_id} can receive item {item_id}",
                ["bin_id"],
            )
        logger.debug(
            "putaway_bin_resolved",
            extra={"item_id": str(item_id), "bin_id": str(chosen.bin_id), "bin_code": chosen.bin_code},
        )
        return chosen.bin_id

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        *,
        item_id: UUID,
        quantity: Decimal,
        warehouse_id: UUID | None = None,
        batch_number: str | None = None,
    ) -> tuple[BinPick, ...]:
        """Hold stock against a future debit; reserved stock is not available to others."""
        picks = self.plan_debit(
            item_id=item_id,
            quantity=quantity,
            batch_number=batch_number,
            warehouse_id=warehouse_id,
            require_identifier=False,
        )
        for pick in picks:
            row = self._ledger.lock_stock_row(pick.bin_id, item_id, pick.batch_number, pick.serial_number)
            row.reserved_quantity += pick.quantity
        self._session.flush()
        return picks

    def release(
        self,
        *,
        item_id: UUID,
        bin_id: UUID,
        quantity: Decimal,
        batch_number: str | None = None,
        serial_number: str | None = None,
    ) -> Decimal:
        """Return reserved stock to the available pool; returns the amount released."""
        row = self._ledger.lock_stock_row(bin_id, item_id, batch_number, serial_number)
        if row is None:
            return ZERO
        released = min(quantity, row.reserved_quantity)
        row.reserved_quantity -= released
        self._session.flush()
        return released
