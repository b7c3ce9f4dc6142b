"""
Module: mfg_kernel.selectors.stock_selector
Responsibility: Read access to stock: on-hand derived from the ledger,
    availability from the bin projection, ledger history, and a
    reconciliation check between the two.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - On-hand is ALWAYS computed from ledger rows (sum in - sum out); the
      projection is never the source of truth for on-hand figures.
    - reconcile() returns an empty list when projection and ledger agree.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from mfg_kernel.db.types import ZERO
from mfg_kernel.domain.dtos import BinStockRecord, LedgerEntryRecord
from mfg_kernel.models.ledger import StockLedgerEntry
from mfg_kernel.models.stock import NO_LOT, BinStock
from mfg_kernel.models.warehouse import Bin
from mfg_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockDiscrepancy:
    """A stock key whose projection disagrees with the ledger."""

    item_id: UUID
    bin_id: UUID
    batch_number: str | None
    serial_number: str | None
    ledger_quantity: Decimal
    projected_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return self.projected_quantity - self.ledger_quantity


class StockSelector(BaseSelector[StockLedgerEntry]):

    def get_on_hand(
        self,
        item_id: UUID,
        bin_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        batch_number: str | None = None,
    ) -> Decimal:
        """sum(quantity_in) - sum(quantity_out) over matching ledger rows."""
        stmt = select(
            func.coalesce(func.sum(StockLedgerEntry.quantity_in), 0),
            func.coalesce(func.sum(StockLedgerEntry.quantity_out), 0),
        ).where(StockLedgerEntry.item_id == item_id)
        if bin_id is not None:
            stmt = stmt.where(StockLedgerEntry.bin_id == bin_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockLedgerEntry.warehouse_id == warehouse_id)
        if batch_number is not None:
            stmt = stmt.where(StockLedgerEntry.batch_number == batch_number)
        total_in, total_out = self.session.execute(stmt).one()
        return Decimal(str(total_in)) - Decimal(str(total_out))

    def get_available(
        self,
        item_id: UUID,
        bin_id: UUID | None = None,
        warehouse_id: UUID | None = None,
    ) -> Decimal:
        """On-hand less reservations, from the projection."""
        return sum((r.available for r in self.get_bin_stock(item_id, bin_id, warehouse_id)), ZERO)

    def get_reserved(self, item_id: UUID, bin_id: UUID | None = None) -> Decimal:
        return sum((r.reserved_quantity for r in self.get_bin_stock(item_id, bin_id)), ZERO)

    def get_bin_stock(
        self,
        item_id: UUID,
        bin_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        include_empty: bool = False,
    ) -> list[BinStockRecord]:
        """Projection rows for an item, ordered by bin code."""
        stmt = (
            select(BinStock, Bin.code)
            .join(Bin, Bin.id == BinStock.bin_id)
            .where(BinStock.item_id == item_id)
        )
        if bin_id is not None:
            stmt = stmt.where(BinStock.bin_id == bin_id)
        if warehouse_id is not None:
            stmt = stmt.where(BinStock.warehouse_id == warehouse_id)
        if not include_empty:
            stmt = stmt.where(BinStock.quantity > 0)
        stmt = stmt.order_by(Bin.code, BinStock.batch_number, BinStock.serial_number)
        return [BinStockRecord.from_model(row, code) for row, code in self.session.execute(stmt)]

    def get_entries(
        self,
        item_id: UUID | None = None,
        bin_id: UUID | None = None,
        work_order_id: UUID | None = None,
        voucher_number: str | None = None,
        reference_id: UUID | None = None,
    ) -> list[LedgerEntryRecord]:
        """Ledger history in posting order."""
        stmt = select(StockLedgerEntry)
        if item_id is not None:
            stmt = stmt.where(StockLedgerEntry.item_id == item_id)
        if bin_id is not None:
            stmt = stmt.where(StockLedgerEntry.bin_id == bin_id)
        if work_order_id is not None:
            stmt = stmt.where(StockLedgerEntry.work_order_id == work_order_id)
        if voucher_number is not None:
            stmt = stmt.where(StockLedgerEntry.voucher_number == voucher_number)
        if reference_id is not None:
            stmt = stmt.where(StockLedgerEntry.reference_id == reference_id)
        rows = self.session.execute(stmt.order_by(StockLedgerEntry.seq)).scalars()
        return [LedgerEntryRecord.from_model(r) for r in rows]

    def reconcile(self, item_id: UUID | None = None) -> list[StockDiscrepancy]:
        """Compare every projection row with the ledger sum for its key."""
        batch_key = func.coalesce(StockLedgerEntry.batch_number, NO_LOT)
        serial_key = func.coalesce(StockLedgerEntry.serial_number, NO_LOT)
        ledger_stmt = select(
            StockLedgerEntry.item_id,
            StockLedgerEntry.bin_id,
            batch_key,
            serial_key,
            func.sum(StockLedgerEntry.quantity_in) - func.sum(StockLedgerEntry.quantity_out),
        ).group_by(StockLedgerEntry.item_id, StockLedgerEntry.bin_id, batch_key, serial_key)
        proj_stmt = select(BinStock)
        if item_id is not None:
            ledger_stmt = ledger_stmt.where(StockLedgerEntry.item_id == item_id)
            proj_stmt = proj_stmt.where(BinStock.item_id == item_id)

        ledger: dict[tuple, Decimal] = {}
        for i_id, b_id, batch, serial, net in self.session.execute(ledger_stmt):
            ledger[(i_id, b_id, batch, serial)] = Decimal(str(net))
        projected: dict[tuple, Decimal] = {}
        for row in self.session.execute(proj_stmt).scalars():
            projected[(row.item_id, row.bin_id, row.batch_number, row.serial_number)] = row.quantity

        discrepancies = []
        for key in sorted(set(ledger) | set(projected), key=lambda k: tuple(str(p) for p in k)):
            led = ledger.get(key, ZERO)
            proj = projected.get(key, ZERO)
            if led != proj:
                discrepancies.append(
                    StockDiscrepancy(
                        item_id=key[0],
                        bin_id=key[1],
                        batch_number=key[2] or None,
                        serial_number=key[3] or None,
                        ledger_quantity=led,
                        projected_quantity=proj,
                    )
                )
        return discrepancies
