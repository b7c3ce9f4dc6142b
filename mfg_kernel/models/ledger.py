"""
Module: mfg_kernel.models.ledger
Responsibility: StockLedgerEntry, the append-only daily transaction register
    (DTR).  Every quantity change in the system is exactly one row here; the
    BinStock projection and every on-hand figure derive from it.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Written ONLY by LedgerService.

Invariants enforced:
    - Append-only: rows are never updated or deleted (db/immutability.py).
      Corrections are new rows with reverses_entry_id set.
    - Exactly one of quantity_in / quantity_out is positive; the other is 0.
    - seq is strictly monotonic across the whole ledger (unique constraint).
    - uom is copied from the item at posting time.
    - A reversed entry can be reversed at most once (unique reverses_entry_id).

Audit relevance:
    The DTR is the system of record for stock.  balance_after records the
    bin's running balance for the (item, batch, serial) key after the row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mfg_kernel.db.base import Base, UUIDString


class StockLedgerEntry(Base):
    __tablename__ = "stock_ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_seq"),
        UniqueConstraint("reverses_entry_id", name="uq_ledger_reverses_entry"),
        CheckConstraint("quantity_in >= 0 AND quantity_out >= 0", name="ck_ledger_non_negative"),
        CheckConstraint(
            "(quantity_in > 0 AND quantity_out = 0) OR (quantity_out > 0 AND quantity_in = 0)",
            name="ck_ledger_one_direction",
        ),
        Index("idx_ledger_item_bin_posted", "item_id", "bin_id", "posted_at"),
        Index("idx_ledger_voucher", "voucher_number"),
        Index("idx_ledger_reference", "reference_type", "reference_id"),
        Index("idx_ledger_work_order", "work_order_id"),
    )

    seq: Mapped[int] = mapped_column(nullable=False)

    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    bin_id: Mapped[UUID] = mapped_column(ForeignKey("bins.id"), nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    uom: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_in: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quantity_out: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # Source document (GRN, PO, work order, ...)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    work_order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reason_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    transfer_group_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reverses_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("stock_ledger_entries.id"), nullable=True,
    )
    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    posted_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry #{self.seq} {self.transaction_type} "
            f"item={self.item_id} bin={self.bin_id} in={self.quantity_in} out={self.quantity_out}>"
        )
