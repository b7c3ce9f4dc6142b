"""
Module: mfg_kernel.models.stock
Responsibility: BinStock, the materialized per-bin quantity projection kept
    in step with the stock ledger.  It exists so that availability checks can
    lock one row instead of aggregating the ledger.
Architecture position: Kernel > Models.  Written ONLY by LedgerService and
    the reservation paths of the production module.

Invariants enforced:
    - quantity >= 0 and reserved_quantity >= 0 (check constraints).
    - reserved_quantity <= quantity.
    - For every item: sum(BinStock.quantity) == sum(ledger in) - sum(ledger out).
    - One row per (bin, item, batch, serial).  NULL batch/serial are stored as
      the empty string so the unique constraint also covers untracked stock.

Failure modes:
    - IntegrityError on a concurrent first insert for the same key (the
      ledger service retries inside a savepoint).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mfg_kernel.db.base import Base

NO_LOT = ""


class BinStock(Base):
    __tablename__ = "bin_stock"

    __table_args__ = (
        UniqueConstraint(
            "bin_id", "item_id", "batch_number", "serial_number",
            name="uq_bin_stock_key",
        ),
        CheckConstraint("quantity >= 0", name="ck_bin_stock_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_bin_stock_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_bin_stock_reserved_le_quantity"),
        Index("idx_bin_stock_item", "item_id", "warehouse_id"),
    )

    bin_id: Mapped[UUID] = mapped_column(ForeignKey("bins.id"), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False, default=NO_LOT)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, default=NO_LOT)

    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reserved_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    @property
    def available(self) -> Decimal:
        return self.quantity - self.reserved_quantity

    def __repr__(self) -> str:
        return (
            f"<BinStock bin={self.bin_id} item={self.item_id} "
            f"batch={self.batch_number!r} qty={self.quantity} reserved={self.reserved_quantity}>"
        )
