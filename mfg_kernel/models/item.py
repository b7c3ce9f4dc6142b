"""
Module: mfg_kernel.models.item
Responsibility: ORM persistence for stocked items (raw materials, sub-assemblies
    and finished goods).  An item's unit of measure is fixed for its life and
    every ledger row stores quantities in it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is globally unique (uq_item_code).
    - requires_batch / requires_serial drive the BatchRequired check in the
      ledger service.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mfg_kernel.db.base import TrackedBase


class Item(TrackedBase):
    """
    A stock-keeping unit.

    Guarantees:
        - uom is set at creation and never changes.
        - reorder_point and safety_stock are planning hints only; the ledger
          does not enforce them.
    """

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_code"),
        Index("idx_item_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uom: Mapped[str] = mapped_column(String(20), nullable=False)

    requires_batch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_serial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reorder_point: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    safety_stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Item {self.code}: {self.name} ({self.uom})>"
