"""
Module: mfg_kernel.models.warehouse
Responsibility: ORM persistence for warehouses and their bins, the smallest
    addressable storage location.  Every ledger row is posted against a bin.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Warehouse code is globally unique; bin code is unique within its
      warehouse.
    - Inactive bins are skipped by auto-select and put-away.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mfg_kernel.db.base import TrackedBase


class Warehouse(TrackedBase):
    __tablename__ = "warehouses"

    __table_args__ = (UniqueConstraint("code", name="uq_warehouse_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    bins: Mapped[list["Bin"]] = relationship(
        back_populates="warehouse",
        order_by="Bin.code",
    )

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}: {self.name}>"


class Bin(TrackedBase):
    """A storage location inside a warehouse."""

    __tablename__ = "bins"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_bin_warehouse_code"),
        Index("idx_bin_active", "warehouse_id", "is_active"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    warehouse: Mapped[Warehouse] = relationship(back_populates="bins")

    def __repr__(self) -> str:
        return f"<Bin {self.code} warehouse={self.warehouse_id}>"
