"""
SQLAlchemy ORM persistence models for the Production module.

Responsibility
--------------
Persistence for bills of materials, work orders, the BOM snapshot taken
when a work order is released, and stock reservations held for it.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProductionService``.

Invariants enforced
-------------------
* At most one BOM per parent item is active (enforced by the service;
  ``(parent_item_id, version)`` is unique).
* ``WorkOrderComponentModel`` rows are append-only: registered with
  ``protect_append_only`` so a release-time snapshot is never rewritten.
* ``completed_quantity`` never exceeds ``planned_quantity`` (check
  constraint backing the service check).
* Work orders carry ``version`` as ``version_id_col``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mfg_kernel.db.base import Base, TrackedBase
from mfg_kernel.models.stock import NO_LOT
from mfg_modules.production.models import (
    Bom,
    BomLine,
    ReservationStatus,
    StockReservation,
    WorkOrder,
    WorkOrderComponent,
    WorkOrderPriority,
    WorkOrderStatus,
)

# ---------------------------------------------------------------------------
# BOM
# ---------------------------------------------------------------------------


class BomModel(TrackedBase):
    """A versioned recipe for one parent item."""

    __tablename__ = "boms"

    __table_args__ = (
        UniqueConstraint("parent_item_id", "version", name="uq_bom_parent_version"),
        Index("idx_bom_parent_active", "parent_item_id", "is_active"),
    )

    parent_item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=False)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    backflush_enabled: Mapped[bool] = mapped_column(default=True)
    auto_reserve_enabled: Mapped[bool] = mapped_column(default=False)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    lines: Mapped[list["BomLineModel"]] = relationship(
        "BomLineModel",
        back_populates="bom",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BomLineModel.sort_order",
    )

    def to_dto(self) -> Bom:
        return Bom(
            id=self.id,
            parent_item_id=self.parent_item_id,
            version=self.version,
            is_active=self.is_active,
            backflush_enabled=self.backflush_enabled,
            auto_reserve_enabled=self.auto_reserve_enabled,
            effective_date=self.effective_date,
            lead_time_days=self.lead_time_days,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<BomModel {self.parent_item_id} v{self.version}{' active' if self.is_active else ''}>"


class BomLineModel(TrackedBase):
    __tablename__ = "bom_lines"

    __table_args__ = (
        UniqueConstraint("bom_id", "component_item_id", name="uq_bom_line_component"),
        CheckConstraint("quantity_per > 0", name="ck_bom_line_qty_positive"),
        CheckConstraint("scrap_factor >= 0", name="ck_bom_line_scrap_nonneg"),
    )

    bom_id: Mapped[UUID] = mapped_column(ForeignKey("boms.id"), nullable=False)
    component_item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity_per: Mapped[Decimal] = mapped_column(nullable=False)
    scrap_factor: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    backflush: Mapped[bool] = mapped_column(default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bom: Mapped[BomModel] = relationship("BomModel", back_populates="lines")

    def to_dto(self) -> BomLine:
        return BomLine(
            id=self.id,
            bom_id=self.bom_id,
            component_item_id=self.component_item_id,
            quantity_per=self.quantity_per,
            scrap_factor=self.scrap_factor,
            backflush=self.backflush,
            sort_order=self.sort_order,
        )


# ---------------------------------------------------------------------------
# Work order
# ---------------------------------------------------------------------------


class WorkOrderModel(TrackedBase):
    """
    A work order building ``planned_quantity`` of ``item_id``.

    Guarantees:
        - ``number`` is unique (``WO-YYYY-NNNN``).
        - ``bom_id`` is recorded at release together with the snapshot.
    """

    __tablename__ = "work_orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_work_order_number"),
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{s.value}'" for s in WorkOrderStatus)),
            name="ck_work_order_status",
        ),
        CheckConstraint("planned_quantity > 0", name="ck_work_order_planned_positive"),
        CheckConstraint(
            "completed_quantity >= 0 AND completed_quantity <= planned_quantity",
            name="ck_work_order_completed_range",
        ),
        Index("idx_work_order_item", "item_id"),
        Index("idx_work_order_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(ForeignKey("warehouses.id"), nullable=False)
    bom_id: Mapped[UUID | None] = mapped_column(ForeignKey("boms.id"), nullable=True)
    planned_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    completed_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    backflush: Mapped[bool] = mapped_column(default=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default=WorkOrderPriority.NORMAL.value)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes_ar: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WorkOrderStatus.DRAFT.value)
    released_at: Mapped[datetime | None]
    released_by_id: Mapped[UUID | None]
    started_at: Mapped[datetime | None]
    completed_at: Mapped[datetime | None]
    cancelled_at: Mapped[datetime | None]
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    components: Mapped[list["WorkOrderComponentModel"]] = relationship(
        "WorkOrderComponentModel",
        lazy="selectin",
        order_by="WorkOrderComponentModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> WorkOrder:
        return WorkOrder(
            id=self.id,
            number=self.number,
            item_id=self.item_id,
            warehouse_id=self.warehouse_id,
            planned_quantity=self.planned_quantity,
            completed_quantity=self.completed_quantity,
            backflush=self.backflush,
            status=WorkOrderStatus(self.status),
            priority=WorkOrderPriority(self.priority),
            bom_id=self.bom_id,
            start_date=self.start_date,
            due_date=self.due_date,
            notes=self.notes,
            notes_ar=self.notes_ar,
            released_at=self.released_at,
            released_by_id=self.released_by_id,
            started_at=self.started_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
            components=tuple(c.to_dto() for c in self.components),
        )

    def __repr__(self) -> str:
        return f"<WorkOrderModel {self.number} [{self.status}] {self.completed_quantity}/{self.planned_quantity}>"


class WorkOrderComponentModel(Base):
    """Release-time BOM explosion row.  Append-only."""

    __tablename__ = "work_order_components"

    __table_args__ = (
        UniqueConstraint("work_order_id", "item_id", name="uq_work_order_component_item"),
    )

    work_order_id: Mapped[UUID] = mapped_column(ForeignKey("work_orders.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity_per_unit: Mapped[Decimal] = mapped_column(nullable=False)
    required_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    backflush: Mapped[bool] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)

    def to_dto(self) -> WorkOrderComponent:
        return WorkOrderComponent(
            id=self.id,
            work_order_id=self.work_order_id,
            item_id=self.item_id,
            quantity_per_unit=self.quantity_per_unit,
            required_quantity=self.required_quantity,
            backflush=self.backflush,
        )


class StockReservationModel(TrackedBase):
    """Stock held in one bin for one work order component."""

    __tablename__ = "stock_reservations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_qty_positive"),
        CheckConstraint(
            "consumed_quantity >= 0 AND consumed_quantity <= quantity",
            name="ck_reservation_consumed_range",
        ),
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{s.value}'" for s in ReservationStatus)),
            name="ck_reservation_status",
        ),
        Index("idx_reservation_work_order", "work_order_id", "item_id"),
    )

    work_order_id: Mapped[UUID] = mapped_column(ForeignKey("work_orders.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    bin_id: Mapped[UUID] = mapped_column(ForeignKey("bins.id"), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False, default=NO_LOT)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, default=NO_LOT)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    consumed_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReservationStatus.ACTIVE.value)

    @property
    def remaining(self) -> Decimal:
        return self.quantity - self.consumed_quantity

    def to_dto(self) -> StockReservation:
        return StockReservation(
            id=self.id,
            work_order_id=self.work_order_id,
            item_id=self.item_id,
            bin_id=self.bin_id,
            quantity=self.quantity,
            consumed_quantity=self.consumed_quantity,
            status=ReservationStatus(self.status),
            batch_number=self.batch_number or None,
            serial_number=self.serial_number or None,
        )
