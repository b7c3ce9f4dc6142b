"""
Production Domain Models.

Bills of materials, work orders, their component snapshots and stock
reservations, plus the request objects the service accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from mfg_engines.bom_explosion import BomComponent
from mfg_kernel.exceptions import ValidationError
from mfg_kernel.logging_config import get_logger
from mfg_modules._payload import PayloadReader

logger = get_logger("modules.production.models")

_ZERO = Decimal("0")


class WorkOrderStatus(str, Enum):
    """Work order lifecycle states."""
    DRAFT = "draft"
    RELEASED = "released"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"


class WorkOrderPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# -----------------------------------------------------------------------------
# BOM
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BomLine:
    """A component line: ``quantity_per`` units per unit of the parent."""
    id: UUID
    bom_id: UUID
    component_item_id: UUID
    quantity_per: Decimal
    scrap_factor: Decimal = _ZERO
    backflush: bool = True
    sort_order: int = 0

    def to_component(self) -> BomComponent:
        return BomComponent(
            component_id=self.component_item_id,
            quantity_per=self.quantity_per,
            scrap_factor=self.scrap_factor,
            backflush=self.backflush,
        )


@dataclass(frozen=True)
class Bom:
    id: UUID
    parent_item_id: UUID
    version: str
    is_active: bool
    backflush_enabled: bool = True
    auto_reserve_enabled: bool = False
    effective_date: date | None = None
    lead_time_days: int | None = None
    lines: tuple[BomLine, ...] = field(default_factory=tuple)


# -----------------------------------------------------------------------------
# Work order
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkOrderComponent:
    """One exploded requirement frozen at release."""
    id: UUID
    work_order_id: UUID
    item_id: UUID
    quantity_per_unit: Decimal
    required_quantity: Decimal
    backflush: bool


@dataclass(frozen=True)
class StockReservation:
    id: UUID
    work_order_id: UUID
    item_id: UUID
    bin_id: UUID
    quantity: Decimal
    consumed_quantity: Decimal
    status: ReservationStatus
    batch_number: str | None = None
    serial_number: str | None = None

    @property
    def remaining(self) -> Decimal:
        return self.quantity - self.consumed_quantity


@dataclass(frozen=True)
class WorkOrder:
    id: UUID
    number: str
    item_id: UUID
    warehouse_id: UUID
    planned_quantity: Decimal
    completed_quantity: Decimal
    backflush: bool
    status: WorkOrderStatus = WorkOrderStatus.DRAFT
    priority: WorkOrderPriority = WorkOrderPriority.NORMAL
    bom_id: UUID | None = None
    start_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    notes_ar: str | None = None
    released_at: datetime | None = None
    released_by_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    components: tuple[WorkOrderComponent, ...] = field(default_factory=tuple)

    @property
    def remaining_quantity(self) -> Decimal:
        return self.planned_quantity - self.completed_quantity


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BomLineRequest:
    component_item_id: UUID
    quantity_per: Decimal
    scrap_factor: Decimal = _ZERO
    backflush: bool = True

    def __post_init__(self):
        if self.quantity_per <= _ZERO:
            raise ValidationError(f"quantity_per must be positive, got {self.quantity_per}", ["quantity_per"])
        if self.scrap_factor < _ZERO:
            raise ValidationError(f"scrap_factor cannot be negative, got {self.scrap_factor}", ["scrap_factor"])


@dataclass(frozen=True)
class CreateBomRequest:
    parent_item_id: UUID
    version: str
    lines: tuple[BomLineRequest, ...]
    activate: bool = True
    backflush_enabled: bool = True
    auto_reserve_enabled: bool = False
    effective_date: date | None = None
    lead_time_days: int | None = None

    def __post_init__(self):
        if not self.version:
            raise ValidationError("BOM requires a version", ["version"])
        if not self.lines:
            raise ValidationError("BOM requires at least one line", ["lines"])
        components = [ln.component_item_id for ln in self.lines]
        if self.parent_item_id in components:
            raise ValidationError("A BOM cannot list its own parent item", ["lines"])
        if len(set(components)) != len(components):
            raise ValidationError("A component may appear only once per BOM", ["lines"])

    @classmethod
    def from_payload(cls, payload: Any) -> CreateBomRequest:
        reader = PayloadReader(payload)
        parent_item_id = reader.uuid("parent_item_id")
        version = reader.text("version")
        activate = reader.boolean("activate", default=True)
        backflush_enabled = reader.boolean("backflush_enabled", default=True)
        auto_reserve_enabled = reader.boolean("auto_reserve_enabled", default=False)
        effective_date = reader.date("effective_date", required=False)
        lines = []
        for idx, raw in enumerate(reader.items("lines", required=True)):
            line = reader.child(raw, f"lines[{idx}].")
            component = line.uuid("component_item_id")
            quantity_per = line.decimal("quantity_per")
            scrap = line.decimal("scrap_factor", required=False, default=_ZERO)
            backflush = line.boolean("backflush", default=True)
            if component is not None and quantity_per is not None:
                lines.append((component, quantity_per, scrap, backflush))
        reader.raise_if_errors("BOM")
        return cls(
            parent_item_id=parent_item_id,
            version=version,
            lines=tuple(BomLineRequest(c, q, s, b) for c, q, s, b in lines),
            activate=activate,
            backflush_enabled=backflush_enabled,
            auto_reserve_enabled=auto_reserve_enabled,
            effective_date=effective_date,
        )


@dataclass(frozen=True)
class CreateWorkOrderRequest:
    """
    A new work order.

    ``backflush=None`` takes the default from the item's active BOM, or
    from configuration when the item has none yet.
    """
    item_id: UUID
    warehouse_id: UUID
    planned_quantity: Decimal
    backflush: bool | None = None
    priority: WorkOrderPriority = WorkOrderPriority.NORMAL
    start_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    notes_ar: str | None = None

    def __post_init__(self):
        if self.planned_quantity <= _ZERO:
            raise ValidationError(
                f"planned_quantity must be positive, got {self.planned_quantity}",
                ["planned_quantity"],
            )
        if self.start_date and self.due_date and self.due_date < self.start_date:
            raise ValidationError("Due date cannot precede the start date", ["due_date"])

    @classmethod
    def from_payload(cls, payload: Any) -> CreateWorkOrderRequest:
        reader = PayloadReader(payload)
        item_id = reader.uuid("item_id")
        warehouse_id = reader.uuid("warehouse_id")
        planned_quantity = reader.decimal("planned_quantity")
        backflush = payload.get("backflush")
        if backflush is not None and not isinstance(backflush, bool):
            reader.errors.append("backflush")
            backflush = None
        priority_raw = reader.text("priority", required=False, default=WorkOrderPriority.NORMAL.value)
        try:
            priority = WorkOrderPriority(priority_raw)
        except ValueError:
            reader.errors.append("priority")
            priority = WorkOrderPriority.NORMAL
        start_date = reader.date("start_date", required=False)
        due_date = reader.date("due_date", required=False)
        notes = reader.text("notes", required=False)
        notes_ar = reader.text("notes_ar", required=False)
        reader.raise_if_errors("work order")
        return cls(
            item_id=item_id,
            warehouse_id=warehouse_id,
            planned_quantity=planned_quantity,
            backflush=backflush,
            priority=priority,
            start_date=start_date,
            due_date=due_date,
            notes=notes,
            notes_ar=notes_ar,
        )
