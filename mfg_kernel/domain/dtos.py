"""
DTOs -- Pure domain data transfer objects for the inventory ledger.

Responsibility:
    Immutable records that cross the service boundary: master data views
    (ItemInfo, WarehouseInfo, BinInfo), the ledger entry record returned by
    every posting, bin stock snapshots, and the MovementResult returned by
    issue / return / transfer / adjustment operations.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` class methods are boundary
    converters invoked from services and selectors only.

Invariants enforced:
    - Domain logic accepts/returns DTOs, never ORM entities.
    - A ledger entry has exactly one of quantity_in / quantity_out positive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from mfg_kernel.models.item import Item as ItemModel
    from mfg_kernel.models.ledger import StockLedgerEntry as StockLedgerEntryModel
    from mfg_kernel.models.stock import BinStock as BinStockModel
    from mfg_kernel.models.warehouse import Bin as BinModel
    from mfg_kernel.models.warehouse import Warehouse as WarehouseModel


class TransactionType(str, Enum):
    """Ledger movement classification (the DTR transaction type)."""

    GRN = "GRN"
    ISSUE = "ISSUE"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    BUILD_CONSUME = "BUILD_CONSUME"
    BUILD_OUTPUT = "BUILD_OUTPUT"


class Direction(str, Enum):
    IN = "in"
    OUT = "out"


@dataclass(frozen=True)
class ItemInfo:
    id: UUID
    code: str
    name: str
    uom: str
    requires_batch: bool
    requires_serial: bool
    reorder_point: Decimal
    safety_stock: Decimal
    is_active: bool
    name_ar: str | None = None

    @classmethod
    def from_model(cls, model: ItemModel) -> ItemInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            uom=model.uom,
            requires_batch=model.requires_batch,
            requires_serial=model.requires_serial,
            reorder_point=model.reorder_point,
            safety_stock=model.safety_stock,
            is_active=model.is_active,
            name_ar=model.name_ar,
        )


@dataclass(frozen=True)
class WarehouseInfo:
    id: UUID
    code: str
    name: str
    is_active: bool

    @classmethod
    def from_model(cls, model: WarehouseModel) -> WarehouseInfo:
        return cls(id=model.id, code=model.code, name=model.name, is_active=model.is_active)


@dataclass(frozen=True)
class BinInfo:
    id: UUID
    warehouse_id: UUID
    code: str
    is_active: bool
    description: str | None = None

    @classmethod
    def from_model(cls, model: BinModel) -> BinInfo:
        return cls(
            id=model.id,
            warehouse_id=model.warehouse_id,
            code=model.code,
            is_active=model.is_active,
            description=model.description,
        )


@dataclass(frozen=True)
class BinStockRecord:
    """Snapshot of one BinStock projection row."""

    bin_id: UUID
    bin_code: str
    warehouse_id: UUID
    item_id: UUID
    batch_number: str | None
    serial_number: str | None
    quantity: Decimal
    reserved_quantity: Decimal

    @property
    def available(self) -> Decimal:
        return self.quantity - self.reserved_quantity

    @classmethod
    def from_model(cls, model: BinStockModel, bin_code: str) -> BinStockRecord:
        return cls(
            bin_id=model.bin_id,
            bin_code=bin_code,
            warehouse_id=model.warehouse_id,
            item_id=model.item_id,
            batch_number=model.batch_number or None,
            serial_number=model.serial_number or None,
            quantity=model.quantity,
            reserved_quantity=model.reserved_quantity,
        )


@dataclass(frozen=True)
class LedgerEntryRecord:
    """Immutable view of one DTR (stock ledger) row."""

    id: UUID
    seq: int
    item_id: UUID
    warehouse_id: UUID
    bin_id: UUID
    uom: str
    quantity_in: Decimal
    quantity_out: Decimal
    transaction_type: TransactionType
    voucher_number: str
    balance_after: Decimal
    posted_at: datetime
    created_by_id: UUID
    batch_number: str | None = None
    serial_number: str | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    work_order_id: UUID | None = None
    reason_code: str | None = None
    transfer_group_id: UUID | None = None
    reverses_entry_id: UUID | None = None
    memo: str | None = None

    @property
    def direction(self) -> Direction:
        return Direction.IN if self.quantity_in > 0 else Direction.OUT

    @property
    def net_quantity(self) -> Decimal:
        return self.quantity_in - self.quantity_out

    @classmethod
    def from_model(cls, model: StockLedgerEntryModel) -> LedgerEntryRecord:
        return cls(
            id=model.id,
            seq=model.seq,
            item_id=model.item_id,
            warehouse_id=model.warehouse_id,
            bin_id=model.bin_id,
            uom=model.uom,
            quantity_in=model.quantity_in,
            quantity_out=model.quantity_out,
            transaction_type=TransactionType(model.transaction_type),
            voucher_number=model.voucher_number,
            balance_after=model.balance_after,
            posted_at=model.posted_at,
            created_by_id=model.created_by_id,
            batch_number=model.batch_number,
            serial_number=model.serial_number,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            work_order_id=model.work_order_id,
            reason_code=model.reason_code,
            transfer_group_id=model.transfer_group_id,
            reverses_entry_id=model.reverses_entry_id,
            memo=model.memo,
        )


@dataclass(frozen=True)
class MovementResult:
    """Outcome of one inventory operation: its voucher and ledger rows.

    An auto-selected issue may split across bins, so a single voucher can
    own several entries.
    """

    voucher_number: str
    entries: tuple[LedgerEntryRecord, ...]

    @property
    def total_in(self) -> Decimal:
        return sum((e.quantity_in for e in self.entries), Decimal("0"))

    @property
    def total_out(self) -> Decimal:
        return sum((e.quantity_out for e in self.entries), Decimal("0"))
