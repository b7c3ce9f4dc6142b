"""
Inventory Domain Models.

Movement results come from the kernel (``MovementResult``); this module adds
the inventory-level views built on top of the ledger.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from mfg_kernel.domain.dtos import LedgerEntryRecord, MovementResult

__all__ = [
    "LedgerEntryRecord",
    "MovementResult",
    "ReorderAlert",
    "StockLevel",
    "VoucherPrefix",
]


class VoucherPrefix(str, Enum):
    """Document number prefixes for inventory vouchers."""
    ISSUE = "MIN"  # material issue note
    RETURN = "MRN"  # material return note
    TRANSFER = "TRF"
    ADJUSTMENT = "ADJ"
    REVERSAL = "REV"


@dataclass(frozen=True)
class StockLevel:
    """On-hand and availability for one item."""
    item_id: UUID
    on_hand: Decimal
    reserved: Decimal

    @property
    def available(self) -> Decimal:
        return self.on_hand - self.reserved


@dataclass(frozen=True)
class ReorderAlert:
    """An item whose on-hand has fallen to or below its reorder point."""
    item_id: UUID
    item_code: str
    on_hand: Decimal
    reorder_point: Decimal
    safety_stock: Decimal

    @property
    def below_safety_stock(self) -> bool:
        return self.on_hand < self.safety_stock

    @property
    def shortfall_to_reorder_point(self) -> Decimal:
        return max(self.reorder_point - self.on_hand, Decimal("0"))
