"""ORM models owned by the kernel: master data, bin stock, ledger."""

from mfg_kernel.models.item import Item
from mfg_kernel.models.ledger import StockLedgerEntry
from mfg_kernel.models.stock import NO_LOT, BinStock
from mfg_kernel.models.warehouse import Bin, Warehouse

__all__ = [
    "Bin",
    "BinStock",
    "Item",
    "NO_LOT",
    "StockLedgerEntry",
    "Warehouse",
]
