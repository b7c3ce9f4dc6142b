"""
MasterDataService -- items, warehouses and bins.

Responsibility:
    Creates and maintains the reference rows every ledger posting points
    at.  Flush-only, like every kernel service.

Invariants enforced:
    - Item, warehouse and (per warehouse) bin codes are unique.
    - An item's UOM and tracking flags cannot change once it has ledger
      history.
    - A bin holding stock cannot be deactivated.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from mfg_kernel.db.types import to_quantity
from mfg_kernel.domain.dtos import BinInfo, ItemInfo, WarehouseInfo
from mfg_kernel.exceptions import (
    BinNotFoundError,
    DocumentNotFoundError,
    ItemNotFoundError,
    ValidationError,
)
from mfg_kernel.logging_config import get_logger
from mfg_kernel.models.item import Item
from mfg_kernel.models.ledger import StockLedgerEntry
from mfg_kernel.models.stock import BinStock
from mfg_kernel.models.warehouse import Bin, Warehouse
from mfg_kernel.services.base import BaseService

logger = get_logger("services.master_data")


class MasterDataService(BaseService[Item]):

    def create_item(
        self,
        *,
        code: str,
        name: str,
        uom: str,
        actor_id: UUID,
        name_ar: str | None = None,
        requires_batch: bool = False,
        requires_serial: bool = False,
        reorder_point: Decimal | int | str = 0,
        safety_stock: Decimal | int | str = 0,
    ) -> ItemInfo:
        errors = []
        if not code or not code.strip():
            errors.append("code")
        if not name or not name.strip():
            errors.append("name")
        if not uom or not uom.strip():
            errors.append("uom")
        if errors:
            raise ValidationError("Item requires code, name and uom", errors)
        if self.session.execute(select(Item.id).where(Item.code == code)).first():
            raise ValidationError(f"Item code {code} already exists", ["code"])

        try:
            reorder = to_quantity(reorder_point, "reorder_point")
            safety = to_quantity(safety_stock, "safety_stock")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        item = Item(
            code=code,
            name=name,
            name_ar=name_ar,
            uom=uom,
            requires_batch=requires_batch,
            requires_serial=requires_serial,
            reorder_point=reorder,
            safety_stock=safety,
            created_by_id=actor_id,
        )
        self.session.add(item)
        self.session.flush()
        logger.info("item_created", extra={"item_id": str(item.id), "code": code, "uom": uom})
        return ItemInfo.from_model(item)

    def update_item(self, item_id: UUID, actor_id: UUID, **changes) -> ItemInfo:
        """Change descriptive fields; stock-defining fields freeze after first posting."""
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))

        frozen_fields = {"uom", "requires_batch", "requires_serial"} & set(changes)
        if frozen_fields:
            has_history = self.session.execute(
                select(func.count(StockLedgerEntry.id)).where(StockLedgerEntry.item_id == item_id)
            ).scalar_one()
            if has_history:
                raise ValidationError(
                    f"Item {item.code} has ledger history; cannot change "
                    + ", ".join(sorted(frozen_fields)),
                    sorted(frozen_fields),
                )

        allowed = {
            "name", "name_ar", "uom", "requires_batch", "requires_serial",
            "reorder_point", "safety_stock", "is_active",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError("Unknown item fields: " + ", ".join(sorted(unknown)), sorted(unknown))

        for key, value in changes.items():
            if key in ("reorder_point", "safety_stock"):
                try:
                    value = to_quantity(value, key)
                except ValueError as exc:
                    raise ValidationError(str(exc), [key]) from exc
            setattr(item, key, value)
        item.updated_by_id = actor_id
        self.session.flush()
        return ItemInfo.from_model(item)

    def get_item(self, item_id: UUID) -> ItemInfo:
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return ItemInfo.from_model(item)

    def create_warehouse(self, *, code: str, name: str, actor_id: UUID) -> WarehouseInfo:
        if self.session.execute(select(Warehouse.id).where(Warehouse.code == code)).first():
            raise ValidationError(f"Warehouse code {code} already exists", ["code"])
        warehouse = Warehouse(code=code, name=name, created_by_id=actor_id)
        self.session.add(warehouse)
        self.session.flush()
        logger.info("warehouse_created", extra={"warehouse_id": str(warehouse.id), "code": code})
        return WarehouseInfo.from_model(warehouse)

    def create_bin(
        self,
        *,
        warehouse_id: UUID,
        code: str,
        actor_id: UUID,
        description: str | None = None,
    ) -> BinInfo:
        if self.session.get(Warehouse, warehouse_id) is None:
            raise DocumentNotFoundError("Warehouse", str(warehouse_id))
        duplicate = self.session.execute(
            select(Bin.id).where(Bin.warehouse_id == warehouse_id, Bin.code == code)
        ).first()
        if duplicate:
            raise ValidationError(f"Bin code {code} already exists in warehouse", ["code"])
        bin_ = Bin(
            warehouse_id=warehouse_id,
            code=code,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(bin_)
        self.session.flush()
        logger.info(
            "bin_created",
            extra={"bin_id": str(bin_.id), "warehouse_id": str(warehouse_id), "code": code},
        )
        return BinInfo.from_model(bin_)

    def set_bin_active(self, bin_id: UUID, is_active: bool, actor_id: UUID) -> BinInfo:
        bin_ = self.session.get(Bin, bin_id)
        if bin_ is None:
            raise BinNotFoundError(str(bin_id))
        if not is_active:
            stocked = self.session.execute(
                select(BinStock.id).where(BinStock.bin_id == bin_id, BinStock.quantity > 0)
            ).first()
            if stocked:
                raise ValidationError(f"Bin {bin_.code} still holds stock", ["is_active"])
        bin_.is_active = is_active
        bin_.updated_by_id = actor_id
        self.session.flush()
        return BinInfo.from_model(bin_)

    def list_bins(self, warehouse_id: UUID, active_only: bool = True) -> list[BinInfo]:
        stmt = select(Bin).where(Bin.warehouse_id == warehouse_id)
        if active_only:
            stmt = stmt.where(Bin.is_active.is_(True))
        return [BinInfo.from_model(b) for b in self.session.execute(stmt.order_by(Bin.code)).scalars()]
