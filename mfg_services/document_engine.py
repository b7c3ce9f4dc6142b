"""
mfg_services.document_engine -- Synchronous facade over the document modules.

Responsibility:
    The single entry point the API layer calls.  Each public method opens
    its own session from the injected session factory, builds the module
    service it needs, delegates, and closes the session.  Module services
    own the transaction boundary; the facade adds routing by document type
    and payload parsing for ``create_document``.

Architecture position:
    Services layer, top.  Depends on ``mfg_modules`` (which depends on the
    rest of ``mfg_services``), so it is imported by path and not
    re-exported from the package ``__init__``.

Invariants enforced:
    - One public call is one transaction: nothing is partially applied.
    - Every mutating call names an Actor.  Document and movement
      permissions are checked by the module services and the workflow
      executor; master data writes are checked here.
    - ORM objects never leave this facade; callers receive frozen DTOs.

Usage:
    engine = DocumentEngine.from_url(url, create_schema=True)
    rfq = engine.create_document("rfq", {"description": "Steel", "lines": [...]}, buyer)
    engine.transition("rfq", rfq.id, "pending", buyer)
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from mfg_config import get_active_config
from mfg_config.schema import EngineConfig
from mfg_engines.bom_explosion import ExplosionResult
from mfg_kernel.db.engine import build_engine, create_tables, make_session_factory, session_scope
from mfg_kernel.db.immutability import register_immutability_listeners
from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.dtos import (
    BinInfo,
    BinStockRecord,
    ItemInfo,
    LedgerEntryRecord,
    MovementResult,
    WarehouseInfo,
)
from mfg_kernel.exceptions import ValidationError
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.selectors.stock_selector import StockDiscrepancy
from mfg_kernel.services.master_data_service import MasterDataService
from mfg_modules._orm_registry import import_all_orm_models
from mfg_modules.inventory.models import ReorderAlert, StockLevel
from mfg_modules.inventory.service import InventoryService
from mfg_modules.procurement.models import (
    CreatePurchaseOrderRequest,
    CreateQuoteRequest,
    CreateRfqRequest,
    GrnLineRequest,
    OrderDetails,
    PurchaseOrder,
)
from mfg_modules.procurement.service import ProcurementService
from mfg_modules.production.models import (
    Bom,
    CreateBomRequest,
    CreateWorkOrderRequest,
    StockReservation,
    WorkOrder,
)
from mfg_modules.production.service import ProductionService
from mfg_services.rbac_authority import RbacAuthority
from mfg_services.workflow_executor import WorkflowExecutor

logger = get_logger("services.document_engine")

PROCUREMENT_DOCUMENTS = ProcurementService.DOCUMENT_TYPES
PRODUCTION_DOCUMENTS = ProductionService.DOCUMENT_TYPES
DOCUMENT_TYPES = PROCUREMENT_DOCUMENTS + PRODUCTION_DOCUMENTS


def _check_document_type(document_type: str) -> None:
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(
            f"Unknown document type {document_type!r}; expected one of {list(DOCUMENT_TYPES)}",
            ["document_type"],
        )


def _grn_lines(lines: Sequence[GrnLineRequest | Mapping[str, Any]]) -> list[GrnLineRequest]:
    parsed = []
    for line in lines:
        parsed.append(line if isinstance(line, GrnLineRequest) else GrnLineRequest.from_payload(line))
    return parsed


class DocumentEngine:
    """
    Document workflow and inventory ledger engine.

    Contract:
        Thread-safe as long as the session factory is: every call uses a
        fresh session.  Share one DocumentEngine across threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        import_all_orm_models()
        register_immutability_listeners()
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._authority = RbacAuthority(self._config.rbac)
        self._executor = WorkflowExecutor(self._authority, clock=self._clock)
        logger.info("document_engine_ready", extra={
            "config_id": self._config.config_id,
            "config_version": self._config.version,
        })

    @classmethod
    def from_url(
        cls,
        database_url: str,
        config_path: Path | str | None = None,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> DocumentEngine:
        """Build the database engine and session factory, then the facade."""
        engine = build_engine(database_url)
        if create_schema:
            create_tables(engine)
        return cls(make_session_factory(engine), config=get_active_config(config_path), clock=clock)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def authority(self) -> RbacAuthority:
        return self._authority

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def _procurement(self) -> Iterator[ProcurementService]:
        with self._session() as session:
            yield ProcurementService(session, self._executor, self._config, clock=self._clock)

    @contextmanager
    def _inventory(self) -> Iterator[InventoryService]:
        with self._session() as session:
            yield InventoryService(session, self._authority, self._config, clock=self._clock)

    @contextmanager
    def _production(self) -> Iterator[ProductionService]:
        with self._session() as session:
            yield ProductionService(session, self._executor, self._config, clock=self._clock)

    @contextmanager
    def _master_data(self, actor: Actor) -> Iterator[MasterDataService]:
        """Master data writes: kernel service is flush-only, so commit here."""
        self._authority.require(actor, "master_data.manage")
        with session_scope(self._session_factory) as session:
            yield MasterDataService(session)

    # =========================================================================
    # Documents
    # =========================================================================

    def create_document(self, document_type: str, payload: Mapping[str, Any], actor: Actor):
        """Validate ``payload`` and create a ``draft`` document of the given type."""
        _check_document_type(document_type)
        with LogContext.bind(document_type=document_type, actor_id=str(actor.actor_id)):
            if document_type == "rfq":
                request = CreateRfqRequest.from_payload(payload)
                with self._procurement() as svc:
                    return svc.create_rfq(request, actor)
            if document_type == "quote":
                request = CreateQuoteRequest.from_payload(payload)
                with self._procurement() as svc:
                    return svc.create_quote(request, actor)
            if document_type == "purchase_order":
                request = CreatePurchaseOrderRequest.from_payload(payload)
                with self._procurement() as svc:
                    return svc.create_purchase_order(request, actor)
            request = CreateWorkOrderRequest.from_payload(payload)
            with self._production() as svc:
                return svc.create_work_order(request, actor)

    def transition(
        self,
        document_type: str,
        document_id: UUID,
        target_status: str | Enum,
        actor: Actor,
    ):
        _check_document_type(document_type)
        if document_type in PRODUCTION_DOCUMENTS:
            with self._production() as svc:
                return svc.transition(document_type, document_id, target_status, actor)
        with self._procurement() as svc:
            return svc.transition(document_type, document_id, target_status, actor)

    def get_document(self, document_type: str, document_id: UUID):
        _check_document_type(document_type)
        if document_type in PRODUCTION_DOCUMENTS:
            with self._production() as svc:
                return svc.get_document(document_type, document_id)
        with self._procurement() as svc:
            return svc.get_document(document_type, document_id)

    def convert_quote_to_po(
        self,
        quote_id: UUID,
        order_details: OrderDetails | Mapping[str, Any] | None,
        actor: Actor,
    ) -> PurchaseOrder:
        if order_details is not None and not isinstance(order_details, OrderDetails):
            order_details = OrderDetails.from_payload(order_details)
        with self._procurement() as svc:
            return svc.convert_quote_to_po(quote_id, order_details, actor)

    def quotes_for_rfq(self, rfq_id: UUID):
        with self._procurement() as svc:
            return svc.quotes_for_rfq(rfq_id)

    def receipts_for_po(self, po_id: UUID):
        with self._procurement() as svc:
            return svc.receipts_for_po(po_id)

    # =========================================================================
    # Ledger postings
    # =========================================================================

    def post_grn(
        self,
        po_id: UUID,
        lines: Sequence[GrnLineRequest | Mapping[str, Any]],
        actor: Actor,
        warehouse_id: UUID | None = None,
        receipt_date: date | None = None,
    ) -> list[LedgerEntryRecord]:
        parsed = _grn_lines(lines)
        with self._procurement() as svc:
            return svc.post_grn(po_id, parsed, actor, warehouse_id=warehouse_id, receipt_date=receipt_date)

    def post_issue(self, item_id: UUID, quantity: Decimal, actor: Actor, **kwargs) -> MovementResult:
        with self._inventory() as svc:
            return svc.post_issue(item_id, quantity, actor, **kwargs)

    def post_return(self, item_id: UUID, quantity: Decimal, actor: Actor, **kwargs) -> MovementResult:
        with self._inventory() as svc:
            return svc.post_return(item_id, quantity, actor, **kwargs)

    def post_transfer(
        self, item_id: UUID, quantity: Decimal, to_bin_id: UUID, actor: Actor, **kwargs,
    ) -> MovementResult:
        with self._inventory() as svc:
            return svc.post_transfer(item_id, quantity, to_bin_id, actor, **kwargs)

    def post_adjustment(
        self, item_id: UUID, bin_id: UUID, quantity: Decimal, reason_code: str, actor: Actor, **kwargs,
    ) -> MovementResult:
        with self._inventory() as svc:
            return svc.post_adjustment(item_id, bin_id, quantity, reason_code, actor, **kwargs)

    def reverse_ledger_entry(self, entry_id: UUID, actor: Actor, reason: str | None = None) -> MovementResult:
        with self._inventory() as svc:
            return svc.reverse_entry(entry_id, actor, reason=reason)

    # =========================================================================
    # Production
    # =========================================================================

    def create_bom(self, payload: CreateBomRequest | Mapping[str, Any], actor: Actor) -> Bom:
        request = payload if isinstance(payload, CreateBomRequest) else CreateBomRequest.from_payload(payload)
        with self._production() as svc:
            return svc.create_bom(request, actor)

    def activate_bom(self, bom_id: UUID, actor: Actor) -> Bom:
        with self._production() as svc:
            return svc.activate_bom(bom_id, actor)

    def get_bom(self, bom_id: UUID) -> Bom:
        with self._production() as svc:
            return svc.get_bom(bom_id)

    def get_active_bom(self, item_id: UUID) -> Bom | None:
        with self._production() as svc:
            return svc.get_active_bom(item_id)

    def explode_bom(self, item_id: UUID, quantity: Decimal) -> ExplosionResult:
        with self._production() as svc:
            return svc.explode(item_id, quantity)

    def release_work_order(self, work_order_id: UUID, actor: Actor) -> WorkOrder:
        with self._production() as svc:
            return svc.release_work_order(work_order_id, actor)

    def post_build(
        self,
        work_order_id: UUID,
        quantity: Decimal,
        actor: Actor,
        output_bin_id: UUID | None = None,
        output_batch_number: str | None = None,
    ) -> list[LedgerEntryRecord]:
        with self._production() as svc:
            return svc.post_build(
                work_order_id,
                quantity,
                actor,
                output_bin_id=output_bin_id,
                output_batch_number=output_batch_number,
            )

    def get_reservations(self, work_order_id: UUID, active_only: bool = False) -> list[StockReservation]:
        with self._production() as svc:
            return svc.get_reservations(work_order_id, active_only=active_only)

    # =========================================================================
    # Stock queries
    # =========================================================================

    def get_on_hand(self, item_id: UUID, bin_id: UUID | None = None) -> Decimal:
        with self._inventory() as svc:
            return svc.get_on_hand(item_id, bin_id=bin_id)

    def get_available(
        self, item_id: UUID, bin_id: UUID | None = None, warehouse_id: UUID | None = None,
    ) -> Decimal:
        with self._inventory() as svc:
            return svc.get_available(item_id, bin_id=bin_id, warehouse_id=warehouse_id)

    def get_stock_level(self, item_id: UUID) -> StockLevel:
        with self._inventory() as svc:
            return svc.get_stock_level(item_id)

    def get_bin_stock(self, item_id: UUID, warehouse_id: UUID | None = None) -> list[BinStockRecord]:
        with self._inventory() as svc:
            return svc.get_bin_stock(item_id, warehouse_id=warehouse_id)

    def get_entries(self, **filters) -> list[LedgerEntryRecord]:
        with self._inventory() as svc:
            return svc.get_entries(**filters)

    def reconcile(self, item_id: UUID | None = None) -> list[StockDiscrepancy]:
        with self._inventory() as svc:
            return svc.reconcile(item_id)

    def items_below_reorder_point(self) -> list[ReorderAlert]:
        with self._inventory() as svc:
            return svc.items_below_reorder_point()

    # =========================================================================
    # Master data
    # =========================================================================

    def create_item(self, actor: Actor, **fields) -> ItemInfo:
        with self._master_data(actor) as svc:
            return svc.create_item(actor_id=actor.actor_id, **fields)

    def create_warehouse(self, code: str, name: str, actor: Actor) -> WarehouseInfo:
        with self._master_data(actor) as svc:
            return svc.create_warehouse(code=code, name=name, actor_id=actor.actor_id)

    def create_bin(
        self, warehouse_id: UUID, code: str, actor: Actor, description: str | None = None,
    ) -> BinInfo:
        with self._master_data(actor) as svc:
            return svc.create_bin(
                warehouse_id=warehouse_id, code=code, actor_id=actor.actor_id, description=description,
            )

    def set_bin_active(self, bin_id: UUID, is_active: bool, actor: Actor) -> BinInfo:
        with self._master_data(actor) as svc:
            return svc.set_bin_active(bin_id, is_active, actor.actor_id)

    def update_item(self, item_id: UUID, actor: Actor, **changes) -> ItemInfo:
        with self._master_data(actor) as svc:
            return svc.update_item(item_id, actor.actor_id, **changes)

    def list_bins(self, warehouse_id: UUID, active_only: bool = True) -> list[BinInfo]:
        with self._session() as session:
            return MasterDataService(session).list_bins(warehouse_id, active_only=active_only)
