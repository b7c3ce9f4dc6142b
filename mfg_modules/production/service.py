"""
Production Module Service (``mfg_modules.production.service``).

Responsibility
--------------
Bills of materials, work order lifecycle and build postings.  Release
explodes the active BOM into a component snapshot (and optionally
reserves stock); each build posting backflushes components and receives
the finished goods in one transaction.

Architecture position
---------------------
**Modules layer** -- orchestration only.  Explosion math lives in
``mfg_engines.bom_explosion``; bin choice in ``StockAllocator``; every
stock movement goes through ``LedgerService.post_entry``; status changes
go through ``WorkflowExecutor``.

Invariants enforced
-------------------
* A BOM graph of active BOMs never contains a cycle: creating or
  activating a BOM that would close one raises CyclicBomError.  Activations
  are serialized on the ``bom_graph_revision`` counter row.
* ``completed_quantity`` never exceeds ``planned_quantity``.
* A build posting is all-or-nothing: consumption, output and completion
  commit together or not at all.
* Reservations are consumed before free stock, and released when the
  work order completes or is cancelled.

Failure modes
-------------
* BomMissingError on release without an active BOM.
* InsufficientStockError during reservation or backflush.
* OverBuildError, InvalidTransitionError, UnauthorizedError.

Audit relevance
---------------
Every consumption and output entry carries the work order id and the
build voucher (``BLD-YYYY-NNNN``).  The component snapshot is append-only.

Usage::

    service = ProductionService(session, workflow_executor, config, clock)
    wo = service.create_work_order(CreateWorkOrderRequest(fg_id, wh_id, Decimal("10")), actor)
    service.release_work_order(wo.id, manager)
    service.transition("work_order", wo.id, "in_progress", operator)
    entries = service.post_build(wo.id, Decimal("10"), operator)
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mfg_config.schema import EngineConfig
from mfg_engines.bom_explosion import BomComponent, BomExplosionEngine, ExplosionResult
from mfg_kernel.db.types import ZERO, round_quantity
from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.dtos import Direction, LedgerEntryRecord, TransactionType
from mfg_kernel.exceptions import (
    BomMissingError,
    BomNotFoundError,
    CyclicBomError,
    DocumentNotFoundError,
    InvalidTransitionError,
    OverBuildError,
    ValidationError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.models.warehouse import Warehouse
from mfg_kernel.services.ledger_service import LedgerService
from mfg_kernel.services.sequence_service import SequenceService
from mfg_modules._payload import positive_quantity
from mfg_modules.production.models import (
    Bom,
    CreateBomRequest,
    CreateWorkOrderRequest,
    ReservationStatus,
    StockReservation,
    WorkOrder,
    WorkOrderStatus,
)
from mfg_modules.production.orm import (
    BomLineModel,
    BomModel,
    StockReservationModel,
    WorkOrderComponentModel,
    WorkOrderModel,
)
from mfg_modules.production.workflows import WORK_ORDER_WORKFLOW
from mfg_services.stock_allocator import StockAllocator
from mfg_services.workflow_executor import WorkflowExecutor

logger = get_logger("modules.production.service")

# Counter row locked by every activation; its value counts active-graph changes.
_BOM_GRAPH_REVISION = "bom_graph_revision"

BUILD_VOUCHER_PREFIX = "BLD"


def _status_value(status: str | Enum) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class ProductionService:
    """
    Orchestrates BOMs, work orders and builds.

    Contract
    --------
    * Public methods return frozen DTOs or ledger entry records.
    * Each mutating method commits on success and rolls back on failure.

    Non-goals
    ---------
    * No routing, capacity or scheduling.
    * No costing of consumed components.
    """

    DOCUMENT_TYPES = ("work_order",)

    def __init__(
        self,
        session: Session,
        workflow_executor: WorkflowExecutor,
        config: EngineConfig,
        clock: Clock | None = None,
        explosion_engine: BomExplosionEngine | None = None,
    ):
        self._session = session
        self._executor = workflow_executor
        self._config = config
        self._clock = clock or SystemClock()
        self._explosion = explosion_engine or BomExplosionEngine()
        self._sequences = SequenceService(session)
        self._ledger = LedgerService(
            session,
            clock=self._clock,
            enforce_single_sku_bins=config.inventory.enforce_single_sku_bins,
        )
        self._allocator = StockAllocator(
            session,
            self._ledger,
            enforce_single_sku_bins=config.inventory.enforce_single_sku_bins,
        )

    # =========================================================================
    # BOM graph helpers
    # =========================================================================

    def _active_bom(self, item_id: UUID) -> BomModel | None:
        return self._session.execute(
            select(BomModel).where(BomModel.parent_item_id == item_id, BomModel.is_active.is_(True))
        ).scalar_one_or_none()

    def _active_graph(self) -> dict[UUID, list[BomComponent]]:
        """All active BOMs as ``{parent_item_id: [BomComponent, ...]}``."""
        graph: dict[UUID, list[BomComponent]] = {}
        for bom in self._session.execute(select(BomModel).where(BomModel.is_active.is_(True))).scalars():
            graph[bom.parent_item_id] = [line.to_dto().to_component() for line in bom.lines]
        return graph

    def _check_acyclic(self, parent_item_id: UUID, components: list[BomComponent]) -> None:
        """
        Reject a BOM whose activation would close a loop in the active graph.

        Bumping the graph revision counter locks its row until commit, so
        concurrent activations run this check one at a time and each sees
        the BOMs the previous one activated.
        """
        revision = self._sequences.next_value(_BOM_GRAPH_REVISION)
        graph = self._active_graph()
        graph[parent_item_id] = components
        cycle = self._explosion.find_cycle(graph)
        if cycle is not None:
            raise CyclicBomError(cycle)
        logger.debug("production_bom_graph_checked", extra={
            "parent_item_id": str(parent_item_id),
            "graph_revision": revision,
        })

    def _deactivate_others(self, parent_item_id: UUID, keep_id: UUID, actor: Actor) -> None:
        self._session.execute(
            update(BomModel)
            .where(
                BomModel.parent_item_id == parent_item_id,
                BomModel.id != keep_id,
                BomModel.is_active.is_(True),
            )
            .values(is_active=False, updated_by_id=actor.actor_id)
            .execution_options(synchronize_session="fetch")
        )

    # =========================================================================
    # BOM maintenance
    # =========================================================================

    def create_bom(self, request: CreateBomRequest, actor: Actor) -> Bom:
        """
        Store a new BOM version, activating it unless asked not to.

        Raises:
            CyclicBomError: the BOM would make an item its own component.
            ValidationError: duplicate version for the parent.
        """
        try:
            self._executor.authority.require(actor, "production.bom.manage")
            self._ledger.get_item(request.parent_item_id)
            for line in request.lines:
                self._ledger.get_item(line.component_item_id)

            duplicate = self._session.execute(
                select(BomModel.id).where(
                    BomModel.parent_item_id == request.parent_item_id,
                    BomModel.version == request.version,
                )
            ).first()
            if duplicate:
                raise ValidationError(
                    f"BOM version {request.version} already exists for item {request.parent_item_id}",
                    ["version"],
                )

            bom = BomModel(
                parent_item_id=request.parent_item_id,
                version=request.version,
                is_active=False,
                effective_date=request.effective_date,
                backflush_enabled=request.backflush_enabled,
                auto_reserve_enabled=request.auto_reserve_enabled,
                lead_time_days=request.lead_time_days,
                created_by_id=actor.actor_id,
                lines=[
                    BomLineModel(
                        component_item_id=line.component_item_id,
                        quantity_per=line.quantity_per,
                        scrap_factor=line.scrap_factor,
                        backflush=line.backflush,
                        sort_order=idx,
                        created_by_id=actor.actor_id,
                    )
                    for idx, line in enumerate(request.lines)
                ],
            )
            if request.activate:
                self._check_acyclic(request.parent_item_id, [
                    BomComponent(line.component_item_id, line.quantity_per, line.scrap_factor, line.backflush)
                    for line in request.lines
                ])
            self._session.add(bom)
            self._session.flush()
            if request.activate:
                self._deactivate_others(bom.parent_item_id, bom.id, actor)
                bom.is_active = True
                self._session.flush()

            dto = bom.to_dto()
            self._session.commit()
            logger.info("production_bom_created", extra={
                "bom_id": str(dto.id),
                "parent_item_id": str(dto.parent_item_id),
                "version": dto.version,
                "line_count": len(dto.lines),
                "is_active": dto.is_active,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def activate_bom(self, bom_id: UUID, actor: Actor) -> Bom:
        """Make ``bom_id`` the active BOM of its parent item."""
        try:
            self._executor.authority.require(actor, "production.bom.manage")
            bom = self._session.get(BomModel, bom_id)
            if bom is None:
                raise BomNotFoundError(str(bom_id))
            self._check_acyclic(bom.parent_item_id, [line.to_dto().to_component() for line in bom.lines])
            self._deactivate_others(bom.parent_item_id, bom.id, actor)
            bom.is_active = True
            bom.updated_by_id = actor.actor_id
            self._session.flush()
            dto = bom.to_dto()
            self._session.commit()
            logger.info("production_bom_activated", extra={
                "bom_id": str(bom_id),
                "parent_item_id": str(dto.parent_item_id),
                "version": dto.version,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def get_bom(self, bom_id: UUID) -> Bom:
        bom = self._session.get(BomModel, bom_id)
        if bom is None:
            raise BomNotFoundError(str(bom_id))
        return bom.to_dto()

    def get_active_bom(self, item_id: UUID) -> Bom | None:
        bom = self._active_bom(item_id)
        return bom.to_dto() if bom is not None else None

    def explode(self, item_id: UUID, quantity: Decimal) -> ExplosionResult:
        """Preview leaf requirements for ``quantity`` units over the active BOMs."""
        return self._explosion.explode(
            item_id=item_id,
            build_quantity=positive_quantity(quantity),
            boms=self._active_graph(),
        )

    # =========================================================================
    # Work orders
    # =========================================================================

    def create_work_order(self, request: CreateWorkOrderRequest, actor: Actor) -> WorkOrder:
        try:
            self._executor.authority.require(actor, "production.wo.create")
            self._ledger.get_item(request.item_id)
            if self._session.get(Warehouse, request.warehouse_id) is None:
                raise DocumentNotFoundError("warehouse", str(request.warehouse_id))

            backflush = request.backflush
            if backflush is None:
                bom = self._active_bom(request.item_id)
                backflush = bom.backflush_enabled if bom is not None else self._config.production.default_backflush

            wo = WorkOrderModel(
                number=self._sequences.next_document_number("WO", self._clock.now()),
                item_id=request.item_id,
                warehouse_id=request.warehouse_id,
                planned_quantity=request.planned_quantity,
                completed_quantity=ZERO,
                backflush=backflush,
                priority=request.priority.value,
                start_date=request.start_date,
                due_date=request.due_date,
                notes=request.notes,
                notes_ar=request.notes_ar,
                status=WorkOrderStatus.DRAFT.value,
                created_by_id=actor.actor_id,
            )
            self._session.add(wo)
            self._session.flush()
            dto = wo.to_dto()
            self._session.commit()
            logger.info("production_work_order_created", extra={
                "work_order_id": str(dto.id),
                "number": dto.number,
                "item_id": str(dto.item_id),
                "planned_quantity": str(dto.planned_quantity),
                "backflush": dto.backflush,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def _release_reservations(self, wo: WorkOrderModel) -> Decimal:
        active = self._session.execute(
            select(StockReservationModel).where(
                StockReservationModel.work_order_id == wo.id,
                StockReservationModel.status == ReservationStatus.ACTIVE.value,
            )
        ).scalars().all()
        total = ZERO
        for reservation in active:
            if reservation.remaining > ZERO:
                total += self._allocator.release(
                    item_id=reservation.item_id,
                    bin_id=reservation.bin_id,
                    quantity=reservation.remaining,
                    batch_number=reservation.batch_number or None,
                    serial_number=reservation.serial_number or None,
                )
            reservation.status = ReservationStatus.RELEASED.value
        self._session.flush()
        if total > ZERO:
            logger.info("production_reservations_released", extra={
                "work_order_id": str(wo.id),
                "quantity": str(total),
            })
        return total

    def _snapshot_and_reserve(self, wo: WorkOrderModel, actor: Actor) -> None:
        """Release side effect: explode, freeze the components, reserve stock."""
        bom = self._active_bom(wo.item_id)
        if bom is None:
            raise BomMissingError(str(wo.item_id))

        result = self._explosion.explode(
            item_id=wo.item_id,
            build_quantity=wo.planned_quantity,
            boms=self._active_graph(),
        )
        wo.bom_id = bom.id
        now = self._clock.now()
        for idx, req in enumerate(result.requirements):
            self._session.add(WorkOrderComponentModel(
                work_order_id=wo.id,
                line_number=idx + 1,
                item_id=req.item_id,
                quantity_per_unit=req.quantity_per_unit,
                required_quantity=req.quantity,
                backflush=req.backflush,
                created_at=now,
                created_by_id=actor.actor_id,
            ))
        self._session.flush()

        if not (bom.auto_reserve_enabled or self._config.production.auto_reserve_on_release):
            return
        if not wo.backflush:
            return
        for req in result.requirements:
            if not req.backflush:
                continue
            picks = self._allocator.reserve(
                item_id=req.item_id,
                quantity=req.quantity,
                warehouse_id=wo.warehouse_id,
            )
            for pick in picks:
                self._session.add(StockReservationModel(
                    work_order_id=wo.id,
                    item_id=req.item_id,
                    bin_id=pick.bin_id,
                    batch_number=pick.batch_number or "",
                    serial_number=pick.serial_number or "",
                    quantity=pick.quantity,
                    consumed_quantity=ZERO,
                    status=ReservationStatus.ACTIVE.value,
                    created_by_id=actor.actor_id,
                ))
        self._session.flush()
        logger.info("production_components_reserved", extra={
            "work_order_id": str(wo.id),
            "component_count": sum(1 for r in result.requirements if r.backflush),
        })

    def transition(
        self,
        document_type: str,
        document_id: UUID,
        target_status: str | Enum,
        actor: Actor,
    ) -> WorkOrder:
        """
        Move a work order to ``target_status``.

        Releasing snapshots the BOM; cancelling releases reservations.
        ``completed`` is reached only through ``post_build``.
        """
        if document_type not in self.DOCUMENT_TYPES:
            raise ValidationError(f"Unknown production document type {document_type}", ["document_type"])
        target = _status_value(target_status)
        try:
            wo = WorkflowExecutor.lock_document(self._session, WorkOrderModel, "work_order", document_id)

            side_effect = None
            if target == WorkOrderStatus.RELEASED.value:
                def side_effect(_transition):
                    self._snapshot_and_reserve(wo, actor)
            elif target == WorkOrderStatus.CANCELLED.value:
                def side_effect(_transition):
                    self._release_reservations(wo)

            self._executor.apply_transition(
                self._session,
                workflow=WORK_ORDER_WORKFLOW,
                document_type="work_order",
                document=wo,
                target_status=target,
                actor=actor,
                side_effect=side_effect,
            )
            self._session.refresh(wo)
            dto = wo.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    def release_work_order(self, work_order_id: UUID, actor: Actor) -> WorkOrder:
        return self.transition("work_order", work_order_id, WorkOrderStatus.RELEASED, actor)

    # =========================================================================
    # Build
    # =========================================================================

    def _consume(
        self,
        wo: WorkOrderModel,
        item_id: UUID,
        need: Decimal,
        voucher: str,
        actor: Actor,
    ) -> list[LedgerEntryRecord]:
        """Backflush ``need`` units of one component: reservations first, then free stock."""
        entries: list[LedgerEntryRecord] = []
        reservations = self._session.execute(
            select(StockReservationModel)
            .where(
                StockReservationModel.work_order_id == wo.id,
                StockReservationModel.item_id == item_id,
                StockReservationModel.status == ReservationStatus.ACTIVE.value,
            )
            .order_by(StockReservationModel.created_at, StockReservationModel.id)
            .with_for_update()
        ).scalars().all()

        for reservation in reservations:
            if need <= ZERO:
                break
            take = min(need, reservation.remaining)
            if take <= ZERO:
                continue
            entries.append(self._ledger.post_entry(
                item_id=item_id,
                bin_id=reservation.bin_id,
                quantity=take,
                direction=Direction.OUT,
                transaction_type=TransactionType.BUILD_CONSUME,
                voucher_number=voucher,
                actor_id=actor.actor_id,
                batch_number=reservation.batch_number or None,
                serial_number=reservation.serial_number or None,
                reference_type="work_order",
                reference_id=wo.id,
                work_order_id=wo.id,
                reserved_release=take,
            ))
            reservation.consumed_quantity += take
            if reservation.remaining <= ZERO:
                reservation.status = ReservationStatus.CONSUMED.value
            need -= take

        if need > ZERO:
            picks = self._allocator.plan_debit(
                item_id=item_id,
                quantity=need,
                warehouse_id=wo.warehouse_id,
                require_identifier=False,
            )
            for pick in picks:
                entries.append(self._ledger.post_entry(
                    item_id=item_id,
                    bin_id=pick.bin_id,
                    quantity=pick.quantity,
                    direction=Direction.OUT,
                    transaction_type=TransactionType.BUILD_CONSUME,
                    voucher_number=voucher,
                    actor_id=actor.actor_id,
                    batch_number=pick.batch_number,
                    serial_number=pick.serial_number,
                    reference_type="work_order",
                    reference_id=wo.id,
                    work_order_id=wo.id,
                ))
        return entries

    def post_build(
        self,
        work_order_id: UUID,
        quantity: Decimal,
        actor: Actor,
        output_bin_id: UUID | None = None,
        output_batch_number: str | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Record ``quantity`` finished units against an in-progress work order.

        With backflush on, each backflushed component is consumed in
        proportion (``quantity_per_unit * quantity``).  The finished goods
        are received into ``output_bin_id`` or the put-away bin of the work
        order's warehouse.  Reaching the planned quantity completes the work
        order and releases what is left of its reservations.

        Raises:
            InvalidTransitionError: work order is not in progress.
            OverBuildError: completed plus ``quantity`` exceeds planned.
            InsufficientStockError: a component cannot be backflushed.
        """
        try:
            self._executor.authority.require(actor, "production.wo.build")
            qty = positive_quantity(quantity)
            wo = WorkflowExecutor.lock_document(self._session, WorkOrderModel, "work_order", work_order_id)
            if wo.status != WorkOrderStatus.IN_PROGRESS.value:
                raise InvalidTransitionError(
                    "work_order",
                    str(wo.id),
                    wo.status,
                    "built",
                    "builds are posted only against an in-progress work order",
                )
            if wo.completed_quantity + qty > wo.planned_quantity:
                logger.warning("production_over_build", extra={
                    "work_order_id": str(wo.id),
                    "planned": str(wo.planned_quantity),
                    "completed": str(wo.completed_quantity),
                    "requested": str(qty),
                })
                raise OverBuildError(str(wo.id), wo.planned_quantity, wo.completed_quantity, qty)

            voucher = self._sequences.next_document_number(BUILD_VOUCHER_PREFIX, self._clock.now())
            entries: list[LedgerEntryRecord] = []
            with LogContext.bind(document_type="work_order", document_id=str(wo.id), voucher_number=voucher):
                if wo.backflush:
                    for component in wo.components:
                        if not component.backflush:
                            continue
                        need = round_quantity(component.quantity_per_unit * qty)
                        if need > ZERO:
                            entries.extend(self._consume(wo, component.item_id, need, voucher, actor))

                bin_id = output_bin_id or self._allocator.resolve_putaway_bin(
                    item_id=wo.item_id,
                    warehouse_id=wo.warehouse_id,
                    batch_number=output_batch_number,
                )
                entries.append(self._ledger.post_entry(
                    item_id=wo.item_id,
                    bin_id=bin_id,
                    quantity=qty,
                    direction=Direction.IN,
                    transaction_type=TransactionType.BUILD_OUTPUT,
                    voucher_number=voucher,
                    actor_id=actor.actor_id,
                    batch_number=output_batch_number,
                    reference_type="work_order",
                    reference_id=wo.id,
                    work_order_id=wo.id,
                ))

                wo.completed_quantity += qty
                wo.updated_by_id = actor.actor_id
                self._session.flush()

                if wo.completed_quantity == wo.planned_quantity:
                    self._executor.apply_transition(
                        self._session,
                        workflow=WORK_ORDER_WORKFLOW,
                        document_type="work_order",
                        document=wo,
                        target_status=WorkOrderStatus.COMPLETED.value,
                        actor=actor,
                        side_effect=lambda _t: self._release_reservations(wo),
                        internal=True,
                    )

            self._session.commit()
            logger.info("production_build_posted", extra={
                "work_order_id": str(work_order_id),
                "voucher_number": voucher,
                "quantity": str(qty),
                "consumed_entries": len(entries) - 1,
                "status": wo.status,
            })
            return entries
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_document(self, document_type: str, document_id: UUID) -> WorkOrder:
        if document_type not in self.DOCUMENT_TYPES:
            raise ValidationError(f"Unknown production document type {document_type}", ["document_type"])
        return self.get_work_order(document_id)

    def get_work_order(self, work_order_id: UUID) -> WorkOrder:
        wo = self._session.get(WorkOrderModel, work_order_id)
        if wo is None:
            raise DocumentNotFoundError("work_order", str(work_order_id))
        return wo.to_dto()

    def get_reservations(self, work_order_id: UUID, active_only: bool = False) -> list[StockReservation]:
        stmt = (
            select(StockReservationModel)
            .where(StockReservationModel.work_order_id == work_order_id)
            .order_by(StockReservationModel.created_at, StockReservationModel.id)
        )
        if active_only:
            stmt = stmt.where(StockReservationModel.status == ReservationStatus.ACTIVE.value)
        return [r.to_dto() for r in self._session.execute(stmt).scalars()]
