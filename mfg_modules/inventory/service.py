"""
Inventory Module Service (``mfg_modules.inventory.service``).

Responsibility
--------------
Stand-alone stock movements: material issues and returns, bin-to-bin
transfers, reason-coded adjustments and reversals, plus on-hand queries.
This is a **thin glue layer** -- bin choice lives in ``StockAllocator`` and
every quantity change goes through ``LedgerService.post_entry``.

Architecture
------------
Layer: **Modules** -- stateful orchestration wrapper.

1. Checks the actor's permission with ``RbacAuthority``.
2. Asks ``StockAllocator`` which bins to debit (or where to put away).
3. Posts one ledger entry per pick under a single voucher number.

Invariants
----------
- Each public method owns its transaction boundary: ``commit`` on success,
  ``rollback`` and re-raise on any exception.  A split issue is therefore
  all-or-nothing.
- A transfer is a paired OUT + IN sharing ``transfer_group_id``; its
  reversal reverses both legs.
- GRN and build entries are not reversed here; the PO line or work order
  that recorded them would keep counting the stock.
- Adjustments carry a configured reason code.

Failure Modes
-------------
- InsufficientStockError, BatchRequiredError, BinOccupiedError from the
  ledger and allocator.
- EntryAlreadyReversedError on a second reversal.
- ValidationError on bad quantities, reason codes or bin combinations,
  and on reversal of a GRN or build entry.

Usage::

    service = InventoryService(session, authority, config, clock)
    result = service.post_issue(item_id, Decimal("80"), actor)
    result.entries  # one entry per bin the issue drew from
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mfg_config.schema import EngineConfig
from mfg_kernel.db.types import ZERO, to_quantity
from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.dtos import (
    BinStockRecord,
    Direction,
    LedgerEntryRecord,
    MovementResult,
    TransactionType,
)
from mfg_kernel.exceptions import ValidationError
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_kernel.models.item import Item
from mfg_kernel.models.ledger import StockLedgerEntry
from mfg_kernel.selectors.stock_selector import StockDiscrepancy, StockSelector
from mfg_kernel.services.ledger_service import LedgerService
from mfg_kernel.services.sequence_service import SequenceService
from mfg_modules._payload import positive_quantity
from mfg_modules.inventory.models import ReorderAlert, StockLevel, VoucherPrefix
from mfg_services.rbac_authority import RbacAuthority
from mfg_services.stock_allocator import StockAllocator

logger = get_logger("modules.inventory.service")

# Entries whose quantity is also recorded on a PO line or work order.
_DOCUMENT_OWNED = frozenset({
    TransactionType.GRN,
    TransactionType.BUILD_CONSUME,
    TransactionType.BUILD_OUTPUT,
})


class InventoryService:
    """
    Orchestrates inventory movements over the stock ledger.

    Contract
    --------
    * Movement methods return ``MovementResult`` (voucher + ledger entries).
    * Queries are read-only and never commit.

    Non-goals
    ---------
    * No valuation or costing; quantities only.
    * Does NOT receive against purchase orders (see ProcurementService).
    """

    def __init__(
        self,
        session: Session,
        authority: RbacAuthority,
        config: EngineConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._authority = authority
        self._config = config
        self._clock = clock or SystemClock()
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
        self._stock = StockSelector(session)

    def _voucher(self, prefix: VoucherPrefix) -> str:
        return self._sequences.next_document_number(prefix.value, self._clock.now())

    # =========================================================================
    # Issue / return
    # =========================================================================

    def post_issue(
        self,
        item_id: UUID,
        quantity: Decimal,
        actor: Actor,
        bin_id: UUID | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        work_order_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        uom: str | None = None,
        memo: str | None = None,
    ) -> MovementResult:
        """
        Issue stock out of one bin, or out of the auto-selected bins.

        Without ``bin_id`` the largest-available bin is drawn first and the
        issue spills into further bins only when needed.  If total
        availability is short nothing is posted.
        """
        try:
            self._authority.require(actor, "inventory.issue")
            qty = positive_quantity(quantity)
            with LogContext.bind(actor_id=str(actor.actor_id)):
                picks = self._allocator.plan_debit(
                    item_id=item_id,
                    quantity=qty,
                    bin_id=bin_id,
                    batch_number=batch_number,
                    serial_number=serial_number,
                    warehouse_id=warehouse_id,
                )
                voucher = self._voucher(VoucherPrefix.ISSUE)
                entries = tuple(
                    self._ledger.post_entry(
                        item_id=item_id,
                        bin_id=pick.bin_id,
                        quantity=pick.quantity,
                        direction=Direction.OUT,
                        transaction_type=TransactionType.ISSUE,
                        voucher_number=voucher,
                        actor_id=actor.actor_id,
                        batch_number=pick.batch_number,
                        serial_number=pick.serial_number,
                        uom=uom,
                        reference_type=reference_type,
                        reference_id=reference_id,
                        work_order_id=work_order_id,
                        memo=memo,
                    )
                    for pick in picks
                )
            self._session.commit()
            logger.info("inventory_issue_posted", extra={
                "voucher_number": voucher,
                "item_id": str(item_id),
                "quantity": str(qty),
                "bins": len(entries),
                "work_order_id": str(work_order_id) if work_order_id else None,
            })
            return MovementResult(voucher_number=voucher, entries=entries)
        except Exception:
            self._session.rollback()
            raise

    def post_return(
        self,
        item_id: UUID,
        quantity: Decimal,
        actor: Actor,
        bin_id: UUID | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        work_order_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        uom: str | None = None,
        memo: str | None = None,
    ) -> MovementResult:
        """Return stock into a bin, or into the warehouse's put-away bin."""
        try:
            self._authority.require(actor, "inventory.return")
            qty = positive_quantity(quantity)
            if bin_id is None:
                if warehouse_id is None:
                    raise ValidationError("Return needs a bin or a warehouse", ["bin_id", "warehouse_id"])
                bin_id = self._allocator.resolve_putaway_bin(
                    item_id=item_id, warehouse_id=warehouse_id, batch_number=batch_number,
                )
            voucher = self._voucher(VoucherPrefix.RETURN)
            entry = self._ledger.post_entry(
                item_id=item_id,
                bin_id=bin_id,
                quantity=qty,
                direction=Direction.IN,
                transaction_type=TransactionType.RETURN,
                voucher_number=voucher,
                actor_id=actor.actor_id,
                batch_number=batch_number,
                serial_number=serial_number,
                uom=uom,
                reference_type=reference_type,
                reference_id=reference_id,
                work_order_id=work_order_id,
                memo=memo,
            )
            self._session.commit()
            logger.info("inventory_return_posted", extra={
                "voucher_number": voucher,
                "item_id": str(item_id),
                "bin_id": str(bin_id),
                "quantity": str(qty),
            })
            return MovementResult(voucher_number=voucher, entries=(entry,))
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Transfer / adjustment
    # =========================================================================

    def post_transfer(
        self,
        item_id: UUID,
        quantity: Decimal,
        to_bin_id: UUID,
        actor: Actor,
        from_bin_id: UUID | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
        memo: str | None = None,
    ) -> MovementResult:
        """Move stock between bins as paired OUT/IN entries."""
        try:
            self._authority.require(actor, "inventory.transfer")
            qty = positive_quantity(quantity)
            if from_bin_id is not None and from_bin_id == to_bin_id:
                raise ValidationError("Transfer source and target bin are the same", ["to_bin_id"])
            self._ledger.get_bin(to_bin_id)

            picks = self._allocator.plan_debit(
                item_id=item_id,
                quantity=qty,
                bin_id=from_bin_id,
                batch_number=batch_number,
                serial_number=serial_number,
                exclude_bin_ids=(to_bin_id,),
            )
            voucher = self._voucher(VoucherPrefix.TRANSFER)
            group_id = uuid4()
            entries: list[LedgerEntryRecord] = []
            for pick in picks:
                common = dict(
                    item_id=item_id,
                    quantity=pick.quantity,
                    transaction_type=TransactionType.TRANSFER,
                    voucher_number=voucher,
                    actor_id=actor.actor_id,
                    batch_number=pick.batch_number,
                    serial_number=pick.serial_number,
                    transfer_group_id=group_id,
                    memo=memo,
                )
                entries.append(self._ledger.post_entry(bin_id=pick.bin_id, direction=Direction.OUT, **common))
                entries.append(self._ledger.post_entry(bin_id=to_bin_id, direction=Direction.IN, **common))
            self._session.commit()
            logger.info("inventory_transfer_posted", extra={
                "voucher_number": voucher,
                "transfer_group_id": str(group_id),
                "item_id": str(item_id),
                "to_bin_id": str(to_bin_id),
                "quantity": str(qty),
            })
            return MovementResult(voucher_number=voucher, entries=tuple(entries))
        except Exception:
            self._session.rollback()
            raise

    def post_adjustment(
        self,
        item_id: UUID,
        bin_id: UUID,
        quantity: Decimal,
        reason_code: str,
        actor: Actor,
        batch_number: str | None = None,
        serial_number: str | None = None,
        memo: str | None = None,
    ) -> MovementResult:
        """
        Correct a bin's quantity by a signed amount.

        Positive quantities post IN, negative post OUT (and obey the
        availability check).  ``reason_code`` must be configured.
        """
        try:
            self._authority.require(actor, "inventory.adjust")
            try:
                signed = to_quantity(quantity)
            except ValueError as exc:
                raise ValidationError(str(exc), ["quantity"]) from exc
            if signed == ZERO:
                raise ValidationError("Adjustment quantity cannot be zero", ["quantity"])
            allowed = self._config.inventory.adjustment_reason_codes
            if reason_code not in allowed:
                raise ValidationError(
                    f"Unknown adjustment reason {reason_code!r}; expected one of {list(allowed)}",
                    ["reason_code"],
                )

            voucher = self._voucher(VoucherPrefix.ADJUSTMENT)
            entry = self._ledger.post_entry(
                item_id=item_id,
                bin_id=bin_id,
                quantity=abs(signed),
                direction=Direction.IN if signed > ZERO else Direction.OUT,
                transaction_type=TransactionType.ADJUSTMENT,
                voucher_number=voucher,
                actor_id=actor.actor_id,
                batch_number=batch_number,
                serial_number=serial_number,
                reason_code=reason_code,
                memo=memo,
            )
            self._session.commit()
            logger.info("inventory_adjustment_posted", extra={
                "voucher_number": voucher,
                "item_id": str(item_id),
                "bin_id": str(bin_id),
                "quantity": str(signed),
                "reason_code": reason_code,
            })
            return MovementResult(voucher_number=voucher, entries=(entry,))
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_entry(self, entry_id: UUID, actor: Actor, reason: str | None = None) -> MovementResult:
        """
        Post reversing entries for a ledger row.

        A transfer leg reverses together with its partner leg(s) so stock
        returns to the source bin; the IN legs are undone first.
        """
        try:
            self._authority.require(actor, "inventory.reverse")
            entry = self._ledger.get_entry(entry_id)
            if TransactionType(entry.transaction_type) in _DOCUMENT_OWNED:
                raise ValidationError(
                    f"{entry.transaction_type} entry {entry_id} belongs to "
                    f"{entry.reference_type or 'a document'} {entry.voucher_number}; "
                    "correct it with an adjustment or a new document",
                    ["entry_id"],
                )
            targets = [entry]
            if entry.transfer_group_id is not None and entry.reverses_entry_id is None:
                targets = list(self._session.execute(
                    select(StockLedgerEntry)
                    .where(
                        StockLedgerEntry.transfer_group_id == entry.transfer_group_id,
                        StockLedgerEntry.reverses_entry_id.is_(None),
                    )
                    .order_by(StockLedgerEntry.seq.desc())
                ).scalars())

            voucher = self._voucher(VoucherPrefix.REVERSAL)
            memo = reason or f"Reversal of {entry.voucher_number}"
            entries = tuple(
                self._ledger.reverse_entry(target.id, actor.actor_id, voucher, memo=memo)
                for target in targets
            )
            self._session.commit()
            logger.info("inventory_entry_reversed", extra={
                "voucher_number": voucher,
                "entry_id": str(entry_id),
                "reversed_count": len(entries),
                "actor_id": str(actor.actor_id),
            })
            return MovementResult(voucher_number=voucher, entries=entries)
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_on_hand(self, item_id: UUID, bin_id: UUID | None = None) -> Decimal:
        return self._stock.get_on_hand(item_id, bin_id=bin_id)

    def get_available(
        self, item_id: UUID, bin_id: UUID | None = None, warehouse_id: UUID | None = None,
    ) -> Decimal:
        return self._stock.get_available(item_id, bin_id=bin_id, warehouse_id=warehouse_id)

    def get_stock_level(self, item_id: UUID) -> StockLevel:
        return StockLevel(
            item_id=item_id,
            on_hand=self._stock.get_on_hand(item_id),
            reserved=self._stock.get_reserved(item_id),
        )

    def get_bin_stock(self, item_id: UUID, warehouse_id: UUID | None = None) -> list[BinStockRecord]:
        return self._stock.get_bin_stock(item_id, warehouse_id=warehouse_id)

    def get_entries(self, **filters) -> list[LedgerEntryRecord]:
        return self._stock.get_entries(**filters)

    def reconcile(self, item_id: UUID | None = None) -> list[StockDiscrepancy]:
        discrepancies = self._stock.reconcile(item_id)
        if discrepancies:
            logger.error("inventory_projection_out_of_balance", extra={
                "count": len(discrepancies),
                "item_id": str(item_id) if item_id else None,
            })
        return discrepancies

    def items_below_reorder_point(self) -> list[ReorderAlert]:
        """Active items whose ledger on-hand is at or below their reorder point."""
        items = self._session.execute(
            select(Item)
            .where(Item.is_active.is_(True), Item.reorder_point > 0)
            .order_by(Item.code)
        ).scalars()
        alerts = []
        for item in items:
            on_hand = self._stock.get_on_hand(item.id)
            if on_hand <= item.reorder_point:
                alerts.append(ReorderAlert(
                    item_id=item.id,
                    item_code=item.code,
                    on_hand=on_hand,
                    reorder_point=item.reorder_point,
                    safety_stock=item.safety_stock,
                ))
        return alerts
