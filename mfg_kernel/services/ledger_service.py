"""
LedgerService -- the single writer of the stock ledger and bin projection.

Responsibility:
    Posts one StockLedgerEntry per call and moves the matching BinStock row
    in the same flush.  All inventory operations (GRN, issue, return,
    transfer, adjustment, build consumption and output, reversals) reach
    the database through ``post_entry``.

Architecture position:
    Kernel > Services.  Called by module services (procurement, inventory,
    production) and by the stock allocator.  Flush-only; the calling module
    service commits.

Invariants enforced:
    - Non-negative stock: an OUT entry locks the BinStock row and checks
      ``available >= quantity`` in the same critical section as the debit.
    - Conservation: every change to BinStock.quantity is exactly mirrored
      by one ledger row, so the projection always reconciles.
    - Batch/serial control: tracked items never move without their
      identifier (BatchRequiredError).
    - UOM: entries are stored in the item's UOM; a different caller UOM is
      rejected.
    - Single-SKU bins (when enabled): a bin holds a positive quantity of at
      most one item-batch combination.
    - Reversal at most once; reversing entries are not themselves reversible.

Failure modes:
    - InsufficientStockError when the debit exceeds availability.
    - BatchRequiredError, UomMismatchError, BinOccupiedError, ValidationError.
    - ItemNotFoundError, BinNotFoundError, LedgerEntryNotFoundError.
    - EntryAlreadyReversedError on a second reversal.

Audit relevance:
    Every posting emits ``ledger_entry_posted``; every rejected debit emits
    ``insufficient_stock``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mfg_kernel.db.types import ZERO, to_quantity
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.dtos import Direction, LedgerEntryRecord, TransactionType
from mfg_kernel.exceptions import (
    BatchRequiredError,
    BinNotFoundError,
    BinOccupiedError,
    EntryAlreadyReversedError,
    InsufficientStockError,
    ItemNotFoundError,
    LedgerEntryNotFoundError,
    UomMismatchError,
    ValidationError,
)
from mfg_kernel.logging_config import get_logger
from mfg_kernel.models.item import Item
from mfg_kernel.models.ledger import StockLedgerEntry
from mfg_kernel.models.stock import NO_LOT, BinStock
from mfg_kernel.models.warehouse import Bin
from mfg_kernel.services.base import BaseService
from mfg_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService(BaseService[StockLedgerEntry]):
    """
    Append-only writer for stock movements.

    Contract:
        ``post_entry`` either writes exactly one ledger row and the matching
        projection change, or raises and writes nothing.

    Non-goals:
        - Does NOT choose bins; callers pass a bin (see StockAllocator).
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        enforce_single_sku_bins: bool = True,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)
        self._enforce_single_sku_bins = enforce_single_sku_bins

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_item(self, item_id: UUID) -> Item:
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def get_bin(self, bin_id: UUID) -> Bin:
        bin_ = self.session.get(Bin, bin_id)
        if bin_ is None:
            raise BinNotFoundError(str(bin_id))
        return bin_

    def lock_stock_row(
        self,
        bin_id: UUID,
        item_id: UUID,
        batch_number: str | None,
        serial_number: str | None,
    ) -> BinStock | None:
        """SELECT ... FOR UPDATE the projection row for one stock key."""
        return self.session.execute(
            select(BinStock)
            .where(
                BinStock.bin_id == bin_id,
                BinStock.item_id == item_id,
                BinStock.batch_number == (batch_number or NO_LOT),
                BinStock.serial_number == (serial_number or NO_LOT),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _get_or_create_stock_row(
        self, bin_: Bin, item_id: UUID, batch_number: str | None, serial_number: str | None,
    ) -> BinStock:
        row = self.lock_stock_row(bin_.id, item_id, batch_number, serial_number)
        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = BinStock(
                bin_id=bin_.id,
                warehouse_id=bin_.warehouse_id,
                item_id=item_id,
                batch_number=batch_number or NO_LOT,
                serial_number=serial_number or NO_LOT,
                quantity=ZERO,
                reserved_quantity=ZERO,
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug(
                "bin_stock_insert_race_retry",
                extra={"bin_id": str(bin_.id), "item_id": str(item_id)},
            )
            savepoint.rollback()
            row = self.lock_stock_row(bin_.id, item_id, batch_number, serial_number)
            if row is None:
                raise
            return row

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_tracking(
        item: Item, quantity: Decimal, batch_number: str | None, serial_number: str | None,
    ) -> None:
        if item.requires_batch and not batch_number:
            raise BatchRequiredError(str(item.id), "batch_number")
        if item.requires_serial:
            if not serial_number:
                raise BatchRequiredError(str(item.id), "serial_number")
            if quantity != Decimal("1"):
                raise ValidationError(
                    f"Serial-controlled item {item.code} moves one unit per entry",
                    ["quantity"],
                )

    def _check_serial_unique(self, item: Item, serial_number: str) -> None:
        held = self.session.execute(
            select(BinStock.id).where(
                BinStock.item_id == item.id,
                BinStock.serial_number == serial_number,
                BinStock.quantity > 0,
            )
        ).first()
        if held is not None:
            raise ValidationError(
                f"Serial {serial_number} of item {item.code} is already in stock",
                ["serial_number"],
            )

    def _check_bin_occupancy(self, bin_: Bin, item_id: UUID, batch_number: str | None) -> None:
        # Lock the bin so two different SKUs cannot land in an empty bin at once.
        self.session.execute(
            select(Bin.id).where(Bin.id == bin_.id).with_for_update()
        )
        occupants = self.session.execute(
            select(BinStock).where(BinStock.bin_id == bin_.id, BinStock.quantity > 0)
        ).scalars().all()
        for occupant in occupants:
            if occupant.item_id != item_id or occupant.batch_number != (batch_number or NO_LOT):
                raise BinOccupiedError(str(bin_.id), str(item_id), str(occupant.item_id))

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_entry(
        self,
        *,
        item_id: UUID,
        bin_id: UUID,
        quantity: Decimal,
        direction: Direction,
        transaction_type: TransactionType,
        voucher_number: str,
        actor_id: UUID,
        batch_number: str | None = None,
        serial_number: str | None = None,
        uom: str | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        work_order_id: UUID | None = None,
        reason_code: str | None = None,
        transfer_group_id: UUID | None = None,
        reverses_entry_id: UUID | None = None,
        memo: str | None = None,
        reserved_release: Decimal = ZERO,
    ) -> LedgerEntryRecord:
        """
        Write one ledger row and move the bin projection.

        ``reserved_release`` is the part of an OUT quantity that is backed by
        a reservation on this stock row; it is released together with the
        debit so reserved stock can be consumed by its owner.

        Raises:
            InsufficientStockError: OUT quantity exceeds what is available.
        """
        try:
            quantity = to_quantity(quantity)
        except ValueError as exc:
            raise ValidationError(str(exc), ["quantity"]) from exc
        if quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {quantity}", ["quantity"])

        item = self.get_item(item_id)
        if uom is not None and uom != item.uom:
            raise UomMismatchError(str(item.id), item.uom, uom)
        self._check_tracking(item, quantity, batch_number, serial_number)

        bin_ = self.get_bin(bin_id)

        if direction is Direction.IN:
            if not bin_.is_active:
                raise ValidationError(f"Bin {bin_.code} is inactive", ["bin_id"])
            if item.requires_serial:
                self._check_serial_unique(item, serial_number)
            if self._enforce_single_sku_bins:
                self._check_bin_occupancy(bin_, item.id, batch_number)
            row = self._get_or_create_stock_row(bin_, item.id, batch_number, serial_number)
            row.quantity += quantity
        else:
            row = self.lock_stock_row(bin_.id, item.id, batch_number, serial_number)
            on_row = row.quantity if row is not None else ZERO
            reserved = row.reserved_quantity if row is not None else ZERO
            release = min(reserved_release, reserved, quantity)
            available = on_row - reserved + release
            # INVARIANT: stock never negative -- check and debit under the row lock
            if row is None or quantity > available:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "item_id": str(item.id),
                        "bin_id": str(bin_.id),
                        "batch_number": batch_number,
                        "requested": quantity,
                        "available": available,
                    },
                )
                raise InsufficientStockError(
                    str(item.id), quantity, available, str(bin_.id), batch_number,
                )
            row.reserved_quantity -= release
            row.quantity -= quantity

        entry = StockLedgerEntry(
            seq=self._sequences.next_value(SequenceService.LEDGER_ENTRY),
            item_id=item.id,
            warehouse_id=bin_.warehouse_id,
            bin_id=bin_.id,
            batch_number=batch_number,
            serial_number=serial_number,
            uom=item.uom,
            quantity_in=quantity if direction is Direction.IN else ZERO,
            quantity_out=quantity if direction is Direction.OUT else ZERO,
            balance_after=row.quantity,
            transaction_type=transaction_type.value,
            voucher_number=voucher_number,
            reference_type=reference_type,
            reference_id=reference_id,
            work_order_id=work_order_id,
            reason_code=reason_code,
            transfer_group_id=transfer_group_id,
            reverses_entry_id=reverses_entry_id,
            memo=memo,
            posted_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_posted",
            extra={
                "entry_id": str(entry.id),
                "seq": entry.seq,
                "transaction_type": entry.transaction_type,
                "direction": direction.value,
                "item_id": str(item.id),
                "bin_id": str(bin_.id),
                "quantity": quantity,
                "balance_after": entry.balance_after,
                "voucher_number": voucher_number,
            },
        )
        return LedgerEntryRecord.from_model(entry)

    def get_entry(self, entry_id: UUID, lock: bool = False) -> StockLedgerEntry:
        stmt = select(StockLedgerEntry).where(StockLedgerEntry.id == entry_id)
        if lock:
            stmt = stmt.with_for_update()
        entry = self.session.execute(stmt).scalar_one_or_none()
        if entry is None:
            raise LedgerEntryNotFoundError(str(entry_id))
        return entry

    def reverse_entry(
        self,
        entry_id: UUID,
        actor_id: UUID,
        voucher_number: str,
        memo: str | None = None,
    ) -> LedgerEntryRecord:
        """
        Post the mirror image of an entry (IN becomes OUT and vice versa).

        The reversing row keeps the original transaction type and bin and
        points back through ``reverses_entry_id``.  Reversing an IN entry is
        a debit and obeys the availability check.
        """
        original = self.get_entry(entry_id, lock=True)
        if original.reverses_entry_id is not None:
            raise ValidationError(
                f"Ledger entry {entry_id} is itself a reversal and cannot be reversed",
                ["entry_id"],
            )
        existing = self.session.execute(
            select(StockLedgerEntry.id).where(StockLedgerEntry.reverses_entry_id == original.id)
        ).scalar_one_or_none()
        if existing is not None:
            raise EntryAlreadyReversedError(str(entry_id), str(existing))

        is_in = original.quantity_in > 0
        return self.post_entry(
            item_id=original.item_id,
            bin_id=original.bin_id,
            quantity=original.quantity_in if is_in else original.quantity_out,
            direction=Direction.OUT if is_in else Direction.IN,
            transaction_type=TransactionType(original.transaction_type),
            voucher_number=voucher_number,
            actor_id=actor_id,
            batch_number=original.batch_number,
            serial_number=original.serial_number,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            work_order_id=original.work_order_id,
            reason_code=original.reason_code,
            transfer_group_id=original.transfer_group_id,
            reverses_entry_id=original.id,
            memo=memo,
        )
