"""
Typed Exception Hierarchy for the Manufacturing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the API layer, batch jobs, tests) decide what to do with a failure
by its TYPE and CODE, never by parsing a message:

    try:
        engine.post_issue(item_id, Decimal("80"), actor)
    except InsufficientStockError as e:
        return {"error": e.code, "shortfall": str(e.shortfall)}

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a ``code`` class attribute (machine-readable, API-safe)
  3. Carries structured data as attributes
  4. Declares ``retryable`` so callers know whether re-submitting can help

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    MfgKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- UnauthorizedError
    |   +-- AlreadyConvertedError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- BatchRequiredError
    |   +-- EntryAlreadyReversedError
    |
    +-- BomError
    |   +-- BomMissingError
    |   +-- CyclicBomError
    |
    +-- ValidationError
    |   +-- OverReceiptError
    |   +-- OverBuildError
    |   +-- UomMismatchError
    |   +-- BinOccupiedError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- ItemNotFoundError
    |   +-- BinNotFoundError
    |   +-- BomNotFoundError
    |   +-- LedgerEntryNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                     | Retryable | When Raised
--------------|--------------------------|-----------|----------------------------------
Workflow      | INVALID_TRANSITION       | no        | Edge not in the status table
              | UNAUTHORIZED             | no        | Actor lacks the edge permission
              | ALREADY_CONVERTED        | no        | Quote already turned into a PO
--------------|--------------------------|-----------|----------------------------------
Inventory     | INSUFFICIENT_STOCK       | yes       | Debit exceeds available quantity
              | BATCH_REQUIRED           | no        | Batch/serial item without id
              | ENTRY_ALREADY_REVERSED   | no        | Ledger entry reversed twice
--------------|--------------------------|-----------|----------------------------------
BOM           | BOM_MISSING              | no        | Release without an active BOM
              | CYCLIC_BOM               | no        | Item reachable from itself
--------------|--------------------------|-----------|----------------------------------
Validation    | VALIDATION_ERROR         | no        | Malformed input
              | OVER_RECEIPT             | no        | GRN beyond ordered quantity
              | OVER_BUILD               | no        | Build beyond planned quantity
              | UOM_MISMATCH             | no        | Posting in a foreign UOM
              | BIN_OCCUPIED             | no        | Bin holds another item-batch
--------------|--------------------------|-----------|----------------------------------
Not found     | *_NOT_FOUND              | no        | Referenced row does not exist
--------------|--------------------------|-----------|----------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT | yes       | Stale document version
--------------|--------------------------|-----------|----------------------------------
Immutability  | IMMUTABILITY_VIOLATION   | no        | UPDATE/DELETE of a ledger row

===============================================================================
"""

from decimal import Decimal


class MfgKernelError(Exception):
    """
    Base exception for all manufacturing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "MFG_KERNEL_ERROR"
    retryable: bool = False


# Workflow exceptions


class WorkflowError(MfgKernelError):
    """Base exception for document status machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested (from, to) pair is not an edge of the document's table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        document_type: str,
        document_id: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ):
        self.document_type = document_type
        self.document_id = document_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = (
            f"{document_type} {document_id}: transition "
            f"{from_status} -> {to_status} is not allowed"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class UnauthorizedError(WorkflowError):
    """Actor does not hold the permission an action requires."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, permission: str, reason: str | None = None):
        self.actor_id = actor_id
        self.permission = permission
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} lacks permission {permission}"
            + (f": {reason}" if reason else "")
        )


class AlreadyConvertedError(WorkflowError):
    """Quote was already converted to a purchase order."""

    code: str = "ALREADY_CONVERTED"

    def __init__(self, quote_id: str, po_id: str | None):
        self.quote_id = quote_id
        self.po_id = po_id
        super().__init__(f"Quote {quote_id} already converted to PO {po_id}")


# Inventory exceptions


class InventoryError(MfgKernelError):
    """Base exception for ledger and bin stock errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """A debit would drive available stock below zero."""

    code: str = "INSUFFICIENT_STOCK"
    retryable = True

    def __init__(
        self,
        item_id: str,
        requested: Decimal,
        available: Decimal,
        bin_id: str | None = None,
        batch_number: str | None = None,
    ):
        self.item_id = item_id
        self.bin_id = bin_id
        self.batch_number = batch_number
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        where = f" in bin {bin_id}" if bin_id else ""
        super().__init__(
            f"Insufficient stock for item {item_id}{where}: requested "
            f"{requested}, available {available}, shortfall {self.shortfall}"
        )


class BatchRequiredError(InventoryError):
    """Batch- or serial-controlled item posted without its identifier."""

    code: str = "BATCH_REQUIRED"

    def __init__(self, item_id: str, identifier: str = "batch_number"):
        self.item_id = item_id
        self.identifier = identifier
        super().__init__(f"Item {item_id} requires {identifier} on every movement")


class EntryAlreadyReversedError(InventoryError):
    """Ledger entry has already been reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str | None = None):
        self.entry_id = entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(f"Ledger entry {entry_id} has already been reversed")


# BOM exceptions


class BomError(MfgKernelError):
    """Base exception for bill-of-materials errors."""

    code: str = "BOM_ERROR"


class BomMissingError(BomError):
    """Work order release requested for an item with no active BOM."""

    code: str = "BOM_MISSING"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"No active BOM for item {item_id}")


class CyclicBomError(BomError):
    """An item is reachable from itself through BOM lines."""

    code: str = "CYCLIC_BOM"

    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__(f"Cyclic BOM: {' -> '.join(self.path)}")


# Validation exceptions


class ValidationError(MfgKernelError):
    """Input failed validation. ``field_errors`` lists per-field problems."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: list[str] | None = None):
        self.field_errors = list(field_errors or [])
        super().__init__(message)


class OverReceiptError(ValidationError):
    """Receipt would exceed the ordered quantity of a PO line."""

    code: str = "OVER_RECEIPT"

    def __init__(
        self,
        po_line_id: str,
        ordered: Decimal,
        already_received: Decimal,
        requested: Decimal,
    ):
        self.po_line_id = po_line_id
        self.ordered = ordered
        self.already_received = already_received
        self.requested = requested
        super().__init__(
            f"PO line {po_line_id}: receiving {requested} on top of "
            f"{already_received} exceeds ordered {ordered}"
        )


class OverBuildError(ValidationError):
    """Build would push completed quantity past the planned quantity."""

    code: str = "OVER_BUILD"

    def __init__(self, work_order_id: str, planned: Decimal, completed: Decimal, requested: Decimal):
        self.work_order_id = work_order_id
        self.planned = planned
        self.completed = completed
        self.requested = requested
        super().__init__(
            f"Work order {work_order_id}: building {requested} on top of "
            f"{completed} exceeds planned {planned}"
        )


class UomMismatchError(ValidationError):
    """Posting supplied a unit of measure other than the item's own."""

    code: str = "UOM_MISMATCH"

    def __init__(self, item_id: str, expected: str, received: str):
        self.item_id = item_id
        self.expected = expected
        self.received = received
        super().__init__(
            f"Item {item_id} is stocked in {expected}, posting used {received}"
        )


class BinOccupiedError(ValidationError):
    """Bin already holds a different item-batch combination."""

    code: str = "BIN_OCCUPIED"

    def __init__(self, bin_id: str, item_id: str, occupant_item_id: str):
        self.bin_id = bin_id
        self.item_id = item_id
        self.occupant_item_id = occupant_item_id
        super().__init__(
            f"Bin {bin_id} already holds item {occupant_item_id}; "
            f"cannot put away item {item_id}"
        )


# Not-found exceptions


class NotFoundError(MfgKernelError):
    """Base exception for missing rows."""

    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class ItemNotFoundError(NotFoundError):
    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class BinNotFoundError(NotFoundError):
    code: str = "BIN_NOT_FOUND"

    def __init__(self, bin_id: str):
        self.bin_id = bin_id
        super().__init__(f"Bin not found: {bin_id}")


class BomNotFoundError(NotFoundError):
    code: str = "BOM_NOT_FOUND"

    def __init__(self, bom_id: str):
        self.bom_id = bom_id
        super().__init__(f"BOM not found: {bom_id}")


class LedgerEntryNotFoundError(NotFoundError):
    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Ledger entry not found: {entry_id}")


# Concurrency exceptions


class ConcurrencyError(MfgKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable = True


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(MfgKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
