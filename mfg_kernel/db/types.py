"""
Module: mfg_kernel.db.types
Responsibility: Quantity coercion and rounding shared by every model and
    service, so that quantities are stored and compared with identical
    precision everywhere.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/ or domain/.

Invariants enforced:
    - No floats anywhere in the kernel.  Quantities are Decimal with
      QUANTITY_DECIMAL_PLACES places.
    - Input is never rounded on the way in: a value the columns cannot
      hold exactly is refused, so ledger rows and bin projections agree.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

QUANTITY_DECIMAL_PLACES = 9
ZERO = Decimal("0")


def to_quantity(value: Decimal | int | str, field: str = "quantity") -> Decimal:
    """
    Coerce a caller-supplied value into a Decimal quantity.

    Floats are rejected, and so is any value that the Numeric(38, 9)
    columns could only store by rounding it.  Trailing zeros past the
    ninth place are fine.

    Raises:
        ValueError: If value is a float, not numeric, or carries more than
            QUANTITY_DECIMAL_PLACES significant decimal places.
    """
    if isinstance(value, float):
        raise ValueError(f"{field} must be Decimal, int or str, not float")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not numeric: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be finite: {value!r}")
    try:
        stored = round_quantity(result)
    except InvalidOperation as exc:
        raise ValueError(f"{field} is out of range: {value!r}") from exc
    if stored != result:
        raise ValueError(
            f"{field} has more than {QUANTITY_DECIMAL_PLACES} decimal places: {value!r}"
        )
    return result


def round_quantity(value: Decimal) -> Decimal:
    """Round to the stored precision (half-up)."""
    return value.quantize(Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES), rounding=ROUND_HALF_UP)
