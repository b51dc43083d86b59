"""
Module: cogs_kernel.db.types
Responsibility: Precision constants and parsing / rounding helpers for
    fixed-point quantities and amounts.  Centralizes precision and rounding so that
    every model, engine and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines and services.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  Quantities, unit costs and totals are Decimal.
    - Quantities carry exactly QUANTITY_DECIMAL_PLACES fractional digits.
      parse_quantity() rejects anything more precise instead of rounding it,
      so the conservation sum of the layer ledger stays exact.
    - round_amount() is the ONLY sanctioned rounding function for costs and
      revenue; round_quantity() is the only one for quantities.

Failure modes:
    - InvalidQuantityError on negative, non-numeric or over-precise quantity.
    - InvalidCostError on negative or non-numeric unit cost / revenue.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from cogs_kernel.exceptions import InvalidCostError, InvalidQuantityError

QUANTITY_DECIMAL_PLACES = 4
AMOUNT_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

_QUANTITY_EXPONENT = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
_AMOUNT_EXPONENT = Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Convert an input value to Decimal.

    Floats are refused: a float has already lost the exact value the
    caller meant, and converting it would hide that.

    Raises:
        TypeError: If value is a float or another unsupported type.
        InvalidOperation: If a string is not a number.
    """
    if isinstance(value, (bool, float)):
        raise TypeError(f"Decimal, int or str required, got {type(value).__name__}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, str)):
        return Decimal(value)
    raise TypeError(f"Decimal, int or str required, got {type(value).__name__}")


def round_quantity(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Quantize a quantity to QUANTITY_DECIMAL_PLACES."""
    return value.quantize(_QUANTITY_EXPONENT, rounding=rounding)


def round_amount(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Quantize a cost / revenue amount to storage precision.

    This is the ONLY sanctioned rounding function for monetary values.
    """
    return value.quantize(_AMOUNT_EXPONENT, rounding=rounding)


def parse_quantity(
    value: Decimal | int | str,
    *,
    allow_zero: bool = True,
) -> Decimal:
    """
    Validate a quantity and normalize it to QUANTITY_DECIMAL_PLACES.

    Preconditions: value is a Decimal, int or numeric string.
    Postconditions: Returns a non-negative Decimal with exactly four
        fractional digits, numerically equal to the input.

    Raises:
        InvalidQuantityError: If value is not numeric, negative, zero when
            allow_zero is False, or carries more than four fractional digits.
    """
    try:
        quantity = to_decimal(value)
    except (TypeError, InvalidOperation) as exc:
        raise InvalidQuantityError(str(value), "not a decimal number") from exc

    if not quantity.is_finite():
        raise InvalidQuantityError(str(value), "must be finite")
    if quantity < ZERO:
        raise InvalidQuantityError(str(value), "must not be negative")
    if quantity == ZERO and not allow_zero:
        raise InvalidQuantityError(str(value), "must be positive")

    normalized = round_quantity(quantity)
    if normalized != quantity:
        raise InvalidQuantityError(
            str(value),
            f"more than {QUANTITY_DECIMAL_PLACES} fractional digits",
        )
    return normalized


def parse_amount(value: Decimal | int | str) -> Decimal:
    """
    Validate a non-negative unit cost or unit revenue.

    Raises:
        InvalidCostError: If value is not numeric, negative, or more precise
            than storage precision.
    """
    try:
        amount = to_decimal(value)
    except (TypeError, InvalidOperation) as exc:
        raise InvalidCostError(str(value), "not a decimal number") from exc

    if not amount.is_finite():
        raise InvalidCostError(str(value), "must be finite")
    if amount < ZERO:
        raise InvalidCostError(str(value), "must not be negative")

    normalized = round_amount(amount)
    if normalized != amount:
        raise InvalidCostError(
            str(value),
            f"more than {AMOUNT_DECIMAL_PLACES} fractional digits",
        )
    return normalized


def decimal_str(value: Decimal) -> str:
    """Fixed-point string without exponent (for JSON and log payloads)."""
    return format(value, "f")
