"""
Module: erp_kernel.db.types
Responsibility: Decimal coercion and the sanctioned rounding helpers for
    quantities and money.  Every model and service uses these so that a
    quantity read back from the store compares equal to the one written.
Architecture position: Kernel > DB.  May be imported by every layer; imports
    nothing from the project.

Invariants enforced:
    - No floats.  ``to_decimal`` refuses float input.
    - Quantities are stored with QUANTITY_DECIMAL_PLACES; money results are
      rounded half-up to MONEY_DECIMAL_PLACES by ``round_money`` only.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

QUANTITY_DECIMAL_PLACES = 9
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a request value to Decimal.

    Accepts Decimal, int and numeric strings.  Floats are rejected because
    their binary representation already lost the amount the user typed.

    Raises:
        ValueError: if the value is a float, bool or not numeric.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{value!r} must be given as a string or integer, not {type(value).__name__}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{value!r} is not a number") from exc
    else:
        raise ValueError(f"{value!r} is not a number")
    if not result.is_finite():
        raise ValueError(f"{value!r} is not a finite number")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value.  The only sanctioned money rounding."""
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_quantity(value: Decimal) -> Decimal:
    """Quantize a quantity to the stored precision."""
    return round_money(value, QUANTITY_DECIMAL_PLACES)
