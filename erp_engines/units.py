"""
Unit Conversion Resolver.

Pure functions with deterministic behavior. No I/O.

Every stored quantity is in the item's standard unit.  Wholesale figures
(boxes, cartons) are derived on read for display and are never persisted,
so repeated conversions cannot accumulate rounding drift.

    1 wholesale unit = conversion_factor x standard units

Usage:
    from erp_engines.units import UnitSpec, to_standard, to_wholesale

    pcs_per_box = UnitSpec("ITM-01", "pcs", wholesale_unit="box",
                           conversion_factor=Decimal("12"))
    to_wholesale(Decimal("5"), pcs_per_box)   # 0.41666...
    to_standard(Decimal("2"), pcs_per_box)    # 24
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext

from erp_kernel.db.types import QUANTITY_DECIMAL_PLACES
from erp_kernel.exceptions import InvalidConversionFactorError

# Working precision for the division in to_wholesale.
_WORKING_PRECISION = 38
_DISPLAY_PLACES = 4


@dataclass(frozen=True)
class UnitSpec:
    """The unit data of one item."""

    item_code: str
    standard_unit: str
    wholesale_unit: str | None = None
    conversion_factor: Decimal | None = None

    @property
    def has_wholesale(self) -> bool:
        return bool(self.wholesale_unit)

    def validate(self) -> None:
        """Raise InvalidConversionFactorError if a wholesale unit lacks a positive factor."""
        if not self.has_wholesale:
            return
        if self.conversion_factor is None or self.conversion_factor <= 0:
            raise InvalidConversionFactorError(self.item_code, self.conversion_factor)


def _quantize(value: Decimal, places: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _WORKING_PRECISION
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def to_standard(quantity: Decimal, unit: UnitSpec) -> Decimal:
    """Wholesale quantity -> standard quantity, at stored precision."""
    unit.validate()
    if not unit.has_wholesale:
        return quantity
    with localcontext() as ctx:
        ctx.prec = _WORKING_PRECISION
        product = quantity * unit.conversion_factor
    return _quantize(product, QUANTITY_DECIMAL_PLACES)


def to_wholesale(quantity: Decimal, unit: UnitSpec) -> Decimal:
    """Standard quantity -> wholesale quantity.  Presentation only; unrounded."""
    unit.validate()
    if not unit.has_wholesale:
        return quantity
    with localcontext() as ctx:
        ctx.prec = _WORKING_PRECISION
        return quantity / unit.conversion_factor


def display_quantity(
    quantity: Decimal, unit: UnitSpec, places: int = _DISPLAY_PLACES,
) -> Decimal:
    """Wholesale figure rounded for display, e.g. 5 pcs at 12/box -> 0.4167."""
    return _quantize(to_wholesale(quantity, unit), places)
