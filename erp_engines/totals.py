"""
Document Totals Engine.

Pure functions with deterministic behavior. No I/O.

One function computes subtotal, discount, tax and grand total for a billing
document.  The billing service calls it when an invoice is created and again
on every edit, so both paths produce identical figures for the same lines.

Tax is computed at one of two stages:

- ``TaxMode.PER_LINE``: tax was captured on each fulfillment line at receipt
  (supplier-stated, from the purchase order rate) and is summed through.
- ``TaxMode.ON_DISCOUNTED_SUBTOTAL``: one configured rate is applied to
  ``subtotal - discount`` when the invoice is issued.

Rates and discount percentages are in percent (11 means 11%).

Usage:
    from erp_engines.totals import Discount, LineAmount, TaxMode, compute_totals

    totals = compute_totals(
        [LineAmount(Decimal("600000")), LineAmount(Decimal("400000"))],
        Discount.percentage(Decimal("10")),
        TaxMode.ON_DISCOUNTED_SUBTOTAL,
        tax_rate=Decimal("11"),
    )
    totals.grand_total   # Decimal("999000.00")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Sequence

from erp_kernel.db.types import (
    HUNDRED,
    MONEY_DECIMAL_PLACES,
    ZERO,
    round_money,
)
from erp_kernel.exceptions import DiscountConflictError, ValidationError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.totals")


class DiscountType(str, Enum):
    NONE = "none"
    AMOUNT = "amount"
    PERCENTAGE = "percentage"


class TaxMode(str, Enum):
    PER_LINE = "per_line"
    ON_DISCOUNTED_SUBTOTAL = "on_discounted_subtotal"


@dataclass(frozen=True)
class Discount:
    """
    Flat amount or percentage of the subtotal, never both.

    ``value`` holds the amount for AMOUNT and the percent for PERCENTAGE.
    """

    type: DiscountType = DiscountType.NONE
    value: Decimal = ZERO

    def __post_init__(self):
        if self.type == DiscountType.NONE and self.value != ZERO:
            raise ValidationError(
                "discount value given without a discount type",
                [{"field": "discount_type", "message": "required when a discount is given"}],
            )
        if self.value < ZERO:
            raise ValidationError(
                "discount cannot be negative",
                [{"field": "discount", "message": "must not be negative"}],
            )
        if self.type == DiscountType.PERCENTAGE and self.value > HUNDRED:
            raise ValidationError(
                "discount percentage cannot exceed 100",
                [{"field": "discount_percentage", "message": "must be between 0 and 100"}],
            )

    @classmethod
    def none(cls) -> Discount:
        return cls()

    @classmethod
    def amount(cls, value: Decimal) -> Discount:
        return cls(DiscountType.AMOUNT, value)

    @classmethod
    def percentage(cls, value: Decimal) -> Discount:
        return cls(DiscountType.PERCENTAGE, value)

    @classmethod
    def from_fields(
        cls,
        discount_type: str | None = None,
        discount_amount: Decimal | None = None,
        discount_percentage: Decimal | None = None,
    ) -> Discount:
        """
        Build from request fields.

        Raises DiscountConflictError when both a non-zero amount and a
        non-zero percentage are supplied.
        """
        has_amount = discount_amount is not None and discount_amount != ZERO
        has_pct = discount_percentage is not None and discount_percentage != ZERO
        if has_amount and has_pct:
            raise DiscountConflictError(discount_amount, discount_percentage)

        if discount_type is not None:
            kind = DiscountType(discount_type)
            if kind == DiscountType.AMOUNT:
                return cls.amount(discount_amount or ZERO)
            if kind == DiscountType.PERCENTAGE:
                return cls.percentage(discount_percentage or ZERO)
            if has_amount or has_pct:
                raise DiscountConflictError(discount_amount or ZERO, discount_percentage or ZERO)
            return cls.none()

        if has_amount:
            return cls.amount(discount_amount)
        if has_pct:
            return cls.percentage(discount_percentage)
        return cls.none()

    def resolve(self, subtotal: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
        """The discount amount for a given subtotal."""
        if self.type == DiscountType.PERCENTAGE:
            return round_money(subtotal * self.value / HUNDRED, places)
        if self.type == DiscountType.AMOUNT:
            return round_money(self.value, places)
        return ZERO


@dataclass(frozen=True)
class LineAmount:
    """Snapshot of one billed line."""

    total_price: Decimal
    tax_amount: Decimal = ZERO


@dataclass(frozen=True)
class BillingTotals:
    subtotal: Decimal
    discount_type: DiscountType
    discount_percentage: Decimal | None
    discount_amount: Decimal
    tax_mode: TaxMode
    tax_rate: Decimal | None
    tax_amount: Decimal
    miscellaneous_cost: Decimal
    grand_total: Decimal


def line_total(quantity: Decimal, unit_price: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """``quantity x unit_price`` rounded as money."""
    return round_money(quantity * unit_price, places)


def line_tax(total_price: Decimal, tax_rate: Decimal | None, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Proportional tax for one line; zero when there is no rate."""
    if tax_rate is None:
        return round_money(ZERO, places)
    return round_money(total_price * tax_rate / HUNDRED, places)


def compute_totals(
    lines: Sequence[LineAmount],
    discount: Discount,
    tax_mode: TaxMode,
    tax_rate: Decimal | None = None,
    miscellaneous_cost: Decimal = ZERO,
    places: int = MONEY_DECIMAL_PLACES,
) -> BillingTotals:
    """
    Compute billing document totals.

    grand_total = subtotal - discount + tax + miscellaneous_cost

    Raises:
        ValidationError: negative rate or cost, or a discount larger than
            the subtotal.
    """
    if tax_rate is not None and tax_rate < ZERO:
        raise ValidationError(
            "tax rate cannot be negative",
            [{"field": "tax_rate", "message": "must not be negative"}],
        )
    if miscellaneous_cost < ZERO:
        raise ValidationError(
            "miscellaneous cost cannot be negative",
            [{"field": "miscellaneous_cost", "message": "must not be negative"}],
        )

    subtotal = round_money(sum((line.total_price for line in lines), ZERO), places)
    discount_amount = discount.resolve(subtotal, places)
    if discount_amount > subtotal:
        raise ValidationError(
            f"discount {discount_amount} exceeds subtotal {subtotal}",
            [{"field": "discount_amount", "message": "cannot exceed the subtotal"}],
        )

    if tax_mode == TaxMode.PER_LINE:
        tax_amount = round_money(sum((line.tax_amount for line in lines), ZERO), places)
    elif tax_rate is None:
        tax_amount = round_money(ZERO, places)
    else:
        tax_amount = round_money((subtotal - discount_amount) * tax_rate / HUNDRED, places)

    misc = round_money(miscellaneous_cost, places)
    grand_total = subtotal - discount_amount + tax_amount + misc

    totals = BillingTotals(
        subtotal=subtotal,
        discount_type=discount.type,
        discount_percentage=discount.value if discount.type == DiscountType.PERCENTAGE else None,
        discount_amount=discount_amount,
        tax_mode=tax_mode,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        miscellaneous_cost=misc,
        grand_total=grand_total,
    )
    logger.debug(
        "billing_totals_computed",
        extra={
            "line_count": len(lines),
            "subtotal": subtotal,
            "discount_amount": discount_amount,
            "tax_mode": tax_mode.value,
            "tax_amount": tax_amount,
            "grand_total": grand_total,
        },
    )
    return totals
