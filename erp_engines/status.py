"""
Status State Machines.

Pure functions with deterministic behavior. No I/O.

Every status in the engine is derived from data, never set by hand:

- Fulfillment document invoicing status from billing-line coverage.
- Billing document payment status from the paid amount versus grand total.
- Source order status from received/shipped versus ordered quantities.

The transition tables reject any change a derivation could never produce,
which catches a stale or corrupted status before it is written.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping

from erp_kernel.db.types import ZERO
from erp_kernel.exceptions import InvalidStatusTransitionError


class FulfillmentStatus(str, Enum):
    DRAFT = "draft"
    NOT_INVOICED = "not_invoiced"
    INVOICED = "invoiced"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PurchaseOrderStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"


class SalesOrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


FULFILLMENT_TRANSITIONS: Mapping[Enum, frozenset] = {
    FulfillmentStatus.DRAFT: frozenset({FulfillmentStatus.NOT_INVOICED}),
    FulfillmentStatus.NOT_INVOICED: frozenset({FulfillmentStatus.INVOICED}),
    # A removed billing line reopens the document.
    FulfillmentStatus.INVOICED: frozenset({FulfillmentStatus.NOT_INVOICED}),
}

PAYMENT_TRANSITIONS: Mapping[Enum, frozenset] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PARTIALLY_PAID, PaymentStatus.PAID}),
    PaymentStatus.PARTIALLY_PAID: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset(),
}

PURCHASE_ORDER_TRANSITIONS: Mapping[Enum, frozenset] = {
    PurchaseOrderStatus.PENDING: frozenset({
        PurchaseOrderStatus.PARTIALLY_RECEIVED, PurchaseOrderStatus.RECEIVED,
    }),
    PurchaseOrderStatus.PARTIALLY_RECEIVED: frozenset({PurchaseOrderStatus.RECEIVED}),
    PurchaseOrderStatus.RECEIVED: frozenset(),
}

SALES_ORDER_TRANSITIONS: Mapping[Enum, frozenset] = {
    SalesOrderStatus.PENDING: frozenset({
        SalesOrderStatus.PROCESSED, SalesOrderStatus.COMPLETED, SalesOrderStatus.CANCELLED,
    }),
    SalesOrderStatus.PROCESSED: frozenset({SalesOrderStatus.COMPLETED}),
    SalesOrderStatus.COMPLETED: frozenset(),
    SalesOrderStatus.CANCELLED: frozenset(),
}


def assert_transition(
    machine: str, table: Mapping[Enum, frozenset], current: Enum, target: Enum,
) -> None:
    """Raise InvalidStatusTransitionError unless ``current -> target`` is allowed.

    Staying in the same state is always allowed.
    """
    if current == target:
        return
    if target not in table.get(current, frozenset()):
        raise InvalidStatusTransitionError(machine, current.value, target.value)


def invoicing_status(total_lines: int, covered_lines: int) -> FulfillmentStatus:
    """INVOICED exactly when every line is covered by an active billing line."""
    if covered_lines < 0 or covered_lines > total_lines:
        raise ValueError(f"covered_lines {covered_lines} outside 0..{total_lines}")
    if total_lines > 0 and covered_lines == total_lines:
        return FulfillmentStatus.INVOICED
    return FulfillmentStatus.NOT_INVOICED


def payment_status(paid_amount: Decimal, grand_total: Decimal) -> PaymentStatus:
    """
    Derive payment status.

    paid == 0 -> unpaid; 0 < paid < total -> partially_paid; paid == total -> paid.
    Overpayment is a caller bug here; the payment service rejects it first.
    """
    if paid_amount < ZERO:
        raise ValueError(f"paid_amount cannot be negative: {paid_amount}")
    if paid_amount > grand_total:
        raise ValueError(f"paid_amount {paid_amount} exceeds grand_total {grand_total}")
    if paid_amount == ZERO:
        return PaymentStatus.UNPAID
    if paid_amount < grand_total:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.PAID


def _drawn_fractions(lines: Iterable[tuple[Decimal, Decimal]]) -> tuple[bool, bool, bool]:
    """(any line present, nothing drawn at all, every line fully drawn)."""
    lines = list(lines)
    nothing = all(drawn == ZERO for _, drawn in lines)
    everything = all(drawn >= ordered for ordered, drawn in lines)
    return bool(lines), nothing, everything


def purchase_order_status(lines: Iterable[tuple[Decimal, Decimal]]) -> PurchaseOrderStatus:
    """From (ordered, received) pairs of every order line."""
    present, nothing, everything = _drawn_fractions(lines)
    if not present or nothing:
        return PurchaseOrderStatus.PENDING
    if everything:
        return PurchaseOrderStatus.RECEIVED
    return PurchaseOrderStatus.PARTIALLY_RECEIVED


def sales_order_status(lines: Iterable[tuple[Decimal, Decimal]]) -> SalesOrderStatus:
    """From (ordered, shipped) pairs of every order line."""
    present, nothing, everything = _drawn_fractions(lines)
    if not present or nothing:
        return SalesOrderStatus.PENDING
    if everything:
        return SalesOrderStatus.COMPLETED
    return SalesOrderStatus.PROCESSED
