"""
Typed Exception Hierarchy for the ERP engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers catch by type, never by message. Every class carries a machine-readable
``code`` and the structured data needed to explain the rejection, while the
message itself is human readable so the UI can show it verbatim:

    try:
        fulfillment_service.create_fulfillment(...)
    except OverReceiptError as e:
        respond(code=e.code, remaining=e.remaining, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- ValidationError                    reported before any write
    |   +-- ZeroOrNegativeQuantityError
    |   +-- InvalidConversionFactorError
    |   +-- DiscountConflictError
    |   +-- DocumentNotFoundError
    |
    +-- ConservationError                  aborts the enclosing transaction
    |   +-- OverReceiptError
    |   +-- AlreadyInvoicedError
    |   +-- NegativeStockError
    |   +-- PaymentExceedsBalanceError
    |
    +-- LifecycleError
    |   +-- DocumentLockedError
    |   +-- PaymentsPresentError
    |   +-- SourceLineReferencedError
    |   +-- InvalidStatusTransitionError
    |
    +-- ImmutabilityViolationError
    +-- StockChainBrokenError
    |
    +-- ConcurrencyError                   retried by the command layer
        +-- RetryExhaustedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------------
Validation    | VALIDATION_ERROR            | Missing/malformed request field
              | ZERO_OR_NEGATIVE_QUANTITY   | Quantity or amount <= 0
              | INVALID_CONVERSION_FACTOR   | Wholesale unit without a positive factor
              | DISCOUNT_CONFLICT           | Both discount amount and percentage given
              | DOCUMENT_NOT_FOUND          | Referenced id does not exist
--------------|-----------------------------|-------------------------------------------
Conservation  | OVER_RECEIPT                | Draw exceeds remaining quantity
              | ALREADY_INVOICED            | Fulfillment line already billed
              | NEGATIVE_STOCK              | Outflow would drive stock below zero
              | PAYMENT_EXCEEDS_BALANCE     | Payments would exceed grand total
--------------|-----------------------------|-------------------------------------------
Lifecycle     | DOCUMENT_LOCKED             | Edit/delete of a (partially) paid invoice
              | PAYMENTS_PRESENT            | Delete of an invoice with payments
              | SOURCE_LINE_REFERENCED      | Edit/delete of a fulfilled order line
              | INVALID_STATUS_TRANSITION   | Transition not in the state table
--------------|-----------------------------|-------------------------------------------
Integrity     | IMMUTABILITY_VIOLATION      | Update/delete of append-only rows
              | STOCK_CHAIN_BROKEN          | Running balance does not reconcile
--------------|-----------------------------|-------------------------------------------
Concurrency   | CONCURRENCY_ERROR           | Lock timeout / serialization failure
              | RETRY_EXHAUSTED             | Bounded retries used up

===============================================================================
HANDLING
===============================================================================

- ValidationError     -> fix the request; nothing was written
- ConservationError   -> business rejection; never retried, never clamped
- LifecycleError      -> document is past the state that allows the change
- ConcurrencyError    -> transient; the command layer re-runs the transaction
"""

from decimal import Decimal
from typing import Any


def _fmt(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros."""
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")


class ErpKernelError(Exception):
    """
    Base exception for all ERP engine errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ERP_KERNEL_ERROR"


# Validation errors


class ValidationError(ErpKernelError):
    """Malformed input, reported before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: list[dict[str, Any]] | None = None):
        self.field_errors = list(field_errors or [])
        super().__init__(message)

    @classmethod
    def for_fields(cls, field_errors: list[dict[str, Any]]) -> "ValidationError":
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in field_errors)
        return cls(f"Invalid request: {summary}", field_errors)


class ZeroOrNegativeQuantityError(ValidationError):
    """A quantity or amount that must be positive was not."""

    code: str = "ZERO_OR_NEGATIVE_QUANTITY"

    def __init__(self, field: str, value: Decimal):
        self.field = field
        self.value = value
        super().__init__(
            f"{field} must be greater than zero, got {_fmt(value)}",
            [{"field": field, "message": "must be greater than zero"}],
        )


class InvalidConversionFactorError(ValidationError):
    """Item declares a wholesale unit without a positive conversion factor."""

    code: str = "INVALID_CONVERSION_FACTOR"

    def __init__(self, item_code: str, factor: Decimal | None):
        self.item_code = item_code
        self.factor = factor
        shown = "missing" if factor is None else _fmt(factor)
        super().__init__(
            f"Item {item_code} declares a wholesale unit but its "
            f"conversion factor is {shown}",
            [{"field": "wholesale_conversion_factor", "message": "must be greater than zero"}],
        )


class DiscountConflictError(ValidationError):
    """Both a discount amount and a discount percentage were supplied."""

    code: str = "DISCOUNT_CONFLICT"

    def __init__(self, amount: Decimal, percentage: Decimal):
        self.amount = amount
        self.percentage = percentage
        super().__init__(
            "discount amount and discount percentage are mutually exclusive",
            [{"field": "discount", "message": "choose either an amount or a percentage"}],
        )


class DocumentNotFoundError(ValidationError):
    """A referenced document or line does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            [{"field": f"{entity_type}_id", "message": "not found"}],
        )


# Conservation errors


class ConservationError(ErpKernelError):
    """Business-rule rejection; the whole transaction is aborted."""

    code: str = "CONSERVATION_ERROR"


class OverReceiptError(ConservationError):
    """Requested quantity exceeds what remains on the source order line."""

    code: str = "OVER_RECEIPT"

    def __init__(self, source_line_id: Any, remaining: Decimal, requested: Decimal):
        self.source_line_id = str(source_line_id)
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"remaining quantity is {_fmt(remaining)}, requested {_fmt(requested)}"
        )


class AlreadyInvoicedError(ConservationError):
    """Fulfillment line is already covered by an active billing line."""

    code: str = "ALREADY_INVOICED"

    def __init__(self, fulfillment_line_id: Any, billing_code: str):
        self.fulfillment_line_id = str(fulfillment_line_id)
        self.billing_code = billing_code
        super().__init__(
            f"fulfillment line {fulfillment_line_id} is already invoiced on {billing_code}"
        )


class NegativeStockError(ConservationError):
    """An outflow would drive the stock level below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(self, item_code: str, location: str, available: Decimal, requested: Decimal):
        self.item_code = item_code
        self.location = location
        self.available = available
        self.requested = requested
        super().__init__(
            f"insufficient stock of {item_code} at {location}: "
            f"available {_fmt(available)}, requested {_fmt(requested)}"
        )


class PaymentExceedsBalanceError(ConservationError):
    """Payment would push the paid amount past the grand total."""

    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(self, billing_code: str, remaining: Decimal, amount: Decimal):
        self.billing_code = billing_code
        self.remaining = remaining
        self.amount = amount
        super().__init__(
            f"payment of {_fmt(amount)} exceeds the remaining balance "
            f"{_fmt(remaining)} of {billing_code}"
        )


# Lifecycle errors


class LifecycleError(ErpKernelError):
    """Document is past the state that allows the requested change."""

    code: str = "LIFECYCLE_ERROR"


class DocumentLockedError(LifecycleError):
    """Billing document can no longer be edited or deleted."""

    code: str = "DOCUMENT_LOCKED"

    def __init__(self, billing_code: str, status: str):
        self.billing_code = billing_code
        self.status = status
        super().__init__(f"{billing_code} is {status} and can no longer be changed")


class PaymentsPresentError(LifecycleError):
    """Billing document has payments and cannot be deleted."""

    code: str = "PAYMENTS_PRESENT"

    def __init__(self, billing_code: str, payment_count: int):
        self.billing_code = billing_code
        self.payment_count = payment_count
        super().__init__(
            f"{billing_code} has {payment_count} payment(s) and cannot be deleted"
        )


class SourceLineReferencedError(LifecycleError):
    """Order line already has fulfillment lines drawn against it."""

    code: str = "SOURCE_LINE_REFERENCED"

    def __init__(self, source_line_id: Any):
        self.source_line_id = str(source_line_id)
        super().__init__(
            f"order line {source_line_id} has been fulfilled and cannot be changed"
        )


class InvalidStatusTransitionError(LifecycleError):
    """Status change not present in the state table."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, machine: str, from_status: str, to_status: str):
        self.machine = machine
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"{machine}: cannot transition {from_status} -> {to_status}")


# Integrity errors


class ImmutabilityViolationError(ErpKernelError):
    """Attempted to modify or delete an append-only or locked record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class StockChainBrokenError(ErpKernelError):
    """Stock movement entries for an (item, location) do not reconcile."""

    code: str = "STOCK_CHAIN_BROKEN"

    def __init__(self, item_id: Any, location: str, seq: int, reason: str):
        self.item_id = str(item_id)
        self.location = location
        self.seq = seq
        self.reason = reason
        super().__init__(
            f"Stock chain broken for item {item_id} at {location}, entry {seq}: {reason}"
        )


# Concurrency errors


class ConcurrencyError(ErpKernelError):
    """Lock timeout, deadlock or serialization failure."""

    code: str = "CONCURRENCY_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Concurrent access conflict in {operation}: {reason}")


class RetryExhaustedError(ConcurrencyError):
    """Transient failures persisted past the retry budget."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, reason: str):
        self.attempts = attempts
        super().__init__(operation, f"gave up after {attempts} attempt(s): {reason}")
