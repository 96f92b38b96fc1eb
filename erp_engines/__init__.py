"""
Module: erp_engines
Responsibility:
    Re-exports the pure calculation engines: unit conversion, document
    totals and status derivation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import erp_kernel (types, exceptions, logging).
    MUST NOT import erp_modules or erp_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from erp_engines.status import (
    FulfillmentStatus,
    PaymentStatus,
    PurchaseOrderStatus,
    SalesOrderStatus,
    assert_transition,
    invoicing_status,
    payment_status,
    purchase_order_status,
    sales_order_status,
)
from erp_engines.totals import (
    BillingTotals,
    Discount,
    DiscountType,
    LineAmount,
    TaxMode,
    compute_totals,
    line_tax,
    line_total,
)
from erp_engines.units import UnitSpec, display_quantity, to_standard, to_wholesale

__all__ = [
    "BillingTotals",
    "Discount",
    "DiscountType",
    "FulfillmentStatus",
    "LineAmount",
    "PaymentStatus",
    "PurchaseOrderStatus",
    "SalesOrderStatus",
    "TaxMode",
    "UnitSpec",
    "assert_transition",
    "compute_totals",
    "display_quantity",
    "invoicing_status",
    "line_tax",
    "line_total",
    "payment_status",
    "purchase_order_status",
    "sales_order_status",
    "to_standard",
    "to_wholesale",
]
