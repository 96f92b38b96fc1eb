"""
Fulfillment Module (``erp_modules.fulfillment``).

Responsibility
--------------
Source orders (purchase and sales orders), the quantity ledger that tracks
how much of each order line has been drawn, and the fulfillment documents
(goods receipts and waybills) that draw it.

Invariants enforced
-------------------
* Quantity conservation per source order line.
* A source order line freezes once fulfillment lines reference it.
* Fulfillment documents are created whole or not at all.
"""

from erp_modules.fulfillment.models import (
    FulfillmentKind,
    FulfillmentLineRequest,
    FulfillmentTotals,
    OrderLineRequest,
    SourceLineBalance,
    SourceOrderKind,
)
from erp_modules.fulfillment.orders import SourceOrderService
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.fulfillment.service import (
    FulfillmentService,
    document_totals,
    group_lines_by_source,
)

__all__ = [
    "FulfillmentKind",
    "FulfillmentLineRequest",
    "FulfillmentService",
    "FulfillmentTotals",
    "OrderLineRequest",
    "QuantityLedger",
    "SourceLineBalance",
    "SourceOrderKind",
    "SourceOrderService",
    "document_totals",
    "group_lines_by_source",
]
