"""
Fulfillment Domain Models.

The nouns of order fulfillment: source order kinds, fulfillment document
kinds and the request value objects the services accept.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from erp_kernel.domain.values import LocationKind


class SourceOrderKind(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"


class FulfillmentKind(str, Enum):
    GOODS_RECEIPT = "goods_receipt"
    WAYBILL = "waybill"

    @property
    def source_kind(self) -> SourceOrderKind:
        if self is FulfillmentKind.GOODS_RECEIPT:
            return SourceOrderKind.PURCHASE_ORDER
        return SourceOrderKind.SALES_ORDER

    @property
    def location_kind(self) -> LocationKind:
        """Goods are received into warehouses and shipped from branches."""
        if self is FulfillmentKind.GOODS_RECEIPT:
            return LocationKind.WAREHOUSE
        return LocationKind.BRANCH


@dataclass(frozen=True)
class OrderLineRequest:
    """One line of a new purchase or sales order."""
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class FulfillmentLineRequest:
    """Draw ``quantity`` (standard units) against one source order line."""
    source_line_id: UUID
    quantity: Decimal
    description: str = ""


@dataclass(frozen=True)
class FulfillmentTotals:
    total_price: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class SourceLineBalance:
    """Ordered, drawn and remaining quantity of one order line."""
    source_line_id: UUID
    ordered_quantity: Decimal
    drawn_quantity: Decimal
    remaining_quantity: Decimal = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "remaining_quantity", self.ordered_quantity - self.drawn_quantity)
