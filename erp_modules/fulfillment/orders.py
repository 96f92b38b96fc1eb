"""
Source Order Service (``erp_modules.fulfillment.orders``).

Creates purchase and sales orders and guards amendments to their lines.
Order lines are the quantity envelopes that goods receipts and waybills draw
from, so once a line has been drawn against its quantity, price and item are
frozen.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.status import (
    PURCHASE_ORDER_TRANSITIONS,
    SALES_ORDER_TRANSITIONS,
    PurchaseOrderStatus,
    SalesOrderStatus,
    assert_transition,
    purchase_order_status,
    sales_order_status,
)
from erp_engines.totals import line_tax, line_total
from erp_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money, round_quantity, to_decimal
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.values import Location
from erp_kernel.exceptions import (
    DocumentNotFoundError,
    LifecycleError,
    SourceLineReferencedError,
    ValidationError,
    ZeroOrNegativeQuantityError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.catalog.orm import ItemModel
from erp_modules.fulfillment.models import OrderLineRequest, SourceOrderKind
from erp_modules.fulfillment.orm import SourceOrderLineModel, SourceOrderModel
from erp_modules.fulfillment.quantity_ledger import QuantityLedger

logger = get_logger("modules.fulfillment.orders")


class SourceOrderService(BaseService):
    """Purchase / sales orders and their status."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        codes: DocumentCodeService | None = None,
        quantities: QuantityLedger | None = None,
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._codes = codes or DocumentCodeService(session)
        self._quantities = quantities or QuantityLedger(session, self.clock)
        self._places = money_places

    def get_order(self, order_id: UUID) -> SourceOrderModel:
        order = self.session.get(SourceOrderModel, order_id)
        if order is None:
            raise DocumentNotFoundError("SourceOrder", order_id)
        return order

    def create_source_order(
        self,
        *,
        kind: SourceOrderKind | str,
        party_id: UUID,
        order_date: date,
        lines: Sequence[OrderLineRequest],
        actor_id: UUID,
        tax_rate: Decimal | None = None,
        location: Location | None = None,
        code: str | None = None,
        branch_initial: str | None = None,
    ) -> SourceOrderModel:
        kind = SourceOrderKind(kind)
        if not lines:
            raise ValidationError(
                "an order needs at least one line",
                [{"field": "lines", "message": "at least one line is required"}],
            )
        if tax_rate is not None and tax_rate < ZERO:
            raise ValidationError(
                "tax rate cannot be negative",
                [{"field": "tax_rate", "message": "must not be negative"}],
            )

        order = SourceOrderModel(
            kind=kind.value,
            code=code or self._codes.next_code(kind.value, order_date, branch_initial),
            order_date=order_date,
            party_id=party_id,
            tax_rate=tax_rate,
            location_kind=location.kind.value if location else None,
            location_id=location.id if location else None,
            status=PurchaseOrderStatus.PENDING.value,
            created_by_id=actor_id,
            lines=[],
        )
        total = ZERO
        for number, request in enumerate(lines, start=1):
            quantity = round_quantity(to_decimal(request.quantity))
            if quantity <= ZERO:
                raise ZeroOrNegativeQuantityError(f"lines[{number - 1}].quantity", quantity)
            if self.session.get(ItemModel, request.item_id) is None:
                raise DocumentNotFoundError("Item", request.item_id)
            price = to_decimal(request.unit_price)
            if price < ZERO:
                raise ValidationError(
                    "unit price cannot be negative",
                    [{"field": f"lines[{number - 1}].unit_price", "message": "must not be negative"}],
                )
            line_price = line_total(quantity, price, self._places)
            total += line_price
            order.lines.append(
                SourceOrderLineModel(
                    line_number=number,
                    item_id=request.item_id,
                    ordered_quantity=quantity,
                    unit_price=price,
                    total_price=line_price,
                    created_by_id=actor_id,
                )
            )

        order.total_amount = round_money(total, self._places)
        order.tax_amount = line_tax(order.total_amount, tax_rate, self._places)
        order.grand_total = order.total_amount + order.tax_amount
        self.session.add(order)
        self.session.flush()
        logger.info(
            "source_order_created",
            extra={
                "order_id": str(order.id),
                "kind": kind.value,
                "code": order.code,
                "line_count": len(lines),
                "grand_total": order.grand_total,
            },
        )
        return order

    def amend_line(
        self,
        source_line_id: UUID,
        *,
        actor_id: UUID,
        ordered_quantity: Decimal | None = None,
        unit_price: Decimal | None = None,
    ) -> SourceOrderLineModel:
        """Change an order line that nothing has been drawn against yet."""
        line = self._quantities.lock_line(source_line_id)
        if self._quantities.received(source_line_id) > ZERO:
            raise SourceLineReferencedError(source_line_id)
        if ordered_quantity is not None:
            quantity = round_quantity(to_decimal(ordered_quantity))
            if quantity <= ZERO:
                raise ZeroOrNegativeQuantityError("ordered_quantity", quantity)
            line.ordered_quantity = quantity
        if unit_price is not None:
            line.unit_price = to_decimal(unit_price)
        line.total_price = line_total(line.ordered_quantity, line.unit_price, self._places)
        line.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "source_order_line_amended",
            extra={"source_line_id": str(source_line_id), "actor_id": str(actor_id)},
        )
        return line

    def delete_line(self, source_line_id: UUID, *, actor_id: UUID) -> None:
        line = self._quantities.lock_line(source_line_id)
        if self._quantities.received(source_line_id) > ZERO:
            raise SourceLineReferencedError(source_line_id)
        self.session.delete(line)
        self.session.flush()
        logger.info(
            "source_order_line_deleted",
            extra={"source_line_id": str(source_line_id), "actor_id": str(actor_id)},
        )

    def cancel_order(self, order_id: UUID, *, actor_id: UUID) -> SourceOrderModel:
        """Cancel a sales order that has not shipped anything."""
        order = self.get_order(order_id)
        if order.kind != SourceOrderKind.SALES_ORDER.value:
            raise LifecycleError(f"only sales orders can be cancelled, got {order.kind}")
        assert_transition(
            "sales_order", SALES_ORDER_TRANSITIONS,
            SalesOrderStatus(order.status), SalesOrderStatus.CANCELLED,
        )
        order.status = SalesOrderStatus.CANCELLED.value
        order.updated_by_id = actor_id
        self.session.flush()
        logger.info("sales_order_cancelled", extra={"order_id": str(order.id), "code": order.code})
        return order

    def refresh_status(self, order: SourceOrderModel) -> str:
        """Re-derive the order status from ordered versus drawn quantities."""
        pairs = [
            (round_quantity(line.ordered_quantity), self._quantities.received(line.id))
            for line in order.lines
        ]
        if order.kind == SourceOrderKind.PURCHASE_ORDER.value:
            current = PurchaseOrderStatus(order.status)
            target = purchase_order_status(pairs)
            assert_transition("purchase_order", PURCHASE_ORDER_TRANSITIONS, current, target)
        else:
            current = SalesOrderStatus(order.status)
            if current == SalesOrderStatus.CANCELLED:
                raise LifecycleError(f"sales order {order.code} is cancelled")
            target = sales_order_status(pairs)
            assert_transition("sales_order", SALES_ORDER_TRANSITIONS, current, target)

        if target != current:
            order.status = target.value
            logger.info(
                "source_order_status_changed",
                extra={
                    "order_id": str(order.id),
                    "code": order.code,
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
        return order.status
