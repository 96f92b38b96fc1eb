"""
Module: erp_modules.fulfillment.service
Responsibility: Create goods receipts and waybills from source order lines,
    drawing quantity through the quantity ledger and moving stock through the
    stock ledger, as one unit of work.
Architecture position: Modules > Fulfillment > Service. Flush-only; the
    command layer owns commit and rollback.

Invariants enforced:
    - Every fulfillment line draws from a line of one of the document's
      declared source orders, and never more than that line's remaining
      quantity.
    - A goods receipt receives into a WAREHOUSE; a waybill ships from a
      BRANCH and references exactly one sales order.
    - All source orders of a document belong to the document's party.
    - Stock moves in step with the document: IN per goods receipt line, OUT
      per waybill line.

Failure modes:
    - OverReceiptError / ZeroOrNegativeQuantityError from the quantity ledger.
    - NegativeStockError when a waybill line ships more than is on hand.
    - ValidationError for structural problems (empty document, wrong source
      order kind or party, foreign source line, wrong location kind).
    - DocumentNotFoundError for unknown source orders or lines.
    Any of these leaves the session dirty; the caller rolls the whole
    transaction back so no line, reservation or stock entry survives.

Audit relevance:
    Each fulfillment line records the stock movement it produced, and each
    movement references the document code.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.status import FULFILLMENT_TRANSITIONS, FulfillmentStatus, assert_transition
from erp_engines.totals import line_tax, line_total
from erp_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money, round_quantity
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.values import DocumentReference, Location
from erp_kernel.exceptions import DocumentNotFoundError, ValidationError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.fulfillment.models import (
    FulfillmentKind,
    FulfillmentLineRequest,
    FulfillmentTotals,
)
from erp_modules.fulfillment.orders import SourceOrderService
from erp_modules.fulfillment.orm import (
    FulfillmentDocumentModel,
    FulfillmentDocumentSourceModel,
    FulfillmentLineModel,
    SourceOrderModel,
)
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.inventory.ledger import StockLedger
from erp_modules.inventory.models import MovementType

logger = get_logger("modules.fulfillment.service")

_MOVEMENT_BY_KIND = {
    FulfillmentKind.GOODS_RECEIPT: MovementType.IN,
    FulfillmentKind.WAYBILL: MovementType.OUT,
}


def group_lines_by_source(
    document: FulfillmentDocumentModel,
) -> dict[UUID, list[FulfillmentLineModel]]:
    """Lines of a document grouped by the source order they draw from.

    Groups follow the order of the document's source orders; lines keep
    their line-number order inside a group.
    """
    groups: dict[UUID, list[FulfillmentLineModel]] = {
        order_id: [] for order_id in document.source_order_ids
    }
    for line in document.lines:
        groups.setdefault(line.source_line.source_order_id, []).append(line)
    return groups


def document_totals(
    document: FulfillmentDocumentModel, places: int = MONEY_DECIMAL_PLACES,
) -> FulfillmentTotals:
    total_price = round_money(sum((line.total_price for line in document.lines), ZERO), places)
    tax_amount = round_money(sum((line.tax_amount for line in document.lines), ZERO), places)
    return FulfillmentTotals(
        total_price=total_price,
        tax_amount=tax_amount,
        total_amount=total_price + tax_amount,
    )


class FulfillmentService(BaseService):
    """
    Fulfillment aggregator: goods receipts and waybills.

    Non-goals:
        - Does NOT commit.
        - Does NOT edit or delete fulfillment documents once written.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        codes: DocumentCodeService | None = None,
        quantities: QuantityLedger | None = None,
        stock: StockLedger | None = None,
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._codes = codes or DocumentCodeService(session)
        self._quantities = quantities or QuantityLedger(session, self.clock)
        self._stock = stock or StockLedger(session, self.clock)
        self._orders = SourceOrderService(
            session, self.clock, self._codes, self._quantities, money_places,
        )
        self._places = money_places

    def get_document(self, document_id: UUID) -> FulfillmentDocumentModel:
        document = self.session.get(FulfillmentDocumentModel, document_id)
        if document is None:
            raise DocumentNotFoundError("FulfillmentDocument", document_id)
        return document

    def _load_orders(
        self, kind: FulfillmentKind, source_order_ids: Sequence[UUID], party_id: UUID,
    ) -> dict[UUID, SourceOrderModel]:
        orders: dict[UUID, SourceOrderModel] = {}
        for order_id in source_order_ids:
            order = self.session.get(SourceOrderModel, order_id)
            if order is None:
                raise DocumentNotFoundError("SourceOrder", order_id)
            if order.kind != kind.source_kind.value:
                raise ValidationError(
                    f"{kind.value} cannot draw from {order.kind} {order.code}",
                    [{"field": "source_order_ids", "message": f"expected {kind.source_kind.value}"}],
                )
            if order.party_id != party_id:
                raise ValidationError(
                    f"source order {order.code} belongs to another party",
                    [{"field": "party_id", "message": "all source orders must share the document party"}],
                )
            orders[order.id] = order
        return orders

    def _validate_shape(
        self,
        kind: FulfillmentKind,
        source_order_ids: Sequence[UUID],
        lines: Sequence[FulfillmentLineRequest],
        location: Location,
    ) -> None:
        errors = []
        if not source_order_ids:
            errors.append({"field": "source_order_ids", "message": "at least one source order is required"})
        elif len(set(source_order_ids)) != len(source_order_ids):
            errors.append({"field": "source_order_ids", "message": "duplicate source order"})
        if kind == FulfillmentKind.WAYBILL and len(set(source_order_ids)) > 1:
            errors.append({"field": "source_order_ids", "message": "a waybill references exactly one sales order"})
        if not lines:
            errors.append({"field": "lines", "message": "at least one line is required"})
        if location.kind != kind.location_kind:
            errors.append({
                "field": "location",
                "message": f"{kind.value} requires a {kind.location_kind.value} location",
            })
        if errors:
            raise ValidationError.for_fields(errors)

    def create_fulfillment(
        self,
        *,
        kind: FulfillmentKind | str,
        source_order_ids: Sequence[UUID],
        lines: Sequence[FulfillmentLineRequest],
        document_date: date,
        location: Location,
        party_id: UUID,
        actor_id: UUID,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> FulfillmentDocumentModel:
        """
        Create a goods receipt or a waybill.

        Source order lines are locked in id order before any quantity is
        checked, so two documents drawing from the same lines serialize.
        The stock level rows the document moves are locked next, in
        (item, location) order.

        The header is written as DRAFT and becomes NOT_INVOICED once every
        line and stock movement is in place.

        Returns:
            The flushed document with its lines.
        """
        kind = FulfillmentKind(kind)
        self._validate_shape(kind, source_order_ids, lines, location)
        orders = self._load_orders(kind, source_order_ids, party_id)

        locked = self._quantities.lock_lines(request.source_line_id for request in lines)
        self._stock.lock_levels((source_line.item_id, location) for source_line in locked.values())

        doc_code = code or self._codes.next_code(kind.value, document_date, branch_initial)
        document = FulfillmentDocumentModel(
            kind=kind.value,
            code=doc_code,
            document_date=document_date,
            party_id=party_id,
            location_kind=location.kind.value,
            location_id=location.id,
            status=FulfillmentStatus.DRAFT.value,
            note=note,
            created_by_id=actor_id,
            sources=[
                FulfillmentDocumentSourceModel(source_order_id=order_id)
                for order_id in source_order_ids
            ],
            lines=[],
        )
        self.session.add(document)
        self.session.flush()
        reference = DocumentReference(kind.value, doc_code, document.id)
        movement_type = _MOVEMENT_BY_KIND[kind]

        for number, request in enumerate(lines, start=1):
            source_line = self._quantities.reserve(request.source_line_id, request.quantity)
            order = orders.get(source_line.source_order_id)
            if order is None:
                raise ValidationError(
                    f"source line {request.source_line_id} is not on a declared source order",
                    [{"field": f"lines[{number - 1}].source_line_id", "message": "not on a declared source order"}],
                )
            quantity = round_quantity(request.quantity)
            total_price = line_total(quantity, source_line.unit_price, self._places)
            line = FulfillmentLineModel(
                line_number=number,
                source_order_line_id=source_line.id,
                item_id=source_line.item_id,
                received_quantity=quantity,
                unit_price=source_line.unit_price,
                total_price=total_price,
                tax_amount=line_tax(total_price, order.tax_rate, self._places),
                description=request.description or "",
                created_by_id=actor_id,
            )
            document.lines.append(line)
            # Flushed before the next reserve so its sum sees this line.
            self.session.flush()

            entry = self._stock.append(
                source_line.item_id, location, movement_type, quantity, reference, actor_id,
            )
            line.stock_movement_id = entry.id

        assert_transition(
            "fulfillment", FULFILLMENT_TRANSITIONS, FulfillmentStatus.DRAFT, FulfillmentStatus.NOT_INVOICED,
        )
        document.status = FulfillmentStatus.NOT_INVOICED.value
        self.session.flush()
        for order in orders.values():
            self._orders.refresh_status(order)
        self.session.flush()

        totals = document_totals(document, self._places)
        logger.info(
            "fulfillment_document_created",
            extra={
                "document_id": str(document.id),
                "kind": kind.value,
                "code": doc_code,
                "location": str(location),
                "source_order_count": len(orders),
                "line_count": len(lines),
                "total_amount": totals.total_amount,
            },
        )
        return document
