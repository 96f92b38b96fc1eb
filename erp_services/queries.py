"""
Module: erp_services.queries
Responsibility: Read-only query endpoints consumed by UI forms and reports,
    returning plain dicts with the exact keys those consumers expect, plus
    the document serializers the command layer reuses for its results.
Architecture position: Services > Selectors.  Reads through the ORM and the
    read paths of erp_modules; never adds, flushes or commits.

Invariants enforced:
    - ``remaining_quantity`` in unreceived_purchase_order_details equals
      QuantityLedger.remaining() for the same line (same sum, same rounding).
    - Every goods receipt line carries total_amount = total_price + tax_amount.
    - Stock movement report rows always satisfy the running-balance relation
      between previous, movement and after quantities (they are ledger rows).

Failure modes:
    - DocumentNotFoundError for an unknown or wrong-kind document id.
    - Empty lists when nothing matches.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select

from erp_engines.status import FulfillmentStatus, PaymentStatus, PurchaseOrderStatus
from erp_engines.units import display_quantity
from erp_kernel.db.types import MONEY_DECIMAL_PLACES, round_quantity
from erp_kernel.exceptions import DocumentNotFoundError
from erp_kernel.selectors.base import BaseSelector
from erp_modules.billing.models import BillingKind
from erp_modules.billing.orm import BillingDocumentModel, BillingLineModel, PaymentModel
from erp_modules.catalog.orm import ItemModel
from erp_modules.fulfillment.models import FulfillmentKind, SourceOrderKind
from erp_modules.fulfillment.orm import (
    FulfillmentDocumentModel,
    FulfillmentLineModel,
    SourceOrderLineModel,
    SourceOrderModel,
)
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.fulfillment.service import document_totals
from erp_modules.inventory.orm import (
    StockAdjustmentModel,
    StockAuditModel,
    StockMovementModel,
    StockTransferModel,
)
from erp_services.requests import StockMovementReportRequest


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def item_data(item: ItemModel) -> dict[str, Any]:
    return {
        "id": item.id,
        "code": item.code,
        "name": item.name,
        "unit": item.standard_unit,
        "wholesale_unit": item.wholesale_unit,
        "wholesale_unit_conversion": item.wholesale_conversion_factor,
    }


def fulfillment_header_data(
    document: FulfillmentDocumentModel, money_places: int = MONEY_DECIMAL_PLACES,
) -> dict[str, Any]:
    totals = document_totals(document, money_places)
    return {
        "id": document.id,
        "kind": document.kind,
        "code": document.code,
        "date": document.document_date,
        "party_id": document.party_id,
        "location_type": document.location_kind,
        "location_id": document.location_id,
        "status": document.status,
        "created_by_id": document.created_by_id,
        "note": document.note,
        "total_price": totals.total_price,
        "tax_amount": totals.tax_amount,
        "total_amount": totals.total_amount,
    }


def _billed_line_ids(session, document: FulfillmentDocumentModel) -> set[UUID]:
    return set(
        session.execute(
            select(BillingLineModel.fulfillment_line_id)
            .where(BillingLineModel.fulfillment_document_id == document.id)
        ).scalars()
    )


def goods_receipt_payload(
    session, document: FulfillmentDocumentModel, money_places: int = MONEY_DECIMAL_PLACES,
) -> dict[str, Any]:
    data = fulfillment_header_data(document, money_places)
    data["supplier_id"] = document.party_id
    data["warehouse_id"] = document.location_id
    data["purchase_orders"] = [
        {"purchase_order_id": source.source_order_id, "purchase_order_code": source.source_order.code}
        for source in document.sources
    ]
    billed = _billed_line_ids(session, document)
    data["lines"] = [
        {
            "id": line.id,
            "line_number": line.line_number,
            "purchase_order_id": line.source_line.source_order_id,
            "purchase_order_code": line.source_line.source_order.code,
            "purchase_order_detail_id": line.source_order_line_id,
            "item_id": line.item_id,
            "item_code": line.source_line.item.code,
            "item_name": line.source_line.item.name,
            "item_abbreviation": line.source_line.item.standard_unit,
            "received_quantity": line.received_quantity,
            "unit_price": line.unit_price,
            "total_price": line.total_price,
            "tax_amount": line.tax_amount,
            "total_amount": line.total_price + line.tax_amount,
            "description": line.description,
            "invoiced": line.id in billed,
        }
        for line in document.lines
    ]
    return data


def waybill_payload(
    session, document: FulfillmentDocumentModel, money_places: int = MONEY_DECIMAL_PLACES,
) -> dict[str, Any]:
    data = fulfillment_header_data(document, money_places)
    source = document.sources[0].source_order
    data["customer_id"] = document.party_id
    data["branch_id"] = document.location_id
    data["sales_order_id"] = source.id
    data["sales_order_code"] = source.code
    billed = _billed_line_ids(session, document)
    lines = []
    for line in document.lines:
        item = line.source_line.item
        lines.append({
            "id": line.id,
            "line_number": line.line_number,
            "sales_order_detail_id": line.source_order_line_id,
            "quantity": line.received_quantity,
            "wholesale_quantity": (
                display_quantity(line.received_quantity, item.unit_spec())
                if item.wholesale_unit else None
            ),
            "unit_price": line.unit_price,
            "total_price": line.total_price,
            "tax_amount": line.tax_amount,
            "total_amount": line.total_price + line.tax_amount,
            "description": line.description,
            "invoiced": line.id in billed,
            "sales_order_detail": {
                "id": line.source_line.id,
                "ordered_quantity": line.source_line.ordered_quantity,
                "unit_price": line.source_line.unit_price,
                "total_price": line.source_line.total_price,
                "item": item_data(item),
            },
        })
    data["lines"] = lines
    return data


def billing_document_data(billing: BillingDocumentModel) -> dict[str, Any]:
    return {
        "id": billing.id,
        "kind": billing.kind,
        "code": billing.code,
        "date": billing.billing_date,
        "due_date": billing.due_date,
        "party_id": billing.party_id,
        "subtotal": billing.subtotal,
        "discount_type": billing.discount_type,
        "discount_percentage": billing.discount_percentage,
        "discount_amount": billing.discount_amount,
        "tax_mode": billing.tax_mode,
        "tax_rate": billing.tax_rate,
        "tax_amount": billing.tax_amount,
        "miscellaneous_cost": billing.miscellaneous_cost,
        "grand_total": billing.grand_total,
        "paid_amount": billing.paid_amount,
        "remaining_amount": billing.remaining_amount,
        "status": billing.status,
        "note": billing.note,
        "lines": [
            {
                "id": line.id,
                "fulfillment_line_id": line.fulfillment_line_id,
                "fulfillment_document_id": line.fulfillment_document_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "total_price": line.total_price,
                "tax_amount": line.tax_amount,
                "total_amount": line.total_amount,
            }
            for line in billing.lines
        ],
    }


def payment_data(payment: PaymentModel) -> dict[str, Any]:
    billing = payment.billing_document
    return {
        "id": payment.id,
        "code": payment.code,
        "billing_document_id": payment.billing_document_id,
        "billing_code": billing.code,
        "amount": payment.amount,
        "method": payment.method,
        "date": payment.payment_date,
        "actor_id": payment.created_by_id,
        "note": payment.note,
        "billing_status": billing.status,
        "paid_amount": billing.paid_amount,
        "remaining_amount": billing.remaining_amount,
    }


def stock_document_data(
    document: StockAdjustmentModel | StockTransferModel | StockAuditModel,
) -> dict[str, Any]:
    data: dict[str, Any] = {"id": document.id, "code": document.code, "note": document.note}
    if isinstance(document, StockAdjustmentModel):
        data.update(
            date=document.adjustment_date,
            location_type=document.location_kind,
            location_id=document.location_id,
            lines=[
                {
                    "item_id": line.item_id,
                    "adjustment_type": line.adjustment_type,
                    "quantity": line.quantity,
                    "reason": line.reason,
                    "movement_id": line.movement_id,
                }
                for line in document.lines
            ],
        )
    elif isinstance(document, StockTransferModel):
        data.update(
            date=document.transfer_date,
            source_type=document.source_kind,
            source_id=document.source_id,
            destination_type=document.destination_kind,
            destination_id=document.destination_id,
            lines=[
                {
                    "item_id": line.item_id,
                    "quantity": line.quantity,
                    "outbound_movement_id": line.outbound_movement_id,
                    "inbound_movement_id": line.inbound_movement_id,
                }
                for line in document.lines
            ],
        )
    else:
        data.update(
            date=document.audit_date,
            location_type=document.location_kind,
            location_id=document.location_id,
            lines=[
                {
                    "item_id": line.item_id,
                    "system_quantity": line.system_quantity,
                    "physical_quantity": line.physical_quantity,
                    "discrepancy": line.discrepancy,
                    "reason": line.reason,
                    "movement_id": line.movement_id,
                }
                for line in document.lines
            ],
        )
    return data


# ---------------------------------------------------------------------------
# Query endpoints
# ---------------------------------------------------------------------------


class ErpQueries(BaseSelector):
    """Read endpoints for the procurement, sales and stock screens."""

    def __init__(self, session, money_places: int = MONEY_DECIMAL_PLACES):
        super().__init__(session)
        self.money_places = money_places

    def _fulfillment(self, document_id: UUID, kind: FulfillmentKind) -> FulfillmentDocumentModel:
        document = self.session.get(FulfillmentDocumentModel, document_id)
        if document is None or document.kind != kind.value:
            raise DocumentNotFoundError(kind.value, document_id)
        return document

    def unreceived_purchase_order_details(self, supplier_id: UUID) -> list[dict[str, Any]]:
        """Purchase order lines of a supplier with quantity still to receive."""
        stmt = (
            select(SourceOrderLineModel, SourceOrderModel, ItemModel)
            .join(SourceOrderModel, SourceOrderLineModel.source_order_id == SourceOrderModel.id)
            .join(ItemModel, SourceOrderLineModel.item_id == ItemModel.id)
            .where(
                SourceOrderModel.kind == SourceOrderKind.PURCHASE_ORDER.value,
                SourceOrderModel.party_id == supplier_id,
                SourceOrderModel.status != PurchaseOrderStatus.RECEIVED.value,
            )
            .order_by(SourceOrderModel.code, SourceOrderLineModel.line_number)
        )
        candidates = self.session.execute(stmt).all()
        received = QuantityLedger(self.session).received_by_line(line.id for line, _, _ in candidates)

        rows = []
        for line, order, item in candidates:
            ordered = round_quantity(line.ordered_quantity)
            received_total = received[line.id]
            if received_total >= ordered:
                continue
            rows.append({
                "purchase_order_detail_id": line.id,
                "purchase_order_id": order.id,
                "purchase_order_code": order.code,
                "item_id": line.item_id,
                "item_name": item.name,
                "item_code": item.code,
                "item_abbreviation": item.standard_unit,
                "ordered_quantity": ordered,
                "unit_price": line.unit_price,
                "total_price": line.total_price,
                "received_quantity": received_total,
                "remaining_quantity": ordered - received_total,
            })
        return rows

    def not_invoiced_goods_receipts(self, supplier_id: UUID) -> list[dict[str, Any]]:
        """Goods receipt headers of a supplier that still have unbilled lines."""
        documents = self.session.execute(
            select(FulfillmentDocumentModel)
            .where(
                FulfillmentDocumentModel.kind == FulfillmentKind.GOODS_RECEIPT.value,
                FulfillmentDocumentModel.party_id == supplier_id,
                FulfillmentDocumentModel.status != FulfillmentStatus.INVOICED.value,
            )
            .order_by(FulfillmentDocumentModel.document_date, FulfillmentDocumentModel.code)
        ).scalars()
        result = []
        for document in documents:
            data = fulfillment_header_data(document, self.money_places)
            data["supplier_id"] = document.party_id
            data["warehouse_id"] = document.location_id
            result.append(data)
        return result

    def goods_receipt_data(self, goods_receipt_id: UUID) -> dict[str, Any]:
        return goods_receipt_payload(
            self.session,
            self._fulfillment(goods_receipt_id, FulfillmentKind.GOODS_RECEIPT),
            self.money_places,
        )

    def waybill_data(self, waybill_id: UUID) -> dict[str, Any]:
        return waybill_payload(
            self.session, self._fulfillment(waybill_id, FulfillmentKind.WAYBILL), self.money_places,
        )

    def sales_order_waybill_details(self, sales_order_id: UUID) -> list[dict[str, Any]]:
        """Ordered, shipped and pending quantity for each line of a sales order."""
        order = self.session.get(SourceOrderModel, sales_order_id)
        if order is None or order.kind != SourceOrderKind.SALES_ORDER.value:
            raise DocumentNotFoundError("sales_order", sales_order_id)
        quantities = QuantityLedger(self.session)
        result = []
        for line in order.lines:
            balance = quantities.balance(line.id)
            result.append({
                "sales_order_detail_id": line.id,
                "item_id": line.item_id,
                "item_name": line.item.name,
                "item_unit": line.item.standard_unit,
                "ordered_quantity": balance.ordered_quantity,
                "shipped_quantity": balance.drawn_quantity,
                "pending_quantity": balance.remaining_quantity,
            })
        return result

    def not_paid_billing_documents(
        self, kind: BillingKind | str, party_id: UUID,
    ) -> list[dict[str, Any]]:
        """Invoices of a party that still carry an open balance."""
        kind = BillingKind(kind)
        documents = self.session.execute(
            select(BillingDocumentModel)
            .where(
                BillingDocumentModel.kind == kind.value,
                BillingDocumentModel.party_id == party_id,
                BillingDocumentModel.status != PaymentStatus.PAID.value,
            )
            .order_by(BillingDocumentModel.billing_date, BillingDocumentModel.code)
        ).scalars()
        return [
            {
                "id": billing.id,
                "code": billing.code,
                "date": billing.billing_date,
                "due_date": billing.due_date,
                "party_id": billing.party_id,
                "grand_total": billing.grand_total,
                "paid_amount": billing.paid_amount,
                "remaining_amount": billing.remaining_amount,
                "status": billing.status,
            }
            for billing in documents
        ]

    def stock_movement_report(self, request: StockMovementReportRequest) -> list[dict[str, Any]]:
        """Stock movement entries between two dates (inclusive), oldest first."""
        start = datetime.combine(request.start_date, time.min, tzinfo=UTC)
        end = datetime.combine(request.end_date + timedelta(days=1), time.min, tzinfo=UTC)
        stmt = (
            select(StockMovementModel, ItemModel)
            .join(ItemModel, StockMovementModel.item_id == ItemModel.id)
            .where(StockMovementModel.occurred_at >= start, StockMovementModel.occurred_at < end)
        )
        if request.item_id is not None:
            stmt = stmt.where(StockMovementModel.item_id == request.item_id)
        if request.location_id is not None:
            stmt = stmt.where(StockMovementModel.location_id == request.location_id)
        if request.location_type is not None:
            stmt = stmt.where(StockMovementModel.location_kind == request.location_type.value)
        if request.movement_type is not None:
            stmt = stmt.where(StockMovementModel.movement_type == request.movement_type.value)
        stmt = stmt.order_by(
            StockMovementModel.occurred_at,
            StockMovementModel.item_id,
            StockMovementModel.location_id,
            StockMovementModel.seq,
        )

        rows = []
        for movement, item in self.session.execute(stmt):
            rows.append({
                "id": movement.id,
                "item_id": movement.item_id,
                "item_code": item.code,
                "item_name": item.name,
                "item_unit": item.standard_unit,
                "location_type": movement.location_kind,
                "location_id": movement.location_id,
                "seq": movement.seq,
                "type": movement.movement_type,
                "previous_quantity": movement.previous_quantity,
                "movement_quantity": movement.movement_quantity,
                "after_quantity": movement.after_quantity,
                "reference_type": movement.reference_type,
                "reference_code": movement.reference_code,
                "reference_id": movement.reference_id,
                "actor_id": movement.actor_id,
                "created_at_date": movement.occurred_at.date().isoformat(),
                "created_at_time": movement.occurred_at.strftime("%H:%M:%S"),
            })
        return rows
