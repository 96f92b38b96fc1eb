"""
Module: erp_services.requests
Responsibility: Explicit request structs for every mutation and report the
    engine exposes.  ``from_dict`` turns a loosely-typed payload (a decoded
    JSON body or form) into a frozen dataclass, collecting every problem it
    finds before raising once.
Architecture position: Services > boundary.  Imports erp_kernel value types
    and erp_modules request value objects; nothing here touches the database.

Invariants enforced:
    - Required fields are present and well-typed before any write happens.
    - Quantities are Decimal; floats are refused at the boundary.
    - Actor and location are explicit fields of every request, never ambient.

Failure modes:
    - ValidationError with one ``field_errors`` entry per bad field.  Nested
      fields are reported with dotted / indexed paths, e.g.
      ``purchase_orders[0].details[1].received_quantity``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from erp_engines.totals import Discount
from erp_kernel.db.types import ZERO, to_decimal
from erp_kernel.domain.values import Location, LocationKind
from erp_kernel.exceptions import ValidationError
from erp_modules.fulfillment.models import FulfillmentLineRequest
from erp_modules.inventory.models import (
    AdjustmentLine,
    AdjustmentType,
    AuditLine,
    MovementType,
    TransferLine,
)


class _FieldReader:
    """Reads typed fields out of a mapping, recording errors instead of raising."""

    def __init__(self, data: Any, prefix: str = "", errors: list[dict[str, Any]] | None = None):
        self.errors = errors if errors is not None else []
        self.prefix = prefix
        if isinstance(data, Mapping):
            self.data = data
        else:
            self.data = {}
            self._fail("", "must be an object")

    def _path(self, name: str) -> str:
        if not name:
            return self.prefix or "body"
        return f"{self.prefix}.{name}" if self.prefix else name

    def _fail(self, name: str, message: str) -> None:
        self.errors.append({"field": self._path(name), "message": message})

    def _raw(self, name: str, required: bool) -> Any:
        value = self.data.get(name)
        if value is None or value == "":
            if required:
                self._fail(name, "is required")
            return None
        return value

    def uuid(self, name: str, required: bool = True) -> UUID | None:
        value = self._raw(name, required)
        if value is None or isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            self._fail(name, "must be a UUID")
            return None

    def uuids(self, name: str, required: bool = False) -> tuple[UUID, ...]:
        value = self._raw(name, required)
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            self._fail(name, "must be a list")
            return ()
        result = []
        for index, raw in enumerate(value):
            try:
                result.append(raw if isinstance(raw, UUID) else UUID(str(raw)))
            except ValueError:
                self._fail(f"{name}[{index}]", "must be a UUID")
        return tuple(result)

    def decimal(self, name: str, required: bool = True, positive: bool = False) -> Decimal | None:
        value = self._raw(name, required)
        if value is None:
            return None
        try:
            result = to_decimal(value)
        except ValueError:
            self._fail(name, "must be a decimal number given as a string or integer")
            return None
        if positive and result <= ZERO:
            self._fail(name, "must be greater than zero")
        elif result < ZERO:
            self._fail(name, "must not be negative")
        return result

    def date(self, name: str, required: bool = True) -> date | None:
        value = self._raw(name, required)
        if value is None or isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            self._fail(name, "must be an ISO date (YYYY-MM-DD)")
            return None

    def text(self, name: str, required: bool = False) -> str | None:
        value = self._raw(name, required)
        if value is None:
            return None
        if not isinstance(value, str):
            self._fail(name, "must be a string")
            return None
        return value

    def choice(self, name: str, enum: type, required: bool = True):
        value = self._raw(name, required)
        if value is None:
            return None
        try:
            return enum(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum)
            self._fail(name, f"must be one of: {allowed}")
            return None

    def location(self, kind_field: str, id_field: str, kind: LocationKind | None = None) -> Location | None:
        """A location from a (type, id) pair; ``kind`` fixes the type when the payload omits it."""
        location_id = self.uuid(id_field)
        location_kind = kind if kind is not None else self.choice(kind_field, LocationKind)
        if location_id is None or location_kind is None:
            return None
        return Location(location_kind, location_id)

    def children(self, name: str, required: bool = True) -> list[_FieldReader]:
        value = self._raw(name, required)
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            self._fail(name, "must be a list")
            return []
        if required and not value:
            self._fail(name, "must contain at least one entry")
        return [
            _FieldReader(item, self._path(f"{name}[{index}]"), self.errors)
            for index, item in enumerate(value)
        ]

    def discount(self) -> Discount | None:
        discount_type = self.text("discount_type")
        amount = self.decimal("discount_amount", required=False)
        percentage = self.decimal("discount_percentage", required=False)
        try:
            return Discount.from_fields(discount_type, amount, percentage)
        except ValidationError as exc:
            self.errors.extend(exc.field_errors or [{"field": "discount", "message": str(exc)}])
        except ValueError:
            self._fail("discount_type", "must be one of: none, amount, percentage")
        return None

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationError.for_fields(self.errors)


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoodsReceiptRequest:
    """
    Receive goods from one supplier against one or more purchase orders.

    Payload::

        {"supplier_id", "warehouse_id", "date", "actor_id", "code"?, "note"?,
         "purchase_orders": [
             {"purchase_order_id",
              "details": [{"purchase_order_detail_id", "received_quantity", "description"?}]}]}
    """

    supplier_id: UUID
    warehouse: Location
    receipt_date: date
    actor_id: UUID
    purchase_order_ids: tuple[UUID, ...]
    lines: tuple[FulfillmentLineRequest, ...]
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GoodsReceiptRequest:
        reader = _FieldReader(data)
        supplier_id = reader.uuid("supplier_id")
        warehouse = reader.location("", "warehouse_id", kind=LocationKind.WAREHOUSE)
        receipt_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        code = reader.text("code")
        note = reader.text("note")

        order_ids: list[UUID] = []
        lines: list[FulfillmentLineRequest] = []
        for order in reader.children("purchase_orders"):
            order_id = order.uuid("purchase_order_id")
            if order_id is not None:
                order_ids.append(order_id)
            for detail in order.children("details"):
                line_id = detail.uuid("purchase_order_detail_id")
                quantity = detail.decimal("received_quantity", positive=True)
                description = detail.text("description") or ""
                if line_id is not None and quantity is not None:
                    lines.append(FulfillmentLineRequest(line_id, quantity, description))
        reader.raise_if_invalid()
        return cls(
            supplier_id=supplier_id,
            warehouse=warehouse,
            receipt_date=receipt_date,
            actor_id=actor_id,
            purchase_order_ids=tuple(order_ids),
            lines=tuple(lines),
            code=code,
            note=note,
        )


@dataclass(frozen=True)
class WaybillRequest:
    """
    Ship goods from a branch against one sales order.

    Payload::

        {"sales_order_id", "customer_id", "branch_id", "date", "actor_id",
         "branch_initial"?, "code"?, "note"?,
         "details": [{"sales_order_detail_id", "quantity", "description"?}]}
    """

    sales_order_id: UUID
    customer_id: UUID
    branch: Location
    waybill_date: date
    actor_id: UUID
    lines: tuple[FulfillmentLineRequest, ...]
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WaybillRequest:
        reader = _FieldReader(data)
        sales_order_id = reader.uuid("sales_order_id")
        customer_id = reader.uuid("customer_id")
        branch = reader.location("", "branch_id", kind=LocationKind.BRANCH)
        waybill_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        lines = []
        for detail in reader.children("details"):
            line_id = detail.uuid("sales_order_detail_id")
            quantity = detail.decimal("quantity", positive=True)
            description = detail.text("description") or ""
            if line_id is not None and quantity is not None:
                lines.append(FulfillmentLineRequest(line_id, quantity, description))
        reader.raise_if_invalid()
        return cls(
            sales_order_id=sales_order_id,
            customer_id=customer_id,
            branch=branch,
            waybill_date=waybill_date,
            actor_id=actor_id,
            lines=tuple(lines),
            branch_initial=branch_initial,
            code=code,
            note=note,
        )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


def _line_selection(
    reader: _FieldReader, documents_field: str,
) -> tuple[tuple[UUID, ...], tuple[UUID, ...]]:
    document_ids = reader.uuids(documents_field)
    line_ids = reader.uuids("fulfillment_line_ids")
    if not document_ids and not line_ids:
        reader._fail(documents_field, f"{documents_field} or fulfillment_line_ids is required")
    return document_ids, line_ids


@dataclass(frozen=True)
class SupplierInvoiceRequest:
    """
    Invoice received goods.

    Lines are selected either whole goods receipts at a time
    (``goods_receipt_ids``: every unbilled line of each) or line by line
    (``fulfillment_line_ids``); both may be given.

    Payload::

        {"supplier_id", "date", "due_date"?, "actor_id",
         "goods_receipt_ids"?, "fulfillment_line_ids"?,
         "discount_type"?, "discount_amount"?, "discount_percentage"?,
         "miscellaneous_cost"?, "code"?, "note"?}
    """

    supplier_id: UUID
    invoice_date: date
    actor_id: UUID
    goods_receipt_ids: tuple[UUID, ...] = ()
    fulfillment_line_ids: tuple[UUID, ...] = ()
    due_date: date | None = None
    discount: Discount = Discount()
    miscellaneous_cost: Decimal = ZERO
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SupplierInvoiceRequest:
        reader = _FieldReader(data)
        supplier_id = reader.uuid("supplier_id")
        invoice_date = reader.date("date")
        due_date = reader.date("due_date", required=False)
        actor_id = reader.uuid("actor_id")
        receipt_ids, line_ids = _line_selection(reader, "goods_receipt_ids")
        discount = reader.discount()
        misc = reader.decimal("miscellaneous_cost", required=False)
        code = reader.text("code")
        note = reader.text("note")
        reader.raise_if_invalid()
        return cls(
            supplier_id=supplier_id,
            invoice_date=invoice_date,
            actor_id=actor_id,
            goods_receipt_ids=receipt_ids,
            fulfillment_line_ids=line_ids,
            due_date=due_date,
            discount=discount,
            miscellaneous_cost=misc if misc is not None else ZERO,
            code=code,
            note=note,
        )


@dataclass(frozen=True)
class SalesInvoiceRequest:
    """
    Invoice shipped goods.

    Payload::

        {"customer_id", "date", "due_date"?, "actor_id", "tax_rate"?,
         "waybill_ids"?, "fulfillment_line_ids"?,
         "discount_type"?, "discount_amount"?, "discount_percentage"?,
         "branch_initial"?, "code"?, "note"?}
    """

    customer_id: UUID
    invoice_date: date
    actor_id: UUID
    waybill_ids: tuple[UUID, ...] = ()
    fulfillment_line_ids: tuple[UUID, ...] = ()
    due_date: date | None = None
    discount: Discount = Discount()
    tax_rate: Decimal | None = None
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SalesInvoiceRequest:
        reader = _FieldReader(data)
        customer_id = reader.uuid("customer_id")
        invoice_date = reader.date("date")
        due_date = reader.date("due_date", required=False)
        actor_id = reader.uuid("actor_id")
        waybill_ids, line_ids = _line_selection(reader, "waybill_ids")
        discount = reader.discount()
        tax_rate = reader.decimal("tax_rate", required=False)
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        reader.raise_if_invalid()
        return cls(
            customer_id=customer_id,
            invoice_date=invoice_date,
            actor_id=actor_id,
            waybill_ids=waybill_ids,
            fulfillment_line_ids=line_ids,
            due_date=due_date,
            discount=discount,
            tax_rate=tax_rate,
            branch_initial=branch_initial,
            code=code,
            note=note,
        )


@dataclass(frozen=True)
class PaymentRequest:
    """{"billing_document_id", "amount", "method", "date", "actor_id", "branch_initial"?, "code"?, "note"?}"""

    billing_document_id: UUID
    amount: Decimal
    method: str
    payment_date: date
    actor_id: UUID
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentRequest:
        reader = _FieldReader(data)
        billing_id = reader.uuid("billing_document_id")
        amount = reader.decimal("amount", positive=True)
        method = reader.text("method", required=True)
        payment_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        reader.raise_if_invalid()
        return cls(
            billing_document_id=billing_id,
            amount=amount,
            method=method,
            payment_date=payment_date,
            actor_id=actor_id,
            branch_initial=branch_initial,
            code=code,
            note=note,
        )


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockMovementReportRequest:
    """{"start_date", "end_date", "item_id"?, "location_id"?, "location_type"?, "movement_type"?}"""

    start_date: date
    end_date: date
    item_id: UUID | None = None
    location_id: UUID | None = None
    location_type: LocationKind | None = None
    movement_type: MovementType | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StockMovementReportRequest:
        reader = _FieldReader(data)
        start_date = reader.date("start_date")
        end_date = reader.date("end_date")
        item_id = reader.uuid("item_id", required=False)
        location_id = reader.uuid("location_id", required=False)
        location_type = reader.choice("location_type", LocationKind, required=False)
        movement_type = reader.choice("movement_type", MovementType, required=False)
        if start_date and end_date and end_date < start_date:
            reader._fail("end_date", "must not be before start_date")
        reader.raise_if_invalid()
        return cls(
            start_date=start_date,
            end_date=end_date,
            item_id=item_id,
            location_id=location_id,
            location_type=location_type,
            movement_type=movement_type,
        )


@dataclass(frozen=True)
class StockAdjustmentRequest:
    """{"location_type", "location_id", "date", "actor_id", "lines": [{"item_id", "adjustment_type", "quantity", "reason"?}]}"""

    location: Location
    adjustment_date: date
    actor_id: UUID
    lines: tuple[AdjustmentLine, ...]
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StockAdjustmentRequest:
        reader = _FieldReader(data)
        location = reader.location("location_type", "location_id")
        adjustment_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        lines = []
        for line in reader.children("lines"):
            item_id = line.uuid("item_id")
            kind = line.choice("adjustment_type", AdjustmentType)
            quantity = line.decimal("quantity", positive=True)
            reason = line.text("reason") or ""
            if item_id is not None and kind is not None and quantity is not None:
                lines.append(AdjustmentLine(item_id, kind, quantity, reason))
        reader.raise_if_invalid()
        return cls(
            location=location,
            adjustment_date=adjustment_date,
            actor_id=actor_id,
            lines=tuple(lines),
            branch_initial=branch_initial,
            code=code,
            note=note,
        )


@dataclass(frozen=True)
class StockTransferRequest:
    """{"source_type", "source_id", "destination_type", "destination_id", "date", "actor_id", "lines": [{"item_id", "quantity"}]}"""

    source: Location
    destination: Location
    transfer_date: date
    actor_id: UUID
    lines: tuple[TransferLine, ...]
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StockTransferRequest:
        reader = _FieldReader(data)
        source = reader.location("source_type", "source_id")
        destination = reader.location("destination_type", "destination_id")
        transfer_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        lines = []
        for line in reader.children("lines"):
            item_id = line.uuid("item_id")
            quantity = line.decimal("quantity", positive=True)
            if item_id is not None and quantity is not None:
                lines.append(TransferLine(item_id, quantity))
        reader.raise_if_invalid()
        return cls(
            source=source,
            destination=destination,
            transfer_date=transfer_date,
            actor_id=actor_id,
            lines=tuple(lines),
            branch_initial=branch_initial,
            code=code,
            note=note,
        )


@dataclass(frozen=True)
class StockAuditRequest:
    """{"location_type", "location_id", "date", "actor_id", "lines": [{"item_id", "physical_quantity", "reason"?}]}"""

    location: Location
    audit_date: date
    actor_id: UUID
    lines: tuple[AuditLine, ...]
    branch_initial: str | None = None
    code: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StockAuditRequest:
        reader = _FieldReader(data)
        location = reader.location("location_type", "location_id")
        audit_date = reader.date("date")
        actor_id = reader.uuid("actor_id")
        branch_initial = reader.text("branch_initial")
        code = reader.text("code")
        note = reader.text("note")
        lines = []
        for line in reader.children("lines"):
            item_id = line.uuid("item_id")
            physical = line.decimal("physical_quantity")
            reason = line.text("reason") or ""
            if item_id is not None and physical is not None:
                lines.append(AuditLine(item_id, physical, reason))
        reader.raise_if_invalid()
        return cls(
            location=location,
            audit_date=audit_date,
            actor_id=actor_id,
            lines=tuple(lines),
            branch_initial=branch_initial,
            code=code,
            note=note,
        )
