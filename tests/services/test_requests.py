"""
Tests for request parsing at the service boundary.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from erp_engines.totals import DiscountType
from erp_kernel.domain.values import LocationKind
from erp_kernel.exceptions import ValidationError
from erp_modules.inventory.models import AdjustmentType, MovementType
from erp_services.requests import (
    GoodsReceiptRequest,
    PaymentRequest,
    SalesInvoiceRequest,
    StockAdjustmentRequest,
    StockMovementReportRequest,
    StockTransferRequest,
    SupplierInvoiceRequest,
    WaybillRequest,
)


def _fields(exc_info) -> set[str]:
    return {error["field"] for error in exc_info.value.field_errors}


class TestGoodsReceiptRequest:

    def _payload(self, **overrides):
        payload = {
            "supplier_id": str(uuid4()),
            "warehouse_id": str(uuid4()),
            "date": "2025-03-01",
            "actor_id": str(uuid4()),
            "purchase_orders": [
                {
                    "purchase_order_id": str(uuid4()),
                    "details": [
                        {"purchase_order_detail_id": str(uuid4()), "received_quantity": "60"},
                        {"purchase_order_detail_id": str(uuid4()), "received_quantity": 5},
                    ],
                },
            ],
        }
        payload.update(overrides)
        return payload

    def test_parses_nested_payload(self):
        request = GoodsReceiptRequest.from_dict(self._payload(note="dock 2"))
        assert request.warehouse.kind == LocationKind.WAREHOUSE
        assert request.receipt_date == date(2025, 3, 1)
        assert len(request.purchase_order_ids) == 1
        assert [line.quantity for line in request.lines] == [Decimal("60"), Decimal("5")]
        assert request.note == "dock 2"

    def test_every_problem_reported_with_its_path(self):
        payload = self._payload(supplier_id="not-a-uuid", date="01/03/2025")
        payload["purchase_orders"][0]["details"][1]["received_quantity"] = "0"
        payload["purchase_orders"][0]["details"][0]["received_quantity"] = 60.0
        with pytest.raises(ValidationError) as exc_info:
            GoodsReceiptRequest.from_dict(payload)
        assert _fields(exc_info) == {
            "supplier_id",
            "date",
            "purchase_orders[0].details[0].received_quantity",
            "purchase_orders[0].details[1].received_quantity",
        }

    def test_empty_purchase_orders(self):
        with pytest.raises(ValidationError) as exc_info:
            GoodsReceiptRequest.from_dict(self._payload(purchase_orders=[]))
        assert _fields(exc_info) == {"purchase_orders"}

    def test_non_mapping_body(self):
        with pytest.raises(ValidationError) as exc_info:
            GoodsReceiptRequest.from_dict(["not", "an", "object"])
        assert "body" in _fields(exc_info)


class TestWaybillRequest:

    def test_branch_location(self):
        request = WaybillRequest.from_dict({
            "sales_order_id": str(uuid4()),
            "customer_id": str(uuid4()),
            "branch_id": str(uuid4()),
            "date": "2025-03-02",
            "actor_id": str(uuid4()),
            "branch_initial": "JKT",
            "details": [{"sales_order_detail_id": str(uuid4()), "quantity": "1.5"}],
        })
        assert request.branch.kind == LocationKind.BRANCH
        assert request.lines[0].quantity == Decimal("1.5")
        assert request.branch_initial == "JKT"


class TestBillingRequests:

    def test_line_selection_required(self):
        with pytest.raises(ValidationError) as exc_info:
            SupplierInvoiceRequest.from_dict({
                "supplier_id": str(uuid4()), "date": "2025-03-01", "actor_id": str(uuid4()),
            })
        assert _fields(exc_info) == {"goods_receipt_ids"}

    def test_discount_conflict(self):
        with pytest.raises(ValidationError) as exc_info:
            SupplierInvoiceRequest.from_dict({
                "supplier_id": str(uuid4()),
                "date": "2025-03-01",
                "actor_id": str(uuid4()),
                "goods_receipt_ids": [str(uuid4())],
                "discount_amount": "100",
                "discount_percentage": "10",
            })
        assert exc_info.value.field_errors[0]["field"] == "discount"

    def test_sales_invoice_fields(self):
        request = SalesInvoiceRequest.from_dict({
            "customer_id": str(uuid4()),
            "date": "2025-03-01",
            "due_date": "2025-03-31",
            "actor_id": str(uuid4()),
            "waybill_ids": [str(uuid4())],
            "discount_percentage": "10",
            "tax_rate": "11",
        })
        assert request.discount.type == DiscountType.PERCENTAGE
        assert request.tax_rate == Decimal("11")
        assert request.due_date == date(2025, 3, 31)

    def test_payment_amount_must_be_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            PaymentRequest.from_dict({
                "billing_document_id": str(uuid4()),
                "amount": "-1",
                "method": "cash",
                "date": "2025-03-01",
                "actor_id": str(uuid4()),
            })
        assert _fields(exc_info) == {"amount"}


class TestStockRequests:

    def test_adjustment_lines(self):
        request = StockAdjustmentRequest.from_dict({
            "location_type": "branch",
            "location_id": str(uuid4()),
            "date": "2025-03-01",
            "actor_id": str(uuid4()),
            "lines": [{"item_id": str(uuid4()), "adjustment_type": "decreased", "quantity": "2"}],
        })
        assert request.location.kind == LocationKind.BRANCH
        assert request.lines[0].adjustment_type == AdjustmentType.DECREASED

    def test_unknown_location_type(self):
        with pytest.raises(ValidationError) as exc_info:
            StockTransferRequest.from_dict({
                "source_type": "store",
                "source_id": str(uuid4()),
                "destination_type": "branch",
                "destination_id": str(uuid4()),
                "date": "2025-03-01",
                "actor_id": str(uuid4()),
                "lines": [{"item_id": str(uuid4()), "quantity": "1"}],
            })
        assert _fields(exc_info) == {"source_type"}

    def test_report_filters(self):
        request = StockMovementReportRequest.from_dict({
            "start_date": "2025-03-01", "end_date": "2025-03-31", "movement_type": "out",
        })
        assert request.movement_type == MovementType.OUT
        assert request.item_id is None

    def test_report_range_order(self):
        with pytest.raises(ValidationError) as exc_info:
            StockMovementReportRequest.from_dict({"start_date": "2025-03-31", "end_date": "2025-03-01"})
        assert _fields(exc_info) == {"end_date"}
