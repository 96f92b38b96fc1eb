"""
Tests for goods receipts and waybills.

A fulfillment document draws quantity from order lines and moves stock in
the same unit of work; any failure leaves no trace of the document.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from erp_kernel.exceptions import (
    DocumentNotFoundError,
    LifecycleError,
    NegativeStockError,
    OverReceiptError,
    ValidationError,
)
from erp_modules.fulfillment.models import FulfillmentKind, FulfillmentLineRequest
from erp_modules.fulfillment.orm import FulfillmentDocumentModel, FulfillmentLineModel
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.fulfillment.service import document_totals, group_lines_by_source
from erp_modules.inventory.ledger import StockLedger
from erp_modules.inventory.models import MovementType
from erp_modules.inventory.orm import StockMovementModel

DOC_DATE = date(2025, 3, 1)


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestGoodsReceipt:

    def test_receipt_moves_stock_in(self, erp, warehouse):
        item = erp.item()
        order = erp.purchase_order([(item, "100", "10000")], tax_rate="11")
        receipt = erp.goods_receipt([(order.lines[0], "60")])

        assert receipt.code == "GR-2503-0001"
        assert receipt.status == "not_invoiced"
        line = receipt.lines[0]
        assert line.received_quantity == Decimal("60")
        assert line.total_price == Decimal("600000.00")
        assert line.tax_amount == Decimal("66000.00")
        assert line.total_amount == Decimal("666000.00")

        movement = erp.session.get(StockMovementModel, line.stock_movement_id)
        assert movement.movement_type == MovementType.IN.value
        assert movement.reference_code == receipt.code
        assert StockLedger(erp.session).current_level(item.id, warehouse) == Decimal("60")

    def test_receipt_spanning_purchase_orders(self, erp):
        item = erp.item()
        first = erp.purchase_order([(item, "10", "100")])
        second = erp.purchase_order([(item, "20", "100")])
        receipt = erp.goods_receipt([(first.lines[0], "10"), (second.lines[0], "5")])

        assert receipt.source_order_ids == [first.id, second.id]
        groups = group_lines_by_source(receipt)
        assert [len(lines) for lines in groups.values()] == [1, 1]
        assert document_totals(receipt).total_price == Decimal("1500.00")
        assert first.status == "received"
        assert second.status == "partially_received"

    def test_receipt_into_branch_rejected(self, erp, branch):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        with pytest.raises(ValidationError) as exc_info:
            erp.goods_receipt([(order.lines[0], "1")], warehouse=branch)
        assert exc_info.value.field_errors[0]["field"] == "location"

    def test_orders_of_another_supplier_rejected(self, erp, supplier_id, warehouse):
        order = erp.purchase_order([(erp.item(), "10", "100")], supplier_id=uuid4())
        with pytest.raises(ValidationError):
            erp.fulfillment.create_fulfillment(
                kind=FulfillmentKind.GOODS_RECEIPT,
                source_order_ids=[order.id],
                lines=[FulfillmentLineRequest(order.lines[0].id, Decimal("1"))],
                document_date=DOC_DATE,
                location=warehouse,
                party_id=supplier_id,
                actor_id=erp.actor_id,
            )

    def test_line_from_undeclared_order_rejected(self, erp, supplier_id, warehouse):
        item = erp.item()
        declared = erp.purchase_order([(item, "10", "100")])
        other = erp.purchase_order([(item, "10", "100")])
        with pytest.raises(ValidationError):
            with erp.session.begin_nested():
                erp.fulfillment.create_fulfillment(
                    kind=FulfillmentKind.GOODS_RECEIPT,
                    source_order_ids=[declared.id],
                    lines=[FulfillmentLineRequest(other.lines[0].id, Decimal("1"))],
                    document_date=DOC_DATE,
                    location=warehouse,
                    party_id=supplier_id,
                    actor_id=erp.actor_id,
                )
        assert QuantityLedger(erp.session).remaining(other.lines[0].id) == Decimal("10")

    def test_sales_order_cannot_feed_goods_receipt(self, erp, customer_id, warehouse):
        order = erp.sales_order([(erp.item(), "10", "100")])
        with pytest.raises(ValidationError):
            erp.fulfillment.create_fulfillment(
                kind=FulfillmentKind.GOODS_RECEIPT,
                source_order_ids=[order.id],
                lines=[FulfillmentLineRequest(order.lines[0].id, Decimal("1"))],
                document_date=DOC_DATE,
                location=warehouse,
                party_id=customer_id,
                actor_id=erp.actor_id,
            )

    def test_unknown_source_order(self, erp, supplier_id, warehouse):
        with pytest.raises(DocumentNotFoundError):
            erp.fulfillment.create_fulfillment(
                kind=FulfillmentKind.GOODS_RECEIPT,
                source_order_ids=[uuid4()],
                lines=[FulfillmentLineRequest(uuid4(), Decimal("1"))],
                document_date=DOC_DATE,
                location=warehouse,
                party_id=supplier_id,
                actor_id=erp.actor_id,
            )

    def test_empty_document_reports_every_problem(self, erp, supplier_id, branch):
        with pytest.raises(ValidationError) as exc_info:
            erp.fulfillment.create_fulfillment(
                kind=FulfillmentKind.GOODS_RECEIPT,
                source_order_ids=[],
                lines=[],
                document_date=DOC_DATE,
                location=branch,
                party_id=supplier_id,
                actor_id=erp.actor_id,
            )
        fields = {error["field"] for error in exc_info.value.field_errors}
        assert fields == {"source_order_ids", "lines", "location"}


class TestAtomicity:
    """A rejected document leaves no line, reservation or stock entry behind."""

    def test_over_receipt_on_second_line_rolls_back_first(self, erp, warehouse):
        item = erp.item()
        order = erp.purchase_order([(item, "10", "100"), (item, "5", "100")])
        documents_before = _count(erp.session, FulfillmentDocumentModel)

        with pytest.raises(OverReceiptError):
            with erp.session.begin_nested():
                erp.goods_receipt([(order.lines[0], "10"), (order.lines[1], "6")])

        assert _count(erp.session, FulfillmentDocumentModel) == documents_before
        assert _count(erp.session, FulfillmentLineModel) == 0
        assert QuantityLedger(erp.session).remaining(order.lines[0].id) == Decimal("10")
        assert StockLedger(erp.session).current_level(item.id, warehouse) == Decimal("0")
        assert erp.session.get(type(order), order.id).status == "pending"

    def test_code_not_consumed_by_failed_document(self, erp):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        with pytest.raises(OverReceiptError):
            with erp.session.begin_nested():
                erp.goods_receipt([(order.lines[0], "11")])
        receipt = erp.goods_receipt([(order.lines[0], "10")])
        assert receipt.code == "GR-2503-0001"


class TestWaybill:

    def test_waybill_moves_stock_out_of_branch(self, erp, branch):
        item = erp.item()
        erp.stock_in(item, branch, "20")
        order = erp.sales_order([(item, "10", "1000")])
        waybill = erp.waybill([(order.lines[0], "10")])

        assert waybill.code == "WB-JKT-2503-0001"
        movement = erp.session.get(StockMovementModel, waybill.lines[0].stock_movement_id)
        assert movement.movement_type == MovementType.OUT.value
        assert StockLedger(erp.session).current_level(item.id, branch) == Decimal("10")

    def test_waybill_without_stock_rejected_whole(self, erp, branch):
        item = erp.item()
        erp.stock_in(item, branch, "3")
        order = erp.sales_order([(item, "10", "1000")])
        with pytest.raises(NegativeStockError):
            with erp.session.begin_nested():
                erp.waybill([(order.lines[0], "4")])
        assert QuantityLedger(erp.session).remaining(order.lines[0].id) == Decimal("10")
        assert StockLedger(erp.session).current_level(item.id, branch) == Decimal("3")

    def test_waybill_from_warehouse_rejected(self, erp, warehouse):
        order = erp.sales_order([(erp.item(), "10", "1000")])
        with pytest.raises(ValidationError):
            erp.waybill([(order.lines[0], "1")], branch=warehouse)

    def test_waybill_references_one_sales_order(self, erp, branch, customer_id):
        item = erp.item()
        first = erp.sales_order([(item, "1", "1")])
        second = erp.sales_order([(item, "1", "1")])
        with pytest.raises(ValidationError) as exc_info:
            erp.fulfillment.create_fulfillment(
                kind=FulfillmentKind.WAYBILL,
                source_order_ids=[first.id, second.id],
                lines=[FulfillmentLineRequest(first.lines[0].id, Decimal("1"))],
                document_date=DOC_DATE,
                location=branch,
                party_id=customer_id,
                actor_id=erp.actor_id,
                branch_initial="JKT",
            )
        assert "exactly one" in exc_info.value.field_errors[0]["message"]

    def test_cancelled_sales_order_cannot_ship(self, erp, branch):
        item = erp.item()
        erp.stock_in(item, branch, "5")
        order = erp.sales_order([(item, "5", "1")])
        erp.orders.cancel_order(order.id, actor_id=erp.actor_id)
        with pytest.raises(LifecycleError):
            with erp.session.begin_nested():
                erp.waybill([(order.lines[0], "1")])
        assert QuantityLedger(erp.session).remaining(order.lines[0].id) == Decimal("5")

    def test_document_logged(self, erp, branch, captured_logs):
        item = erp.item()
        erp.stock_in(item, branch, "5")
        order = erp.sales_order([(item, "5", "200")])
        erp.waybill([(order.lines[0], "5")])
        records = [r for r in captured_logs() if r["message"] == "fulfillment_document_created"]
        assert records[-1]["kind"] == "waybill"
        assert records[-1]["total_amount"] == "1000.00"


class TestCreationSequence:

    def test_header_is_draft_until_lines_are_in(self, erp, monkeypatch):
        item = erp.item()
        order = erp.purchase_order([(item, "10", "100"), (item, "5", "100")])
        stock = erp.fulfillment._stock
        append = stock.append
        seen = []

        def recording(*args, **kwargs):
            seen.append(erp.session.execute(select(FulfillmentDocumentModel.status)).scalar_one())
            return append(*args, **kwargs)

        monkeypatch.setattr(stock, "append", recording)
        receipt = erp.goods_receipt([(order.lines[0], "10"), (order.lines[1], "5")])

        assert seen == ["draft", "draft"]
        assert receipt.status == "not_invoiced"

    def test_stock_levels_locked_before_any_movement(self, erp, monkeypatch):
        first, second = erp.item(), erp.item()
        order = erp.purchase_order([(second, "4", "10"), (first, "4", "10"), (second, "2", "10")])
        stock = erp.fulfillment._stock
        lock_level, append = stock._lock_level, stock.append
        events = []

        def recording_lock(item_id, location):
            events.append(("lock", item_id))
            return lock_level(item_id, location)

        def recording_append(item_id, *args, **kwargs):
            events.append(("append", item_id))
            return append(item_id, *args, **kwargs)

        monkeypatch.setattr(stock, "_lock_level", recording_lock)
        monkeypatch.setattr(stock, "append", recording_append)
        erp.goods_receipt([(line, "1") for line in order.lines])

        first_append = next(i for i, (event, _) in enumerate(events) if event == "append")
        up_front = [item_id for event, item_id in events[:first_append]]
        assert up_front == sorted([first.id, second.id], key=str)
        assert all(event == "lock" for event, _ in events[:first_append])
