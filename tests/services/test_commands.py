"""
Tests for the transactional command layer.

Commands open their own sessions from ``session_factory``; in the test
suite those sessions join the per-test connection, so data seeded through
the ``erp`` builder is visible to them and everything is rolled back at
teardown.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_config.schema import EngineConfig
from erp_kernel.exceptions import ValidationError
from erp_modules.billing.orm import BillingDocumentModel
from erp_modules.fulfillment.orm import FulfillmentDocumentModel
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.inventory.ledger import StockLedger
from erp_services.commands import CommandResult, ErpCommands
from erp_services.queries import ErpQueries


@pytest.fixture
def commands(session_factory, deterministic_clock):
    return ErpCommands(session_factory, clock=deterministic_clock, config=EngineConfig.with_defaults())


def _receipt_payload(erp, order, quantities, **overrides):
    payload = {
        "supplier_id": str(order.party_id),
        "warehouse_id": str(order.location_id),
        "date": "2025-03-01",
        "actor_id": str(erp.actor_id),
        "purchase_orders": [
            {
                "purchase_order_id": str(order.id),
                "details": [
                    {"purchase_order_detail_id": str(line.id), "received_quantity": quantity}
                    for line, quantity in zip(order.lines, quantities)
                ],
            },
        ],
    }
    payload.update(overrides)
    return payload


class TestCommandResult:

    def test_validation_failure_keeps_every_field(self):
        result = CommandResult.failure(ValidationError.for_fields([
            {"field": "date", "message": "is required"},
            {"field": "lines", "message": "must contain at least one entry"},
        ]))
        assert result.ok is False
        assert [e["field"] for e in result.errors] == ["date", "lines"]
        assert {e["code"] for e in result.errors} == {"VALIDATION_ERROR"}


class TestGoodsReceiptCommand:

    def test_stores_and_returns_payload(self, erp, commands):
        order = erp.purchase_order([(erp.item(), "100", "10000")], tax_rate="11")
        result = commands.store_goods_receipt(_receipt_payload(erp, order, ["60"]))

        assert result.ok, result.errors
        assert result.document["code"] == "GR-2503-0001"
        assert result.document["lines"][0]["received_quantity"] == Decimal("60")
        assert result.document["total_amount"] == Decimal("666000.00")
        assert QuantityLedger(erp.session).remaining(order.lines[0].id) == Decimal("40")

    def test_over_receipt_reported_and_nothing_written(self, erp, commands, captured_logs):
        order = erp.purchase_order([(erp.item(), "100", "10000")])
        assert commands.store_goods_receipt(_receipt_payload(erp, order, ["60"])).ok

        result = commands.store_goods_receipt(_receipt_payload(erp, order, ["50"]))
        assert result.ok is False
        assert result.errors == ({
            "code": "OVER_RECEIPT",
            "message": "remaining quantity is 40, requested 50",
        },)
        assert erp.session.query(FulfillmentDocumentModel).count() == 1
        assert any(
            r["message"] == "command_rejected" and r["error_code"] == "OVER_RECEIPT"
            for r in captured_logs()
        )

        assert commands.store_goods_receipt(_receipt_payload(erp, order, ["40"])).ok

    def test_bad_payload_never_reaches_the_database(self, erp, commands):
        order = erp.purchase_order([(erp.item(), "10", "1")])
        result = commands.store_goods_receipt(_receipt_payload(erp, order, [1.5], date="yesterday"))
        assert result.ok is False
        assert {e["field"] for e in result.errors} == {
            "date", "purchase_orders[0].details[0].received_quantity",
        }
        assert erp.session.query(FulfillmentDocumentModel).count() == 0


class TestWaybillCommand:

    def test_negative_stock_rolls_back(self, erp, commands, branch):
        item = erp.item()
        erp.stock_in(item, branch, "2")
        order = erp.sales_order([(item, "5", "100")])
        payload = {
            "sales_order_id": str(order.id),
            "customer_id": str(order.party_id),
            "branch_id": str(branch.id),
            "date": "2025-03-01",
            "actor_id": str(erp.actor_id),
            "branch_initial": "JKT",
            "details": [{"sales_order_detail_id": str(order.lines[0].id), "quantity": "3"}],
        }
        result = commands.store_waybill(payload)
        assert result.errors[0]["code"] == "NEGATIVE_STOCK"
        assert QuantityLedger(erp.session).remaining(order.lines[0].id) == Decimal("5")

        payload["details"][0]["quantity"] = "2"
        result = commands.store_waybill(payload)
        assert result.ok
        assert result.document["code"] == "WB-JKT-2503-0001"
        assert StockLedger(erp.session).current_level(item.id, branch) == Decimal("0")


class TestBillingCommands:

    @pytest.fixture(autouse=True)
    def _setup(self, erp, commands):
        self.erp = erp
        self.commands = commands
        item = erp.item()
        order = erp.purchase_order([(item, "10", "1000"), (item, "10", "500")], tax_rate="10")
        self.receipt = erp.goods_receipt([(order.lines[0], "10"), (order.lines[1], "10")])
        self.supplier_id = order.party_id

    def _invoice_payload(self, **fields):
        payload = {
            "supplier_id": str(self.supplier_id),
            "date": "2025-03-01",
            "actor_id": str(self.erp.actor_id),
        }
        payload.update(fields)
        return payload

    def test_invoice_whole_receipt_then_pay(self):
        result = self.commands.store_supplier_invoice(
            self._invoice_payload(goods_receipt_ids=[str(self.receipt.id)], miscellaneous_cost="250"),
        )
        assert result.ok, result.errors
        invoice = result.document
        assert invoice["subtotal"] == Decimal("15000.00")
        assert invoice["tax_amount"] == Decimal("1500.00")
        assert invoice["grand_total"] == Decimal("16750.00")
        assert len(invoice["lines"]) == 2

        paid = self.commands.store_payment({
            "billing_document_id": str(invoice["id"]),
            "amount": "16750",
            "method": "transfer",
            "date": "2025-03-05",
            "actor_id": str(self.erp.actor_id),
            "branch_initial": "HQ",
        })
        assert paid.ok, paid.errors
        assert paid.document["billing_status"] == "paid"
        assert paid.document["remaining_amount"] == Decimal("0")

        destroyed = self.commands.destroy_supplier_invoice(invoice["id"], self.erp.actor_id)
        assert destroyed.errors[0]["code"] == "PAYMENTS_PRESENT"

    def test_second_invoice_over_same_lines_rejected(self):
        line_ids = [str(line.id) for line in self.receipt.lines]
        assert self.commands.store_supplier_invoice(self._invoice_payload(fulfillment_line_ids=line_ids)).ok
        result = self.commands.store_supplier_invoice(self._invoice_payload(fulfillment_line_ids=line_ids[:1]))
        assert result.errors[0]["code"] == "ALREADY_INVOICED"
        assert self.erp.session.query(BillingDocumentModel).count() == 1

    def test_update_then_destroy_reopens_receipt(self):
        first, second = (str(line.id) for line in self.receipt.lines)
        created = self.commands.store_supplier_invoice(self._invoice_payload(fulfillment_line_ids=[first, second]))
        billing_id = created.document["id"]

        updated = self.commands.update_supplier_invoice(
            billing_id, self._invoice_payload(fulfillment_line_ids=[first]),
        )
        assert updated.ok, updated.errors
        assert updated.document["subtotal"] == Decimal("10000.00")
        queries = ErpQueries(self.erp.session)
        assert [r["id"] for r in queries.not_invoiced_goods_receipts(self.supplier_id)] == [self.receipt.id]

        destroyed = self.commands.destroy_supplier_invoice(billing_id, self.erp.actor_id)
        assert destroyed.ok
        assert destroyed.document == {"id": billing_id, "deleted": True}
        assert self.erp.billing.billable_line_ids([self.receipt.id]) == [line.id for line in self.receipt.lines]

    def test_unknown_invoice(self):
        result = self.commands.destroy_supplier_invoice(uuid4(), self.erp.actor_id)
        assert result.errors[0]["code"] == "DOCUMENT_NOT_FOUND"


class TestStockCommands:

    def test_adjust_transfer_audit(self, erp, commands, warehouse, branch):
        item = erp.item()
        actor = str(erp.actor_id)

        adjusted = commands.store_stock_adjustment({
            "location_type": "warehouse",
            "location_id": str(warehouse.id),
            "date": "2025-03-01",
            "actor_id": actor,
            "branch_initial": "HQ",
            "lines": [{"item_id": str(item.id), "adjustment_type": "increased", "quantity": "30"}],
        })
        assert adjusted.ok, adjusted.errors
        assert adjusted.document["code"] == "SA-HQ-2503-0001"

        transferred = commands.store_stock_transfer({
            "source_type": "warehouse",
            "source_id": str(warehouse.id),
            "destination_type": "branch",
            "destination_id": str(branch.id),
            "date": "2025-03-01",
            "actor_id": actor,
            "branch_initial": "HQ",
            "lines": [{"item_id": str(item.id), "quantity": "12"}],
        })
        assert transferred.ok, transferred.errors

        audited = commands.store_stock_audit({
            "location_type": "branch",
            "location_id": str(branch.id),
            "date": "2025-03-01",
            "actor_id": actor,
            "branch_initial": "JKT",
            "lines": [{"item_id": str(item.id), "physical_quantity": "11", "reason": "breakage"}],
        })
        assert audited.ok, audited.errors
        assert audited.document["lines"][0]["discrepancy"] == Decimal("-1")

        ledger = StockLedger(erp.session)
        assert ledger.current_level(item.id, warehouse) == Decimal("18")
        assert ledger.current_level(item.id, branch) == Decimal("11")
        assert ledger.verify_chain(item.id, branch) == 2

    def test_missing_branch_initial_reported(self, erp, commands, warehouse):
        result = commands.store_stock_adjustment({
            "location_type": "warehouse",
            "location_id": str(warehouse.id),
            "date": "2025-03-01",
            "actor_id": str(erp.actor_id),
            "lines": [{"item_id": str(erp.item().id), "adjustment_type": "increased", "quantity": "1"}],
        })
        assert result.errors == ({"code": "VALIDATION_ERROR", "field": "branch_initial", "message": "required"},)


class TestMoneyPlaces:

    def test_configured_places_drive_receipt_totals(self, erp, session_factory, deterministic_clock):
        order = erp.purchase_order([(erp.item(), "3", "10.50")], tax_rate="11")
        whole_units = ErpCommands(
            session_factory, clock=deterministic_clock, config=EngineConfig(money_places=0),
        )
        result = whole_units.store_goods_receipt(_receipt_payload(erp, order, ["3"]))

        assert result.ok, result.errors
        line = result.document["lines"][0]
        assert line["total_price"] == Decimal("32")
        assert line["tax_amount"] == Decimal("4")
        assert result.document["total_amount"] == Decimal("36")

    def test_default_places_keep_cents(self, erp, commands):
        order = erp.purchase_order([(erp.item(), "3", "10.50")], tax_rate="11")
        result = commands.store_goods_receipt(_receipt_payload(erp, order, ["3"]))

        assert result.document["lines"][0]["tax_amount"] == Decimal("3.47")
        assert result.document["total_amount"] == Decimal("34.97")

    def test_query_totals_follow_configured_places(self, erp):
        order = erp.purchase_order([(erp.item(), "3", "10.50")], tax_rate="11")
        receipt = erp.goods_receipt([(order.lines[0], "3")])

        assert ErpQueries(erp.session).goods_receipt_data(receipt.id)["total_amount"] == Decimal("34.97")
        data = ErpQueries(erp.session, money_places=0).goods_receipt_data(receipt.id)
        assert data["total_price"] == Decimal("32")
        assert data["tax_amount"] == Decimal("3")
        assert data["total_amount"] == Decimal("35")
