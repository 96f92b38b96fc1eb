"""
Tests for supplier and sales invoices.

Each fulfillment line is billed at most once; a fulfillment document is
invoiced exactly when all of its lines are covered.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from erp_engines.totals import Discount
from erp_kernel.exceptions import (
    AlreadyInvoicedError,
    DocumentLockedError,
    PaymentsPresentError,
    ValidationError,
)
from erp_modules.billing.orm import BillingDocumentModel, BillingLineModel


class TestCreateBilling:

    def test_supplier_invoice_carries_line_tax(self, erp):
        order = erp.purchase_order([(erp.item(), "100", "10000")], tax_rate="11")
        receipt = erp.goods_receipt([(order.lines[0], "60")])
        invoice = erp.supplier_invoice(receipt.lines)

        assert invoice.code == "PI-2503-0001"
        assert invoice.tax_mode == "per_line"
        assert invoice.subtotal == Decimal("600000.00")
        assert invoice.tax_amount == Decimal("66000.00")
        assert invoice.grand_total == Decimal("666000.00")
        assert invoice.remaining_amount == invoice.grand_total
        assert invoice.status == "unpaid"
        assert receipt.status == "invoiced"

    def test_sales_invoice_taxes_discounted_subtotal(self, erp, branch):
        item = erp.item()
        erp.stock_in(item, branch, "5")
        order = erp.sales_order([(item, "5", "200000")])
        waybill = erp.waybill([(order.lines[0], "5")])
        invoice = erp.sales_invoice(waybill.lines, discount=Discount.percentage(Decimal("10")))

        assert invoice.code == "SI-JKT-2503-0001"
        assert invoice.subtotal == Decimal("1000000.00")
        assert invoice.discount_amount == Decimal("100000.00")
        assert invoice.tax_amount == Decimal("99000.00")
        assert invoice.grand_total == Decimal("999000.00")

    def test_partial_billing_keeps_document_open(self, erp):
        item = erp.item()
        order = erp.purchase_order([(item, "10", "100"), (item, "10", "100")])
        receipt = erp.goods_receipt([(order.lines[0], "10"), (order.lines[1], "10")])

        erp.supplier_invoice([receipt.lines[0]])
        assert receipt.status == "not_invoiced"
        assert [line.id for line in erp.billing.billable_lines(receipt.id)] == [receipt.lines[1].id]

        erp.supplier_invoice([receipt.lines[1]])
        assert receipt.status == "invoiced"
        assert erp.billing.billable_lines(receipt.id) == []

    def test_invoice_spanning_receipts(self, erp):
        item = erp.item()
        order = erp.purchase_order([(item, "10", "100")])
        first = erp.goods_receipt([(order.lines[0], "4")])
        second = erp.goods_receipt([(order.lines[0], "6")])

        line_ids = erp.billing.billable_line_ids([first.id, second.id])
        invoice = erp.billing.create_billing(
            kind="supplier_invoice",
            fulfillment_line_ids=line_ids,
            party_id=order.party_id,
            billing_date=first.document_date,
            actor_id=erp.actor_id,
        )
        assert invoice.subtotal == Decimal("1000.00")
        assert first.status == second.status == "invoiced"


class TestBillingExclusion:
    """A fulfillment line cannot appear on two invoices."""

    def test_second_invoice_rejected(self, erp):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        receipt = erp.goods_receipt([(order.lines[0], "10")])
        first = erp.supplier_invoice(receipt.lines)

        with pytest.raises(AlreadyInvoicedError) as exc_info:
            with erp.session.begin_nested():
                erp.supplier_invoice(receipt.lines)
        assert exc_info.value.billing_code == first.code
        assert erp.session.query(BillingDocumentModel).count() == 1
        assert erp.session.query(BillingLineModel).count() == 1

    def test_rejection_logged(self, erp, captured_logs):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        receipt = erp.goods_receipt([(order.lines[0], "10")])
        erp.supplier_invoice(receipt.lines)
        with pytest.raises(AlreadyInvoicedError):
            with erp.session.begin_nested():
                erp.supplier_invoice(receipt.lines)
        assert any(r["message"] == "double_billing_rejected" for r in captured_logs())

    def test_waybill_lines_not_billable_on_supplier_invoice(self, erp, branch):
        item = erp.item()
        erp.stock_in(item, branch, "1")
        order = erp.sales_order([(item, "1", "10")])
        waybill = erp.waybill([(order.lines[0], "1")])
        with pytest.raises(ValidationError):
            erp.supplier_invoice(waybill.lines, supplier_id=order.party_id)

    def test_lines_of_another_party_rejected(self, erp):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        receipt = erp.goods_receipt([(order.lines[0], "10")])
        with pytest.raises(ValidationError) as exc_info:
            erp.supplier_invoice(receipt.lines, supplier_id=uuid4())
        assert exc_info.value.field_errors[0]["field"] == "party_id"

    @pytest.mark.parametrize("duplicate", [False, True])
    def test_line_set_validated(self, erp, duplicate):
        order = erp.purchase_order([(erp.item(), "10", "100")])
        receipt = erp.goods_receipt([(order.lines[0], "10")])
        lines = receipt.lines * 2 if duplicate else []
        with pytest.raises(ValidationError):
            erp.supplier_invoice(lines)


class TestEditAndDelete:

    @pytest.fixture(autouse=True)
    def _setup(self, erp):
        self.erp = erp
        item = erp.item()
        order = erp.purchase_order([(item, "10", "1000"), (item, "5", "3000")], tax_rate="11")
        self.receipt = erp.goods_receipt([(order.lines[0], "10"), (order.lines[1], "5")])
        self.first, self.second = self.receipt.lines

    def test_dropped_line_reopens_document(self):
        invoice = self.erp.supplier_invoice([self.first, self.second])
        assert self.receipt.status == "invoiced"

        self.erp.billing.update_billing(
            invoice.id, fulfillment_line_ids=[self.first.id], actor_id=self.erp.actor_id,
        )
        assert self.receipt.status == "not_invoiced"
        assert invoice.fulfillment_line_ids == {self.first.id}
        assert invoice.subtotal == Decimal("10000.00")

        # Released line can be billed again
        again = self.erp.supplier_invoice([self.second])
        assert again.subtotal == Decimal("15000.00")
        assert self.receipt.status == "invoiced"

    def test_update_matches_fresh_invoice(self):
        discount = Discount.amount(Decimal("2500"))
        invoice = self.erp.supplier_invoice([self.first])
        self.erp.billing.update_billing(
            invoice.id,
            fulfillment_line_ids=[self.first.id, self.second.id],
            actor_id=self.erp.actor_id,
            discount=discount,
            miscellaneous_cost=Decimal("500"),
        )
        updated = (invoice.subtotal, invoice.discount_amount, invoice.tax_amount, invoice.grand_total)

        self.erp.billing.delete_billing(invoice.id, actor_id=self.erp.actor_id)
        fresh = self.erp.supplier_invoice(
            [self.first, self.second], discount=discount, miscellaneous_cost=Decimal("500"),
        )
        assert updated == (fresh.subtotal, fresh.discount_amount, fresh.tax_amount, fresh.grand_total)
        assert fresh.grand_total == Decimal("25000.00") - Decimal("2500.00") + Decimal("2750.00") + Decimal("500.00")

    def test_delete_releases_every_line(self, captured_logs):
        invoice = self.erp.supplier_invoice([self.first, self.second])
        self.erp.billing.delete_billing(invoice.id, actor_id=self.erp.actor_id)

        assert self.receipt.status == "not_invoiced"
        assert len(self.erp.billing.billable_lines(self.receipt.id)) == 2
        records = [r for r in captured_logs() if r["message"] == "billing_document_deleted"]
        assert records[-1]["released_lines"] == 2

    def test_paid_invoice_is_locked(self):
        invoice = self.erp.supplier_invoice([self.first])
        self.erp.pay(invoice, "1000")

        with pytest.raises(DocumentLockedError):
            self.erp.billing.update_billing(
                invoice.id, fulfillment_line_ids=[self.first.id, self.second.id],
                actor_id=self.erp.actor_id,
            )
        with pytest.raises(PaymentsPresentError) as exc_info:
            self.erp.billing.delete_billing(invoice.id, actor_id=self.erp.actor_id)
        assert exc_info.value.code == "PAYMENTS_PRESENT"
