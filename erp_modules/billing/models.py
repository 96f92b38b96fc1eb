"""
Billing Domain Models.

Billing document kinds and the fixed pairing between a billing kind, the
fulfillment documents it bills and the tax stage it uses.
"""

from enum import Enum

from erp_engines.totals import TaxMode
from erp_modules.fulfillment.models import FulfillmentKind


class BillingKind(str, Enum):
    SUPPLIER_INVOICE = "supplier_invoice"
    SALES_INVOICE = "sales_invoice"

    @property
    def fulfillment_kind(self) -> FulfillmentKind:
        if self is BillingKind.SUPPLIER_INVOICE:
            return FulfillmentKind.GOODS_RECEIPT
        return FulfillmentKind.WAYBILL

    @property
    def default_tax_mode(self) -> TaxMode:
        """Supplier tax is captured per line at receipt; sales tax is levied on the invoice."""
        if self is BillingKind.SUPPLIER_INVOICE:
            return TaxMode.PER_LINE
        return TaxMode.ON_DISCOUNTED_SUBTOTAL

    @property
    def payment_document_type(self) -> str:
        if self is BillingKind.SUPPLIER_INVOICE:
            return "supplier_payment"
        return "sales_payment"
