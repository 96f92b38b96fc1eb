"""
Billing Module (``erp_modules.billing``).

Responsibility
--------------
Supplier and sales invoices over fulfillment lines, and the payments
recorded against them.

Invariants enforced
-------------------
* A fulfillment line is billed at most once.
* Invoice totals are computed by one function on every path.
* Payments never push the paid amount above the grand total.
"""

from erp_modules.billing.models import BillingKind
from erp_modules.billing.payments import PaymentService
from erp_modules.billing.service import BillingService

__all__ = ["BillingKind", "BillingService", "PaymentService"]
