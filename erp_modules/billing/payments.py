"""
Payment Service (``erp_modules.billing.payments``).

Records payments against supplier and sales invoices.  The invoice row is
locked for the duration, so two concurrent payments cannot both see the old
paid amount; the second one sees the first and is rejected if together they
would exceed the grand total.

Failure modes
-------------
* ZeroOrNegativeQuantityError -- amount <= 0.
* ValidationError -- amount with more decimal places than money allows.
* PaymentExceedsBalanceError -- paid + amount > grand total; nothing written.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.status import PAYMENT_TRANSITIONS, PaymentStatus, assert_transition, payment_status
from erp_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money, to_decimal
from erp_kernel.domain.clock import Clock
from erp_kernel.exceptions import (
    PaymentExceedsBalanceError,
    ValidationError,
    ZeroOrNegativeQuantityError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.billing.models import BillingKind
from erp_modules.billing.orm import PaymentModel
from erp_modules.billing.service import BillingService

logger = get_logger("modules.billing.payments")


class PaymentService(BaseService):
    """Append-only payments with a grand-total ceiling."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        codes: DocumentCodeService | None = None,
        billing: BillingService | None = None,
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._codes = codes or DocumentCodeService(session)
        self._billing = billing or BillingService(session, self.clock, self._codes, money_places)
        self._places = money_places

    def record_payment(
        self,
        billing_id: UUID,
        *,
        amount: Decimal,
        method: str,
        payment_date: date,
        actor_id: UUID,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> PaymentModel:
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ZeroOrNegativeQuantityError("amount", amount)
        if round_money(amount, self._places) != amount:
            raise ValidationError(
                f"amount {amount} has more than {self._places} decimal places",
                [{"field": "amount", "message": f"at most {self._places} decimal places"}],
            )
        if not method:
            raise ValidationError(
                "payment method is required",
                [{"field": "method", "message": "required"}],
            )

        billing = self._billing.lock_billing(billing_id)
        new_paid = billing.paid_amount + amount
        if new_paid > billing.grand_total:
            logger.warning(
                "overpayment_rejected",
                extra={
                    "billing_id": str(billing.id),
                    "billing_code": billing.code,
                    "remaining": billing.remaining_amount,
                    "amount": amount,
                },
            )
            raise PaymentExceedsBalanceError(billing.code, billing.remaining_amount, amount)

        kind = BillingKind(billing.kind)
        payment = PaymentModel(
            billing_document_id=billing.id,
            code=code or self._codes.next_code(kind.payment_document_type, payment_date, branch_initial),
            amount=amount,
            method=method,
            payment_date=payment_date,
            note=note,
            created_by_id=actor_id,
        )
        self.session.add(payment)

        current = PaymentStatus(billing.status)
        target = payment_status(new_paid, billing.grand_total)
        assert_transition("payment", PAYMENT_TRANSITIONS, current, target)
        billing.paid_amount = new_paid
        billing.remaining_amount = billing.grand_total - new_paid
        billing.status = target.value
        billing.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "billing_code": billing.code,
                "amount": amount,
                "paid_amount": new_paid,
                "remaining_amount": billing.remaining_amount,
                "status": target.value,
            },
        )
        return payment
