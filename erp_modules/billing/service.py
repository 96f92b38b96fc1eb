"""
Billing Reconciler (``erp_modules.billing.service``).

Responsibility
--------------
Creates, edits and deletes supplier and sales invoices over fulfillment
lines, keeping the "billed at most once" rule and the invoicing status of
every fulfillment document in step.

Architecture position
---------------------
**Modules layer** -- flush-only.  Totals come from the pure
``erp_engines.totals.compute_totals`` on every path (create and update), so
an edited invoice and a freshly created one over the same lines carry
identical figures.

Invariants enforced
-------------------
* Billing exclusion: each fulfillment line is covered by at most one billing
  line.  Checked under ``SELECT ... FOR UPDATE`` on the fulfillment lines and
  backed by a UNIQUE constraint.
* A fulfillment document is ``invoiced`` exactly when every one of its lines
  is covered; releasing a line reopens it to ``not_invoiced``.
* Only an ``unpaid`` invoice can be edited; only an unpaid invoice without
  payments can be deleted.

Failure modes
-------------
* AlreadyInvoicedError -- a requested line is already billed elsewhere; no
  billing line is created.
* DocumentLockedError -- edit/delete of a partially paid or paid invoice.
* PaymentsPresentError -- delete of an invoice with recorded payments.
* ValidationError -- empty line set, duplicate ids, lines from the wrong kind
  of fulfillment document or from another party.
* DocumentNotFoundError -- unknown invoice or fulfillment line.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erp_engines.status import (
    FULFILLMENT_TRANSITIONS,
    FulfillmentStatus,
    PaymentStatus,
    assert_transition,
    invoicing_status,
)
from erp_engines.totals import (
    BillingTotals,
    Discount,
    LineAmount,
    TaxMode,
    compute_totals,
)
from erp_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO
from erp_kernel.domain.clock import Clock
from erp_kernel.exceptions import (
    AlreadyInvoicedError,
    DocumentLockedError,
    DocumentNotFoundError,
    PaymentsPresentError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.billing.models import BillingKind
from erp_modules.billing.orm import BillingDocumentModel, BillingLineModel, PaymentModel
from erp_modules.fulfillment.orm import FulfillmentDocumentModel, FulfillmentLineModel

logger = get_logger("modules.billing.service")


class BillingService(BaseService):
    """
    Supplier and sales invoices over fulfillment lines.

    Non-goals:
        - Does NOT commit.
        - Does NOT post anything to a general ledger.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        codes: DocumentCodeService | None = None,
        money_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._codes = codes or DocumentCodeService(session)
        self._places = money_places

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_billing(self, billing_id: UUID) -> BillingDocumentModel:
        billing = self.session.get(BillingDocumentModel, billing_id)
        if billing is None:
            raise DocumentNotFoundError("BillingDocument", billing_id)
        return billing

    def lock_billing(self, billing_id: UUID) -> BillingDocumentModel:
        billing = self.session.execute(
            select(BillingDocumentModel)
            .where(BillingDocumentModel.id == billing_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if billing is None:
            raise DocumentNotFoundError("BillingDocument", billing_id)
        return billing

    def billable_lines(self, fulfillment_document_id: UUID) -> list[FulfillmentLineModel]:
        """Lines of a fulfillment document not yet covered by any billing line."""
        billed = select(BillingLineModel.fulfillment_line_id)
        return list(
            self.session.execute(
                select(FulfillmentLineModel)
                .where(
                    FulfillmentLineModel.fulfillment_document_id == fulfillment_document_id,
                    FulfillmentLineModel.id.not_in(billed),
                )
                .order_by(FulfillmentLineModel.line_number)
            ).scalars()
        )

    def billable_line_ids(self, fulfillment_document_ids: Iterable[UUID]) -> list[UUID]:
        """Unbilled line ids across several fulfillment documents, in document order."""
        ids: list[UUID] = []
        for document_id in fulfillment_document_ids:
            if self.session.get(FulfillmentDocumentModel, document_id) is None:
                raise DocumentNotFoundError("FulfillmentDocument", document_id)
            ids.extend(line.id for line in self.billable_lines(document_id))
        return ids

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_fulfillment_lines(
        self, kind: BillingKind, line_ids: Sequence[UUID], party_id: UUID,
    ) -> list[FulfillmentLineModel]:
        """Lock requested lines in id order and check they may be billed by this kind/party."""
        lines = []
        for line_id in sorted(line_ids, key=str):
            line = self.session.execute(
                select(FulfillmentLineModel)
                .where(FulfillmentLineModel.id == line_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if line is None:
                raise DocumentNotFoundError("FulfillmentLine", line_id)
            document = line.fulfillment_document
            if document.kind != kind.fulfillment_kind.value:
                raise ValidationError(
                    f"{kind.value} cannot bill {document.kind} {document.code}",
                    [{"field": "fulfillment_line_ids", "message": f"expected {kind.fulfillment_kind.value} lines"}],
                )
            if document.party_id != party_id:
                raise ValidationError(
                    f"{document.code} belongs to another party",
                    [{"field": "party_id", "message": "all lines must belong to the invoice party"}],
                )
            lines.append(line)
        return lines

    def _assert_not_billed(
        self, line_ids: Iterable[UUID], exclude_billing_id: UUID | None = None,
    ) -> None:
        line_ids = list(line_ids)
        if not line_ids:
            return
        stmt = (
            select(BillingLineModel.fulfillment_line_id, BillingDocumentModel.code)
            .join(BillingDocumentModel, BillingLineModel.billing_document_id == BillingDocumentModel.id)
            .where(BillingLineModel.fulfillment_line_id.in_(line_ids))
        )
        if exclude_billing_id is not None:
            stmt = stmt.where(BillingLineModel.billing_document_id != exclude_billing_id)
        existing = self.session.execute(stmt).first()
        if existing is not None:
            logger.warning(
                "double_billing_rejected",
                extra={
                    "fulfillment_line_id": str(existing.fulfillment_line_id),
                    "billing_code": existing.code,
                },
            )
            raise AlreadyInvoicedError(existing.fulfillment_line_id, existing.code)

    def _validate_ids(self, line_ids: Sequence[UUID]) -> None:
        if not line_ids:
            raise ValidationError(
                "an invoice needs at least one fulfillment line",
                [{"field": "fulfillment_line_ids", "message": "at least one line is required"}],
            )
        if len(set(line_ids)) != len(line_ids):
            raise ValidationError(
                "duplicate fulfillment line",
                [{"field": "fulfillment_line_ids", "message": "duplicate line id"}],
            )

    def _billing_line(self, line: FulfillmentLineModel) -> BillingLineModel:
        return BillingLineModel(
            fulfillment_line_id=line.id,
            fulfillment_document_id=line.fulfillment_document_id,
            quantity=line.received_quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
            tax_amount=line.tax_amount,
            total_amount=line.total_price + line.tax_amount,
        )

    def _apply_totals(self, billing: BillingDocumentModel, totals: BillingTotals) -> None:
        billing.subtotal = totals.subtotal
        billing.discount_type = totals.discount_type.value
        billing.discount_percentage = totals.discount_percentage
        billing.discount_amount = totals.discount_amount
        billing.tax_mode = totals.tax_mode.value
        billing.tax_rate = totals.tax_rate
        billing.tax_amount = totals.tax_amount
        billing.miscellaneous_cost = totals.miscellaneous_cost
        billing.grand_total = totals.grand_total
        billing.remaining_amount = totals.grand_total - (billing.paid_amount or ZERO)

    def _totals(
        self,
        lines: Iterable[BillingLineModel],
        discount: Discount,
        tax_mode: TaxMode,
        tax_rate: Decimal | None,
        miscellaneous_cost: Decimal,
    ) -> BillingTotals:
        return compute_totals(
            [LineAmount(line.total_price, line.tax_amount) for line in lines],
            discount,
            tax_mode,
            tax_rate=tax_rate,
            miscellaneous_cost=miscellaneous_cost,
            places=self._places,
        )

    def refresh_fulfillment_status(self, fulfillment_document_ids: Iterable[UUID]) -> None:
        """Re-derive invoicing status from billing-line coverage."""
        self.session.flush()
        for document_id in sorted(set(fulfillment_document_ids), key=str):
            document = self.session.execute(
                select(FulfillmentDocumentModel)
                .where(FulfillmentDocumentModel.id == document_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            total = self.session.execute(
                select(func.count())
                .select_from(FulfillmentLineModel)
                .where(FulfillmentLineModel.fulfillment_document_id == document_id)
            ).scalar_one()
            covered = self.session.execute(
                select(func.count())
                .select_from(BillingLineModel)
                .where(BillingLineModel.fulfillment_document_id == document_id)
            ).scalar_one()
            current = FulfillmentStatus(document.status)
            target = invoicing_status(total, covered)
            assert_transition("fulfillment", FULFILLMENT_TRANSITIONS, current, target)
            if target != current:
                document.status = target.value
                logger.info(
                    "fulfillment_status_changed",
                    extra={
                        "document_id": str(document_id),
                        "code": document.code,
                        "from_status": current.value,
                        "to_status": target.value,
                    },
                )
        self.session.flush()

    @staticmethod
    def _assert_editable(billing: BillingDocumentModel) -> None:
        if billing.status != PaymentStatus.UNPAID.value or billing.paid_amount > ZERO:
            raise DocumentLockedError(billing.code, billing.status)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_billing(
        self,
        *,
        kind: BillingKind | str,
        fulfillment_line_ids: Sequence[UUID],
        party_id: UUID,
        billing_date: date,
        actor_id: UUID,
        due_date: date | None = None,
        discount: Discount | None = None,
        tax_rate: Decimal | None = None,
        tax_mode: TaxMode | str | None = None,
        miscellaneous_cost: Decimal = ZERO,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> BillingDocumentModel:
        """
        Issue an invoice over fulfillment lines.

        ``tax_mode`` defaults per kind: PER_LINE for supplier invoices,
        ON_DISCOUNTED_SUBTOTAL for sales invoices.
        """
        kind = BillingKind(kind)
        tax_mode = TaxMode(tax_mode) if tax_mode is not None else kind.default_tax_mode
        discount = discount or Discount.none()
        self._validate_ids(fulfillment_line_ids)

        lines = self._lock_fulfillment_lines(kind, fulfillment_line_ids, party_id)
        self._assert_not_billed(line.id for line in lines)

        billing_lines = [self._billing_line(line) for line in lines]
        totals = self._totals(billing_lines, discount, tax_mode, tax_rate, miscellaneous_cost)

        billing = BillingDocumentModel(
            kind=kind.value,
            code=code or self._codes.next_code(kind.value, billing_date, branch_initial),
            billing_date=billing_date,
            due_date=due_date,
            party_id=party_id,
            paid_amount=ZERO,
            status=PaymentStatus.UNPAID.value,
            note=note,
            created_by_id=actor_id,
            lines=billing_lines,
            payments=[],
        )
        self._apply_totals(billing, totals)
        self.session.add(billing)
        self.refresh_fulfillment_status(line.fulfillment_document_id for line in lines)

        logger.info(
            "billing_document_created",
            extra={
                "billing_id": str(billing.id),
                "kind": kind.value,
                "code": billing.code,
                "line_count": len(billing_lines),
                "subtotal": totals.subtotal,
                "tax_mode": tax_mode.value,
                "grand_total": totals.grand_total,
            },
        )
        return billing

    def update_billing(
        self,
        billing_id: UUID,
        *,
        fulfillment_line_ids: Sequence[UUID],
        actor_id: UUID,
        discount: Discount | None = None,
        tax_rate: Decimal | None = None,
        miscellaneous_cost: Decimal | None = None,
        due_date: date | None = None,
        note: str | None = None,
    ) -> BillingDocumentModel:
        """
        Replace the line set and pricing of an unpaid invoice.

        Lines dropped from the set are released and their fulfillment
        documents reopened; added lines are checked exactly as on creation.
        Totals are recomputed from the resulting set.
        """
        billing = self.lock_billing(billing_id)
        self._assert_editable(billing)
        self._validate_ids(fulfillment_line_ids)
        kind = BillingKind(billing.kind)

        requested = set(fulfillment_line_ids)
        current = {line.fulfillment_line_id: line for line in billing.lines}
        removed = [line for line_id, line in current.items() if line_id not in requested]
        added_ids = [line_id for line_id in fulfillment_line_ids if line_id not in current]

        touched_documents = {line.fulfillment_document_id for line in removed}
        for line in removed:
            billing.lines.remove(line)
        self.session.flush()

        added = self._lock_fulfillment_lines(kind, added_ids, billing.party_id)
        self._assert_not_billed((line.id for line in added), exclude_billing_id=billing.id)
        for line in added:
            billing.lines.append(self._billing_line(line))
            touched_documents.add(line.fulfillment_document_id)

        totals = self._totals(
            billing.lines,
            discount or Discount.none(),
            TaxMode(billing.tax_mode),
            tax_rate,
            billing.miscellaneous_cost if miscellaneous_cost is None else miscellaneous_cost,
        )
        self._apply_totals(billing, totals)
        if due_date is not None:
            billing.due_date = due_date
        if note is not None:
            billing.note = note
        billing.updated_by_id = actor_id
        self.refresh_fulfillment_status(touched_documents)

        logger.info(
            "billing_document_updated",
            extra={
                "billing_id": str(billing.id),
                "code": billing.code,
                "released_lines": len(removed),
                "added_lines": len(added),
                "grand_total": totals.grand_total,
            },
        )
        return billing

    def delete_billing(self, billing_id: UUID, *, actor_id: UUID) -> None:
        """Delete an unpaid invoice without payments and release its lines."""
        billing = self.lock_billing(billing_id)
        payment_count = self.session.execute(
            select(func.count())
            .select_from(PaymentModel)
            .where(PaymentModel.billing_document_id == billing.id)
        ).scalar_one()
        if payment_count:
            raise PaymentsPresentError(billing.code, payment_count)
        self._assert_editable(billing)

        touched_documents = {line.fulfillment_document_id for line in billing.lines}
        released = len(billing.lines)
        code = billing.code
        self.session.delete(billing)
        self.refresh_fulfillment_status(touched_documents)
        logger.info(
            "billing_document_deleted",
            extra={
                "billing_id": str(billing_id),
                "code": code,
                "released_lines": released,
                "actor_id": str(actor_id),
            },
        )
