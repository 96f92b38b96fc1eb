"""
Module: erp_services.commands
Responsibility: Mutation endpoints.  Each command opens its own session,
    runs one module operation, commits, and returns a CommandResult carrying
    either the stored document (as a plain dict) or a structured error list.
Architecture position: Services > commands.  The only layer that commits or
    rolls back.  Modules below it are flush-only.

Invariants enforced:
    - One command, one transaction: a failure anywhere rolls back every line,
      reservation, billing line and stock entry the command wrote.
    - Transient database failures (lock timeout, serialization failure,
      deadlock, SQLite "database is locked") re-run the whole transaction up
      to ``config.max_retries`` times.
    - Business-rule rejections are never retried.

Failure modes:
    - Every ErpKernelError becomes ``CommandResult(ok=False, errors=[...])``.
      The message is the exception's own text so it can be shown verbatim.
    - Anything else (programming errors, lost database) propagates after
      rollback.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from erp_config.schema import EngineConfig
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.exceptions import ErpKernelError, ValidationError
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.retry_service import run_with_retry
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.billing.models import BillingKind
from erp_modules.billing.payments import PaymentService
from erp_modules.billing.service import BillingService
from erp_modules.fulfillment.models import FulfillmentKind
from erp_modules.fulfillment.service import FulfillmentService
from erp_modules.inventory.service import InventoryService
from erp_services.queries import (
    billing_document_data,
    goods_receipt_payload,
    payment_data,
    stock_document_data,
    waybill_payload,
)
from erp_services.requests import (
    GoodsReceiptRequest,
    PaymentRequest,
    SalesInvoiceRequest,
    StockAdjustmentRequest,
    StockAuditRequest,
    StockTransferRequest,
    SupplierInvoiceRequest,
    WaybillRequest,
)

logger = get_logger("services.commands")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command.

    ``errors`` entries always carry ``code`` and ``message``; validation
    errors add ``field``.
    """

    ok: bool
    document: dict[str, Any] | None = None
    errors: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def success(cls, document: dict[str, Any] | None) -> CommandResult:
        return cls(ok=True, document=document)

    @classmethod
    def failure(cls, exc: ErpKernelError) -> CommandResult:
        if isinstance(exc, ValidationError) and exc.field_errors:
            errors = tuple(
                {"code": exc.code, "message": error["message"], "field": error["field"]}
                for error in exc.field_errors
            )
        else:
            errors = ({"code": exc.code, "message": str(exc)},)
        return cls(ok=False, errors=errors)


class ErpCommands:
    """
    Transactional entry points for every mutation the engine supports.

    Args:
        session_factory: Produces a fresh Session per attempt.
        clock: Time source passed to every service.
        config: Retry budget, money precision and document prefixes.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.with_defaults()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _codes(self, session: Session) -> DocumentCodeService:
        return DocumentCodeService(
            session,
            prefixes=self._config.document_prefixes,
            branch_specific=self._config.branch_specific_documents,
        )

    def _fulfillment(self, session: Session) -> FulfillmentService:
        return FulfillmentService(
            session, self._clock, self._codes(session), money_places=self._config.money_places,
        )

    def _billing(self, session: Session) -> BillingService:
        return BillingService(
            session, self._clock, self._codes(session), money_places=self._config.money_places,
        )

    def _payments(self, session: Session) -> PaymentService:
        codes = self._codes(session)
        billing = BillingService(session, self._clock, codes, self._config.money_places)
        return PaymentService(session, self._clock, codes, billing, self._config.money_places)

    def _inventory(self, session: Session) -> InventoryService:
        return InventoryService(session, self._clock, self._codes(session))

    def _execute(
        self,
        command: str,
        actor_id: UUID | None,
        work: Callable[[Session], dict[str, Any] | None],
    ) -> CommandResult:
        """Run ``work`` in one transaction with retry, mapping engine errors to a result."""

        def attempt() -> dict[str, Any] | None:
            session = self._session_factory()
            try:
                document = work(session)
                session.commit()
                return document
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        with LogContext.bind(command=command, actor_id=actor_id, correlation_id=uuid4()):
            try:
                document = run_with_retry(
                    command,
                    attempt,
                    max_retries=self._config.max_retries,
                    backoff_seconds=self._config.retry_backoff_seconds,
                )
            except ErpKernelError as exc:
                logger.warning(
                    "command_rejected",
                    extra={"command": command, "error_code": exc.code, "reason": str(exc)},
                )
                return CommandResult.failure(exc)
            logger.info("command_succeeded", extra={"command": command})
            return CommandResult.success(document)

    @staticmethod
    def _parse(request_type: type, payload: Any):
        """Accept either a ready request struct or a raw mapping."""
        if isinstance(payload, request_type):
            return payload
        return request_type.from_dict(payload)

    def _run(self, command: str, request_type: type, payload: Any, handler) -> CommandResult:
        try:
            request = self._parse(request_type, payload)
        except ValidationError as exc:
            logger.warning(
                "command_rejected",
                extra={"command": command, "error_code": exc.code, "reason": str(exc)},
            )
            return CommandResult.failure(exc)
        return self._execute(command, request.actor_id, lambda session: handler(session, request))

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    def store_goods_receipt(self, payload: GoodsReceiptRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: GoodsReceiptRequest):
            document = self._fulfillment(session).create_fulfillment(
                kind=FulfillmentKind.GOODS_RECEIPT,
                source_order_ids=request.purchase_order_ids,
                lines=request.lines,
                document_date=request.receipt_date,
                location=request.warehouse,
                party_id=request.supplier_id,
                actor_id=request.actor_id,
                code=request.code,
                note=request.note,
            )
            return goods_receipt_payload(session, document, self._config.money_places)

        return self._run("store_goods_receipt", GoodsReceiptRequest, payload, handler)

    def store_waybill(self, payload: WaybillRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: WaybillRequest):
            document = self._fulfillment(session).create_fulfillment(
                kind=FulfillmentKind.WAYBILL,
                source_order_ids=[request.sales_order_id],
                lines=request.lines,
                document_date=request.waybill_date,
                location=request.branch,
                party_id=request.customer_id,
                actor_id=request.actor_id,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return waybill_payload(session, document, self._config.money_places)

        return self._run("store_waybill", WaybillRequest, payload, handler)

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    @staticmethod
    def _selected_lines(
        billing: BillingService, document_ids, line_ids,
    ) -> list[UUID]:
        selected = list(billing.billable_line_ids(document_ids)) if document_ids else []
        selected.extend(line_id for line_id in line_ids if line_id not in selected)
        return selected

    def store_supplier_invoice(self, payload: SupplierInvoiceRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: SupplierInvoiceRequest):
            billing = self._billing(session)
            document = billing.create_billing(
                kind=BillingKind.SUPPLIER_INVOICE,
                fulfillment_line_ids=self._selected_lines(
                    billing, request.goods_receipt_ids, request.fulfillment_line_ids,
                ),
                party_id=request.supplier_id,
                billing_date=request.invoice_date,
                due_date=request.due_date,
                actor_id=request.actor_id,
                discount=request.discount,
                miscellaneous_cost=request.miscellaneous_cost,
                code=request.code,
                note=request.note,
            )
            return billing_document_data(document)

        return self._run("store_supplier_invoice", SupplierInvoiceRequest, payload, handler)

    def update_supplier_invoice(
        self, billing_id: UUID, payload: SupplierInvoiceRequest | dict[str, Any],
    ) -> CommandResult:
        def handler(session: Session, request: SupplierInvoiceRequest):
            billing = self._billing(session)
            document = billing.update_billing(
                billing_id,
                fulfillment_line_ids=self._selected_lines(
                    billing, request.goods_receipt_ids, request.fulfillment_line_ids,
                ),
                actor_id=request.actor_id,
                discount=request.discount,
                miscellaneous_cost=request.miscellaneous_cost,
                due_date=request.due_date,
                note=request.note,
            )
            return billing_document_data(document)

        return self._run("update_supplier_invoice", SupplierInvoiceRequest, payload, handler)

    def destroy_supplier_invoice(self, billing_id: UUID, actor_id: UUID) -> CommandResult:
        return self._destroy_billing("destroy_supplier_invoice", billing_id, actor_id)

    def store_sales_invoice(self, payload: SalesInvoiceRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: SalesInvoiceRequest):
            billing = self._billing(session)
            document = billing.create_billing(
                kind=BillingKind.SALES_INVOICE,
                fulfillment_line_ids=self._selected_lines(
                    billing, request.waybill_ids, request.fulfillment_line_ids,
                ),
                party_id=request.customer_id,
                billing_date=request.invoice_date,
                due_date=request.due_date,
                actor_id=request.actor_id,
                discount=request.discount,
                tax_rate=request.tax_rate,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return billing_document_data(document)

        return self._run("store_sales_invoice", SalesInvoiceRequest, payload, handler)

    def update_sales_invoice(
        self, billing_id: UUID, payload: SalesInvoiceRequest | dict[str, Any],
    ) -> CommandResult:
        def handler(session: Session, request: SalesInvoiceRequest):
            billing = self._billing(session)
            document = billing.update_billing(
                billing_id,
                fulfillment_line_ids=self._selected_lines(
                    billing, request.waybill_ids, request.fulfillment_line_ids,
                ),
                actor_id=request.actor_id,
                discount=request.discount,
                tax_rate=request.tax_rate,
                due_date=request.due_date,
                note=request.note,
            )
            return billing_document_data(document)

        return self._run("update_sales_invoice", SalesInvoiceRequest, payload, handler)

    def destroy_sales_invoice(self, billing_id: UUID, actor_id: UUID) -> CommandResult:
        return self._destroy_billing("destroy_sales_invoice", billing_id, actor_id)

    def _destroy_billing(self, command: str, billing_id: UUID, actor_id: UUID) -> CommandResult:
        def work(session: Session):
            self._billing(session).delete_billing(billing_id, actor_id=actor_id)
            return {"id": billing_id, "deleted": True}

        return self._execute(command, actor_id, work)

    def store_payment(self, payload: PaymentRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: PaymentRequest):
            payment = self._payments(session).record_payment(
                request.billing_document_id,
                amount=request.amount,
                method=request.method,
                payment_date=request.payment_date,
                actor_id=request.actor_id,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return payment_data(payment)

        return self._run("store_payment", PaymentRequest, payload, handler)

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def store_stock_adjustment(self, payload: StockAdjustmentRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: StockAdjustmentRequest):
            document = self._inventory(session).adjust_stock(
                location=request.location,
                lines=request.lines,
                adjustment_date=request.adjustment_date,
                actor_id=request.actor_id,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return stock_document_data(document)

        return self._run("store_stock_adjustment", StockAdjustmentRequest, payload, handler)

    def store_stock_transfer(self, payload: StockTransferRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: StockTransferRequest):
            document = self._inventory(session).transfer_stock(
                source=request.source,
                destination=request.destination,
                lines=request.lines,
                transfer_date=request.transfer_date,
                actor_id=request.actor_id,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return stock_document_data(document)

        return self._run("store_stock_transfer", StockTransferRequest, payload, handler)

    def store_stock_audit(self, payload: StockAuditRequest | dict[str, Any]) -> CommandResult:
        def handler(session: Session, request: StockAuditRequest):
            document = self._inventory(session).audit_stock(
                location=request.location,
                lines=request.lines,
                audit_date=request.audit_date,
                actor_id=request.actor_id,
                code=request.code,
                branch_initial=request.branch_initial,
                note=request.note,
            )
            return stock_document_data(document)

        return self._run("store_stock_audit", StockAuditRequest, payload, handler)
