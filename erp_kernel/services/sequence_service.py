"""
DocumentCodeService -- document code allocation via locked counter rows.

Responsibility:
    Issues human-facing document codes such as ``GR-2503-0007`` or, for
    branch-specific document types, ``WB-JKT-2503-0012``.  The running
    number restarts every month and is kept per (document type, period,
    branch) in a dedicated counter table.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the
    fulfillment, billing and inventory module services when the caller
    does not supply a code.

Invariants enforced:
    - Codes are unique per document type: the counter row is read with
      ``SELECT ... FOR UPDATE`` and incremented, never derived from
      max(code) + 1.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the number.

Failure modes:
    - IntegrityError on concurrent counter creation, handled via savepoint
      rollback and re-read under lock.
    - ValidationError when a branch-specific document type is requested
      without a branch initial.
"""

from datetime import date

from sqlalchemy import String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from erp_kernel.db.base import Base
from erp_kernel.exceptions import ValidationError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class DocumentSequenceModel(Base):
    """
    Counter row for one (document type, YYMM period, branch scope).

    ``scope`` is the branch initial for branch-specific documents and the
    empty string otherwise, so the unique constraint also covers the
    non-branch case.
    """

    __tablename__ = "document_sequences"

    __table_args__ = (
        UniqueConstraint("document_type", "period", "scope", name="uq_document_sequence"),
    )

    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    period: Mapped[str] = mapped_column(String(4), nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)


# Prefixes used when no configuration overrides them.
DEFAULT_PREFIXES: dict[str, str] = {
    "purchase_order": "PO",
    "goods_receipt": "GR",
    "supplier_invoice": "PI",
    "supplier_payment": "PIP",
    "sales_order": "SO",
    "waybill": "WB",
    "sales_invoice": "SI",
    "sales_payment": "SIP",
    "stock_adjustment": "SA",
    "stock_transfer": "ST",
    "stock_audit": "SAU",
}

DEFAULT_BRANCH_SPECIFIC: frozenset[str] = frozenset({
    "purchase_order",
    "supplier_payment",
    "sales_order",
    "waybill",
    "sales_invoice",
    "sales_payment",
    "stock_adjustment",
    "stock_transfer",
    "stock_audit",
})


def format_document_code(
    prefix: str, on_date: date, number: int, branch_initial: str | None = None,
) -> str:
    period = on_date.strftime("%y%m")
    if branch_initial:
        return f"{prefix}-{branch_initial}-{period}-{number:04d}"
    return f"{prefix}-{period}-{number:04d}"


class DocumentCodeService:
    """
    Allocates document codes inside the caller's transaction.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
        - Does NOT reserve codes ahead of document creation.
    """

    def __init__(
        self,
        session: Session,
        prefixes: dict[str, str] | None = None,
        branch_specific: frozenset[str] | None = None,
    ):
        self._session = session
        self._prefixes = dict(DEFAULT_PREFIXES)
        if prefixes:
            self._prefixes.update(prefixes)
        self._branch_specific = (
            DEFAULT_BRANCH_SPECIFIC if branch_specific is None else frozenset(branch_specific)
        )

    def is_branch_specific(self, document_type: str) -> bool:
        return document_type in self._branch_specific

    def next_value(self, document_type: str, period: str, scope: str = "") -> int:
        """
        Lock (or create) the counter row and return its incremented value.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for the same (type, period, scope).
        """
        stmt = (
            select(DocumentSequenceModel)
            .where(
                DocumentSequenceModel.document_type == document_type,
                DocumentSequenceModel.period == period,
                DocumentSequenceModel.scope == scope,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = self._session.execute(stmt).scalar_one_or_none()

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = DocumentSequenceModel(
                    document_type=document_type, period=period, scope=scope, current_value=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "document_sequence_allocated",
                    extra={"document_type": document_type, "period": period, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "document_sequence_race_retry",
                    extra={"document_type": document_type, "period": period},
                )
                savepoint.rollback()
                counter = self._session.execute(stmt).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "document_sequence_allocated",
            extra={
                "document_type": document_type,
                "period": period,
                "value": counter.current_value,
            },
        )
        return counter.current_value

    def next_code(
        self, document_type: str, on_date: date, branch_initial: str | None = None,
    ) -> str:
        """
        Allocate the next code for a document type.

        Raises:
            KeyError: unknown document type.
            ValidationError: branch-specific type requested without a branch initial.
        """
        prefix = self._prefixes[document_type]
        scope = ""
        if self.is_branch_specific(document_type):
            if not branch_initial:
                raise ValidationError(
                    f"{document_type} codes are branch specific; a branch initial is required",
                    [{"field": "branch_initial", "message": "required"}],
                )
            scope = branch_initial
        number = self.next_value(document_type, on_date.strftime("%y%m"), scope)
        return format_document_code(prefix, on_date, number, scope or None)
