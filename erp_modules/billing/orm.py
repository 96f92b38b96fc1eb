"""
Module: erp_modules.billing.orm
Responsibility: ORM models for billing documents (supplier and sales
    invoices), their lines and the payments recorded against them.
Architecture position: Modules > Billing > ORM.

Invariants enforced:
    - A fulfillment line is covered by at most one billing line
      (UNIQUE fulfillment_line_id).
    - Payments are append-only: never updated, never deleted (listener).
    - A fulfillment line cannot change or be deleted once billed (listener).
    - amount > 0 on payments (CHECK constraint).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, TrackedBase
from erp_kernel.db.immutability import declare_immutable
from erp_modules.fulfillment.orm import FulfillmentLineModel


class BillingDocumentModel(TrackedBase):
    """A supplier invoice or a sales invoice."""

    __tablename__ = "billing_documents"

    __table_args__ = (
        UniqueConstraint("kind", "code", name="uq_billing_document_code"),
        Index("idx_billing_party_status", "kind", "party_id", "status"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    billing_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    party_id: Mapped[UUID] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    discount_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_mode: Mapped[str] = mapped_column(String(30), nullable=False)
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    miscellaneous_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["BillingLineModel"]] = relationship(
        back_populates="billing_document",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    payments: Mapped[list["PaymentModel"]] = relationship(
        back_populates="billing_document",
        lazy="selectin",
        order_by="(PaymentModel.payment_date, PaymentModel.code)",
    )

    @property
    def fulfillment_line_ids(self) -> set[UUID]:
        return {line.fulfillment_line_id for line in self.lines}

    def __repr__(self) -> str:
        return f"<BillingDocumentModel {self.kind} {self.code} [{self.status}] {self.grand_total}>"


class BillingLineModel(Base):
    """Snapshot of one fulfillment line on a billing document."""

    __tablename__ = "billing_lines"

    __table_args__ = (
        UniqueConstraint("fulfillment_line_id", name="uq_billing_line_fulfillment_line"),
        Index("idx_billing_line_document", "billing_document_id"),
        Index("idx_billing_line_fulfillment_document", "fulfillment_document_id"),
    )

    billing_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_documents.id"), nullable=False,
    )
    fulfillment_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("fulfillment_lines.id"), nullable=False,
    )
    fulfillment_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("fulfillment_documents.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    billing_document: Mapped["BillingDocumentModel"] = relationship(back_populates="lines")
    fulfillment_line: Mapped[FulfillmentLineModel] = relationship(lazy="joined")


class PaymentModel(TrackedBase):
    """One payment against a billing document. Append-only."""

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        UniqueConstraint("code", name="uq_payment_code"),
        Index("idx_payment_billing_document", "billing_document_id"),
    )

    billing_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_documents.id"), nullable=False,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    billing_document: Mapped["BillingDocumentModel"] = relationship(back_populates="payments")

    @property
    def actor_id(self) -> UUID:
        return self.created_by_id

    def __repr__(self) -> str:
        return f"<PaymentModel {self.code} {self.amount}>"


def _fulfillment_line_billed(connection, target) -> str | None:
    billed = connection.execute(
        select(func.count())
        .select_from(BillingLineModel.__table__)
        .where(BillingLineModel.__table__.c.fulfillment_line_id == target.id)
    ).scalar_one()
    return "fulfillment line has been billed" if billed else None


declare_immutable(PaymentModel, entity_type="Payment")

declare_immutable(
    FulfillmentLineModel,
    entity_type="FulfillmentLine",
    frozen_fields=(
        "fulfillment_document_id",
        "source_order_line_id",
        "item_id",
        "received_quantity",
        "unit_price",
        "total_price",
        "tax_amount",
    ),
    locked_when=_fulfillment_line_billed,
)
