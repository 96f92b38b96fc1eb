"""
Module: erp_modules.fulfillment.orm
Responsibility: ORM models for source orders (purchase / sales orders and
    their lines) and fulfillment documents (goods receipts / waybills, their
    lines and the join to the orders they draw from).
Architecture position: Modules > Fulfillment > ORM.

Invariants enforced:
    - ordered_quantity > 0 (CHECK constraint).
    - A source order line cannot change quantity, price or item, and cannot
      be deleted, once a fulfillment line references it (listener).
    - A fulfillment document is linked to each source order at most once.
    - Parties (suppliers, customers) and locations are opaque UUIDs with NO
      foreign key; they are owned outside this engine.
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
from erp_kernel.domain.values import Location, LocationKind
from erp_modules.catalog.orm import ItemModel


class SourceOrderModel(TrackedBase):
    """A purchase order or a sales order."""

    __tablename__ = "source_orders"

    __table_args__ = (
        UniqueConstraint("kind", "code", name="uq_source_order_code"),
        Index("idx_source_order_party", "kind", "party_id"),
        Index("idx_source_order_status", "status"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    party_id: Mapped[UUID] = mapped_column(nullable=False)
    # Percent, e.g. 11 for 11%
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    location_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    location_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    lines: Mapped[list["SourceOrderLineModel"]] = relationship(
        back_populates="source_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SourceOrderLineModel.line_number",
    )

    @property
    def location(self) -> Location | None:
        if self.location_kind is None or self.location_id is None:
            return None
        return Location(LocationKind(self.location_kind), self.location_id)

    def __repr__(self) -> str:
        return f"<SourceOrderModel {self.kind} {self.code} [{self.status}]>"


class SourceOrderLineModel(TrackedBase):
    """One ordered item on a source order, priced in the item's standard unit."""

    __tablename__ = "source_order_lines"

    __table_args__ = (
        UniqueConstraint("source_order_id", "line_number", name="uq_source_order_line_number"),
        CheckConstraint("ordered_quantity > 0", name="ck_source_order_line_quantity_positive"),
        Index("idx_source_order_line_item", "item_id"),
    )

    source_order_id: Mapped[UUID] = mapped_column(ForeignKey("source_orders.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    ordered_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    source_order: Mapped["SourceOrderModel"] = relationship(back_populates="lines")
    item: Mapped[ItemModel] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<SourceOrderLineModel {self.source_order_id}#{self.line_number} x{self.ordered_quantity}>"


class FulfillmentDocumentModel(TrackedBase):
    """A goods receipt or a waybill."""

    __tablename__ = "fulfillment_documents"

    __table_args__ = (
        UniqueConstraint("kind", "code", name="uq_fulfillment_document_code"),
        Index("idx_fulfillment_party", "kind", "party_id"),
        Index("idx_fulfillment_status", "status"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    document_date: Mapped[date] = mapped_column(Date, nullable=False)
    party_id: Mapped[UUID] = mapped_column(nullable=False)
    location_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_invoiced")
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    sources: Mapped[list["FulfillmentDocumentSourceModel"]] = relationship(
        back_populates="fulfillment_document",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    lines: Mapped[list["FulfillmentLineModel"]] = relationship(
        back_populates="fulfillment_document",
        lazy="selectin",
        order_by="FulfillmentLineModel.line_number",
    )

    @property
    def location(self) -> Location:
        return Location(LocationKind(self.location_kind), self.location_id)

    @property
    def source_order_ids(self) -> list[UUID]:
        return [s.source_order_id for s in self.sources]

    def __repr__(self) -> str:
        return f"<FulfillmentDocumentModel {self.kind} {self.code} [{self.status}]>"


class FulfillmentDocumentSourceModel(Base):
    """Join between a fulfillment document and a source order it draws from."""

    __tablename__ = "fulfillment_document_sources"

    __table_args__ = (
        UniqueConstraint(
            "fulfillment_document_id", "source_order_id",
            name="uq_fulfillment_document_source",
        ),
        Index("idx_fulfillment_source_order", "source_order_id"),
    )

    fulfillment_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("fulfillment_documents.id"), nullable=False,
    )
    source_order_id: Mapped[UUID] = mapped_column(ForeignKey("source_orders.id"), nullable=False)

    fulfillment_document: Mapped["FulfillmentDocumentModel"] = relationship(back_populates="sources")
    source_order: Mapped["SourceOrderModel"] = relationship(lazy="joined")


class FulfillmentLineModel(TrackedBase):
    """Quantity actually received or shipped against one source order line."""

    __tablename__ = "fulfillment_lines"

    __table_args__ = (
        UniqueConstraint("fulfillment_document_id", "line_number", name="uq_fulfillment_line_number"),
        CheckConstraint("received_quantity > 0", name="ck_fulfillment_line_quantity_positive"),
        Index("idx_fulfillment_line_source_line", "source_order_line_id"),
    )

    fulfillment_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("fulfillment_documents.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    source_order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("source_order_lines.id"), nullable=False,
    )
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    # Standard units
    received_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    # Copied from the order line at creation
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    stock_movement_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("stock_movements.id"), nullable=True,
    )

    fulfillment_document: Mapped["FulfillmentDocumentModel"] = relationship(back_populates="lines")
    source_line: Mapped["SourceOrderLineModel"] = relationship(lazy="joined")

    @property
    def total_amount(self) -> Decimal:
        return self.total_price + self.tax_amount

    def __repr__(self) -> str:
        return f"<FulfillmentLineModel {self.fulfillment_document_id}#{self.line_number} x{self.received_quantity}>"


def _source_line_fulfilled(connection, target) -> str | None:
    fulfilled = connection.execute(
        select(func.count())
        .select_from(FulfillmentLineModel.__table__)
        .where(FulfillmentLineModel.__table__.c.source_order_line_id == target.id)
    ).scalar_one()
    return "order line has been fulfilled" if fulfilled else None


declare_immutable(
    SourceOrderLineModel,
    entity_type="SourceOrderLine",
    frozen_fields=("source_order_id", "item_id", "ordered_quantity", "unit_price"),
    locked_when=_source_line_fulfilled,
)
