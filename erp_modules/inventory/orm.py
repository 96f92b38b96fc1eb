"""
Module: erp_modules.inventory.orm
Responsibility: ORM models for the stock ledger (cached levels and append-only
    movement entries) and for the operational documents that drive it
    (adjustments, transfers, audits).
Architecture position: Modules > Inventory > ORM.

Invariants enforced:
    - One StockLevelModel row per (item, location kind, location id).  It is
      the row locked while a movement is appended.
    - StockMovementModel rows are append-only; ``seq`` is unique per
      (item, location) and starts at 1.
    - StockLevelModel.quantity equals the after_quantity of the entry whose
      seq equals StockLevelModel.last_seq.
    - Locations are stored as (kind, id) pairs with NO foreign key; branches
      and warehouses are owned outside this engine.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, TrackedBase
from erp_kernel.db.immutability import declare_immutable
from erp_kernel.domain.values import DocumentReference, Location, LocationKind


class StockLevelModel(Base):
    """Cached current quantity of an item at a location."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("item_id", "location_kind", "location_id", name="uq_stock_level"),
        Index("idx_stock_level_location", "location_kind", "location_id"),
    )

    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    location_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[UUID] = mapped_column(nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    last_seq: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def location(self) -> Location:
        return Location(LocationKind(self.location_kind), self.location_id)

    def __repr__(self) -> str:
        return f"<StockLevelModel {self.item_id} @ {self.location_kind}:{self.location_id} = {self.quantity}>"


class StockMovementModel(Base):
    """One append-only stock movement entry."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint(
            "item_id", "location_kind", "location_id", "seq",
            name="uq_stock_movement_seq",
        ),
        Index("idx_stock_movement_occurred", "occurred_at"),
        Index("idx_stock_movement_reference", "reference_type", "reference_id"),
        Index("idx_stock_movement_type", "movement_type"),
    )

    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    location_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[UUID] = mapped_column(nullable=False)
    seq: Mapped[int] = mapped_column(nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    movement_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    after_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_code: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def location(self) -> Location:
        return Location(LocationKind(self.location_kind), self.location_id)

    def to_dto(self):
        from erp_modules.inventory.models import MovementType, StockMovementEntry

        return StockMovementEntry(
            id=self.id,
            item_id=self.item_id,
            location=self.location,
            seq=self.seq,
            movement_type=MovementType(self.movement_type),
            previous_quantity=self.previous_quantity,
            movement_quantity=self.movement_quantity,
            after_quantity=self.after_quantity,
            reference=DocumentReference(self.reference_type, self.reference_code, self.reference_id),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovementModel {self.item_id} #{self.seq} {self.movement_type} "
            f"{self.previous_quantity}->{self.after_quantity}>"
        )


declare_immutable(StockMovementModel, entity_type="StockMovementEntry")


# ---------------------------------------------------------------------------
# Operational documents
# ---------------------------------------------------------------------------


class StockAdjustmentModel(TrackedBase):
    """Manual increase or decrease of stock at one location."""

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_adjustment_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    adjustment_date: Mapped[date] = mapped_column(Date, nullable=False)
    location_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[UUID] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["StockAdjustmentLineModel"]] = relationship(
        back_populates="adjustment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockAdjustmentLineModel(Base):
    __tablename__ = "stock_adjustment_lines"

    adjustment_id: Mapped[UUID] = mapped_column(ForeignKey("stock_adjustments.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    movement_id: Mapped[UUID] = mapped_column(ForeignKey("stock_movements.id"), nullable=False)

    adjustment: Mapped["StockAdjustmentModel"] = relationship(back_populates="lines")


class StockTransferModel(TrackedBase):
    """Move stock from one location to another."""

    __tablename__ = "stock_transfers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_transfer_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    source_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[UUID] = mapped_column(nullable=False)
    destination_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    destination_id: Mapped[UUID] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["StockTransferLineModel"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockTransferLineModel(Base):
    __tablename__ = "stock_transfer_lines"

    transfer_id: Mapped[UUID] = mapped_column(ForeignKey("stock_transfers.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    outbound_movement_id: Mapped[UUID] = mapped_column(ForeignKey("stock_movements.id"), nullable=False)
    inbound_movement_id: Mapped[UUID] = mapped_column(ForeignKey("stock_movements.id"), nullable=False)

    transfer: Mapped["StockTransferModel"] = relationship(back_populates="lines")


class StockAuditModel(TrackedBase):
    """Physical count reconciled against the system quantity."""

    __tablename__ = "stock_audits"

    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_audit_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    audit_date: Mapped[date] = mapped_column(Date, nullable=False)
    location_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    location_id: Mapped[UUID] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["StockAuditLineModel"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockAuditLineModel(Base):
    __tablename__ = "stock_audit_lines"

    audit_id: Mapped[UUID] = mapped_column(ForeignKey("stock_audits.id"), nullable=False)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("items.id"), nullable=False)
    system_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    physical_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    discrepancy: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    movement_id: Mapped[UUID | None] = mapped_column(ForeignKey("stock_movements.id"), nullable=True)

    audit: Mapped["StockAuditModel"] = relationship(back_populates="lines")
