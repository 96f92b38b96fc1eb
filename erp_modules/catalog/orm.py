"""
Module: erp_modules.catalog.orm
Responsibility: ORM model for stock items and their unit data.
Architecture position: Modules > Catalog > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - ``code`` is unique.
    - A wholesale unit implies a positive ``wholesale_conversion_factor``
      (checked by CatalogService and the unit resolver).
"""

from decimal import Decimal

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_engines.units import UnitSpec
from erp_kernel.db.base import TrackedBase


class ItemModel(TrackedBase):
    """A stock item.  Quantities for it are always stored in ``standard_unit``."""

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_item_code"),
        Index("idx_item_name", "name"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Abbreviation of the standard unit, e.g. "pcs"
    standard_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    wholesale_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    wholesale_conversion_factor: Mapped[Decimal | None] = mapped_column(nullable=True)

    def unit_spec(self) -> UnitSpec:
        return UnitSpec(
            item_code=self.code,
            standard_unit=self.standard_unit,
            wholesale_unit=self.wholesale_unit,
            conversion_factor=self.wholesale_conversion_factor,
        )

    def __repr__(self) -> str:
        return f"<ItemModel {self.code} [{self.standard_unit}]>"
