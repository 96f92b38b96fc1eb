"""
Catalog service: registers items with validated unit data.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from erp_engines.units import UnitSpec
from erp_kernel.exceptions import DocumentNotFoundError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_modules.catalog.orm import ItemModel

logger = get_logger("modules.catalog.service")


class CatalogService(BaseService):

    def create_item(
        self,
        *,
        code: str,
        name: str,
        standard_unit: str,
        actor_id: UUID,
        wholesale_unit: str | None = None,
        wholesale_conversion_factor: Decimal | None = None,
    ) -> ItemModel:
        """
        Create an item.

        Raises:
            InvalidConversionFactorError: wholesale unit without a positive factor.
        """
        UnitSpec(code, standard_unit, wholesale_unit, wholesale_conversion_factor).validate()
        item = ItemModel(
            code=code,
            name=name,
            standard_unit=standard_unit,
            wholesale_unit=wholesale_unit,
            wholesale_conversion_factor=wholesale_conversion_factor if wholesale_unit else None,
            created_by_id=actor_id,
        )
        self.session.add(item)
        self.session.flush()
        logger.info(
            "item_created",
            extra={
                "item_id": str(item.id),
                "item_code": code,
                "standard_unit": standard_unit,
                "wholesale_unit": wholesale_unit,
            },
        )
        return item

    def get_item(self, item_id: UUID) -> ItemModel:
        item = self.session.get(ItemModel, item_id)
        if item is None:
            raise DocumentNotFoundError("item", item_id)
        return item

    def find_by_code(self, code: str) -> ItemModel | None:
        return self.session.execute(
            select(ItemModel).where(ItemModel.code == code)
        ).scalar_one_or_none()
