"""
Catalog Module (``erp_modules.catalog``).

Stock items and their standard / wholesale unit data.
"""

from erp_modules.catalog.orm import ItemModel
from erp_modules.catalog.service import CatalogService

__all__ = ["CatalogService", "ItemModel"]
