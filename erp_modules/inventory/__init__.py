"""
Inventory Module (``erp_modules.inventory``).

Responsibility
--------------
The stock movement ledger (append-only entries per item and location with a
cached running balance) and the operational documents that drive it:
adjustments, transfers and physical audits.

Invariants enforced
-------------------
* Running-balance chain per (item, location).
* No negative stock.
* Movement entries are never updated or deleted.
"""

from erp_modules.inventory.ledger import StockLedger
from erp_modules.inventory.models import (
    AdjustmentLine,
    AdjustmentType,
    AuditLine,
    MovementType,
    StockMovementEntry,
    TransferLine,
)
from erp_modules.inventory.service import InventoryService

__all__ = [
    "AdjustmentLine",
    "AdjustmentType",
    "AuditLine",
    "InventoryService",
    "MovementType",
    "StockLedger",
    "StockMovementEntry",
    "TransferLine",
]
