"""
Inventory Domain Models.

The nouns of the stock ledger: movement types and immutable movement entries.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from erp_kernel.domain.values import DocumentReference, Location


class MovementType(str, Enum):
    """Stock movement types and their sign convention."""
    IN = "in"                # receipt, adds
    OUT = "out"              # shipment, subtracts
    INCREASED = "increased"  # adjustment / transfer in, adds
    DECREASED = "decreased"  # adjustment / transfer out, subtracts
    BALANCED = "balanced"    # audit, sets an absolute level

    @property
    def sign(self) -> int:
        """+1 adds, -1 subtracts, 0 sets an absolute value."""
        if self in (MovementType.IN, MovementType.INCREASED):
            return 1
        if self in (MovementType.OUT, MovementType.DECREASED):
            return -1
        return 0


class AdjustmentType(str, Enum):
    INCREASED = "increased"
    DECREASED = "decreased"


@dataclass(frozen=True)
class StockMovementEntry:
    """One immutable stock balance change."""
    id: UUID
    item_id: UUID
    location: Location
    seq: int
    movement_type: MovementType
    previous_quantity: Decimal
    movement_quantity: Decimal
    after_quantity: Decimal
    reference: DocumentReference
    actor_id: UUID
    occurred_at: datetime

    def reconciles(self) -> bool:
        """True when after = previous +/- movement under the type's sign."""
        sign = self.movement_type.sign
        if sign > 0:
            return self.after_quantity == self.previous_quantity + self.movement_quantity
        if sign < 0:
            return self.after_quantity == self.previous_quantity - self.movement_quantity
        return self.movement_quantity == abs(self.after_quantity - self.previous_quantity)


@dataclass(frozen=True)
class AdjustmentLine:
    item_id: UUID
    adjustment_type: AdjustmentType
    quantity: Decimal
    reason: str = ""


@dataclass(frozen=True)
class TransferLine:
    item_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class AuditLine:
    item_id: UUID
    physical_quantity: Decimal
    reason: str = ""
