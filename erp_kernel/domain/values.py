"""
Value objects shared by every layer.

``Location`` replaces the polymorphic "class name + id" reference with a
tagged variant: a stock location is either a warehouse or a branch, and the
kind travels with the id everywhere it is stored, compared or logged.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class LocationKind(str, Enum):
    WAREHOUSE = "warehouse"
    BRANCH = "branch"


@dataclass(frozen=True)
class Location:
    """Where stock physically sits."""

    kind: LocationKind
    id: UUID

    def __post_init__(self):
        if not isinstance(self.kind, LocationKind):
            object.__setattr__(self, "kind", LocationKind(self.kind))
        if not isinstance(self.id, UUID):
            object.__setattr__(self, "id", UUID(str(self.id)))

    @classmethod
    def warehouse(cls, location_id: UUID) -> "Location":
        return cls(LocationKind.WAREHOUSE, location_id)

    @classmethod
    def branch(cls, location_id: UUID) -> "Location":
        return cls(LocationKind.BRANCH, location_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class DocumentReference:
    """The document that caused a stock movement (type + code + id)."""

    document_type: str
    code: str
    document_id: UUID | None = None

    def __str__(self) -> str:
        return f"{self.document_type}:{self.code}"
