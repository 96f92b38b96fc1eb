"""
Pure domain layer.

Immutable value objects and the injectable clock.  No ORM, no database,
no I/O.
"""

from erp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from erp_kernel.domain.values import DocumentReference, Location, LocationKind

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DocumentReference",
    "Location",
    "LocationKind",
]
