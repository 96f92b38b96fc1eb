"""
BaseService -- abstract base for services that write.

Responsibility:
    Common constructor for every write-side service.  Services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()`` -- so that a fulfillment, its quantity
    reservations and its stock movements commit or roll back together.

Invariants enforced:
    Transaction boundaries belong to the caller (the command layer or a
    test harness).  A service that commits would break whole-document
    atomicity.
"""

from abc import ABC

from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for write-side services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries; those live in selectors.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
