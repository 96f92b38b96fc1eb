"""
Module: erp_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    back the query endpoints consumed by UI forms and reports.
Architecture position: Kernel > Selectors.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - Session ownership: the caller owns the session and its snapshot.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Subclasses implement domain-specific queries and return plain dicts or
    frozen dataclasses, never ORM instances.
    """

    def __init__(self, session: Session):
        self.session = session
