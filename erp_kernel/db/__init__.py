"""Database layer - engine, base classes, types, and immutability listeners."""

from erp_kernel.db.base import UUID, Base, ExactDecimal, TrackedBase, UUIDString
from erp_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from erp_kernel.db.types import round_money, round_quantity

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "ExactDecimal",
    "UUID",
    "round_money",
    "round_quantity",
]
