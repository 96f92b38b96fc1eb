"""
ORM-level immutability enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Each ORM module declares which of its models are frozen, which
fields are covered, and under what condition the freeze applies:

    session.flush()
         |
         v
    [before_update] --> frozen field changed and rule locked? --> ImmutabilityViolationError
         |
    [before_delete] --> rule locked? -----------------------------^
         |
         v
    SQL sent to database (only if checks pass)

A violation aborts the flush, so the enclosing transaction rolls back.

===============================================================================
PROTECTED ENTITIES (declared by their modules)
===============================================================================

Entity               | When immutable                        | Why
---------------------|---------------------------------------|-------------------------------
StockMovementEntry   | Always                                | Running-balance chain
Payment              | Always                                | Append-only payment history
SourceOrderLine      | Once a fulfillment line references it | Remaining quantity would shift
FulfillmentLine      | Once a billing line references it     | Issued invoices are snapshots

updated_at / updated_by_id are metadata and may always change.

===============================================================================
USAGE
===============================================================================

    declare_immutable(PaymentModel, entity_type="Payment")   # in the module orm.py
    register_immutability_listeners()                        # once at startup
    unregister_immutability_listeners()                      # tests only
"""

from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import event, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.orm.attributes import get_history

from erp_kernel.exceptions import ImmutabilityViolationError
from erp_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

LockCheck = Callable[[Connection, Any], str | None]


@dataclass(frozen=True)
class ImmutabilityRule:
    """
    One frozen model.

    ``frozen_fields`` of None covers every column.  ``locked_when`` returns a
    reason string when the row is currently frozen, or None when it may still
    change; a rule without ``locked_when`` is always frozen.
    """

    model: type
    entity_type: str
    frozen_fields: tuple[str, ...] | None = None
    locked_when: LockCheck | None = None
    forbid_delete: bool = True


_RULES: dict[type, ImmutabilityRule] = {}
_installed: list[tuple[type, str, Callable]] = []


def declare_immutable(
    model: type,
    *,
    entity_type: str,
    frozen_fields: tuple[str, ...] | None = None,
    locked_when: LockCheck | None = None,
    forbid_delete: bool = True,
) -> ImmutabilityRule:
    rule = ImmutabilityRule(
        model=model,
        entity_type=entity_type,
        frozen_fields=frozen_fields,
        locked_when=locked_when,
        forbid_delete=forbid_delete,
    )
    _RULES[model] = rule
    return rule


def declared_rules() -> tuple[ImmutabilityRule, ...]:
    return tuple(_RULES.values())


def _changed_fields(rule: ImmutabilityRule, target: Any) -> list[str]:
    if rule.frozen_fields is None:
        names = [attr.key for attr in inspect(rule.model).column_attrs]
    else:
        names = list(rule.frozen_fields)
    return [
        name for name in names
        if name not in _METADATA_FIELDS and get_history(target, name).has_changes()
    ]


def _lock_reason(rule: ImmutabilityRule, connection: Connection, target: Any) -> str | None:
    if rule.locked_when is None:
        return "record is append-only"
    return rule.locked_when(connection, target)


def _make_update_check(rule: ImmutabilityRule) -> Callable:
    def _check_update(mapper, connection, target):
        changed = _changed_fields(rule, target)
        if not changed:
            return
        reason = _lock_reason(rule, connection, target)
        if reason is None:
            return
        logger.error(
            "immutability_violation_update",
            extra={
                "entity_type": rule.entity_type,
                "entity_id": str(target.id),
                "fields": changed,
            },
        )
        raise ImmutabilityViolationError(
            rule.entity_type,
            str(target.id),
            f"{reason}; cannot modify {', '.join(changed)}",
        )

    return _check_update


def _make_delete_check(rule: ImmutabilityRule) -> Callable:
    def _check_delete(mapper, connection, target):
        reason = _lock_reason(rule, connection, target)
        if reason is None:
            return
        logger.error(
            "immutability_violation_delete",
            extra={"entity_type": rule.entity_type, "entity_id": str(target.id)},
        )
        raise ImmutabilityViolationError(
            rule.entity_type, str(target.id), f"{reason}; cannot delete"
        )

    return _check_delete


def register_immutability_listeners() -> None:
    """Install listeners for every declared rule (idempotent)."""
    if _installed:
        return
    for rule in _RULES.values():
        update_fn = _make_update_check(rule)
        event.listen(rule.model, "before_update", update_fn)
        _installed.append((rule.model, "before_update", update_fn))
        if rule.forbid_delete:
            delete_fn = _make_delete_check(rule)
            event.listen(rule.model, "before_delete", delete_fn)
            _installed.append((rule.model, "before_delete", delete_fn))
    logger.info("immutability_listeners_registered", extra={"rule_count": len(_RULES)})


def unregister_immutability_listeners() -> None:
    """Remove all installed listeners. FOR TESTING ONLY."""
    while _installed:
        model, name, fn = _installed.pop()
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
