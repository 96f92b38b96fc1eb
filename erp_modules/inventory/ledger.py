"""
Stock Movement Ledger (``erp_modules.inventory.ledger``).

Responsibility
--------------
Appends immutable stock movement entries per (item, location) and keeps the
cached stock level in step with them.  Every inventory change in the engine
(receipts, shipments, adjustments, transfers, audits) goes through
``StockLedger.append``.

Architecture position
---------------------
**Modules layer** -- flush-only service.  Runs inside the caller's
transaction so a goods receipt or waybill and its movements commit or roll
back together.

Invariants enforced
-------------------
* Running balance: each entry's previous_quantity equals the after_quantity
  of the entry before it for the same (item, location); the cached level
  equals the last entry's after_quantity.
* Sign convention: in/increased add, out/decreased subtract, balanced sets
  an absolute level and records ``|after - previous|``.
* The stock level row is read with ``SELECT ... FOR UPDATE`` before the
  balance is computed, so two concurrent appends cannot both start from the
  same previous quantity.
* No negative stock: a subtraction below zero raises NegativeStockError
  before the entry is written.

Failure modes
-------------
* ZeroOrNegativeQuantityError -- non-positive movement quantity.
* NegativeStockError -- outflow larger than the available quantity.
* StockChainBrokenError -- ``verify_chain`` found a break.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from erp_kernel.db.types import ZERO, round_quantity
from erp_kernel.domain.values import DocumentReference, Location
from erp_kernel.exceptions import (
    NegativeStockError,
    StockChainBrokenError,
    ValidationError,
    ZeroOrNegativeQuantityError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_modules.catalog.orm import ItemModel
from erp_modules.inventory.models import MovementType
from erp_modules.inventory.orm import StockLevelModel, StockMovementModel

logger = get_logger("modules.inventory.ledger")

_COMPENSATION = {
    MovementType.IN: MovementType.OUT,
    MovementType.OUT: MovementType.IN,
    MovementType.INCREASED: MovementType.DECREASED,
    MovementType.DECREASED: MovementType.INCREASED,
}


class StockLedger(BaseService):
    """
    Append-only stock movement ledger.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
        - Does NOT track batches or cost layers.
    """

    def _level_query(self, item_id: UUID, location: Location):
        return select(StockLevelModel).where(
            StockLevelModel.item_id == item_id,
            StockLevelModel.location_kind == location.kind.value,
            StockLevelModel.location_id == location.id,
        )

    def _lock_level(self, item_id: UUID, location: Location) -> StockLevelModel:
        """Lock the level row for (item, location), creating it at zero if absent."""
        stmt = (
            self._level_query(item_id, location)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        level = self.session.execute(stmt).scalar_one_or_none()
        if level is not None:
            return level

        savepoint = self.session.begin_nested()
        try:
            level = StockLevelModel(
                item_id=item_id,
                location_kind=location.kind.value,
                location_id=location.id,
                quantity=ZERO,
                last_seq=0,
                updated_at=self.clock.now(),
            )
            self.session.add(level)
            self.session.flush()
            savepoint.commit()
            return level
        except IntegrityError:
            logger.debug(
                "stock_level_create_race_retry",
                extra={"item_id": str(item_id), "location": str(location)},
            )
            savepoint.rollback()
            return self.session.execute(stmt).scalar_one()

    def lock_levels(self, pairs: Iterable[tuple[UUID, Location]]) -> None:
        """Lock the level rows of several (item, location) pairs up front.

        Rows are taken in (item, location kind, location id) order so that
        two documents moving the same items never wait on each other crosswise.
        """
        ordered = sorted(set(pairs), key=lambda pair: (str(pair[0]), pair[1].kind.value, str(pair[1].id)))
        for item_id, location in ordered:
            self._lock_level(item_id, location)

    def _item_code(self, item_id: UUID) -> str:
        item = self.session.get(ItemModel, item_id)
        return item.code if item is not None else str(item_id)

    def append(
        self,
        item_id: UUID,
        location: Location,
        movement_type: MovementType | str,
        movement_quantity: Decimal,
        reference: DocumentReference,
        actor_id: UUID,
        allow_negative: bool = False,
    ) -> StockMovementModel:
        """
        Append one movement and update the cached level.

        For BALANCED, ``movement_quantity`` is the absolute level to set.
        ``allow_negative`` lets a subtraction take the level below zero.

        Raises:
            ZeroOrNegativeQuantityError: quantity <= 0 for additive/subtractive types.
            ValidationError: negative target level for BALANCED.
            NegativeStockError: subtraction would go below zero.
        """
        movement_type = MovementType(movement_type)
        quantity = round_quantity(movement_quantity)
        sign = movement_type.sign

        if sign != 0 and quantity <= ZERO:
            raise ZeroOrNegativeQuantityError("movement_quantity", quantity)
        if sign == 0 and quantity < ZERO:
            raise ValidationError(
                f"balanced stock level cannot be negative, got {quantity}",
                [{"field": "physical_quantity", "message": "must not be negative"}],
            )

        level = self._lock_level(item_id, location)
        previous = level.quantity

        if sign > 0:
            after = previous + quantity
            recorded = quantity
        elif sign < 0:
            after = previous - quantity
            recorded = quantity
            if after < ZERO and not allow_negative:
                logger.warning(
                    "negative_stock_rejected",
                    extra={
                        "item_id": str(item_id),
                        "location": str(location),
                        "available": previous,
                        "requested": quantity,
                        "reference": str(reference),
                    },
                )
                raise NegativeStockError(
                    self._item_code(item_id), str(location), previous, quantity,
                )
        else:
            after = quantity
            recorded = abs(after - previous)

        now = self.clock.now()
        seq = level.last_seq + 1
        entry = StockMovementModel(
            item_id=item_id,
            location_kind=location.kind.value,
            location_id=location.id,
            seq=seq,
            movement_type=movement_type.value,
            previous_quantity=previous,
            movement_quantity=recorded,
            after_quantity=after,
            reference_type=reference.document_type,
            reference_code=reference.code,
            reference_id=reference.document_id,
            actor_id=actor_id,
            occurred_at=now,
        )
        self.session.add(entry)
        level.quantity = after
        level.last_seq = seq
        level.updated_at = now
        self.session.flush()

        logger.info(
            "stock_movement_appended",
            extra={
                "item_id": str(item_id),
                "location": str(location),
                "seq": seq,
                "movement_type": movement_type.value,
                "previous_quantity": previous,
                "movement_quantity": recorded,
                "after_quantity": after,
                "reference": str(reference),
            },
        )
        return entry

    def compensate(
        self, entry_id: UUID, reference: DocumentReference, actor_id: UUID,
    ) -> StockMovementModel:
        """
        Append the movement that reverses an earlier entry.

        BALANCED entries are compensated by balancing back to their
        previous_quantity.
        """
        original = self.session.get(StockMovementModel, entry_id)
        if original is None:
            raise ValidationError(
                f"stock movement not found: {entry_id}",
                [{"field": "entry_id", "message": "not found"}],
            )
        original_type = MovementType(original.movement_type)
        if original_type == MovementType.BALANCED:
            return self.append(
                original.item_id, original.location, MovementType.BALANCED,
                original.previous_quantity, reference, actor_id,
            )
        return self.append(
            original.item_id,
            original.location,
            _COMPENSATION[original_type],
            original.movement_quantity,
            reference,
            actor_id,
        )

    def current_level(self, item_id: UUID, location: Location) -> Decimal:
        level = self.session.execute(self._level_query(item_id, location)).scalar_one_or_none()
        return level.quantity if level is not None else ZERO

    def entries_for(self, item_id: UUID, location: Location) -> list[StockMovementModel]:
        return list(
            self.session.execute(
                select(StockMovementModel)
                .where(
                    StockMovementModel.item_id == item_id,
                    StockMovementModel.location_kind == location.kind.value,
                    StockMovementModel.location_id == location.id,
                )
                .order_by(StockMovementModel.seq)
            ).scalars()
        )

    def verify_chain(self, item_id: UUID, location: Location) -> int:
        """
        Check continuity, sign convention and cached level for one pair.

        Returns:
            Number of entries verified.

        Raises:
            StockChainBrokenError: on the first inconsistency found.
        """
        where = str(location)
        expected_previous = ZERO
        entries = self.entries_for(item_id, location)
        for position, entry in enumerate(entries, start=1):
            if entry.seq != position:
                raise StockChainBrokenError(item_id, where, entry.seq, f"expected seq {position}")
            if entry.previous_quantity != expected_previous:
                raise StockChainBrokenError(
                    item_id, where, entry.seq,
                    f"previous_quantity {entry.previous_quantity} != "
                    f"prior after_quantity {expected_previous}",
                )
            if not entry.to_dto().reconciles():
                raise StockChainBrokenError(
                    item_id, where, entry.seq,
                    f"{entry.movement_type} does not reconcile "
                    f"{entry.previous_quantity} -> {entry.after_quantity}",
                )
            expected_previous = entry.after_quantity

        cached = self.current_level(item_id, location)
        if cached != expected_previous:
            raise StockChainBrokenError(
                item_id, where, len(entries),
                f"cached level {cached} != last after_quantity {expected_previous}",
            )
        return len(entries)

    def all_pairs(self) -> list[tuple[UUID, Location]]:
        """Every (item, location) with a stock level row."""
        rows = self.session.execute(select(StockLevelModel)).scalars()
        return [(row.item_id, row.location) for row in rows]
