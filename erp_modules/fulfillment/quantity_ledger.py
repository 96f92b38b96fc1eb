"""
Quantity Ledger (``erp_modules.fulfillment.quantity_ledger``).

Responsibility
--------------
Tracks how much of each source order line has been drawn by fulfillment
lines.  There is no stored "remaining" counter: remaining quantity is always
``ordered - sum(received)`` over the fulfillment lines that exist, so a
deleted or rolled-back fulfillment line gives its quantity back without any
bookkeeping.

Architecture position
---------------------
**Modules layer** -- flush-only.  ``reserve`` locks the source order line
row (``SELECT ... FOR UPDATE``) and checks the remaining quantity under that
lock; the caller then writes the fulfillment line in the same transaction
before the lock is released.

Invariants enforced
-------------------
* Conservation: ``sum(received) <= ordered`` for every source order line.
* Requested quantities must be strictly positive.

Failure modes
-------------
* OverReceiptError -- requested quantity exceeds the remaining quantity.
* ZeroOrNegativeQuantityError -- requested quantity <= 0.
* DocumentNotFoundError -- unknown source order line.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from erp_kernel.db.types import ZERO, round_quantity
from erp_kernel.exceptions import (
    DocumentNotFoundError,
    OverReceiptError,
    ZeroOrNegativeQuantityError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_modules.fulfillment.models import SourceLineBalance
from erp_modules.fulfillment.orm import FulfillmentLineModel, SourceOrderLineModel

logger = get_logger("modules.fulfillment.quantity_ledger")


class QuantityLedger(BaseService):
    """Drawn and remaining quantities of source order lines."""

    def lock_line(self, source_line_id: UUID) -> SourceOrderLineModel:
        """Lock one source order line for the rest of the transaction."""
        line = self.session.execute(
            select(SourceOrderLineModel)
            .where(SourceOrderLineModel.id == source_line_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if line is None:
            raise DocumentNotFoundError("SourceOrderLine", source_line_id)
        return line

    def lock_lines(self, source_line_ids: Iterable[UUID]) -> dict[UUID, SourceOrderLineModel]:
        """Lock several lines in id order so concurrent callers never cross."""
        return {line_id: self.lock_line(line_id) for line_id in sorted(set(source_line_ids), key=str)}

    def received_by_line(self, source_line_ids: Iterable[UUID]) -> dict[UUID, Decimal]:
        """Total quantity drawn so far per source order line.

        Summed over Decimal rows in Python; the stored text form on SQLite
        cannot be added up in SQL without going through float.
        """
        line_ids = list(set(source_line_ids))
        totals = {line_id: ZERO for line_id in line_ids}
        if not line_ids:
            return totals
        rows = self.session.execute(
            select(FulfillmentLineModel.source_order_line_id, FulfillmentLineModel.received_quantity)
            .where(FulfillmentLineModel.source_order_line_id.in_(line_ids))
        )
        for line_id, quantity in rows:
            totals[line_id] += quantity
        return {line_id: round_quantity(total) for line_id, total in totals.items()}

    def received(self, source_line_id: UUID) -> Decimal:
        """Total quantity drawn so far by fulfillment lines."""
        return self.received_by_line([source_line_id])[source_line_id]

    def remaining(self, source_line_id: UUID) -> Decimal:
        line = self.session.get(SourceOrderLineModel, source_line_id)
        if line is None:
            raise DocumentNotFoundError("SourceOrderLine", source_line_id)
        return round_quantity(line.ordered_quantity) - self.received(source_line_id)

    def balance(self, source_line_id: UUID) -> SourceLineBalance:
        line = self.session.get(SourceOrderLineModel, source_line_id)
        if line is None:
            raise DocumentNotFoundError("SourceOrderLine", source_line_id)
        return SourceLineBalance(
            source_line_id=source_line_id,
            ordered_quantity=round_quantity(line.ordered_quantity),
            drawn_quantity=self.received(source_line_id),
        )

    def reserve(self, source_line_id: UUID, quantity: Decimal) -> SourceOrderLineModel:
        """
        Lock the line and check that ``quantity`` fits in what remains.

        The quantity is consumed by the fulfillment line the caller writes
        next; nothing is stored here.
        """
        quantity = round_quantity(quantity)
        if quantity <= ZERO:
            raise ZeroOrNegativeQuantityError("received_quantity", quantity)

        line = self.lock_line(source_line_id)
        remaining = round_quantity(line.ordered_quantity) - self.received(source_line_id)
        if quantity > remaining:
            logger.warning(
                "over_receipt_rejected",
                extra={
                    "source_line_id": str(source_line_id),
                    "remaining": remaining,
                    "requested": quantity,
                },
            )
            raise OverReceiptError(source_line_id, remaining, quantity)
        return line
