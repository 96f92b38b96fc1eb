"""
Inventory Module Service (``erp_modules.inventory.service``).

Responsibility
--------------
Operational stock documents: adjustments, transfers between locations and
physical audits.  Each document writes its lines and the matching stock
movement entries through ``StockLedger`` in the caller's transaction.

Failure modes
-------------
* NegativeStockError -- a decrease or transfer larger than available stock;
  no line or movement of the document survives.
* ZeroOrNegativeQuantityError -- non-positive line quantity.
* ValidationError -- empty document, or transfer to the same location.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from erp_kernel.db.types import ZERO, round_quantity
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.values import DocumentReference, Location
from erp_kernel.exceptions import ValidationError, ZeroOrNegativeQuantityError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.base import BaseService
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules.inventory.ledger import StockLedger
from erp_modules.inventory.models import (
    AdjustmentLine,
    AdjustmentType,
    AuditLine,
    MovementType,
    TransferLine,
)
from erp_modules.inventory.orm import (
    StockAdjustmentLineModel,
    StockAdjustmentModel,
    StockAuditLineModel,
    StockAuditModel,
    StockTransferLineModel,
    StockTransferModel,
)

logger = get_logger("modules.inventory.service")


def _require_lines(lines: Sequence, field: str = "lines") -> None:
    if not lines:
        raise ValidationError(
            "at least one line is required",
            [{"field": field, "message": "at least one line is required"}],
        )


class InventoryService(BaseService):
    """Stock adjustments, transfers and audits."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        codes: DocumentCodeService | None = None,
        ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self._codes = codes or DocumentCodeService(session)
        self._ledger = ledger or StockLedger(session, self.clock)

    def _code(self, document_type: str, code: str | None, on_date: date, branch_initial: str | None) -> str:
        return code or self._codes.next_code(document_type, on_date, branch_initial)

    def adjust_stock(
        self,
        *,
        location: Location,
        lines: Sequence[AdjustmentLine],
        adjustment_date: date,
        actor_id: UUID,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> StockAdjustmentModel:
        """Increase or decrease stock at one location."""
        _require_lines(lines)
        self._ledger.lock_levels((line.item_id, location) for line in lines)
        doc_code = self._code("stock_adjustment", code, adjustment_date, branch_initial)
        adjustment = StockAdjustmentModel(
            code=doc_code,
            adjustment_date=adjustment_date,
            location_kind=location.kind.value,
            location_id=location.id,
            note=note,
            created_by_id=actor_id,
            lines=[],
        )
        self.session.add(adjustment)
        self.session.flush()
        reference = DocumentReference("stock_adjustment", doc_code, adjustment.id)

        for line in lines:
            kind = AdjustmentType(line.adjustment_type)
            entry = self._ledger.append(
                line.item_id, location, MovementType(kind.value),
                line.quantity, reference, actor_id,
            )
            adjustment.lines.append(
                StockAdjustmentLineModel(
                    item_id=line.item_id,
                    adjustment_type=kind.value,
                    quantity=entry.movement_quantity,
                    reason=line.reason,
                    movement_id=entry.id,
                )
            )
        self.session.flush()
        logger.info(
            "stock_adjustment_created",
            extra={
                "adjustment_id": str(adjustment.id),
                "code": doc_code,
                "location": str(location),
                "line_count": len(lines),
            },
        )
        return adjustment

    def transfer_stock(
        self,
        *,
        source: Location,
        destination: Location,
        lines: Sequence[TransferLine],
        transfer_date: date,
        actor_id: UUID,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> StockTransferModel:
        """Decrease at the source and increase at the destination, per line."""
        _require_lines(lines)
        if source == destination:
            raise ValidationError(
                "source and destination must differ",
                [{"field": "destination", "message": "must differ from the source"}],
            )
        self._ledger.lock_levels(
            [(line.item_id, source) for line in lines] + [(line.item_id, destination) for line in lines]
        )
        doc_code = self._code("stock_transfer", code, transfer_date, branch_initial)
        transfer = StockTransferModel(
            code=doc_code,
            transfer_date=transfer_date,
            source_kind=source.kind.value,
            source_id=source.id,
            destination_kind=destination.kind.value,
            destination_id=destination.id,
            note=note,
            created_by_id=actor_id,
            lines=[],
        )
        self.session.add(transfer)
        self.session.flush()
        reference = DocumentReference("stock_transfer", doc_code, transfer.id)

        for line in lines:
            outbound = self._ledger.append(
                line.item_id, source, MovementType.DECREASED, line.quantity, reference, actor_id,
            )
            inbound = self._ledger.append(
                line.item_id, destination, MovementType.INCREASED, line.quantity, reference, actor_id,
            )
            transfer.lines.append(
                StockTransferLineModel(
                    item_id=line.item_id,
                    quantity=outbound.movement_quantity,
                    outbound_movement_id=outbound.id,
                    inbound_movement_id=inbound.id,
                )
            )
        self.session.flush()
        logger.info(
            "stock_transfer_created",
            extra={
                "transfer_id": str(transfer.id),
                "code": doc_code,
                "source": str(source),
                "destination": str(destination),
                "line_count": len(lines),
            },
        )
        return transfer

    def audit_stock(
        self,
        *,
        location: Location,
        lines: Sequence[AuditLine],
        audit_date: date,
        actor_id: UUID,
        code: str | None = None,
        branch_initial: str | None = None,
        note: str | None = None,
    ) -> StockAuditModel:
        """
        Record physical counts and balance the ledger to them.

        A line whose count matches the system quantity is recorded without a
        movement entry.
        """
        _require_lines(lines)
        self._ledger.lock_levels((line.item_id, location) for line in lines)
        doc_code = self._code("stock_audit", code, audit_date, branch_initial)
        audit = StockAuditModel(
            code=doc_code,
            audit_date=audit_date,
            location_kind=location.kind.value,
            location_id=location.id,
            note=note,
            created_by_id=actor_id,
            lines=[],
        )
        self.session.add(audit)
        self.session.flush()
        reference = DocumentReference("stock_audit", doc_code, audit.id)

        for line in lines:
            physical = round_quantity(line.physical_quantity)
            if physical < ZERO:
                raise ZeroOrNegativeQuantityError("physical_quantity", physical)
            # Read under the level lock taken above
            system = self._ledger.current_level(line.item_id, location)
            discrepancy = physical - system
            movement_id = None
            if discrepancy != ZERO:
                entry = self._ledger.append(
                    line.item_id, location, MovementType.BALANCED, physical, reference, actor_id,
                )
                movement_id = entry.id
            audit.lines.append(
                StockAuditLineModel(
                    item_id=line.item_id,
                    system_quantity=system,
                    physical_quantity=physical,
                    discrepancy=discrepancy,
                    reason=line.reason,
                    movement_id=movement_id,
                )
            )
        self.session.flush()
        logger.info(
            "stock_audit_created",
            extra={
                "audit_id": str(audit.id),
                "code": doc_code,
                "location": str(location),
                "line_count": len(lines),
            },
        )
        return audit
