"""
Lot material ledger.

Tracks how much of each (lot, source stage) output has been produced and how
much of it downstream stages have claimed. Entries are append-only; the
``lot_source_balance`` row holds running totals in hundredths of a unit and
is the only row allocation contends on, so allocations against different
sources never wait for each other.
"""
from typing import Dict, List, Optional
from decimal import Decimal
from datetime import datetime
from uuid import UUID
import logging

from sqlalchemy import update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..exceptions import (
    ConcurrencyConflict, FlowEngineError, InsufficientBalance, InvalidAllocation, NotFound, UnitMismatch
)
from .calculations import Quantity, to_quantity, to_units

logger = logging.getLogger(__name__)

# A consumer in one of these has finished drawing material
CLOSED_STATUSES = {
    models.StageStatus.COMPLETED.value,
    models.StageStatus.READY_FOR_NEXT.value,
    models.StageStatus.CANCELLED.value,
}

class LotMaterialLedger:
    """
    Produced/allocated/released bookkeeping for lot output.

    Methods that take ``commit`` only flush when it is False so they can run
    inside a caller's transaction (stage completion and cancellation do).
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_stage(self, stage_id: UUID, role: str) -> models.StageInstance:
        stage = self.db.query(models.StageInstance).filter(models.StageInstance.id == stage_id).first()
        if stage is None:
            raise NotFound(f"{role.capitalize()} stage {stage_id} not found")
        return stage

    def _get_balance_row(self, lot_number: str, source_stage_instance_id: UUID) -> Optional[models.LotSourceBalance]:
        return (
            self.db.query(models.LotSourceBalance)
            .filter(
                models.LotSourceBalance.lot_number == lot_number,
                models.LotSourceBalance.source_stage_instance_id == source_stage_instance_id
            )
            .populate_existing()
            .first()
        )

    def _is_released(self, allocation_id: UUID) -> bool:
        return (
            self.db.query(models.LotLedgerEntry.id)
            .filter(models.LotLedgerEntry.released_entry_id == allocation_id)
            .first()
        ) is not None

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def register_production(
        self,
        lot_number: str,
        source_stage_instance_id: UUID,
        produced_quantity: Quantity,
        unit: str,
        actor_id: Optional[str] = None,
        commit: bool = True
    ) -> models.LotLedgerEntry:
        """
        Record the output of a completed stage. Conservation against the
        stage input is checked by the transition validator beforehand.
        """
        quantity = to_quantity(produced_quantity)
        if quantity < 0:
            raise InvalidAllocation("Produced quantity cannot be negative")

        entry = models.LotLedgerEntry(
            lot_number=lot_number,
            source_stage_instance_id=source_stage_instance_id,
            quantity=quantity,
            unit=unit,
            kind=models.LedgerEntryKind.PRODUCED.value,
            actor_id=actor_id
        )
        self.db.add(entry)

        balance = self._get_balance_row(lot_number, source_stage_instance_id)
        if balance is None:
            self.db.add(models.LotSourceBalance(
                lot_number=lot_number,
                source_stage_instance_id=source_stage_instance_id,
                unit=unit,
                produced_units=0,
                allocated_units=0
            ))
            self.db.flush()

        self.db.execute(
            update(models.LotSourceBalance)
            .where(
                models.LotSourceBalance.lot_number == lot_number,
                models.LotSourceBalance.source_stage_instance_id == source_stage_instance_id
            )
            .values(
                produced_units=models.LotSourceBalance.produced_units + to_units(quantity),
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )

        if commit:
            self.db.commit()
            self.db.refresh(entry)
        else:
            self.db.flush()

        logger.info(f"Registered production of {quantity} {unit} for lot {lot_number} from stage {source_stage_instance_id}")
        return entry

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def available_balance(self, lot_number: str, source_stage_instance_id: UUID) -> Decimal:
        """
        Produced minus allocated-and-not-released for one source.

        Raises NotFound for an unknown source stage; a known stage with no
        production yet has a balance of zero.
        """
        self._get_stage(source_stage_instance_id, "source")

        rows = (
            self.db.query(models.LotLedgerEntry.kind, models.LotLedgerEntry.quantity)
            .filter(
                models.LotLedgerEntry.lot_number == lot_number,
                models.LotLedgerEntry.source_stage_instance_id == source_stage_instance_id
            )
            .all()
        )
        return self._net(rows)["available"]

    @staticmethod
    def _net(rows) -> Dict[str, Decimal]:
        produced = Decimal("0")
        allocated = Decimal("0")
        for kind, quantity in rows:
            quantity = to_quantity(quantity)
            if kind == models.LedgerEntryKind.PRODUCED.value:
                produced += quantity
            elif kind == models.LedgerEntryKind.ALLOCATED.value:
                allocated += quantity
            elif kind == models.LedgerEntryKind.RELEASED.value:
                allocated -= quantity
        return {"produced": produced, "allocated": allocated, "available": produced - allocated}

    def lot_summary(self, lot_number: str) -> List[Dict]:
        """Produced/allocated/available per source stage of a lot"""
        stages = (
            self.db.query(models.StageInstance)
            .filter(models.StageInstance.lot_number == lot_number)
            .all()
        )
        if not stages:
            raise NotFound(f"Lot {lot_number} not found")
        stages_by_id = {stage.id: stage for stage in stages}

        rows_by_source: Dict[UUID, list] = {}
        for entry in self.entries(lot_number):
            rows_by_source.setdefault(entry.source_stage_instance_id, []).append((entry.kind, entry.quantity))

        summary = []
        for source_id, rows in rows_by_source.items():
            totals = self._net(rows)
            source = stages_by_id.get(source_id)
            summary.append({
                "source_stage_instance_id": source_id,
                "process_type": source.process_type if source else None,
                "produced_quantity": totals["produced"],
                "allocated_quantity": totals["allocated"],
                "available_quantity": totals["available"],
                "unit": source.unit if source else models.QuantityUnit.METERS.value,
            })
        return summary

    def entries(self, lot_number: str, source_stage_instance_id: Optional[UUID] = None) -> List[models.LotLedgerEntry]:
        """Ledger entries of a lot, oldest first"""
        query = self.db.query(models.LotLedgerEntry).filter(models.LotLedgerEntry.lot_number == lot_number)
        if source_stage_instance_id is not None:
            query = query.filter(models.LotLedgerEntry.source_stage_instance_id == source_stage_instance_id)
        return query.order_by(models.LotLedgerEntry.created_at).all()

    def held_quantity(self, consuming_stage_instance_id: UUID) -> Decimal:
        """Total a consumer has drawn from the ledger and still holds"""
        return sum(
            (to_quantity(a.quantity) for a in self.outstanding_allocations(consuming_stage_instance_id)),
            Decimal("0")
        )

    def outstanding_allocations(self, consuming_stage_instance_id: UUID) -> List[models.LotLedgerEntry]:
        """Allocations held by a consumer that have not been released"""
        release = aliased(models.LotLedgerEntry)
        return (
            self.db.query(models.LotLedgerEntry)
            .outerjoin(release, release.released_entry_id == models.LotLedgerEntry.id)
            .filter(
                models.LotLedgerEntry.consuming_stage_instance_id == consuming_stage_instance_id,
                models.LotLedgerEntry.kind == models.LedgerEntryKind.ALLOCATED.value,
                release.id.is_(None)
            )
            .order_by(models.LotLedgerEntry.created_at)
            .all()
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(
        self,
        lot_number: str,
        source_stage_instance_id: UUID,
        consuming_stage_instance_id: UUID,
        requested_quantity: Quantity,
        actor_id: Optional[str] = None,
        unit: Optional[str] = None
    ) -> models.LotLedgerEntry:
        """
        Claim part of a source's output for a downstream stage.

        The balance check and the increment are one conditional UPDATE on
        the source's balance row, so two racing requests can never both
        succeed when together they exceed what is available.
        """
        quantity = to_quantity(requested_quantity)
        if quantity <= 0:
            raise InvalidAllocation("Allocation quantity must be greater than 0")

        source = self._get_stage(source_stage_instance_id, "source")
        consumer = self._get_stage(consuming_stage_instance_id, "consuming")

        if source.id == consumer.id:
            raise InvalidAllocation("A stage cannot allocate its own output")
        if source.lot_number != lot_number:
            raise InvalidAllocation(f"Source stage {source.id} does not belong to lot {lot_number}")
        if consumer.lot_number != lot_number:
            raise InvalidAllocation(f"Consuming stage {consumer.id} does not belong to lot {lot_number}")
        if consumer.status in CLOSED_STATUSES:
            raise InvalidAllocation(f"Consuming stage {consumer.id} is {consumer.status} and cannot draw material")

        if unit is not None and unit != source.unit:
            raise UnitMismatch(f"Lot {lot_number} output from stage {source.id} is measured in {source.unit}, not {unit}")
        if consumer.unit != source.unit:
            raise UnitMismatch(
                f"Consuming stage works in {consumer.unit} but the source produced {source.unit}"
            )

        units = to_units(quantity)
        result = self.db.execute(
            update(models.LotSourceBalance)
            .where(
                and_(
                    models.LotSourceBalance.lot_number == lot_number,
                    models.LotSourceBalance.source_stage_instance_id == source.id,
                    models.LotSourceBalance.produced_units - models.LotSourceBalance.allocated_units >= units
                )
            )
            .values(
                allocated_units=models.LotSourceBalance.allocated_units + units,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            self.db.rollback()
            available = self.available_balance(lot_number, source.id)
            logger.warning(
                f"Allocation of {quantity} from lot {lot_number} stage {source.id} rejected: only {available} available"
            )
            raise InsufficientBalance(
                f"Requested {quantity} {source.unit} but only {available} {source.unit} available",
                details={"requested": str(quantity), "available": str(available)}
            )

        entry = models.LotLedgerEntry(
            lot_number=lot_number,
            source_stage_instance_id=source.id,
            consuming_stage_instance_id=consumer.id,
            quantity=quantity,
            unit=source.unit,
            kind=models.LedgerEntryKind.ALLOCATED.value,
            actor_id=actor_id
        )
        self.db.add(entry)
        consumer.input_quantity = to_quantity(consumer.input_quantity or 0) + quantity

        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrencyConflict(
                f"Consuming stage {consumer.id} changed while allocating; re-read and retry"
            )

        self.db.refresh(entry)
        logger.info(
            f"Allocated {quantity} {source.unit} of lot {lot_number} from stage {source.id} to stage {consumer.id}"
        )
        return entry

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self, allocation_entry_id: UUID, actor_id: Optional[str] = None) -> models.LotLedgerEntry:
        """Return an allocation to the source's available pool"""
        allocation = (
            self.db.query(models.LotLedgerEntry)
            .filter(models.LotLedgerEntry.id == allocation_entry_id)
            .first()
        )
        if allocation is None:
            raise NotFound(f"Ledger entry {allocation_entry_id} not found")
        if allocation.kind != models.LedgerEntryKind.ALLOCATED.value:
            raise InvalidAllocation(f"Ledger entry {allocation.id} is a {allocation.kind} entry, not an allocation")

        consumer = self._get_stage(allocation.consuming_stage_instance_id, "consuming")
        if consumer.status in (models.StageStatus.COMPLETED.value, models.StageStatus.READY_FOR_NEXT.value):
            raise InvalidAllocation(
                f"Stage {consumer.id} is {consumer.status}; its allocated material has been consumed"
            )

        try:
            entry = self._release_entry(allocation, consumer, actor_id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidAllocation(f"Allocation {allocation_entry_id} has already been released")
        except StaleDataError:
            self.db.rollback()
            raise ConcurrencyConflict(
                f"Consuming stage {consumer.id} changed while releasing; re-read and retry"
            )
        except FlowEngineError:
            self.db.rollback()
            raise

        self.db.refresh(entry)
        return entry

    def release_for_consumer(
        self,
        consumer: models.StageInstance,
        actor_id: Optional[str] = None
    ) -> List[models.LotLedgerEntry]:
        """Release everything a stage still holds, inside the caller's transaction"""
        return [
            self._release_entry(allocation, consumer, actor_id)
            for allocation in self.outstanding_allocations(consumer.id)
        ]

    def _release_entry(
        self,
        allocation: models.LotLedgerEntry,
        consumer: models.StageInstance,
        actor_id: Optional[str]
    ) -> models.LotLedgerEntry:
        if allocation.kind != models.LedgerEntryKind.ALLOCATED.value:
            raise InvalidAllocation(f"Ledger entry {allocation.id} is a {allocation.kind} entry, not an allocation")
        if self._is_released(allocation.id):
            raise InvalidAllocation(f"Allocation {allocation.id} has already been released")

        quantity = to_quantity(allocation.quantity)
        units = to_units(quantity)
        result = self.db.execute(
            update(models.LotSourceBalance)
            .where(
                and_(
                    models.LotSourceBalance.lot_number == allocation.lot_number,
                    models.LotSourceBalance.source_stage_instance_id == allocation.source_stage_instance_id,
                    models.LotSourceBalance.allocated_units >= units
                )
            )
            .values(
                allocated_units=models.LotSourceBalance.allocated_units - units,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Balance for allocation {allocation.id} changed concurrently; retry")

        entry = models.LotLedgerEntry(
            lot_number=allocation.lot_number,
            source_stage_instance_id=allocation.source_stage_instance_id,
            consuming_stage_instance_id=allocation.consuming_stage_instance_id,
            quantity=quantity,
            unit=allocation.unit,
            kind=models.LedgerEntryKind.RELEASED.value,
            released_entry_id=allocation.id,
            actor_id=actor_id
        )
        self.db.add(entry)
        consumer.input_quantity = max(Decimal("0"), to_quantity(consumer.input_quantity or 0) - quantity)
        self.db.flush()

        logger.info(
            f"Released {quantity} {allocation.unit} of lot {allocation.lot_number} "
            f"from stage {allocation.consuming_stage_instance_id} back to stage {allocation.source_stage_instance_id}"
        )
        return entry
