"""
Stage status transitions.

Every status change of a StageInstance goes through
``StageTransitionValidator.request_transition``. It checks the request
against the workflow catalog, stamps timing, enforces quantity conservation
on completion and writes the audit record, all in one transaction: either
the stage, its ledger entries and its audit record change together or
nothing does.
"""
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from datetime import datetime
from decimal import Decimal
from uuid import UUID
import logging

from .. import models, crud
from ..exceptions import (
    ConcurrencyConflict, ConservationViolation, FlowEngineError, InvalidTransition,
    MissingJustification, MissingQuantities, NotFound
)
from .calculations import Quantity, round_half_up, to_quantity
from .lot_ledger import LotMaterialLedger
from .workflow_catalog import catalog

logger = logging.getLogger(__name__)

# Statuses that close the working interval of a stage
END_TIME_STATUSES = {
    models.StageStatus.COMPLETED,
    models.StageStatus.READY_FOR_NEXT,
    models.StageStatus.CANCELLED,
    models.StageStatus.QUALITY_REJECT,
}

# Statuses of the previous order stage that let the next one start
PREVIOUS_DONE_STATUSES = {
    models.StageStatus.COMPLETED.value,
    models.StageStatus.READY_FOR_NEXT.value,
}


def requires_notes(from_status: models.StageStatus, to_status: models.StageStatus) -> bool:
    """Starting a pending stage is the only change that needs no justification"""
    return not (
        from_status == models.StageStatus.PENDING and to_status == models.StageStatus.IN_PROGRESS
    )


def duration_minutes(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    seconds = Decimal(str((end - start).total_seconds()))
    return max(0, round_half_up(seconds / 60))


class StageTransitionValidator:
    """
    Gatekeeper for stage status changes.

    Raises the errors of ``production_flow.exceptions``; the session is
    rolled back before any of them leaves this class.
    """

    def __init__(self, db: Session):
        self.db = db

    def allowed_transitions(self, stage_instance_id: UUID) -> Dict[str, Any]:
        stage = crud.stage_instance.get_or_404(self.db, stage_instance_id)
        process_type = models.ProcessType(stage.process_type)
        current_status = models.StageStatus(stage.status)
        return {
            "stage_instance_id": stage.id,
            "process_type": process_type,
            "current_status": current_status,
            "allowed_next_statuses": sorted(
                catalog.allowed_next_statuses(process_type, current_status), key=lambda s: s.value
            ),
            "is_terminal": catalog.is_terminal(process_type, current_status),
        }

    def request_transition(
        self,
        stage_instance_id: UUID,
        to_status: Any,
        actor_id: str,
        notes: Optional[str] = None,
        process_data: Optional[Dict[str, Any]] = None,
        produced_quantity: Optional[Quantity] = None,
        defect_quantity: Optional[Quantity] = None,
        loss_quantity: Optional[Quantity] = None,
        input_quantity: Optional[Quantity] = None,
        quality_grade: Optional[Any] = None,
        quality_notes: Optional[str] = None
    ) -> models.StageInstance:
        """
        Move a stage to ``to_status``.

        Args:
            stage_instance_id: Stage to change
            to_status: Target StageStatus (enum or its value)
            actor_id: Operator performing the change
            notes: Justification, required for everything except pending -> in_progress
            process_data: Free-form readings stored with the audit record
            produced_quantity, defect_quantity, loss_quantity: Completion figures
            input_quantity: Replaces the stage input on completion when given; a
                stage fed by allocations cannot exceed what they hold
            quality_grade, quality_notes: Recorded on completion

        Returns:
            The updated StageInstance
        """
        try:
            target = models.StageStatus(to_status)
        except ValueError:
            raise InvalidTransition(f"Unknown stage status '{to_status}'")

        stage = crud.stage_instance.get_for_update(self.db, stage_instance_id)
        if stage is None:
            self.db.rollback()
            raise NotFound(f"Stage instance {stage_instance_id} not found")

        process_type = models.ProcessType(stage.process_type)
        from_status = models.StageStatus(stage.status)

        try:
            allowed = catalog.allowed_next_statuses(process_type, from_status)
            if target not in allowed:
                logger.warning(
                    f"Rejected transition {from_status.value} -> {target.value} for {process_type.value} stage {stage.id}"
                )
                raise InvalidTransition(
                    f"Cannot move {process_type.value} stage from {from_status.value} to {target.value}",
                    details={
                        "current_status": from_status.value,
                        "allowed_next_statuses": sorted(s.value for s in allowed),
                    }
                )

            if requires_notes(from_status, target) and not (notes and notes.strip()):
                raise MissingJustification(
                    f"Notes are required to move a stage from {from_status.value} to {target.value}"
                )

            if from_status == models.StageStatus.PENDING and target == models.StageStatus.IN_PROGRESS:
                self._check_previous_stage(stage)

            if target == models.StageStatus.COMPLETED:
                self._apply_completion(
                    stage, produced_quantity, defect_quantity, loss_quantity, input_quantity,
                    quality_grade, quality_notes
                )

            self._stamp_timing(stage, from_status, target, datetime.utcnow())
            stage.status = target.value

            # Version check happens here
            self.db.flush()

            if target == models.StageStatus.COMPLETED:
                LotMaterialLedger(self.db).register_production(
                    stage.lot_number, stage.id, stage.produced_quantity, stage.unit,
                    actor_id=actor_id, commit=False
                )
            elif target == models.StageStatus.CANCELLED:
                released = LotMaterialLedger(self.db).release_for_consumer(stage, actor_id)
                if released:
                    logger.info(f"Cancelled stage {stage.id} returned {len(released)} allocation(s) to their sources")

            crud.stage_status_log.append(
                self.db,
                stage_instance_id=stage.id,
                from_status=from_status.value,
                to_status=target.value,
                actor_id=actor_id,
                notes=notes,
                process_data=process_data
            )
            self.db.commit()

        except (StaleDataError, IntegrityError):
            self.db.rollback()
            raise self._lost_race(stage_instance_id, from_status, target)
        except FlowEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to move stage {stage_instance_id} to {target.value}: {str(e)}")
            raise

        self.db.refresh(stage)
        logger.info(
            f"Stage {stage.frontend_id} ({process_type.value}, lot {stage.lot_number}) "
            f"moved {from_status.value} -> {target.value} by {actor_id}"
        )
        return stage

    def _apply_completion(
        self,
        stage: models.StageInstance,
        produced_quantity: Optional[Quantity],
        defect_quantity: Optional[Quantity],
        loss_quantity: Optional[Quantity],
        input_quantity: Optional[Quantity],
        quality_grade: Optional[Any],
        quality_notes: Optional[str]
    ) -> None:
        if produced_quantity is None or defect_quantity is None:
            raise MissingQuantities("produced_quantity and defect_quantity are required to complete a stage")

        grade = None
        if quality_grade is not None:
            try:
                grade = models.QualityGrade(quality_grade).value
            except ValueError:
                raise MissingQuantities(f"Unknown quality grade '{quality_grade}'")

        produced = to_quantity(produced_quantity)
        defect = to_quantity(defect_quantity)
        loss = to_quantity(loss_quantity if loss_quantity is not None else 0)
        stage_input = to_quantity(input_quantity if input_quantity is not None else (stage.input_quantity or 0))

        if min(produced, defect, loss, stage_input) < 0:
            raise MissingQuantities("Stage quantities cannot be negative")

        if input_quantity is not None:
            # A stage fed from the ledger cannot claim more than it drew
            held = LotMaterialLedger(self.db).held_quantity(stage.id)
            if held > 0 and stage_input > held:
                raise ConservationViolation(
                    f"Input {stage_input} exceeds the {held} drawn from the ledger",
                    details={"input_quantity": str(stage_input), "allocated_quantity": str(held)}
                )

        accounted = produced + defect + loss
        if accounted > stage_input:
            raise ConservationViolation(
                f"produced + defect + loss ({accounted}) exceeds the stage input ({stage_input})",
                details={
                    "input_quantity": str(stage_input),
                    "produced_quantity": str(produced),
                    "defect_quantity": str(defect),
                    "loss_quantity": str(loss),
                }
            )

        stage.input_quantity = stage_input
        stage.produced_quantity = produced
        stage.defect_quantity = defect
        stage.loss_quantity = loss
        if grade is not None:
            stage.quality_grade = grade
        stage.quality_notes = quality_notes

    def _check_previous_stage(self, stage: models.StageInstance) -> None:
        """Order stages start one after another; lot-addressed stages are free"""
        if stage.production_order_id is None:
            return
        previous = crud.stage_instance.get_previous(self.db, stage)
        if previous is None or previous.status in PREVIOUS_DONE_STATUSES:
            return
        raise InvalidTransition(
            f"Stage {previous.stage_number} of the order must be completed before stage {stage.stage_number} starts",
            details={
                "previous_stage_instance_id": str(previous.id),
                "previous_status": previous.status,
            }
        )

    @staticmethod
    def _stamp_timing(
        stage: models.StageInstance,
        from_status: models.StageStatus,
        to_status: models.StageStatus,
        now: datetime
    ) -> None:
        if to_status == models.StageStatus.IN_PROGRESS and stage.actual_start_time is None:
            stage.actual_start_time = now

        if to_status in END_TIME_STATUSES:
            # ready_for_next keeps the completion time
            keep_end = (
                from_status == models.StageStatus.COMPLETED
                and to_status == models.StageStatus.READY_FOR_NEXT
                and stage.actual_end_time is not None
            )
            if not keep_end:
                stage.actual_end_time = now
            stage.actual_duration_minutes = duration_minutes(stage.actual_start_time, stage.actual_end_time)

    def _lost_race(
        self,
        stage_instance_id: UUID,
        from_status: models.StageStatus,
        target: models.StageStatus
    ) -> FlowEngineError:
        current = crud.stage_instance.get(self.db, stage_instance_id)
        self.db.rollback()
        if current is not None and current.status != from_status.value:
            logger.warning(
                f"Stage {stage_instance_id} moved to {current.status} while requesting {target.value}"
            )
            return InvalidTransition(
                f"Stage is now {current.status}; {from_status.value} -> {target.value} no longer applies",
                details={"current_status": current.status}
            )
        logger.warning(f"Concurrent update on stage {stage_instance_id}; transition to {target.value} not applied")
        return ConcurrencyConflict(f"Stage {stage_instance_id} was modified concurrently; re-read and retry")

    # ------------------------------------------------------------------
    # Shortcuts used by the stage screens
    # ------------------------------------------------------------------

    def start_stage(self, stage_instance_id: UUID, actor_id: str, notes: Optional[str] = None) -> models.StageInstance:
        return self.request_transition(stage_instance_id, models.StageStatus.IN_PROGRESS, actor_id, notes=notes)

    def complete_stage(
        self,
        stage_instance_id: UUID,
        actor_id: str,
        produced_quantity: Quantity,
        defect_quantity: Quantity,
        notes: str,
        loss_quantity: Optional[Quantity] = None,
        quality_grade: Optional[Any] = None,
        quality_notes: Optional[str] = None,
        process_data: Optional[Dict[str, Any]] = None
    ) -> models.StageInstance:
        return self.request_transition(
            stage_instance_id,
            models.StageStatus.COMPLETED,
            actor_id,
            notes=notes,
            process_data=process_data,
            produced_quantity=produced_quantity,
            defect_quantity=defect_quantity,
            loss_quantity=loss_quantity,
            quality_grade=quality_grade,
            quality_notes=quality_notes
        )

    def hold_stage(self, stage_instance_id: UUID, actor_id: str, notes: str) -> models.StageInstance:
        return self.request_transition(stage_instance_id, models.StageStatus.ON_HOLD, actor_id, notes=notes)

    def resume_stage(self, stage_instance_id: UUID, actor_id: str, notes: str) -> models.StageInstance:
        return self.request_transition(stage_instance_id, models.StageStatus.IN_PROGRESS, actor_id, notes=notes)
