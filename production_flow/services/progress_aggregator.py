from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from decimal import Decimal
from uuid import UUID
import logging

from .. import models, crud
from .calculations import round_half_up, to_quantity

logger = logging.getLogger(__name__)

# A stage counts towards progress once its output exists
COMPLETED_STATUSES = {
    models.StageStatus.COMPLETED.value,
    models.StageStatus.READY_FOR_NEXT.value,
}


class ProductionOrderProgressAggregator:
    """
    Derives order progress from the stage rows every time it is asked.
    Nothing is cached on the order.
    """

    def __init__(self, db: Session):
        self.db = db

    def progress(self, production_order_id: UUID) -> Dict[str, Any]:
        order = crud.production_order.get_or_404(self.db, production_order_id)
        stages = crud.stage_instance.get_by_order(self.db, order.id)
        return self._summarize(order, stages)

    def flow_status(self, production_order_id: UUID) -> Dict[str, Any]:
        """Progress plus the stage being worked on and the next one waiting"""
        order = crud.production_order.get_or_404(self.db, production_order_id)
        stages = crud.stage_instance.get_by_order(self.db, order.id)

        summary = self._summarize(order, stages)
        summary["current_stage"] = self._first_with_status(stages, models.StageStatus.IN_PROGRESS)
        summary["next_stage"] = self._first_with_status(stages, models.StageStatus.PENDING)
        return summary

    @staticmethod
    def _first_with_status(
        stages: List[models.StageInstance],
        status: models.StageStatus
    ) -> Optional[models.StageInstance]:
        return next((stage for stage in stages if stage.status == status.value), None)

    @staticmethod
    def _summarize(order: models.ProductionOrderMaster, stages: List[models.StageInstance]) -> Dict[str, Any]:
        completed = [stage for stage in stages if stage.status in COMPLETED_STATUSES]
        produced = sum((to_quantity(stage.produced_quantity or 0) for stage in completed), Decimal("0"))
        defect = sum((to_quantity(stage.defect_quantity or 0) for stage in completed), Decimal("0"))

        order_quantity = to_quantity(order.order_quantity or 0)
        if order_quantity > 0:
            percentage = min(100, round_half_up(Decimal(100) * produced / order_quantity))
        elif stages:
            percentage = round_half_up(Decimal(100) * len(completed) / len(stages))
        else:
            percentage = 0

        logger.debug(f"Order {order.id}: {len(completed)}/{len(stages)} stages complete, {percentage}%")
        return {
            "production_order_id": order.id,
            "completion_percentage": percentage,
            "completed_stage_count": len(completed),
            "total_stage_count": len(stages),
            "produced_quantity": produced,
            "defect_quantity": defect,
        }
