"""
Standard textile production pipeline for a production order.
"""
from typing import List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from uuid import UUID
import logging

from .. import models, schemas, crud
from ..exceptions import ConcurrencyConflict, InvalidFlow

logger = logging.getLogger(__name__)

P = models.ProcessType

# (process type, display name, planned duration in minutes)
STANDARD_STAGES = [
    (P.GREY_FABRIC_INWARD, "Grey Fabric Inward (GRN Entry)", 60),
    (P.PRE_PROCESSING, "Pre-Processing (Desizing/Bleaching)", 240),
    (P.DYEING, "Dyeing Process", 480),
    (P.PRINTING, "Printing Process", 360),
    (P.WASHING, "Washing Process", 180),
    (P.FIXING, "Color Fixing", 120),
    (P.FINISHING, "Finishing Process (Stenter, Coating)", 300),
    (P.QUALITY_CONTROL, "Quality Control (Pass/Hold/Reject)", 60),
    (P.CUTTING_PACKING, "Cutting & Packing (Labels & Cartons)", 120),
    (P.DISPATCH_INVOICE, "Dispatch & Invoice (Stock Deduction)", 30),
]


class ProductionFlowService:
    def __init__(self, db: Session):
        self.db = db

    def initialize_production_flow(
        self,
        production_order_id: UUID,
        lot_number: str,
        actor_id: Optional[str] = None,
        unit: models.QuantityUnit = models.QuantityUnit.METERS
    ) -> List[models.StageInstance]:
        """
        Create the ten standard stages of an order, all pending and
        scheduled back to back from now.

        Raises:
            NotFound: Unknown production order
            InvalidFlow: The order already has stages
        """
        order = crud.production_order.get_or_404(self.db, production_order_id)

        existing = crud.stage_instance.get_by_order(self.db, order.id)
        if existing:
            raise InvalidFlow(
                f"Production order {order.frontend_id} already has {len(existing)} stage(s)",
                details={"stage_count": len(existing)}
            )

        planned_start = datetime.utcnow()
        stages = []
        try:
            for stage_number, (process_type, stage_name, planned_minutes) in enumerate(STANDARD_STAGES, start=1):
                planned_end = planned_start + timedelta(minutes=planned_minutes)
                stage = crud.stage_instance.build_stage(schemas.StageInstanceCreate(
                    lot_number=lot_number,
                    production_order_id=order.id,
                    process_type=process_type,
                    stage_number=stage_number,
                    stage_name=stage_name,
                    unit=unit,
                    planned_start_time=planned_start,
                    planned_end_time=planned_end,
                    created_by=actor_id
                ))
                self.db.add(stage)
                # One at a time so each frontend id sees the previous one
                self.db.flush()
                stages.append(stage)
                planned_start = planned_end
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Frontend id collision while initializing order {order.id}: {str(e)}")
            raise ConcurrencyConflict(f"Stages were registered concurrently for order {order.frontend_id}; retry")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to initialize production flow for order {order.id}: {str(e)}")
            raise

        for stage in stages:
            self.db.refresh(stage)

        logger.info(f"Initialized {len(stages)} stages for production order {order.frontend_id}, lot {lot_number}")
        return stages
