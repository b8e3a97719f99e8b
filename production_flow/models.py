from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, ForeignKey, Text, Numeric, JSON, Uuid,
    UniqueConstraint, Index, event
)
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from .database import Base

# Status Enums
class ProcessType(str, PyEnum):
    GREY_FABRIC_INWARD = "grey_fabric_inward"
    PRE_PROCESSING = "pre_processing"
    DYEING = "dyeing"
    PRINTING = "printing"
    WASHING = "washing"
    FIXING = "fixing"
    FINISHING = "finishing"
    QUALITY_CONTROL = "quality_control"
    CUTTING_PACKING = "cutting_packing"
    DISPATCH_INVOICE = "dispatch_invoice"
    # Auxiliary lot-addressed stages
    FELT = "felt"
    FOLDING_CHECKING = "folding_checking"
    PACKING = "packing"

class StageStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    QUALITY_HOLD = "quality_hold"
    MACHINE_BREAKDOWN = "machine_breakdown"
    MATERIAL_SHORTAGE = "material_shortage"
    CHEMICAL_ISSUE = "chemical_issue"
    QUALITY_REJECT = "quality_reject"
    REWORK = "rework"
    READY_FOR_NEXT = "ready_for_next"
    CANCELLED = "cancelled"

class QualityGrade(str, PyEnum):
    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    C = "C"
    D = "D"

class QuantityUnit(str, PyEnum):
    METERS = "meters"
    PIECES = "pieces"

class LedgerEntryKind(str, PyEnum):
    PRODUCED = "produced"
    ALLOCATED = "allocated"
    RELEASED = "released"

# ============================================================================
# EXTERNAL REFERENCE TABLES - Owned by the surrounding application
# ============================================================================

# Production Order Master - read by the engine for progress rollups
class ProductionOrderMaster(Base):
    __tablename__ = "production_order_master"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # PRO-00001-25, etc.
    customer_name = Column(String(255), nullable=True)
    order_quantity = Column(Numeric(12, 2), nullable=False, default=0)  # Meters or pieces ordered
    unit = Column(String(20), default=QuantityUnit.METERS.value, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    stages = relationship(
        "StageInstance",
        back_populates="production_order",
        order_by="StageInstance.stage_number"
    )

# ============================================================================
# ENGINE TABLES - Stage state, lot ledger and audit trail
# ============================================================================

# Stage Instance - one occurrence of a process stage for a lot
class StageInstance(Base):
    __tablename__ = "stage_instance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    frontend_id = Column(String(50), unique=True, nullable=True, index=True)  # STG-00001, etc.
    lot_number = Column(String(100), nullable=False, index=True)
    production_order_id = Column(Uuid, ForeignKey("production_order_master.id"), nullable=True, index=True)
    process_type = Column(String(50), nullable=False, index=True)
    stage_number = Column(Integer, nullable=False, default=1)  # Ordering hint within the order pipeline
    stage_name = Column(String(255), nullable=True)
    unit = Column(String(20), default=QuantityUnit.METERS.value, nullable=False)
    status = Column(String(50), default=StageStatus.PENDING.value, nullable=False, index=True)

    # Timing
    planned_start_time = Column(DateTime, nullable=True)
    planned_end_time = Column(DateTime, nullable=True)
    actual_start_time = Column(DateTime, nullable=True)
    actual_end_time = Column(DateTime, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)  # Recomputed whenever actual_end_time is stamped

    # Quantities
    input_quantity = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    produced_quantity = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    defect_quantity = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    loss_quantity = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Quality (set only on completion)
    quality_grade = Column(String(5), nullable=True)
    quality_notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    production_order = relationship("ProductionOrderMaster", back_populates="stages")

    __mapper_args__ = {"version_id_col": version}

# Lot Ledger Entry - append-only production / allocation / release events
class LotLedgerEntry(Base):
    __tablename__ = "lot_ledger_entry"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    lot_number = Column(String(100), nullable=False, index=True)
    source_stage_instance_id = Column(Uuid, ForeignKey("stage_instance.id"), nullable=False, index=True)
    consuming_stage_instance_id = Column(Uuid, ForeignKey("stage_instance.id"), nullable=True, index=True)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(20), nullable=False)
    kind = Column(String(20), nullable=False, index=True)
    released_entry_id = Column(Uuid, ForeignKey("lot_ledger_entry.id"), nullable=True, unique=True)  # One release per allocation
    actor_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    source_stage = relationship("StageInstance", foreign_keys=[source_stage_instance_id])
    consuming_stage = relationship("StageInstance", foreign_keys=[consuming_stage_instance_id])
    released_entry = relationship("LotLedgerEntry", remote_side=[id])

    __table_args__ = (
        Index("ix_lot_ledger_entry_source_key", "lot_number", "source_stage_instance_id"),
    )

# Lot Source Balance - running totals per (lot, source stage), the allocation guard row
class LotSourceBalance(Base):
    __tablename__ = "lot_source_balance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_number = Column(String(100), nullable=False)
    source_stage_instance_id = Column(Uuid, ForeignKey("stage_instance.id"), nullable=False)
    unit = Column(String(20), nullable=False)
    produced_units = Column(BigInteger, nullable=False, default=0)  # Hundredths of a unit
    allocated_units = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("lot_number", "source_stage_instance_id", name="uq_lot_source_balance_key"),
    )

# Stage Status Log - append-only audit trail of accepted transitions
class StageStatusLog(Base):
    __tablename__ = "stage_status_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    stage_instance_id = Column(Uuid, nullable=False, index=True)  # Weak reference, never cascades
    sequence = Column(Integer, nullable=False)  # 1-based position in the stage history
    from_status = Column(String(50), nullable=False)
    to_status = Column(String(50), nullable=False, index=True)
    actor_id = Column(String(100), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    process_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("stage_instance_id", "sequence", name="uq_stage_status_log_sequence"),
    )

# ============================================================================
# FRONTEND ID GENERATION - Auto-generate human-readable IDs on record creation
# ============================================================================

def generate_frontend_id_on_insert(mapper, connection, target):
    """
    SQLAlchemy event handler to generate frontend_id before insert.
    Runs on the flushing connection so the lookup sees the same transaction.
    """
    from .services.id_generator import FrontendIDGenerator

    if target.frontend_id is None:  # Only generate if not already provided
        target.frontend_id = FrontendIDGenerator.generate_frontend_id(target.__tablename__, connection)


# Register event listeners for all models that have frontend_id
models_with_frontend_id = [
    ProductionOrderMaster,
    StageInstance,
]

for model in models_with_frontend_id:
    event.listen(model, 'before_insert', generate_frontend_id_on_insert)
