from typing import List, Optional, Dict, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from .models import ProcessType, StageStatus, QualityGrade, QuantityUnit, LedgerEntryKind

# Free-form readings attached to a status change (temperature, pressure, ...)
ProcessDataValue = Union[bool, int, float, str, None]
MAX_PROCESS_DATA_KEYS = 50

# ============================================================================
# PRODUCTION ORDER SCHEMAS - External reference data
# ============================================================================

class ProductionOrderCreate(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=255)
    order_quantity: Decimal = Field(..., ge=0)
    unit: QuantityUnit = Field(default=QuantityUnit.METERS)

class ProductionOrder(BaseModel):
    id: UUID
    frontend_id: Optional[str] = Field(None, description="Human-readable order ID (e.g., PRO-00001-25)")
    customer_name: Optional[str] = None
    order_quantity: float
    unit: QuantityUnit
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# ============================================================================
# STAGE INSTANCE SCHEMAS
# ============================================================================

class StageInstanceCreate(BaseModel):
    lot_number: str = Field(..., min_length=1, max_length=100)
    production_order_id: Optional[UUID] = None
    process_type: ProcessType
    stage_number: int = Field(default=1, ge=1)
    stage_name: Optional[str] = Field(None, max_length=255)
    unit: QuantityUnit = Field(default=QuantityUnit.METERS)
    input_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    created_by: Optional[str] = Field(None, max_length=100)

    @field_validator("lot_number")
    @classmethod
    def strip_lot_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("lot_number cannot be blank")
        return v

class StageInstance(BaseModel):
    id: UUID
    frontend_id: Optional[str] = Field(None, description="Human-readable stage ID (e.g., STG-00001)")
    lot_number: str
    production_order_id: Optional[UUID] = None
    process_type: ProcessType
    stage_number: int
    stage_name: Optional[str] = None
    unit: QuantityUnit
    status: StageStatus
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None
    input_quantity: float
    produced_quantity: float
    defect_quantity: float
    loss_quantity: float
    quality_grade: Optional[QualityGrade] = None
    quality_notes: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class StageTransitionRequest(BaseModel):
    to_status: StageStatus
    actor_id: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None
    process_data: Optional[Dict[str, ProcessDataValue]] = None
    # Completion payload
    produced_quantity: Optional[Decimal] = Field(None, ge=0)
    defect_quantity: Optional[Decimal] = Field(None, ge=0)
    loss_quantity: Optional[Decimal] = Field(None, ge=0)
    input_quantity: Optional[Decimal] = Field(None, ge=0)
    quality_grade: Optional[QualityGrade] = None
    quality_notes: Optional[str] = None

    @field_validator("process_data")
    @classmethod
    def validate_process_data(cls, v):
        if v is None:
            return v
        if len(v) > MAX_PROCESS_DATA_KEYS:
            raise ValueError(f"process_data accepts at most {MAX_PROCESS_DATA_KEYS} keys")
        for key in v:
            if not key.strip():
                raise ValueError("process_data keys cannot be blank")
        return v

    @model_validator(mode="after")
    def quality_only_on_completion(self):
        if self.to_status != StageStatus.COMPLETED:
            if self.quality_grade is not None or self.quality_notes is not None:
                raise ValueError("quality_grade and quality_notes can only be set when completing a stage")
        return self

class AllowedTransitions(BaseModel):
    stage_instance_id: UUID
    process_type: ProcessType
    current_status: StageStatus
    allowed_next_statuses: List[StageStatus]
    is_terminal: bool

# ============================================================================
# LOT LEDGER SCHEMAS
# ============================================================================

class AllocationRequest(BaseModel):
    source_stage_instance_id: UUID
    consuming_stage_instance_id: UUID
    quantity: Decimal = Field(..., gt=0)
    actor_id: str = Field(..., min_length=1, max_length=100)
    unit: Optional[QuantityUnit] = None

class ReleaseRequest(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)

class LotLedgerEntry(BaseModel):
    id: UUID
    lot_number: str
    source_stage_instance_id: UUID
    consuming_stage_instance_id: Optional[UUID] = None
    quantity: float
    unit: QuantityUnit
    kind: LedgerEntryKind
    released_entry_id: Optional[UUID] = None
    actor_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class LotBalance(BaseModel):
    lot_number: str
    source_stage_instance_id: UUID
    available_quantity: float
    unit: Optional[QuantityUnit] = None

class LotSourceSummary(BaseModel):
    source_stage_instance_id: UUID
    process_type: Optional[ProcessType] = None
    produced_quantity: float
    allocated_quantity: float
    available_quantity: float
    unit: QuantityUnit

class LotSummary(BaseModel):
    lot_number: str
    sources: List[LotSourceSummary]
    total_available_quantity: float

# ============================================================================
# AUDIT LOG SCHEMAS
# ============================================================================

class StageStatusLog(BaseModel):
    id: UUID
    stage_instance_id: UUID
    sequence: int
    from_status: StageStatus
    to_status: StageStatus
    actor_id: str
    notes: Optional[str] = None
    process_data: Optional[Dict[str, ProcessDataValue]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# ============================================================================
# PROGRESS SCHEMAS
# ============================================================================

class ProgressSummary(BaseModel):
    production_order_id: UUID
    completion_percentage: int
    completed_stage_count: int
    total_stage_count: int
    produced_quantity: float
    defect_quantity: float

class FlowStatus(ProgressSummary):
    current_stage: Optional[StageInstance] = None
    next_stage: Optional[StageInstance] = None

class InitializeFlowRequest(BaseModel):
    lot_number: str = Field(..., min_length=1, max_length=100)
    actor_id: str = Field(..., min_length=1, max_length=100)
    unit: QuantityUnit = Field(default=QuantityUnit.METERS)
