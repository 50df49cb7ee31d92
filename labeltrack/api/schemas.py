"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from labeltrack.models.enums import LabelEventType, LabelStatus, ReprintReason, RetirementReason


# Label schemas
class LabelGenerate(BaseModel):
    sku_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)  # Upper bound comes from configuration
    notes: Optional[str] = Field(None, max_length=500)
    actor_id: str = Field(..., min_length=1)
    device_id: Optional[str] = None


class LabelAssign(BaseModel):
    location: str = Field(..., min_length=1, max_length=100)
    actor_id: str = Field(..., min_length=1)
    performed_by: Optional[str] = None
    device_id: Optional[str] = None


class LabelRetire(BaseModel):
    reason: RetirementReason
    description: Optional[str] = Field(None, max_length=500)
    actor_id: str = Field(..., min_length=1)
    device_id: Optional[str] = None


class LabelReprint(BaseModel):
    reason: ReprintReason
    description: Optional[str] = Field(None, max_length=500)
    actor_id: str = Field(..., min_length=1)
    device_id: Optional[str] = None


class LabelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    sku_id: str
    batch_id: Optional[str]
    batch_sequence: Optional[int] = None
    status: LabelStatus
    location: Optional[str]
    assigned_at: Optional[datetime]
    retired_at: Optional[datetime]
    retired_reason: Optional[str]
    replaces_label_id: Optional[str]
    replaced_by_label_id: Optional[str]
    created_by_user_id: Optional[str]
    created_at: datetime
    updated_at: datetime


class LabelBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sku_id: str
    quantity: int
    notes: Optional[str]
    created_by: str
    created_at: datetime


class LabelEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label_id: str
    event_type: LabelEventType
    description: Optional[str]
    location: Optional[str]
    from_value: Optional[Dict[str, Any]]
    to_value: Optional[Dict[str, Any]]
    user_id: Optional[str]
    device_id: Optional[str]
    performed_by: Optional[str]
    created_at: datetime


class GenerateResponse(BaseModel):
    batch: LabelBatchResponse
    labels: List[LabelResponse]
    count: int


class ScanResponse(BaseModel):
    label: LabelResponse
    warning: Optional[str] = None
    recent_events: List[LabelEventResponse] = []


class AssignResponse(BaseModel):
    label: LabelResponse
    idempotent: bool
    message: Optional[str] = None


class ReprintResponse(BaseModel):
    old_label: LabelResponse
    new_label: LabelResponse


class HistoryResponse(BaseModel):
    label: LabelResponse
    events: List[LabelEventResponse]


class PrintRowResponse(BaseModel):
    id: str
    code: str
    qr_content: str
    sku_id: str


class BatchPrintResponse(BaseModel):
    batch: LabelBatchResponse
    labels: List[PrintRowResponse]


class AuditEventsResponse(BaseModel):
    events: List[LabelEventResponse]
    total: int


# Error response
class ErrorResponse(BaseModel):
    """Response when a transition is refused or input is rejected."""
    message: str
    error: str
