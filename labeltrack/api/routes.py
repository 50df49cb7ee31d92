"""API routes for the label lifecycle."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from labeltrack.config import settings
from labeltrack.database import get_db
from labeltrack.models.enums import LabelEventType, LabelStatus
from labeltrack.services.errors import (
    AlreadyReplaced,
    AlreadyRetired,
    CodeSpaceExhausted,
    DuplicateCode,
    InvalidInput,
    LabelLifecycleError,
    LabelNotFound,
    LabelRetired,
    TransitionConflict,
)
from labeltrack.services.event_log import EventLog
from labeltrack.services.label_store import LabelStore
from labeltrack.services.lifecycle_engine import LifecycleEngine
from labeltrack.api.schemas import (
    AssignResponse,
    AuditEventsResponse,
    BatchPrintResponse,
    ErrorResponse,
    GenerateResponse,
    HistoryResponse,
    LabelAssign,
    LabelGenerate,
    LabelReprint,
    LabelResponse,
    LabelRetire,
    ReprintResponse,
    ScanResponse,
)

router = APIRouter()

# Most specific first
ERROR_STATUS_CODES = (
    (LabelNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (AlreadyRetired, status.HTTP_409_CONFLICT),
    (AlreadyReplaced, status.HTTP_409_CONFLICT),
    (LabelRetired, status.HTTP_409_CONFLICT),
    (TransitionConflict, status.HTTP_409_CONFLICT),
    (CodeSpaceExhausted, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DuplicateCode, status.HTTP_503_SERVICE_UNAVAILABLE),
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Label or batch not found"},
    409: {"model": ErrorResponse, "description": "Transition refused by the label state machine"},
}


def get_lifecycle(db: Session = Depends(get_db)) -> LifecycleEngine:
    """Build a lifecycle engine over the request's session."""
    return LifecycleEngine(
        LabelStore(db),
        EventLog(db),
        code_prefix=settings.label_code_prefix,
        code_length=settings.label_code_length,
        max_code_attempts=settings.label_code_max_attempts,
        write_retries=settings.label_write_retries,
        min_quantity=settings.label_batch_min,
        max_quantity=settings.label_batch_max,
        known_locations=settings.known_locations,
    )


def _http_error(exc: LabelLifecycleError) -> HTTPException:
    """Translate a lifecycle error into an HTTP response."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    detail = {"message": exc.message, "error": type(exc).__name__}
    if isinstance(exc, AlreadyReplaced):
        detail["replaced_by_label_id"] = exc.replaced_by_label_id
    return HTTPException(status_code=status_code, detail=detail)


# Label endpoints
@router.post("/labels/generate", response_model=GenerateResponse, status_code=status.HTTP_201_CREATED,
             responses=ERROR_RESPONSES)
def generate_labels(data: LabelGenerate, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """Generate a batch of UNASSIGNED labels for a SKU."""
    try:
        batch, labels = lifecycle.generate(
            data.sku_id,
            data.quantity,
            notes=data.notes,
            actor_id=data.actor_id,
            device_id=data.device_id,
        )
    except LabelLifecycleError as e:
        raise _http_error(e)
    return {"batch": batch, "labels": labels, "count": len(labels)}


@router.get("/labels", response_model=List[LabelResponse])
def list_labels(
    status_filter: Optional[LabelStatus] = Query(None, alias="status"),
    sku_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    location: Optional[str] = None,
    search: Optional[str] = None,
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
):
    """List labels, newest first."""
    return lifecycle.list_labels(
        status=status_filter,
        sku_id=sku_id,
        batch_id=batch_id,
        location=location,
        search=search,
    )


@router.get("/labels/scan/{code:path}", response_model=ScanResponse, responses=ERROR_RESPONSES)
def scan_label(
    code: str,
    actor_id: Optional[str] = None,
    device_id: Optional[str] = None,
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
):
    """
    Look up a label by its code or QR content and record the scan.
    Retired labels are returned with a warning, not an error.
    """
    try:
        label, warning, recent_events = lifecycle.scan(code, actor_id=actor_id, device_id=device_id)
    except LabelLifecycleError as e:
        raise _http_error(e)
    return {"label": label, "warning": warning, "recent_events": recent_events}


@router.get("/labels/{label_id}", response_model=LabelResponse, responses=ERROR_RESPONSES)
def get_label(label_id: str, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """Get a specific label."""
    try:
        return lifecycle.get_label(label_id)
    except LabelLifecycleError as e:
        raise _http_error(e)


@router.post("/labels/{label_id}/assign", response_model=AssignResponse, responses=ERROR_RESPONSES)
def assign_label(label_id: str, data: LabelAssign, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """
    Assign a label to a location.
    Repeating the same location on an assigned label is a no-op flagged as idempotent.
    """
    try:
        label, idempotent = lifecycle.assign(
            label_id,
            data.location,
            actor_id=data.actor_id,
            performed_by=data.performed_by,
            device_id=data.device_id,
        )
    except LabelLifecycleError as e:
        raise _http_error(e)
    message = "Label is already assigned to this location" if idempotent else None
    return {"label": label, "idempotent": idempotent, "message": message}


@router.post("/labels/{label_id}/retire", response_model=LabelResponse, responses=ERROR_RESPONSES)
def retire_label(label_id: str, data: LabelRetire, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """Retire a label. Retiring an already retired label is refused."""
    try:
        return lifecycle.retire(
            label_id,
            data.reason,
            description=data.description,
            actor_id=data.actor_id,
            device_id=data.device_id,
        )
    except LabelLifecycleError as e:
        raise _http_error(e)


@router.post("/labels/{label_id}/reprint", response_model=ReprintResponse,
             status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def reprint_label(label_id: str, data: LabelReprint, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """
    Replace a label with a newly coded successor.

    WILL REFUSE if:
    - The label is already retired
    - The label has already been replaced (reprint the replacement instead)
    """
    try:
        old_label, new_label = lifecycle.reprint(
            label_id,
            data.reason,
            description=data.description,
            actor_id=data.actor_id,
            device_id=data.device_id,
        )
    except LabelLifecycleError as e:
        raise _http_error(e)
    return {"old_label": old_label, "new_label": new_label}


@router.get("/labels/{label_id}/history", response_model=HistoryResponse, responses=ERROR_RESPONSES)
def label_history(label_id: str, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """Full audit trail for a label, newest first."""
    try:
        label = lifecycle.get_label(label_id)
        events = lifecycle.history(label_id)
    except LabelLifecycleError as e:
        raise _http_error(e)
    return {"label": label, "events": events}


# Batch endpoints
@router.get("/batches/{batch_id}", response_model=BatchPrintResponse, responses=ERROR_RESPONSES)
def get_batch_print_sheet(batch_id: str, lifecycle: LifecycleEngine = Depends(get_lifecycle)):
    """Batch metadata with the QR content of each label, in print order."""
    try:
        batch, rows = lifecycle.batch_print_sheet(batch_id)
    except LabelLifecycleError as e:
        raise _http_error(e)
    return {"batch": batch, "labels": [row._asdict() for row in rows]}


# Audit endpoints
@router.get("/audit/label-events", response_model=AuditEventsResponse)
def list_label_events(
    event_type: Optional[LabelEventType] = None,
    label_code: Optional[str] = None,
    location: Optional[str] = None,
    user_id: Optional[str] = None,
    performed_by: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    lifecycle: LifecycleEngine = Depends(get_lifecycle),
):
    """Search label events across all labels."""
    events, total = lifecycle.audit_events(
        event_type=event_type,
        label_code=label_code,
        location=location,
        user_id=user_id,
        performed_by=performed_by,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
    )
    return {"events": events, "total": total}
