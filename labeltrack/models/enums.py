"""Enums for the label lifecycle - these define the valid values for states, events and reasons."""
from enum import Enum


class LabelStatus(str, Enum):
    """The three states a Label can be in. RETIRED is terminal."""
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    RETIRED = "RETIRED"


class LabelEventType(str, Enum):
    """Audit event types recorded against a label."""
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    LOCATION_CHANGED = "LOCATION_CHANGED"
    SCANNED = "SCANNED"
    RETIRED = "RETIRED"
    REPRINTED = "REPRINTED"


class RetirementReason(str, Enum):
    """Why a label was taken out of service."""
    DAMAGED = "DAMAGED"
    LOST = "LOST"
    EXPIRED = "EXPIRED"
    OTHER = "OTHER"


class ReprintReason(str, Enum):
    """Why a physical tag needed a replacement."""
    DAMAGED = "DAMAGED"
    LOST = "LOST"
    FADED = "FADED"
    OTHER = "OTHER"


# Event types that count as a label having been placed somewhere
ASSIGNMENT_EVENT_TYPES = (LabelEventType.ASSIGNED, LabelEventType.LOCATION_CHANGED)
