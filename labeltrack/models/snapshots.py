"""
Typed before/after snapshots stored on label events.

Each snapshot carries a ``kind`` tag so the JSON columns on LabelEvent
round-trip into a concrete model instead of a free-form dict.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from labeltrack.models.enums import LabelEventType, LabelStatus


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)


class StateSnapshot(_Snapshot):
    """Label state before a transition."""
    kind: Literal["state"] = "state"
    status: LabelStatus
    code: Optional[str] = None
    location: Optional[str] = None


class CreatedSnapshot(_Snapshot):
    kind: Literal["created"] = "created"
    status: LabelStatus
    code: str
    sku_id: str
    batch_id: Optional[str] = None


class ReplacementSnapshot(_Snapshot):
    """A label created by reprinting another one."""
    kind: Literal["replacement"] = "replacement"
    status: LabelStatus
    code: str
    replaces_code: str
    replaces_label_id: str
    reason: str


class AssignedSnapshot(_Snapshot):
    kind: Literal["assigned"] = "assigned"
    status: LabelStatus = LabelStatus.ASSIGNED
    location: str
    previous_location: Optional[str] = None
    inherited_from_code: Optional[str] = None


class RetiredSnapshot(_Snapshot):
    kind: Literal["retired"] = "retired"
    status: LabelStatus = LabelStatus.RETIRED
    reason: str


class ReprintedSnapshot(_Snapshot):
    kind: Literal["reprinted"] = "reprinted"
    status: LabelStatus = LabelStatus.RETIRED
    replaced_by_code: str
    replaced_by_label_id: str


Snapshot = Annotated[
    Union[
        StateSnapshot,
        CreatedSnapshot,
        ReplacementSnapshot,
        AssignedSnapshot,
        RetiredSnapshot,
        ReprintedSnapshot,
    ],
    Field(discriminator="kind"),
]

_snapshot_adapter = TypeAdapter(Snapshot)


# (allowed from_value kinds, allowed to_value kinds) per event type; None means "may be absent"
ALLOWED_KINDS: Dict[LabelEventType, tuple] = {
    LabelEventType.CREATED: (frozenset({None}), frozenset({"created", "replacement"})),
    LabelEventType.ASSIGNED: (frozenset({None, "state"}), frozenset({"assigned"})),
    LabelEventType.LOCATION_CHANGED: (frozenset({"state"}), frozenset({"assigned"})),
    LabelEventType.SCANNED: (frozenset({None}), frozenset({None})),
    LabelEventType.RETIRED: (frozenset({"state"}), frozenset({"retired"})),
    LabelEventType.REPRINTED: (frozenset({"state"}), frozenset({"reprinted"})),
}


def snapshot_kind(snapshot: Optional[BaseModel]) -> Optional[str]:
    return getattr(snapshot, "kind", None) if snapshot is not None else None


def allowed_kinds(event_type: LabelEventType) -> tuple:
    """Return (from kinds, to kinds) permitted for an event type."""
    return ALLOWED_KINDS[LabelEventType(event_type)]


def dump_snapshot(snapshot: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if snapshot is None:
        return None
    return snapshot.model_dump(mode="json")


def parse_snapshot(value: Optional[Dict[str, Any]]):
    """Rebuild a stored snapshot into its concrete model."""
    if value is None:
        return None
    return _snapshot_adapter.validate_python(value)


__all__ = [
    "AssignedSnapshot",
    "CreatedSnapshot",
    "ReplacementSnapshot",
    "ReprintedSnapshot",
    "RetiredSnapshot",
    "Snapshot",
    "StateSnapshot",
    "allowed_kinds",
    "dump_snapshot",
    "parse_snapshot",
    "snapshot_kind",
]
