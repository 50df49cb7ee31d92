"""
Append-only label event log.

There is deliberately no update or delete here; the LabelEvent mapper
refuses both at flush time as well.
"""
import logging
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session

from labeltrack.models.audit import LabelEvent
from labeltrack.models.domain import Label
from labeltrack.models.enums import ASSIGNMENT_EVENT_TYPES, LabelEventType
from labeltrack.models.snapshots import allowed_kinds, dump_snapshot, snapshot_kind
from labeltrack.services.errors import InvalidInput
from labeltrack.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 100


class EventLog:
    """Writes and reads LabelEvent rows within the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        label: Label,
        event_type: LabelEventType,
        *,
        description: str,
        actor_id: Optional[str],
        performed_by: Optional[str] = None,
        device_id: Optional[str] = None,
        location: Optional[str] = None,
        from_value: Optional[BaseModel] = None,
        to_value: Optional[BaseModel] = None,
    ) -> LabelEvent:
        """
        Append one event for ``label``.

        The snapshots must be of a kind registered for ``event_type``.
        """
        event_type = LabelEventType(event_type)
        from_kinds, to_kinds = allowed_kinds(event_type)
        if snapshot_kind(from_value) not in from_kinds or snapshot_kind(to_value) not in to_kinds:
            raise InvalidInput(
                f"{event_type.value} event cannot carry snapshots "
                f"{snapshot_kind(from_value)!r} -> {snapshot_kind(to_value)!r}"
            )

        event = LabelEvent(
            label_id=label.id,
            event_type=event_type,
            description=description,
            location=location,
            from_value=dump_snapshot(from_value),
            to_value=dump_snapshot(to_value),
            user_id=actor_id,
            device_id=device_id,
            performed_by=performed_by or actor_id,
            created_at=utcnow(),
        )
        self.db.add(event)
        self.db.flush()
        logger.debug("Appended %s event %s for label %s", event_type.value, event.id, label.code)
        return event

    def list_for_label(self, label_id: str) -> List[LabelEvent]:
        """Events for a label, newest first."""
        return self._for_label(label_id).all()

    def iter_for_label(self, label_id: str, chunk_size: int = 50) -> Iterator[LabelEvent]:
        """
        Stream a label's events newest first.

        Each call issues a fresh query, so restarting is just calling again.
        """
        yield from self._for_label(label_id).yield_per(chunk_size)

    def recent_for_label(self, label_id: str, limit: int = 5) -> List[LabelEvent]:
        return self._for_label(label_id).limit(limit).all()

    def has_assignment_history(self, label_id: str) -> bool:
        """Whether the label was ever assigned or moved."""
        return (
            self.db.query(LabelEvent.id)
            .filter(
                LabelEvent.label_id == label_id,
                LabelEvent.event_type.in_(ASSIGNMENT_EVENT_TYPES),
            )
            .first()
            is not None
        )

    def search(
        self,
        event_type: Optional[LabelEventType] = None,
        label_code: Optional[str] = None,
        location: Optional[str] = None,
        user_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> Tuple[List[LabelEvent], int]:
        """
        Audit query across all labels, newest first.

        Returns one page of events plus the total number of matches.
        """
        query = self.db.query(LabelEvent)
        if event_type:
            query = query.filter(LabelEvent.event_type == LabelEventType(event_type))
        if label_code:
            query = query.join(Label, Label.id == LabelEvent.label_id).filter(
                Label.code.contains(label_code.upper())
            )
        if location:
            query = query.filter(LabelEvent.location.contains(location))
        if user_id:
            query = query.filter(LabelEvent.user_id.contains(user_id))
        if performed_by:
            query = query.filter(LabelEvent.performed_by.contains(performed_by))
        if start:
            query = query.filter(LabelEvent.created_at >= start)
        if end:
            query = query.filter(LabelEvent.created_at <= end)

        total = query.count()
        events = (
            query.order_by(LabelEvent.created_at.desc(), LabelEvent.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return events, total

    def _for_label(self, label_id: str):
        return (
            self.db.query(LabelEvent)
            .filter(LabelEvent.label_id == label_id)
            .order_by(LabelEvent.created_at.desc(), LabelEvent.id.desc())
        )
