"""
Label audit trail model.

Label events provide an immutable, append-only history of every
transition and inspection of a label. Together with the label's current
fields they are enough to reconstruct every prior state.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String, event
from sqlalchemy.orm import relationship

from labeltrack.database import Base
from labeltrack.models.enums import LabelEventType
from labeltrack.time_utils import utcnow


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to rewrite or remove an audit record."""


class LabelEvent(Base):
    """
    Immutable audit event for one label.

    Invariants:
    - Once written, never edited or deleted
    - Append-only; the autoincrement id breaks ties between events
      committed within the same timestamp
    """
    __tablename__ = "label_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    label_id = Column(String(32), ForeignKey("labels.id"), nullable=False, index=True)
    event_type = Column(SQLEnum(LabelEventType), nullable=False, index=True)
    description = Column(String, nullable=True)
    location = Column(String, nullable=True)  # Snapshot, when relevant

    # Tagged snapshots, see labeltrack.models.snapshots
    from_value = Column(JSON, nullable=True)
    to_value = Column(JSON, nullable=True)

    # Attribution
    user_id = Column(String, nullable=True)
    device_id = Column(String, nullable=True)
    performed_by = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    label = relationship("Label", back_populates="events")


@event.listens_for(LabelEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Label event {target.id} is immutable and cannot be updated")


@event.listens_for(LabelEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Label event {target.id} is immutable and cannot be deleted")
