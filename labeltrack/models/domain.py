"""Domain models - labels and the generation batches that produce them."""
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from labeltrack.database import Base
from labeltrack.models.enums import LabelStatus
from labeltrack.time_utils import utcnow


def new_id() -> str:
    return uuid.uuid4().hex


class LabelBatch(Base):
    """
    Metadata for one generate request.

    Purely descriptive: never mutated after creation.
    """
    __tablename__ = "label_batches"

    id = Column(String(32), primary_key=True, default=new_id)
    sku_id = Column(String, nullable=False, index=True)  # Opaque catalog reference
    quantity = Column(Integer, nullable=False)
    notes = Column(String, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    labels = relationship("Label", back_populates="batch", order_by="Label.created_at")


class Label(Base):
    """
    One physical tag: UNASSIGNED -> ASSIGNED -> RETIRED.

    Invariants enforced here:
    - code is unique across every label ever created, retired ones included
    - replaces_label_id / replaced_by_label_id form a simple chain (unique on both sides)
    - a label with replaced_by_label_id set is RETIRED
    - a RETIRED label always has retired_at and retired_reason
    """
    __tablename__ = "labels"
    __table_args__ = (
        CheckConstraint(
            "replaced_by_label_id IS NULL OR status = 'RETIRED'",
            name="ck_labels_replaced_implies_retired",
        ),
        CheckConstraint(
            "status <> 'RETIRED' OR (retired_at IS NOT NULL AND retired_reason IS NOT NULL)",
            name="ck_labels_retired_fields",
        ),
        CheckConstraint(
            "replaces_label_id IS NULL OR replaces_label_id <> id",
            name="ck_labels_replaces_not_self",
        ),
        CheckConstraint(
            "replaced_by_label_id IS NULL OR replaced_by_label_id <> id",
            name="ck_labels_replaced_by_not_self",
        ),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    code = Column(String, nullable=False, unique=True, index=True)
    sku_id = Column(String, nullable=False, index=True)
    batch_id = Column(String(32), ForeignKey("label_batches.id"), nullable=True, index=True)
    batch_sequence = Column(Integer, nullable=True)  # 1-based position within a generated batch
    status = Column(SQLEnum(LabelStatus), nullable=False, default=LabelStatus.UNASSIGNED, index=True)

    # Set on assignment, kept after retirement
    location = Column(String, nullable=True)
    assigned_at = Column(DateTime, nullable=True)

    # Required when retired
    retired_at = Column(DateTime, nullable=True)
    retired_reason = Column(String, nullable=True)

    # Replacement chain
    replaces_label_id = Column(String(32), ForeignKey("labels.id"), nullable=True, unique=True)
    replaced_by_label_id = Column(String(32), ForeignKey("labels.id"), nullable=True, unique=True)

    created_by_user_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    batch = relationship("LabelBatch", back_populates="labels")
    events = relationship(
        "LabelEvent",
        back_populates="label",
        order_by="LabelEvent.id",
        passive_deletes="all",
    )

    @property
    def is_retired(self) -> bool:
        return self.status == LabelStatus.RETIRED
