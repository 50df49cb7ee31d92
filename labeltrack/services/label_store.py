"""
Label storage.

Plain CRUD over labels and batches plus the conditional update that gives
concurrent transitions at-most-one-winner semantics. Legality of a
transition is decided by the lifecycle engine, not here.
"""
import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from labeltrack.models.domain import Label, LabelBatch
from labeltrack.models.enums import LabelStatus
from labeltrack.services.errors import DuplicateCode, LabelNotFound, TransitionConflict

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 500


class LabelStore:
    """Durable label records; shares its session with the EventLog."""

    def __init__(self, db: Session):
        self.db = db

    # Writes

    def create(self, label: Label) -> Label:
        """
        Insert a new label and flush it.

        The code's uniqueness is re-checked by the database at write time;
        a collision with a concurrently committed label raises DuplicateCode.
        The session is rolled back in that case since the flush failed.
        """
        self.db.add(label)
        try:
            self.db.flush()
        except IntegrityError as exc:
            code = label.code
            self.db.rollback()
            if self.code_exists(code):
                logger.warning("Duplicate label code detected at write time: %s", code)
                raise DuplicateCode(code) from exc
            raise
        return label

    def create_batch(self, batch: LabelBatch) -> LabelBatch:
        self.db.add(batch)
        self.db.flush()
        return batch

    def update(
        self,
        label_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Label:
        """
        Apply a partial update guarded by the label's current values.

        ``expected`` maps column names to the values the row must still hold
        (None means IS NULL). If no row matches, another writer got there
        first and TransitionConflict is raised.
        """
        query = self.db.query(Label).filter(Label.id == label_id)
        for column, value in (expected or {}).items():
            attr = getattr(Label, column)
            query = query.filter(attr.is_(None) if value is None else attr == value)

        updated = query.update(dict(patch), synchronize_session=False)
        if updated != 1:
            raise TransitionConflict(
                f"Label {label_id} changed concurrently; expected {dict(expected or {})}"
            )

        label = self.get_by_id(label_id)
        self.db.refresh(label)
        return label

    # Reads

    def find_by_id(self, label_id: str) -> Optional[Label]:
        return self.db.query(Label).filter(Label.id == label_id).first()

    def find_by_code(self, code: str) -> Optional[Label]:
        return self.db.query(Label).filter(Label.code == code).first()

    def get_by_id(self, label_id: str) -> Label:
        label = self.find_by_id(label_id)
        if label is None:
            raise LabelNotFound(lookup=label_id)
        return label

    def get_by_code(self, code: str) -> Label:
        label = self.find_by_code(code)
        if label is None:
            raise LabelNotFound(f"Label {code} not found", lookup=code)
        return label

    def code_exists(self, code: str) -> bool:
        return self.db.query(Label.id).filter(Label.code == code).first() is not None

    def get_batch(self, batch_id: str) -> LabelBatch:
        batch = self.db.query(LabelBatch).filter(LabelBatch.id == batch_id).first()
        if batch is None:
            raise LabelNotFound("Batch not found", lookup=batch_id)
        return batch

    def list_batch_labels(self, batch_id: str) -> List[Label]:
        """Labels of a batch in generation order; reprinted successors last."""
        return (
            self.db.query(Label)
            .filter(Label.batch_id == batch_id)
            .order_by(
                Label.batch_sequence.is_(None),
                Label.batch_sequence.asc(),
                Label.created_at.asc(),
            )
            .all()
        )

    def list_labels(
        self,
        status: Optional[LabelStatus] = None,
        sku_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        location: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[Label]:
        """Filtered label listing, newest first."""
        query = self.db.query(Label)
        if status:
            query = query.filter(Label.status == LabelStatus(status))
        if sku_id:
            query = query.filter(Label.sku_id == sku_id)
        if batch_id:
            query = query.filter(Label.batch_id == batch_id)
        if location:
            query = query.filter(Label.location.contains(location))
        if search:
            query = query.filter(Label.code.contains(search.upper()))
        return query.order_by(Label.created_at.desc()).limit(limit).all()
