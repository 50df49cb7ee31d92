"""
Lifecycle engine that enforces the label state machine.

All label transitions MUST go through here. Each operation runs as one
unit of work: the label rows and their audit events commit together or
not at all.

    generate -> UNASSIGNED
    assign   UNASSIGNED | ASSIGNED -> ASSIGNED (same location is a no-op)
    retire   UNASSIGNED | ASSIGNED -> RETIRED
    reprint  UNASSIGNED | ASSIGNED -> RETIRED, plus a successor label
    scan     any -> unchanged
"""
import logging
from contextlib import contextmanager
from functools import partial
from typing import Callable, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple, Type

from sqlalchemy.exc import IntegrityError

from labeltrack.models.audit import LabelEvent
from labeltrack.models.domain import Label, LabelBatch
from labeltrack.models.enums import (
    LabelEventType,
    LabelStatus,
    ReprintReason,
    RetirementReason,
)
from labeltrack.models.snapshots import (
    AssignedSnapshot,
    CreatedSnapshot,
    ReplacementSnapshot,
    ReprintedSnapshot,
    RetiredSnapshot,
    StateSnapshot,
)
from labeltrack.services.codes import (
    DEFAULT_LENGTH,
    DEFAULT_PREFIX,
    MAX_CODE_ATTEMPTS,
    new_batch_codes,
    new_code,
    new_unique_code,
    parse_label_from_qr,
    qr_content,
    retry,
)
from labeltrack.services.errors import (
    AlreadyReplaced,
    AlreadyRetired,
    DuplicateCode,
    InvalidInput,
    InvalidQuantity,
    LabelRetired,
    TransitionConflict,
)
from labeltrack.services.event_log import EventLog
from labeltrack.services.label_store import LabelStore
from labeltrack.time_utils import utcnow

logger = logging.getLogger(__name__)

RETIRED_WARNING = "This label has been retired"
REPRINT_REASON_PREFIX = "REPRINTED: "
MAX_LOCATION_LENGTH = 100
RECENT_EVENT_COUNT = 5


class GenerateResult(NamedTuple):
    batch: LabelBatch
    labels: List[Label]


class ScanResult(NamedTuple):
    label: Label
    warning: Optional[str]
    recent_events: List[LabelEvent]


class AssignResult(NamedTuple):
    label: Label
    idempotent: bool


class ReprintResult(NamedTuple):
    old_label: Label
    new_label: Label


class PrintRow(NamedTuple):
    id: str
    code: str
    qr_content: str
    sku_id: str


class LifecycleEngine:
    """Orchestrates label transitions over a LabelStore/EventLog pair."""

    def __init__(
        self,
        store: LabelStore,
        events: EventLog,
        *,
        code_prefix: str = DEFAULT_PREFIX,
        code_length: int = DEFAULT_LENGTH,
        max_code_attempts: int = MAX_CODE_ATTEMPTS,
        write_retries: int = 3,
        min_quantity: int = 1,
        max_quantity: int = 500,
        known_locations: Optional[Iterable[str]] = None,
        code_factory: Optional[Callable[[], str]] = None,
    ):
        if store.db is not events.db:
            raise ValueError("LabelStore and EventLog must share one session")

        self.store = store
        self.events = events
        self.db = store.db
        self.code_prefix = code_prefix
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self.write_retries = write_retries
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity
        self.known_locations: Optional[FrozenSet[str]] = (
            frozenset(known_locations) if known_locations else None
        )
        self.code_factory = code_factory or partial(new_code, code_prefix, code_length)

    # Transactions

    @contextmanager
    def _unit_of_work(self):
        """Commit on success; roll back on any failure, cancellation included."""
        try:
            yield
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise

    def _transact(self, operation: Callable):
        """
        Run ``operation`` in its own unit of work.

        A DuplicateCode raised at write time means a concurrent writer took a
        code between our existence check and the insert; the whole operation
        is retried with fresh codes.
        """
        def _attempt():
            with self._unit_of_work():
                return operation()

        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.warning("Retrying after write-time code collision (attempt %d): %s", attempt, exc)

        return retry(_attempt, attempts=self.write_retries, retry_on=DuplicateCode, on_retry=_log_retry)

    def _guarded_update(self, label: Label, patch: dict, expected: dict, precondition: Callable) -> Label:
        """
        Conditionally update ``label``; on a lost race, report why.

        The label is re-read and its precondition re-checked so the loser
        gets the precise error (e.g. AlreadyRetired), falling back to
        TransitionConflict.
        """
        try:
            return self.store.update(label.id, patch, expected=expected)
        except TransitionConflict:
            self.db.refresh(label)
            logger.info("Lost concurrent transition on label %s", label.code)
            precondition(label)
            raise

    # Preconditions

    @staticmethod
    def _ensure_assignable(label: Label) -> None:
        if label.is_retired:
            raise LabelRetired(label.code)

    @staticmethod
    def _ensure_retirable(label: Label) -> None:
        if label.is_retired:
            raise AlreadyRetired(label.code, label.retired_reason)

    @staticmethod
    def _ensure_reprintable(label: Label) -> None:
        # Checked before retirement: a replaced label is always retired too
        if label.replaced_by_label_id:
            raise AlreadyReplaced(label.code, label.replaced_by_label_id)
        if label.is_retired:
            raise AlreadyRetired(label.code, label.retired_reason)

    # Input validation

    @staticmethod
    def _require_text(value: Optional[str], field: str, max_length: Optional[int] = None) -> str:
        if value is None or not str(value).strip():
            raise InvalidInput(f"{field} is required")
        if max_length is not None and len(value) > max_length:
            raise InvalidInput(f"{field} must be {max_length} characters or less")
        return value

    @staticmethod
    def _parse_reason(reason, reason_type: Type):
        try:
            return reason_type(reason)
        except ValueError:
            allowed = ", ".join(r.value for r in reason_type)
            raise InvalidInput(f"Invalid reason {reason!r}; expected one of {allowed}") from None

    def _check_quantity(self, quantity) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidInput(f"Quantity must be an integer, got {quantity!r}")
        if not self.min_quantity <= quantity <= self.max_quantity:
            raise InvalidQuantity(quantity, self.min_quantity, self.max_quantity)
        return quantity

    def _check_location(self, location: Optional[str]) -> str:
        location = self._require_text(location, "location", MAX_LOCATION_LENGTH)
        if self.known_locations is not None and location not in self.known_locations:
            raise InvalidInput(f"Unknown location {location!r}")
        return location

    def _new_unique_code(self) -> str:
        return new_unique_code(
            self.store.code_exists,
            max_attempts=self.max_code_attempts,
            generate=self.code_factory,
        )

    # Transitions

    def generate(
        self,
        sku_id: str,
        quantity: int,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> GenerateResult:
        """
        Create ``quantity`` UNASSIGNED labels under one new batch.

        All or nothing: if any code cannot be generated, no batch, label or
        event is persisted.
        """
        quantity = self._check_quantity(quantity)
        sku_id = self._require_text(sku_id, "sku_id")
        actor_id = self._require_text(actor_id, "actor_id")

        def _generate() -> GenerateResult:
            batch = self.store.create_batch(LabelBatch(
                sku_id=sku_id,
                quantity=quantity,
                notes=notes,
                created_by=actor_id,
            ))

            codes = new_batch_codes(
                quantity,
                self.store.code_exists,
                max_attempts=self.max_code_attempts,
                generate=self.code_factory,
            )

            labels = []
            for position, code in enumerate(codes, start=1):
                label = self.store.create(Label(
                    code=code,
                    sku_id=sku_id,
                    batch_id=batch.id,
                    batch_sequence=position,
                    status=LabelStatus.UNASSIGNED,
                    created_by_user_id=actor_id,
                ))
                self.events.append(
                    label,
                    LabelEventType.CREATED,
                    description=f"Label generated in batch {batch.id}",
                    actor_id=actor_id,
                    device_id=device_id,
                    to_value=CreatedSnapshot(
                        status=LabelStatus.UNASSIGNED,
                        code=code,
                        sku_id=sku_id,
                        batch_id=batch.id,
                    ),
                )
                labels.append(label)
            return GenerateResult(batch, labels)

        result = self._transact(_generate)
        logger.info(
            "Generated %d labels for SKU %s in batch %s by %s",
            len(result.labels), sku_id, result.batch.id, actor_id,
        )
        return result

    def scan(
        self,
        code: str,
        actor_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> ScanResult:
        """
        Look up a label by code (or QR content) and record the scan.

        Scanning a retired label is informational, not an error: the result
        carries a warning instead.
        """
        parsed = parse_label_from_qr(code, self.code_prefix, self.code_length)
        if parsed is None:
            raise InvalidInput(f"Invalid label code format: {code!r}")

        def _scan() -> Label:
            label = self.store.get_by_code(parsed)
            self.events.append(
                label,
                LabelEventType.SCANNED,
                description="Label scanned via lookup",
                actor_id=actor_id,
                device_id=device_id,
                location=label.location,
            )
            return label

        label = self._transact(_scan)
        warning = RETIRED_WARNING if label.is_retired else None
        if warning:
            logger.info("Retired label %s scanned by %s", label.code, actor_id)
        return ScanResult(label, warning, self.events.recent_for_label(label.id, RECENT_EVENT_COUNT))

    def assign(
        self,
        label_id: str,
        location: str,
        actor_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> AssignResult:
        """
        Place a label at ``location``.

        Re-assigning an ASSIGNED label to its current location changes
        nothing and records nothing; the result is flagged idempotent. The
        comparison is on the location string only.
        """
        location = self._check_location(location)

        def _assign() -> AssignResult:
            label = self.store.get_by_id(label_id)
            self._ensure_assignable(label)

            if label.status == LabelStatus.ASSIGNED and label.location == location:
                logger.debug("Label %s already assigned to %s", label.code, location)
                return AssignResult(label, True)

            previous_status = label.status
            previous_location = label.location
            first_assignment = not self.events.has_assignment_history(label.id)
            event_type = LabelEventType.ASSIGNED if first_assignment else LabelEventType.LOCATION_CHANGED

            label = self._guarded_update(
                label,
                {"status": LabelStatus.ASSIGNED, "location": location, "assigned_at": utcnow()},
                expected={"status": label.status, "location": label.location},
                precondition=self._ensure_assignable,
            )

            self.events.append(
                label,
                event_type,
                description=(
                    f"Assigned to {location}" if first_assignment
                    else f"Location changed from {previous_location} to {location}"
                ),
                actor_id=actor_id,
                performed_by=performed_by,
                device_id=device_id,
                location=location,
                from_value=StateSnapshot(status=previous_status, location=previous_location),
                to_value=AssignedSnapshot(location=location, previous_location=previous_location),
            )
            return AssignResult(label, False)

        result = self._transact(_assign)
        if not result.idempotent:
            logger.info("Label %s assigned to %s by %s", result.label.code, location, actor_id)
        return result

    def retire(
        self,
        label_id: str,
        reason,
        description: Optional[str] = None,
        actor_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> Label:
        """
        Take a label out of service.

        Not idempotent: retiring twice raises AlreadyRetired and keeps the
        original reason.
        """
        reason = self._parse_reason(reason, RetirementReason)

        def _retire() -> Label:
            label = self.store.get_by_id(label_id)
            self._ensure_retirable(label)

            previous = StateSnapshot(status=label.status, location=label.location)
            label = self._guarded_update(
                label,
                {"status": LabelStatus.RETIRED, "retired_at": utcnow(), "retired_reason": reason.value},
                expected={"status": label.status, "location": label.location},
                precondition=self._ensure_retirable,
            )

            self.events.append(
                label,
                LabelEventType.RETIRED,
                description=description or f"Retired: {reason.value}",
                actor_id=actor_id,
                device_id=device_id,
                location=label.location,
                from_value=previous,
                to_value=RetiredSnapshot(reason=reason.value),
            )
            return label

        label = self._transact(_retire)
        logger.info("Label %s retired (%s) by %s", label.code, reason.value, actor_id)
        return label

    def reprint(
        self,
        label_id: str,
        reason,
        description: Optional[str] = None,
        actor_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> ReprintResult:
        """
        Replace a damaged or lost tag with a new label.

        The old label is retired and linked forward to the new one; the new
        label links back and inherits the old one's assignment, if any. A
        label can be reprinted once; later reprints must target the successor.
        """
        reason = self._parse_reason(reason, ReprintReason)

        def _reprint() -> ReprintResult:
            old = self.store.get_by_id(label_id)
            self._ensure_reprintable(old)

            old_id = old.id
            old_code = old.code
            old_status = old.status
            old_location = old.location
            inherits_assignment = old_status == LabelStatus.ASSIGNED
            now = utcnow()

            code = self._new_unique_code()
            try:
                new = self.store.create(Label(
                    code=code,
                    sku_id=old.sku_id,
                    batch_id=old.batch_id,
                    status=LabelStatus.ASSIGNED if inherits_assignment else LabelStatus.UNASSIGNED,
                    location=old_location if inherits_assignment else None,
                    assigned_at=now if inherits_assignment else None,
                    replaces_label_id=old_id,
                    created_by_user_id=actor_id,
                ))
            except IntegrityError:
                # Another reprint already linked a successor to this label
                self._ensure_reprintable(self.store.get_by_id(old_id))
                raise TransitionConflict(f"Label {old_code} changed concurrently") from None

            old = self._guarded_update(
                old,
                {
                    "status": LabelStatus.RETIRED,
                    "retired_at": now,
                    "retired_reason": f"{REPRINT_REASON_PREFIX}{reason.value}",
                    "replaced_by_label_id": new.id,
                },
                # The successor inherits old_location, so it must still hold
                expected={"status": old_status, "location": old_location, "replaced_by_label_id": None},
                precondition=self._ensure_reprintable,
            )

            self.events.append(
                old,
                LabelEventType.REPRINTED,
                description=description or f"Reprinted due to {reason.value}",
                actor_id=actor_id,
                device_id=device_id,
                location=old_location,
                from_value=StateSnapshot(status=old_status, code=old_code, location=old_location),
                to_value=ReprintedSnapshot(replaced_by_code=code, replaced_by_label_id=new.id),
            )
            self.events.append(
                new,
                LabelEventType.CREATED,
                description=f"Replacement for {old_code} ({reason.value})",
                actor_id=actor_id,
                device_id=device_id,
                to_value=ReplacementSnapshot(
                    status=new.status,
                    code=code,
                    replaces_code=old_code,
                    replaces_label_id=old_id,
                    reason=reason.value,
                ),
            )
            if inherits_assignment:
                self.events.append(
                    new,
                    LabelEventType.ASSIGNED,
                    description=f"Inherited location from {old_code}",
                    actor_id=actor_id,
                    device_id=device_id,
                    location=old_location,
                    to_value=AssignedSnapshot(location=old_location, inherited_from_code=old_code),
                )
            return ReprintResult(old, new)

        result = self._transact(_reprint)
        logger.info(
            "Label %s reprinted as %s (%s) by %s",
            result.old_label.code, result.new_label.code, reason.value, actor_id,
        )
        return result

    # Reads

    def get_label(self, label_id: str) -> Label:
        return self.store.get_by_id(label_id)

    def history(self, label_id: str) -> List[LabelEvent]:
        """Every event for a label, newest first."""
        label = self.store.get_by_id(label_id)
        return self.events.list_for_label(label.id)

    def list_labels(self, **filters) -> List[Label]:
        return self.store.list_labels(**filters)

    def get_batch(self, batch_id: str) -> LabelBatch:
        return self.store.get_batch(batch_id)

    def batch_print_sheet(self, batch_id: str) -> Tuple[LabelBatch, List[PrintRow]]:
        """Batch metadata plus the QR content for each label to print."""
        batch = self.store.get_batch(batch_id)
        rows = [
            PrintRow(label.id, label.code, qr_content(label.code), label.sku_id)
            for label in self.store.list_batch_labels(batch.id)
        ]
        return batch, rows

    def audit_events(self, **filters) -> Tuple[List[LabelEvent], int]:
        return self.events.search(**filters)
