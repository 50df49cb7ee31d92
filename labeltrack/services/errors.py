"""
Error kinds raised by the label lifecycle.

Precondition failures (not found, already retired, ...) are the system
working correctly and are surfaced to the caller for correction. Code
generation failures are transient faults: no state was committed, so the
whole operation is safe to retry.
"""
from typing import Optional


class LabelLifecycleError(Exception):
    """Base class for every error the lifecycle surfaces to callers."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class LabelNotFound(LabelLifecycleError):
    """Referenced label or batch does not exist."""

    def __init__(self, message: str = "Label not found", lookup: Optional[str] = None):
        self.lookup = lookup
        super().__init__(message)


class InvalidInput(LabelLifecycleError):
    """Caller-supplied parameters were rejected before any storage access."""


class InvalidQuantity(InvalidInput):
    def __init__(self, quantity: int, minimum: int, maximum: int):
        self.quantity = quantity
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Quantity must be between {minimum} and {maximum}, got {quantity}")


class AlreadyRetired(LabelLifecycleError):
    def __init__(self, label_code: str, retired_reason: Optional[str] = None):
        self.label_code = label_code
        self.retired_reason = retired_reason
        super().__init__(f"Label {label_code} is already retired")


class AlreadyReplaced(LabelLifecycleError):
    """The label was reprinted before; reprint its successor instead."""

    def __init__(self, label_code: str, replaced_by_label_id: str):
        self.label_code = label_code
        self.replaced_by_label_id = replaced_by_label_id
        super().__init__(
            f"Label {label_code} has already been replaced by label {replaced_by_label_id}; "
            f"reprint the replacement instead"
        )


class LabelRetired(LabelLifecycleError):
    def __init__(self, label_code: str):
        self.label_code = label_code
        super().__init__(f"Cannot assign retired label {label_code}")


class TransitionConflict(LabelLifecycleError):
    """A concurrent writer changed the label between read and conditional update."""


class CodeSpaceExhausted(LabelLifecycleError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Failed to generate a unique label code after {attempts} attempts")


class DuplicateCode(LabelLifecycleError):
    """Label code collided with a row committed after the existence check."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Label code {code} already exists")
