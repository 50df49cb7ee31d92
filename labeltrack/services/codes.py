"""
Label code generation.

Codes look like ``BM-7K3QX9PA``: a constant prefix plus a random suffix
drawn from an alphabet without I and O, so they read unambiguously
against 1 and 0 on a printed tag. ``new_code`` alone does not guarantee
uniqueness; the ``new_unique_code``/``new_batch_codes`` helpers check
candidates against storage through an injected ``exists`` callable.
"""
import logging
import re
import secrets
from typing import Callable, List, Optional, Type, TypeVar, Union

from labeltrack.services.errors import CodeSpaceExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Excludes I and O to avoid confusion with 1 and 0
LABEL_CODE_CHARS = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
DEFAULT_PREFIX = "BM"
DEFAULT_LENGTH = 8
MAX_CODE_ATTEMPTS = 100

QR_SCHEME = "barmetrics://label/"

ExistsFn = Callable[[str], bool]


class CodeCollision(Exception):
    """A candidate code is already taken."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


def new_code(prefix: str = DEFAULT_PREFIX, length: int = DEFAULT_LENGTH) -> str:
    """Return a random code in ``PREFIX-XXXXXXXX`` format."""
    suffix = "".join(secrets.choice(LABEL_CODE_CHARS) for _ in range(length))
    return f"{prefix}-{suffix}"


def retry(
    func: Callable[[], T],
    *,
    attempts: int,
    retry_on: Union[Type[BaseException], tuple] = Exception,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Call ``func`` until it returns, at most ``attempts`` times.

    Only exceptions matching ``retry_on`` are retried; the last one is
    re-raised once attempts run out.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
    raise AssertionError("unreachable")


def new_unique_code(
    exists: ExistsFn,
    *,
    max_attempts: int = MAX_CODE_ATTEMPTS,
    generate: Callable[[], str] = new_code,
) -> str:
    """
    Generate a code not reported by ``exists``.

    Raises CodeSpaceExhausted after ``max_attempts`` collisions.
    """
    def _attempt() -> str:
        candidate = generate()
        if exists(candidate):
            raise CodeCollision(candidate)
        return candidate

    def _log_collision(attempt: int, exc: BaseException) -> None:
        logger.debug("Label code collision on attempt %d: %s", attempt, exc)

    try:
        return retry(_attempt, attempts=max_attempts, retry_on=CodeCollision, on_retry=_log_collision)
    except CodeCollision:
        logger.warning("Label code space exhausted after %d attempts", max_attempts)
        raise CodeSpaceExhausted(max_attempts) from None


def new_batch_codes(
    n: int,
    exists: ExistsFn,
    *,
    max_attempts: int = MAX_CODE_ATTEMPTS,
    generate: Callable[[], str] = new_code,
) -> List[str]:
    """
    Generate ``n`` mutually distinct codes, none reported by ``exists``.

    Each code gets its own attempt budget; exhausting any one of them
    fails the whole batch.
    """
    codes: List[str] = []
    taken = set()

    def _exists(candidate: str) -> bool:
        return candidate in taken or exists(candidate)

    for _ in range(n):
        code = new_unique_code(_exists, max_attempts=max_attempts, generate=generate)
        taken.add(code)
        codes.append(code)
    return codes


def qr_content(code: str) -> str:
    """Content encoded into a label's QR symbol."""
    return f"{QR_SCHEME}{code}"


def _code_pattern(prefix: str, length: int) -> str:
    return rf"{re.escape(prefix)}-[{LABEL_CODE_CHARS}]{{{length}}}"


def is_valid_label_code(code: str, prefix: str = DEFAULT_PREFIX, length: int = DEFAULT_LENGTH) -> bool:
    return re.fullmatch(_code_pattern(prefix, length), code) is not None


def parse_label_from_qr(raw: str, prefix: str = DEFAULT_PREFIX, length: int = DEFAULT_LENGTH) -> Optional[str]:
    """
    Extract a label code from scanner input.

    Accepts a bare code or the full ``barmetrics://label/<code>`` content.
    Returns None when the input is neither.
    """
    value = (raw or "").strip()
    pattern = _code_pattern(prefix, length)

    if re.fullmatch(pattern, value):
        return value

    match = re.fullmatch(re.escape(QR_SCHEME) + f"({pattern})", value)
    return match.group(1) if match else None

