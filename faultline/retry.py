"""
Error classification and deadline-bounded retry for the client under test.

Failures are mapped to a low-cardinality ErrorCode. A fatal-error
classifier, is_fatal(code, reason), decides whether the client gives up
immediately or backs off and retries; the harness installs
connectivity_errors_nonfatal because it induces exactly those errors on
purpose.

Attempts are recorded on the active RetryTracker, if any:

    with retry_tracking_context() as tracker:
        client.metadata(timeout_ms=12100)
    print(tracker.total_retries, tracker.retries_by_code())
"""

from __future__ import annotations

import contextvars
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

import httpx

from faultline.clock import Clock, now_ms, remaining_ms
from faultline.exceptions import MetadataError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Failure classes of the operation under test."""

    TRANSPORT = "transport"
    ALL_BROKERS_DOWN = "all_brokers_down"
    AUTHENTICATION = "authentication"
    TIMED_OUT = "timed_out"
    BROKER_NOT_AVAILABLE = "broker_not_available"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


FatalClassifier = Callable[[ErrorCode, str], bool]

RECOVERABLE_CODES = frozenset(
    {
        ErrorCode.TRANSPORT,
        ErrorCode.ALL_BROKERS_DOWN,
        ErrorCode.AUTHENTICATION,
        ErrorCode.TIMED_OUT,
    }
)


def classify_exception(exc: Exception) -> Tuple[ErrorCode, str]:
    """
    Classify a request failure.

    Args:
        exc: Exception raised by an attempt.

    Returns:
        (ErrorCode, human-readable reason)
    """
    reason = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCode.TIMED_OUT, reason
    if isinstance(exc, httpx.ConnectError):
        return ErrorCode.ALL_BROKERS_DOWN, reason
    if isinstance(exc, httpx.TransportError):
        return ErrorCode.TRANSPORT, reason
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return ErrorCode.AUTHENTICATION, reason
        if status >= 500:
            return ErrorCode.BROKER_NOT_AVAILABLE, reason
        return ErrorCode.INVALID_REQUEST, reason
    return ErrorCode.UNKNOWN, reason


def connectivity_errors_nonfatal(code: ErrorCode, reason: str) -> bool:
    """
    Fatal-error classifier used by the harness.

    Transport, all-brokers-down, authentication and timeout errors are
    recoverable: the harness brings connectivity down deliberately, and a
    dropped connection during auth looks like an auth failure.
    """
    logger.info("is_fatal?: %s: %s", code.value, reason)
    return code not in RECOVERABLE_CODES


def default_is_fatal(code: ErrorCode, reason: str) -> bool:
    return code is ErrorCode.INVALID_REQUEST


@dataclass
class AttemptRecord:
    """
    One attempt of a retried operation.

    Attributes:
        attempt: 1-based attempt number.
        started_ms: Clock reading when the attempt started.
        ended_ms: Clock reading when it returned or failed.
        error_code: None for the successful attempt.
        reason: Failure reason, if any.
        backoff_ms: Wait before the next attempt.
    """

    attempt: int
    started_ms: float
    ended_ms: float
    error_code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    backoff_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass
class RetryTracker:
    """Attempt log for one operation."""

    attempts: List[AttemptRecord] = field(default_factory=list)
    deadline_exceeded: bool = False

    @property
    def total_retries(self) -> int:
        return max(0, len(self.attempts) - 1)

    @property
    def backoff_ms_total(self) -> float:
        return sum(a.backoff_ms for a in self.attempts)

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].ok

    def record(self, record: AttemptRecord) -> None:
        self.attempts.append(record)

    def retries_by_code(self) -> Dict[str, int]:
        """Failed attempts that were followed by a retry, keyed by code."""
        counts: Dict[str, int] = {}
        for record in self.attempts[:-1]:
            if record.error_code is not None:
                key = record.error_code.value
                counts[key] = counts.get(key, 0) + 1
        return counts


_retry_tracker_var: contextvars.ContextVar[Optional[RetryTracker]] = (
    contextvars.ContextVar("faultline_retry_tracker", default=None)
)


def get_retry_tracker() -> Optional[RetryTracker]:
    return _retry_tracker_var.get()


class retry_tracking_context:
    """
    Scope a RetryTracker to the enclosed operation.

    Usage:
        with retry_tracking_context() as tracker:
            client.metadata(timeout_ms=2000)
    """

    def __init__(self) -> None:
        self._token: Optional[contextvars.Token[Optional[RetryTracker]]] = None

    def __enter__(self) -> RetryTracker:
        tracker = RetryTracker()
        self._token = _retry_tracker_var.set(tracker)
        return tracker

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _retry_tracker_var.reset(self._token)


def call_with_deadline(
    func: Callable[[float], T],
    *,
    deadline_ms: float,
    backoff_ms: float,
    is_fatal: Optional[FatalClassifier] = None,
    on_failure: Optional[Callable[[ErrorCode, Exception], None]] = None,
    clock: Clock = now_ms,
) -> T:
    """
    Call func until it succeeds, a fatal error occurs, or the deadline passes.

    func receives the milliseconds left before the deadline and should
    bound its own attempt by it. httpx errors are classified and retried
    after min(backoff_ms, remaining); any other exception propagates.

    Raises:
        MetadataError: Fatal error (fatal=True) or deadline exceeded
            (error_code TIMED_OUT).
    """
    is_fatal = is_fatal or default_is_fatal
    tracker = get_retry_tracker()
    attempt = 0
    last_code = ErrorCode.TIMED_OUT
    last_reason = "deadline exceeded before first attempt"

    while True:
        left = remaining_ms(deadline_ms, clock)
        if attempt and left <= 0:
            break
        attempt += 1
        started = clock()
        try:
            result = func(left)
        except httpx.HTTPError as e:
            code, reason = classify_exception(e)
            record = AttemptRecord(attempt, started, clock(), code, reason)
            if tracker is not None:
                tracker.record(record)
            logger.debug("attempt %d failed: %s: %s", attempt, code.value, reason)

            if is_fatal(code, reason):
                raise MetadataError(
                    f"Fatal error: {reason}",
                    error_code=code.value,
                    reason=reason,
                    fatal=True,
                    attempts=attempt,
                ) from e
            if on_failure is not None:
                on_failure(code, e)

            last_code, last_reason = code, reason
            left = remaining_ms(deadline_ms, clock)
            if left <= 0:
                break
            record.backoff_ms = min(backoff_ms, left)
            time.sleep(record.backoff_ms / 1000.0)
            continue

        if tracker is not None:
            tracker.record(AttemptRecord(attempt, started, clock()))
        return result

    if tracker is not None:
        tracker.deadline_exceeded = True
    raise MetadataError(
        f"Request timed out after {attempt} attempt(s): {last_reason}",
        error_code=ErrorCode.TIMED_OUT.value,
        reason=last_reason,
        attempts=attempt,
        details={"last_error_code": last_code.value},
    )
