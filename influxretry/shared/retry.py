"""Retry classification and bounded exponential backoff for query execution.

Only failures caused by transient infrastructure problems are retried. The
decision walks the whole exception chain because the HTTP client, the Flight
(gRPC) client and our own code may each wrap the real cause.
"""

from __future__ import annotations

import enum
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Literal, Optional, Sequence, TypeVar

from influxdb_client_3 import InfluxDBError
from pyarrow import flight
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from influxretry.shared.errors import QueryCancelledError, RetryBudgetExhaustedError
from influxretry.shared.ledger import FAILURE, SUCCESS, AttemptObserver, AttemptRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 10

# Substring heuristics. They depend on the wording of upstream error messages
# and break silently if that wording changes.
EOF_WHILE_READING_MARKER = "EOF reached while reading"
GATEWAY_TIMEOUT_MARKER = "504"


class RetryDecision(enum.Enum):
    RETRY = "retry"
    NO_RETRY = "no_retry"


class TransientCause(enum.Enum):
    """Which rule recognised a failure as transient."""

    FLIGHT_STATUS = "flight_status"
    SOCKET = "socket"
    EOF_WHILE_READING = "eof_while_reading"
    GATEWAY_TIMEOUT = "gateway_timeout"


_FLIGHT_TRANSIENT = (flight.FlightUnavailableError, flight.FlightTimedOutError)
_SOCKET_TRANSIENT = (socket.timeout, TimeoutError, ConnectionError, socket.gaierror, socket.herror)


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    """Yield ``error`` and the causes it wraps, outermost first."""

    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _message_of(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    try:
        return str(error)
    except Exception:  # broken __str__ must not break classification
        return ""


def _is_eof_while_reading(error: BaseException) -> bool:
    return isinstance(error, InfluxDBError) and EOF_WHILE_READING_MARKER in _message_of(error)


def _is_gateway_timeout(error: BaseException) -> bool:
    return GATEWAY_TIMEOUT_MARKER in _message_of(error)


def _match_cause(error: BaseException) -> Optional[TransientCause]:
    if isinstance(error, _FLIGHT_TRANSIENT):
        return TransientCause.FLIGHT_STATUS
    if isinstance(error, _SOCKET_TRANSIENT):
        return TransientCause.SOCKET
    if _is_eof_while_reading(error):
        return TransientCause.EOF_WHILE_READING
    if _is_gateway_timeout(error):
        return TransientCause.GATEWAY_TIMEOUT
    return None


def find_transient_cause(error: BaseException) -> Optional[TransientCause]:
    """Return the first transient cause found in the chain of ``error``."""

    for cause in _error_chain(error):
        matched = _match_cause(cause)
        if matched is not None:
            return matched
    return None


def classify(error: BaseException) -> RetryDecision:
    """Decide whether the failure described by ``error`` is worth retrying."""

    if find_transient_cause(error) is None:
        return RetryDecision.NO_RETRY
    return RetryDecision.RETRY


def is_transient(error: BaseException) -> bool:
    return classify(error) is RetryDecision.RETRY


class BackoffPolicy(wait_base):
    """Deterministic exponential backoff capped at ``max_interval`` seconds.

    ``next_delay(n)`` is ``min(initial_interval * multiplier ** n, max_interval)``
    where ``n`` counts the failed attempts before this wait, starting at 0.
    Used directly as a tenacity ``wait`` strategy.
    """

    def __init__(
        self,
        initial_interval: float = 1.0,
        multiplier: float = 2.0,
        max_interval: float = 30.0,
    ) -> None:
        if initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if max_interval < initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        self.initial_interval = float(initial_interval)
        self.multiplier = float(multiplier)
        self.max_interval = float(max_interval)

    def next_delay(self, attempt_number: int) -> float:
        if attempt_number < 0:
            raise ValueError("attempt_number must be >= 0")
        try:
            delay = self.initial_interval * self.multiplier ** attempt_number
        except OverflowError:
            return self.max_interval
        return min(delay, self.max_interval)

    def __call__(self, retry_state: RetryCallState) -> float:
        # tenacity counts attempts from 1
        return self.next_delay(retry_state.attempt_number - 1)

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(initial_interval={self.initial_interval}, "
            f"multiplier={self.multiplier}, max_interval={self.max_interval})"
        )


@dataclass
class AttemptContext:
    """Mutable state owned by a single :meth:`RetryExecutor.run` call.

    ``attempt_number`` starts at 0 for every call and counts attempts
    started, so it equals the number of failed attempts only between an
    attempt's failure and the next one. Backoff uses tenacity's own count.
    """

    description: str
    attempt_number: int = 0
    started_at: float = field(default_factory=time.monotonic)
    last_error: Optional[BaseException] = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class RetryExecutor:
    """Run an operation, retrying while its failures classify as transient.

    The loop stops on success, on the first permanent failure (re-raised
    unchanged), or when ``max_attempts`` attempts have failed transiently
    (:class:`RetryBudgetExhaustedError`). Every attempt is logged and handed
    to the observers.
    """

    def __init__(
        self,
        backoff: Optional[BackoffPolicy] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        observers: Sequence[AttemptObserver] = (),
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max_attempts
        self._observers = tuple(observers)
        self._sleep = sleep

    @property
    def observers(self) -> tuple[AttemptObserver, ...]:
        return self._observers

    def run(
        self,
        operation: Callable[[], T],
        *,
        description: str,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> T:
        context = AttemptContext(description=description)
        deadline = None if timeout is None else context.started_at + timeout

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception(is_transient),
            sleep=self._make_sleep(context, cancel_event, deadline),
            before_sleep=lambda state: self._log_retry(context, state),
            reraise=False,
        )
        try:
            return retrying(self._attempt, operation, context)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error(
                "Giving up on %s after %d attempts in %.1f s: %s",
                description,
                context.attempt_number,
                context.elapsed,
                last_error,
            )
            raise RetryBudgetExhaustedError(description, context.attempt_number, last_error) from last_error

    def _attempt(self, operation: Callable[[], T], context: AttemptContext) -> T:
        context.attempt_number += 1
        start = time.monotonic()
        status = FAILURE
        error: Optional[BaseException] = None
        try:
            result = operation()
            status = SUCCESS
            return result
        except BaseException as exc:
            error = exc
            context.last_error = exc
            raise
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Query executed: %s (attempt %d) in %d ms with status %s",
                context.description,
                context.attempt_number,
                elapsed_ms,
                status,
            )
            self._notify(
                AttemptRecord(
                    description=context.description,
                    attempt=context.attempt_number,
                    elapsed_ms=elapsed_ms,
                    status=status,
                    timestamp=datetime.now(timezone.utc),
                    error=None if error is None else repr(error),
                )
            )

    def _notify(self, entry: AttemptRecord) -> None:
        for observer in self._observers:
            try:
                observer.record(entry)
            except Exception:
                logger.exception("Attempt observer %r failed", observer)

    def _log_retry(self, context: AttemptContext, state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        error = state.outcome.exception() if state.outcome is not None else None
        cause = find_transient_cause(error) if error is not None else None
        logger.warning(
            "Transient failure (%s) for %s (attempt %d/%d): %s. Retrying in %.3f s",
            cause.value if cause is not None else "unknown",
            context.description,
            context.attempt_number,
            self.max_attempts,
            error,
            delay,
        )

    def _make_sleep(
        self,
        context: AttemptContext,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> Callable[[float], None]:
        sleep = self._sleep

        def _cancelled(reason: Literal["cancelled", "timeout"]) -> QueryCancelledError:
            logger.warning("Retry loop for %s aborted: %s", context.description, reason)
            return QueryCancelledError(context.description, reason, context.last_error)

        def _wait(seconds: float) -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise _cancelled("cancelled") from context.last_error

            hits_deadline = False
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= seconds:
                    seconds = max(remaining, 0.0)
                    hits_deadline = True

            if sleep is not None:
                sleep(seconds)
                interrupted = cancel_event is not None and cancel_event.is_set()
            elif cancel_event is not None:
                interrupted = cancel_event.wait(seconds)
            else:
                time.sleep(seconds)
                interrupted = False

            if interrupted:
                raise _cancelled("cancelled") from context.last_error
            if hits_deadline:
                raise _cancelled("timeout") from context.last_error

        return _wait
