"""Terminal errors raised by the retry loop."""

from __future__ import annotations

from typing import Literal, Optional


class QueryError(Exception):
    """Base class for errors synthesised by the retry loop itself."""


class RetryBudgetExhaustedError(QueryError):
    """The attempt ceiling was reached while failures were still transient."""

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"retry budget exhausted after {attempts} attempts for {description!r}: {last_error}"
        )
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class QueryCancelledError(QueryError):
    """Cancellation or the overall timeout fired while waiting to retry."""

    def __init__(
        self,
        description: str,
        reason: Literal["cancelled", "timeout"],
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"query {description!r} aborted during backoff ({reason})")
        self.description = description
        self.reason = reason
        self.last_error = last_error
