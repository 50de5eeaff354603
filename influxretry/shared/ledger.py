"""Bounded in-memory observers for query attempts and log events."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Deque, List, Optional, Protocol

SUCCESS = "success"
FAILURE = "failure"


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of a single attempt made by the retry loop."""

    description: str
    attempt: int
    elapsed_ms: float
    status: str
    timestamp: datetime
    error: Optional[str] = None


class AttemptObserver(Protocol):
    def record(self, entry: AttemptRecord) -> None:
        """Receive the outcome of one attempt. Must not raise."""


class ResultsLedger:
    """Keeps the most recent ``"<timestamp>: <status>"`` entries."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._lock = RLock()
        self._entries: Deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def record(self, entry: AttemptRecord) -> None:
        with self._lock:
            self._entries.append(f"{entry.timestamp.isoformat()}: {entry.status}")

    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class LogEventBuffer(logging.Handler):
    """Logging handler retaining the last ``capacity`` records in memory.

    The handler is not attached anywhere by default; callers install it with
    :meth:`attach` and remove it with :meth:`detach` so the capture stays
    scoped to whoever owns the buffer.
    """

    def __init__(self, capacity: int = 500, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._records: Deque[logging.LogRecord] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        # Handler.handle already holds self.lock here.
        self._records.append(record)

    def attach(self, logger: Optional[logging.Logger] = None) -> None:
        (logger or logging.getLogger()).addHandler(self)

    def detach(self, logger: Optional[logging.Logger] = None) -> None:
        (logger or logging.getLogger()).removeHandler(self)

    def events(self, min_level: int = logging.NOTSET) -> List[logging.LogRecord]:
        """Return captured records whose level is strictly above ``min_level``."""

        with self.lock:
            return [record for record in self._records if record.levelno > min_level]

    def format_events(self, min_level: int = logging.INFO) -> str:
        lines = []
        for record in self.events(min_level):
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            lines.append(
                f"{created.isoformat()}[{record.name}]: {record.levelname} {record.getMessage()}"
            )
        return "\n".join(lines)

    def clear(self) -> None:
        with self.lock:
            self._records.clear()
