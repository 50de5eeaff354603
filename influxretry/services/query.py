"""Query execution with retry of transient InfluxDB failures."""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from influxretry.infra.influx import QueryClient, Record
from influxretry.shared.retry import RetryExecutor

logger = logging.getLogger(__name__)

R = TypeVar("R")

ResultHandler = Callable[[Iterable[Record]], R]


class QueryService:
    """Run SQL queries through :class:`RetryExecutor`.

    Each attempt opens a record stream, passes it to the handler and closes
    it before the attempt ends, whatever the outcome. A handler failure is
    classified exactly like a failure of the query call, so a transient error
    raised while the handler consumes the stream is retried as well.
    """

    def __init__(self, client: QueryClient, executor: RetryExecutor) -> None:
        self._client = client
        self._executor = executor

    @property
    def client(self) -> QueryClient:
        return self._client

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    def execute(
        self,
        query: str,
        handler: ResultHandler[R],
        *,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> R:
        def attempt() -> R:
            with closing(self._client.query(query)) as records:
                return handler(records)

        return self._executor.run(
            attempt,
            description=query,
            cancel_event=cancel_event,
            timeout=timeout,
        )

    def query_with_retry(self, query: str, **kwargs: Any) -> List[Record]:
        """Execute ``query`` and materialise every record."""

        return self.execute(query, list, **kwargs)

    def count(self, query: str, **kwargs: Any) -> int:
        """Execute ``query`` and return the number of records."""

        def _count(records: Iterable[Record]) -> int:
            total = 0
            for record in records:
                logger.debug("building point values: %s", record)
                total += 1
            return total

        return self.execute(query, _count, **kwargs)

    def close(self) -> None:
        self._client.close()
