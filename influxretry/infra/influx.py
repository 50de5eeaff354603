"""InfluxDB 3 query client used by the query service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional, Protocol

import pyarrow as pa
from influxdb_client_3 import InfluxDBClient3

from influxretry.shared.config import InfluxConfig

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class RecordStream(Protocol):
    def __iter__(self) -> Iterator[Record]:
        """Yield query records lazily."""

    def close(self) -> None:
        """Release the underlying stream; safe to call more than once."""


class QueryClient(Protocol):
    def query(self, sql: str) -> RecordStream:
        """Start ``sql`` and return a lazily consumed stream of records."""

    def close(self) -> None:
        """Release the client and its connections."""


class ArrowRecordStream:
    """Iterate the rows of an Arrow ``RecordBatchReader`` as dictionaries."""

    def __init__(self, reader: pa.RecordBatchReader) -> None:
        self._reader = reader
        self._closed = False

    def __iter__(self) -> Iterator[Record]:
        for batch in self._reader:
            yield from batch.to_pylist()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._reader.close()


class InfluxQueryClient:
    """Thin adapter exposing only the query capability of ``InfluxDBClient3``."""

    def __init__(self, config: InfluxConfig, client: Optional[InfluxDBClient3] = None) -> None:
        self._config = config
        self._client = client or InfluxDBClient3(
            host=config.host,
            token=config.token or "",
            database=config.database,
            # write client timeout is expressed in milliseconds
            timeout=int(config.write_timeout * 1000),
        )

    def query(self, sql: str) -> ArrowRecordStream:
        reader = self._client.query(
            query=sql,
            language="sql",
            mode="reader",
            timeout=self._config.read_timeout,
        )
        return ArrowRecordStream(reader)

    def close(self) -> None:
        logger.info("Closing InfluxDB client")
        self._client.close()


def build_query_client(config: InfluxConfig) -> InfluxQueryClient:
    """Create the InfluxDB query client configured from ``config``."""

    logger.info("Connecting to InfluxDB at %s (database %s)", config.host, config.database)
    return InfluxQueryClient(config)
