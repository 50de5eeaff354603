from __future__ import annotations

import logging
import os
import signal
import threading
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pyarrow import flight

from influxretry import __version__
from influxretry.infra.config import settings
from influxretry.infra.influx import build_query_client
from influxretry.infra.logging import setup_logging
from influxretry.services.query import QueryService
from influxretry.shared.config import (
    INFLUX_CONFIG,
    LEDGER_CAPACITY,
    LOG_BUFFER_CAPACITY,
    RETRY_CONFIG,
)
from influxretry.shared.errors import QueryCancelledError, RetryBudgetExhaustedError
from influxretry.shared.ledger import LogEventBuffer, ResultsLedger
from influxretry.shared.retry import RetryExecutor

logger = logging.getLogger(__name__)


def build_query_service(ledger: ResultsLedger) -> QueryService:
    """Wire the InfluxDB client and the retry executor from settings."""

    executor = RetryExecutor(
        RETRY_CONFIG.backoff_policy(),
        max_attempts=RETRY_CONFIG.max_attempts,
        observers=[ledger],
    )
    return QueryService(build_query_client(INFLUX_CONFIG), executor)


def _send_interrupt(count: int) -> None:
    # uvicorn exits without draining connections on the second signal
    for _ in range(count):
        os.kill(os.getpid(), signal.SIGINT)


def _signal_shutdown() -> None:
    count = 2 if settings.SHUTDOWN_MODE == "immediate" else 1
    # Let the response go out before uvicorn starts tearing down.
    threading.Timer(0.5, _send_interrupt, args=(count,)).start()


def _ledger_of(service: QueryService) -> Optional[ResultsLedger]:
    """Return the ledger the service's executor already writes to, if any."""

    for observer in service.executor.observers:
        if isinstance(observer, ResultsLedger):
            return observer
    logger.warning("Query service has no results ledger; /results/ledger will stay empty")
    return None


def create_app(
    service: Optional[QueryService] = None,
    *,
    ledger: Optional[ResultsLedger] = None,
    log_buffer: Optional[LogEventBuffer] = None,
    shutdown: Optional[Callable[[], None]] = None,
) -> FastAPI:
    if ledger is None and service is not None:
        ledger = _ledger_of(service)
    ledger = ledger if ledger is not None else ResultsLedger(LEDGER_CAPACITY)
    log_buffer = log_buffer if log_buffer is not None else LogEventBuffer(LOG_BUFFER_CAPACITY)
    shutdown = shutdown or _signal_shutdown

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.query_service is None:
            app.state.query_service = build_query_service(ledger)
        log_buffer.attach()
        try:
            yield
        finally:
            try:
                app.state.query_service.close()
            finally:
                log_buffer.detach()

    app = FastAPI(title="InfluxDB retry proxy", version=__version__, lifespan=lifespan)
    app.state.query_service = service
    app.state.ledger = ledger
    app.state.log_buffer = log_buffer

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/version")
    def version():
        return {"version": __version__}

    # ---- Global error handlers ----
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("422 ValidationError %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(RetryBudgetExhaustedError)
    async def exhausted_handler(request: Request, exc: RetryBudgetExhaustedError):
        logger.error("503 retry budget exhausted %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "database unavailable", "attempts": exc.attempts},
        )

    @app.exception_handler(QueryCancelledError)
    async def cancelled_handler(request: Request, exc: QueryCancelledError):
        logger.warning("504 query aborted %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=504, content={"detail": f"query {exc.reason}"})

    @app.exception_handler(flight.FlightError)
    async def flight_handler(request: Request, exc: flight.FlightError):
        logger.error("502 FlightError %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": "query failed"})

    @app.exception_handler(Exception)
    async def default_handler(request: Request, exc: Exception):
        logger.exception("500 Unhandled %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "internal error"})

    # ---- Queries ----
    @app.get("/api/query")
    def query(
        request: Request,
        q: str = Query(..., min_length=1),
        timeout: Optional[float] = Query(None, gt=0),
    ):
        service: QueryService = request.app.state.query_service
        return {"rows": service.count(q, timeout=timeout)}

    # ---- Threads ----
    @app.get("/threads/all", response_class=PlainTextResponse)
    def threads_all():
        lines = []
        for thread in threading.enumerate():
            kind = "daemon" if thread.daemon else "user"
            state = "alive" if thread.is_alive() else "stopped"
            lines.append(f"{thread.name}[{kind}]: {state}\n")
        return "".join(lines)

    @app.get("/threads/info", response_class=PlainTextResponse)
    def threads_info(t: str):
        for thread in threading.enumerate():
            if thread.name == t:
                return f"{thread!r}\n"
        return f"Not found {t}\n"

    # ---- Results ----
    @app.get("/results/ledger", response_class=PlainTextResponse)
    def results_ledger():
        return "".join(f"{entry}\n" for entry in ledger.entries())

    @app.get("/results/log", response_class=PlainTextResponse)
    def results_log():
        return log_buffer.format_events(logging.INFO) + "\n"

    @app.get("/shutdown")
    def shutdown_endpoint():
        logger.info("Shutdown type %s", settings.SHUTDOWN_MODE)
        shutdown()
        return {"status": "shutting down", "mode": settings.SHUTDOWN_MODE}

    return app


setup_logging()

app = create_app()
