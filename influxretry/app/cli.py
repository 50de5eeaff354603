from __future__ import annotations

import argparse
import sys
from typing import Sequence

import uvicorn

from influxretry.app.api import app, build_query_service
from influxretry.shared.config import LEDGER_CAPACITY
from influxretry.shared.errors import QueryError
from influxretry.shared.ledger import ResultsLedger


def build_parser() -> argparse.ArgumentParser:
    """Build the command line argument parser."""

    parser = argparse.ArgumentParser("influxretry")
    sub = parser.add_subparsers(dest="cmd")
    sub.required = True

    query = sub.add_parser("query", help="Run a SQL query once, with retries")
    query.add_argument("sql", help="SQL query to execute")
    query.add_argument("--timeout", type=float, default=None, help="Overall timeout in seconds")

    serve = sub.add_parser("serve", help="Start the HTTP API with Uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)

    return parser


def handle_query(sql: str, timeout: float | None = None) -> int:
    """Run the ``query`` command and return an exit code."""

    service = build_query_service(ResultsLedger(LEDGER_CAPACITY))
    try:
        rows = service.count(sql, timeout=timeout)
    except QueryError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"query failed: {exc}", file=sys.stderr)
        return 1
    finally:
        service.close()
    print(rows)
    return 0


def handle_serve(host: str, port: int) -> int:
    """Run the ``serve`` command and return an exit code."""

    uvicorn.run(app, host=host, port=port)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "serve":
        return handle_serve(args.host, args.port)
    if args.cmd == "query":
        return handle_query(args.sql, args.timeout)

    parser.error("Invalid command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
