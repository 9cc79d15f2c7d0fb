"""
Analysis query executors – run the fixed ``SELECT *`` against Postgres.

Two strategies feed the report:
    • fetch_summary     – buffered: first row only, connection closed on return.
    • stream_summaries  – streaming: one text block per row from a server-side
                          cursor, connection closed when the stream ends.

Both format rows as ``"<Column>: <value>"`` lines in column order.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

import asyncpg

from app.core.config import settings
from app.core.logging import get_logger
from app.security.sql_policy import build_select_all
from app.services.observability import get_tracer

logger = get_logger(__name__)

# Errors that mean "no usable connection" rather than a bad query.
_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

_STREAM_PREFETCH = 50


class QueryError(RuntimeError):
    """The analysis query could not produce a row."""


async def _get_conn() -> asyncpg.Connection:
    return await asyncpg.connect(settings.database_dsn)


def format_row(row: Mapping[str, Any]) -> str:
    """Render one result row as ``Name: value`` lines, in column order."""
    return "\n".join(f"{name}: {_display(value)}" for name, value in row.items())


def _display(value: Any) -> str:
    if value is None:
        return "NULL"
    return str(value)


def _statement(table: str | None) -> str:
    return build_select_all(table or settings.ANALYSIS_TABLE)


# ── Buffered ─────────────────────────────────────────────────────


async def fetch_summary(table: str | None = None, *, parent_span: Any = None) -> str:
    """
    Run the analysis query and return the first row as formatted text.

    Raises:
        QueryError – bad table configuration, connection failure, query
        error, or an empty result.
    """
    try:
        sql = _statement(table)
    except ValueError as exc:
        logger.error("Analysis query rejected by policy: %s", exc)
        raise QueryError(str(exc)) from exc

    try:
        conn = await _get_conn()
    except _CONNECT_ERRORS as exc:
        logger.error("Database connection failed: %s", exc)
        raise QueryError(f"Connection failed: {exc}") from exc

    try:
        t0 = time.perf_counter()

        async with conn.transaction(readonly=True):
            row = await conn.fetchrow(sql)

        db_ms = round((time.perf_counter() - t0) * 1000)
        _trace_query(parent_span, sql, rows=0 if row is None else 1, db_ms=db_ms)

        if row is None:
            raise QueryError("Query returned no rows")

        return format_row(row)

    except asyncpg.PostgresError as exc:
        logger.error("SQL execution error: %s | SQL: %s", exc, sql)
        raise QueryError(f"Database error: {exc}") from exc
    finally:
        await conn.close()


# ── Streaming ────────────────────────────────────────────────────


async def stream_summaries(
    table: str | None = None,
    *,
    parent_span: Any = None,
) -> AsyncIterator[str]:
    """
    Yield one formatted text block per result row, in query order.

    The sequence is lazy and single-pass.  Failures are logged and simply
    end it, so a broken database yields nothing rather than raising.
    Consumers that may stop early should wrap it in ``contextlib.aclosing``
    so the connection is released straight away.
    """
    try:
        sql = _statement(table)
    except ValueError as exc:
        logger.error("Analysis query rejected by policy: %s", exc)
        return

    try:
        conn = await _get_conn()
    except _CONNECT_ERRORS as exc:
        logger.error("Database connection failed: %s", exc)
        return

    rows = 0
    t0 = time.perf_counter()
    try:
        # Cursors only live inside a transaction
        async with conn.transaction(readonly=True):
            async for record in conn.cursor(sql, prefetch=_STREAM_PREFETCH):
                rows += 1
                yield format_row(record)
    except asyncpg.PostgresError as exc:
        logger.error("SQL streaming error after %d row(s): %s | SQL: %s", rows, exc, sql)
    finally:
        await conn.close()
        db_ms = round((time.perf_counter() - t0) * 1000)
        logger.info("%d row(s) streamed in %d ms", rows, db_ms)
        _trace_query(parent_span, sql, rows=rows, db_ms=db_ms)


def _trace_query(parent_span: Any, sql: str, *, rows: int, db_ms: int) -> None:
    if parent_span is None:
        return
    tracer = get_tracer()
    span = tracer.start_span(parent_span, name="db.query", input={"sql": sql})
    tracer.end_span(span, output={"row_count": rows}, metadata={"db_ms": db_ms})
