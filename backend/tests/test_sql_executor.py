import asyncpg
import pytest

from app.services import sql_executor
from app.services.sql_executor import QueryError, fetch_summary, format_row, stream_summaries

PERSONS = [
    {"FirstName": "Ada", "LastName": "Lovelace", "Address": "12 St James's Square"},
    {"FirstName": "Alan", "LastName": "Turing", "Address": None},
]


def test_format_row_keeps_column_order():
    assert format_row(PERSONS[1]) == "FirstName: Alan\nLastName: Turing\nAddress: NULL"


# ── Buffered ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_summary_returns_first_row_only(connect):
    conn = connect(rows=PERSONS)
    text = await fetch_summary("Persons")
    assert text == "FirstName: Ada\nLastName: Lovelace\nAddress: 12 St James's Square"
    assert conn.queries == ['SELECT * FROM "Persons"']
    assert conn.readonly is True
    assert conn.closed


@pytest.mark.asyncio
async def test_fetch_summary_no_rows(connect):
    conn = connect(rows=[])
    with pytest.raises(QueryError, match="no rows"):
        await fetch_summary("Persons")
    assert conn.closed


@pytest.mark.asyncio
async def test_fetch_summary_query_error_still_closes(connect):
    conn = connect(error=asyncpg.PostgresError("relation does not exist"))
    with pytest.raises(QueryError, match="Database error"):
        await fetch_summary("Persons")
    assert conn.closed


@pytest.mark.asyncio
async def test_fetch_summary_connection_refused(monkeypatch):
    async def refuse():
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(sql_executor, "_get_conn", refuse)
    with pytest.raises(QueryError, match="Connection failed"):
        await fetch_summary("Persons")


@pytest.mark.asyncio
async def test_fetch_summary_bad_table_never_connects(connect):
    conn = connect(rows=PERSONS)
    with pytest.raises(QueryError):
        await fetch_summary("Persons; DROP TABLE Persons")
    assert conn.queries == []


# ── Streaming ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stream_yields_every_row_in_order(connect):
    conn = connect(rows=PERSONS)
    blocks = [block async for block in stream_summaries("Persons")]
    assert blocks == [format_row(PERSONS[0]), format_row(PERSONS[1])]
    assert conn.queries == ['SELECT * FROM "Persons"']
    assert conn.closed


@pytest.mark.asyncio
async def test_stream_empty_table(connect):
    conn = connect(rows=[])
    assert [block async for block in stream_summaries("Persons")] == []
    assert conn.closed


@pytest.mark.asyncio
async def test_stream_error_ends_sequence_quietly(connect):
    conn = connect(rows=PERSONS, error=asyncpg.PostgresError("boom"), fail_after=1)
    blocks = [block async for block in stream_summaries("Persons")]
    assert blocks == [format_row(PERSONS[0])]
    assert conn.closed


@pytest.mark.asyncio
async def test_stream_connection_failure_yields_nothing(monkeypatch):
    async def refuse():
        raise OSError("network unreachable")

    monkeypatch.setattr(sql_executor, "_get_conn", refuse)
    assert [block async for block in stream_summaries("Persons")] == []


@pytest.mark.asyncio
async def test_stream_closed_when_consumer_stops_early(connect):
    conn = connect(rows=PERSONS)
    stream = stream_summaries("Persons")
    first = await stream.__anext__()
    assert first.startswith("FirstName: Ada")
    assert not conn.closed
    await stream.aclose()
    assert conn.closed
