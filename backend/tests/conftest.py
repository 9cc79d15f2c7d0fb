import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.agent import analysis_dialog
from app.agent.analysis_dialog import AnalysisDialog
from app.agent.state import InMemoryDialogStore, InMemoryProfileStore
from app.api import analysis as analysis_api
from app.main import app

SOURCES = ["Occupancy Data", "Check-in Data"]


# ── Fake asyncpg connection ──────────────────────────────────────


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.in_transaction = True
        return self

    async def __aexit__(self, *exc):
        self.conn.in_transaction = False
        return False


class FakeConnection:
    """Stands in for asyncpg.Connection; rows are plain dicts."""

    def __init__(self, rows=None, error=None, fail_after=None):
        self.rows = rows or []
        self.error = error
        self.fail_after = fail_after
        self.queries = []
        self.readonly = None
        self.in_transaction = False
        self.closed = False

    def transaction(self, readonly=False):
        self.readonly = readonly
        return FakeTransaction(self)

    async def fetchrow(self, sql):
        self.queries.append(sql)
        if self.error is not None:
            raise self.error
        return self.rows[0] if self.rows else None

    def cursor(self, sql, prefetch=None):
        self.queries.append(sql)
        return self._iterate()

    async def _iterate(self):
        for i, row in enumerate(self.rows):
            if self.error is not None and self.fail_after == i:
                raise self.error
            yield row
        if self.error is not None and self.fail_after is None:
            raise self.error

    async def close(self):
        self.closed = True


# ── Dialog fixtures ──────────────────────────────────────────────


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def dialog_store():
    return InMemoryDialogStore()


@pytest.fixture
def make_dialog(profile_store, dialog_store):
    def _make(**kwargs):
        kwargs.setdefault("data_sources", SOURCES)
        kwargs.setdefault("selection_mode", "choice")
        kwargs.setdefault("query_strategy", "buffered")
        return AnalysisDialog(
            "analysisDialog", profile_store, dialog_store=dialog_store, **kwargs
        )

    return _make


@pytest.fixture
def summary_rows(monkeypatch):
    """Patch the buffered executor; tests put the text to return in the list."""
    calls = []
    returns = ["FirstName: Ada\nLastName: Lovelace\nAddress: 12 St James's Square"]

    async def fake_fetch_summary(table=None, *, parent_span=None):
        calls.append(table)
        value = returns[0]
        if isinstance(value, Exception):
            raise value
        return value

    monkeypatch.setattr(analysis_dialog, "fetch_summary", fake_fetch_summary)
    return returns, calls


@pytest.fixture
def connect(monkeypatch):
    """Make the executors connect to a FakeConnection built from the given args."""
    from app.services import sql_executor

    def _install(*args, **kwargs):
        conn = FakeConnection(*args, **kwargs)

        async def fake_get_conn():
            return conn

        monkeypatch.setattr(sql_executor, "_get_conn", fake_get_conn)
        return conn

    return _install


# ── HTTP client ──────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def client(monkeypatch):
    # Fresh in-process session state for every test
    monkeypatch.setattr(analysis_api, "profile_store", InMemoryProfileStore())
    monkeypatch.setattr(analysis_api, "dialog_store", InMemoryDialogStore())
    monkeypatch.setattr(analysis_api, "_dialog", None)
    monkeypatch.setattr(analysis_api, "_session_locks", {})
    monkeypatch.setattr(analysis_api, "_lock_users", {})

    def override_get_dialog():
        return AnalysisDialog(
            "analysisDialog",
            analysis_api.profile_store,
            dialog_store=analysis_api.dialog_store,
            data_sources=SOURCES,
            selection_mode="choice",
            query_strategy="buffered",
        )

    app.dependency_overrides[analysis_api.get_dialog] = override_get_dialog

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
