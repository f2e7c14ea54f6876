"""Tests for the asyncpg and demo backends."""

from __future__ import annotations

import json
from typing import Any

import pytest

from pgdesk.backend import AsyncpgBackend, BackendError, DemoBackend, SessionConfig


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _config(database: str = "postgres") -> SessionConfig:
    return SessionConfig(host="localhost", port=5432, username="postgres", password="", database=database)


class _FakeConnection:
    def __init__(self, database: str, tables: list[dict[str, str]] | None = None) -> None:
        self.database = database
        self.tables = tables or []
        self.rows: list[dict[str, Any]] = []
        self.count = 0
        self.status = "UPDATE 2"
        self.closed = False
        self.fetched: list[str] = []
        self.executed: list[str] = []

    async def fetchval(self, sql: str) -> int:
        return 1 if sql == "SELECT 1" else self.count

    async def fetch(self, sql: str) -> list[dict[str, Any]]:
        self.fetched.append(sql)
        if "pg_database" in sql:
            return [{"datname": "app"}, {"datname": "postgres"}]
        if "information_schema.tables" in sql:
            return self.tables
        return self.rows

    async def execute(self, sql: str) -> str:
        self.executed.append(sql)
        return self.status

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def connections(monkeypatch: pytest.MonkeyPatch) -> list[_FakeConnection]:
    opened: list[_FakeConnection] = []
    tables = {
        "postgres": [{"table_schema": "public", "table_name": "accounts"}],
        "app": [
            {"table_schema": "public", "table_name": "users"},
            {"table_schema": "audit", "table_name": "log"},
        ],
    }

    async def _connect(**kwargs: Any) -> _FakeConnection:
        if kwargs["database"] == "missing":
            raise OSError("database does not exist")
        conn = _FakeConnection(kwargs["database"], tables.get(kwargs["database"]))
        opened.append(conn)
        return conn

    monkeypatch.setattr("pgdesk.backend.asyncpg.connect", _connect)
    return opened


@pytest.mark.anyio
async def test_open_session_validates_and_replaces_previous(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()

    assert await backend.open_session(_config()) is True
    assert await backend.open_session(_config("app")) is True

    assert connections[0].closed is True
    assert connections[1].closed is False
    assert backend.config == _config("app")


@pytest.mark.anyio
async def test_open_session_wraps_connect_failures(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()

    with pytest.raises(BackendError, match="Connection failed"):
        await backend.open_session(_config("missing"))

    assert backend.config is None


@pytest.mark.anyio
async def test_discovery_lists_databases_and_qualified_collections(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()
    await backend.open_session(_config())

    databases = json.loads(await backend.list_databases())
    own = json.loads(await backend.list_collections("postgres"))
    other = json.loads(await backend.list_collections("app"))

    assert databases == {"databases": ["app", "postgres"]}
    assert own == {"collections": ["accounts"]}
    assert other == {"collections": ["users", "audit.log"]}
    assert len(connections) == 2
    assert connections[1].closed is True
    assert connections[0].closed is False


@pytest.mark.anyio
async def test_commands_require_open_session() -> None:
    backend = AsyncpgBackend()

    with pytest.raises(BackendError, match="Not connected"):
        await backend.list_databases()
    await backend.close_session()


@pytest.mark.anyio
async def test_execute_single_select_returns_object(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()
    await backend.open_session(_config())
    connections[0].rows = [{"id": 1, "email": "anna@example.com"}]

    reply = json.loads(await backend.execute_query({"sql": "SELECT * FROM accounts"}))

    assert reply["type"] == "select"
    assert reply["data"] == [{"id": 1, "email": "anna@example.com"}]


@pytest.mark.anyio
async def test_execute_batch_returns_array(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()
    await backend.open_session(_config())

    reply = json.loads(await backend.execute_query({"sql": "UPDATE accounts SET status = 'x'; SELECT 1"}))

    assert isinstance(reply, list)
    assert reply[0] == {"type": "write", "sql": "UPDATE accounts SET status = 'x'", "rows_affected": 2}
    assert reply[1]["type"] == "select"
    assert connections[0].executed == ["UPDATE accounts SET status = 'x'"]


@pytest.mark.anyio
async def test_execute_structured_count(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()
    await backend.open_session(_config())
    connections[0].count = 7

    reply = json.loads(await backend.execute_query({"table": "accounts", "operation": "count"}))

    assert reply["total"] == 7
    assert reply["data"] == []
    assert reply["sql"].startswith("SELECT COUNT(*)")


@pytest.mark.anyio
async def test_execute_rejects_invalid_structured_query(connections: list[_FakeConnection]) -> None:
    backend = AsyncpgBackend()
    await backend.open_session(_config())

    with pytest.raises(BackendError, match="operation"):
        await backend.execute_query({"table": "accounts"})


@pytest.mark.anyio
async def test_demo_backend_serves_preset_data() -> None:
    backend = DemoBackend()
    await backend.open_session(_config())

    databases = json.loads(await backend.list_databases())["databases"]
    collections = json.loads(await backend.list_collections("analytics"))["collections"]
    select = json.loads(await backend.execute_query({"sql": "SELECT * FROM accounts"}))
    found = json.loads(
        await backend.execute_query({"table": "accounts", "operation": "find", "filter": {"status": "active"}})
    )

    assert databases == ["postgres", "analytics"]
    assert collections == ["analytics.sessions", "analytics.events"]
    assert len(select["data"]) == 3
    assert [row["id"] for row in found["data"]] == [1, 2]


@pytest.mark.anyio
async def test_demo_backend_reports_unknown_relations() -> None:
    backend = DemoBackend()
    await backend.open_session(_config())

    with pytest.raises(BackendError, match="does not exist"):
        await backend.execute_query({"sql": "SELECT * FROM missing"})
    with pytest.raises(BackendError):
        await backend.open_session(_config("missing"))


@pytest.mark.anyio
async def test_list_collections_requires_open_session() -> None:
    backend = AsyncpgBackend()

    with pytest.raises(BackendError, match="Not connected"):
        await backend.list_collections("postgres")
