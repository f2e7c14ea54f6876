"""Backends that execute session and query commands.

Every backend speaks the same stringly-typed protocol: discovery and query
commands return JSON-encoded strings, and failures raise ``BackendError``.
"""

from __future__ import annotations

import datetime as dt
import decimal
import json
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import asyncpg
from sqlglot import exp, parse_one
from sqlglot.errors import ParseError, TokenError

from .structured import (
    DIALECT,
    StructuredQueryError,
    compile_structured,
    split_statements,
    statement_kind,
)

LOG = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when the backend rejects a command."""


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Connection settings handed to ``open_session``."""

    host: str
    port: int
    username: str
    password: str
    database: str


@runtime_checkable
class Backend(Protocol):
    """Protocol implemented by session/query backends."""

    async def open_session(self, config: SessionConfig) -> bool:
        """Open the single live session, replacing any previous one."""

    async def close_session(self) -> None:
        """Close the live session; a no-op when none is open."""

    async def list_databases(self) -> str:
        """Return ``{"databases": [...]}`` as JSON."""

    async def list_collections(self, database: str) -> str:
        """Return ``{"collections": [...]}`` as JSON."""

    async def execute_query(self, payload: Mapping[str, Any]) -> str:
        """Run ``{"sql": ...}`` or a structured query; return a JSON result."""


class AsyncpgBackend:
    """Backend that talks to PostgreSQL via asyncpg."""

    _DATABASES_QUERY = """
        SELECT datname
        FROM pg_database
        WHERE datistemplate = false
        ORDER BY datname
    """

    _COLLECTIONS_QUERY = """
        SELECT table_schema, table_name
        FROM information_schema.tables
        WHERE table_type = 'BASE TABLE'
          AND table_schema NOT IN ('pg_catalog', 'information_schema')
        ORDER BY table_schema <> 'public', table_schema, table_name
    """

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self._connect_timeout = connect_timeout
        self._conn: Any = None
        self._config: SessionConfig | None = None

    @property
    def config(self) -> SessionConfig | None:
        return self._config

    async def open_session(self, config: SessionConfig) -> bool:
        await self.close_session()
        conn = await self._connect(config)
        try:
            await conn.fetchval("SELECT 1")
        except Exception as exc:
            await _close_quietly(conn)
            raise BackendError(f"Connection check failed: {exc}") from exc
        self._conn = conn
        self._config = config
        LOG.info("Opened session on %s:%s/%s", config.host, config.port, config.database)
        return True

    async def close_session(self) -> None:
        conn, self._conn, self._config = self._conn, None, None
        if conn is not None:
            await _close_quietly(conn)

    async def list_databases(self) -> str:
        conn = self._require_connection()
        try:
            rows = await conn.fetch(self._DATABASES_QUERY)
        except Exception as exc:
            raise BackendError(f"Failed to list databases: {exc}") from exc
        return json.dumps({"databases": [str(row["datname"]) for row in rows]})

    async def list_collections(self, database: str) -> str:
        conn = self._require_connection()
        config = self._config
        if config is None:
            raise BackendError("Not connected to a database.")
        if database == config.database:
            rows = await self._fetch_collections(conn, database)
        else:
            # PostgreSQL cannot read another database's catalog, so discovery
            # uses a short-lived connection that leaves the session alone.
            probe = await self._connect(replace(config, database=database))
            try:
                rows = await self._fetch_collections(probe, database)
            finally:
                await _close_quietly(probe)
        collections = [_qualified_name(str(row["table_schema"]), str(row["table_name"])) for row in rows]
        return json.dumps({"collections": collections})

    async def execute_query(self, payload: Mapping[str, Any]) -> str:
        conn = self._require_connection()
        sql = payload.get("sql")
        if isinstance(sql, str):
            return await self._execute_sql(conn, sql)
        try:
            compiled = compile_structured(payload)
        except StructuredQueryError as exc:
            raise BackendError(str(exc)) from exc
        try:
            if compiled.is_count:
                total = await conn.fetchval(compiled.sql)
                return _dumps({"data": [], "total": int(total or 0), "sql": compiled.sql})
            records = await conn.fetch(compiled.sql)
        except Exception as exc:
            raise BackendError(f"Query failed: {exc}") from exc
        return _dumps({"data": [dict(record) for record in records], "total": None, "sql": compiled.sql})

    async def _execute_sql(self, conn: Any, sql: str) -> str:
        statements = split_statements(sql)
        if not statements:
            raise BackendError("No SQL statements to execute.")
        results: list[dict[str, Any]] = []
        for statement in statements:
            kind = statement_kind(statement)
            try:
                if kind == "select":
                    records = await conn.fetch(statement)
                    data = [dict(record) for record in records]
                    results.append({"type": kind, "sql": statement, "data": data, "rows_affected": len(data)})
                else:
                    status = await conn.execute(statement)
                    results.append({"type": kind, "sql": statement, "rows_affected": _affected_rows(status)})
            except Exception as exc:
                raise BackendError(f"Statement failed: {exc}") from exc
        if len(results) == 1:
            return _dumps(results[0])
        return _dumps(results)

    async def _fetch_collections(self, conn: Any, database: str) -> list[Any]:
        try:
            return await conn.fetch(self._COLLECTIONS_QUERY)
        except Exception as exc:
            raise BackendError(f"Failed to list tables in '{database}': {exc}") from exc

    async def _connect(self, config: SessionConfig) -> Any:
        kwargs: dict[str, object] = {
            "host": config.host or "localhost",
            "port": config.port,
            "database": config.database,
            "timeout": self._connect_timeout,
        }
        if config.username:
            kwargs["user"] = config.username
        if config.password:
            kwargs["password"] = config.password
        try:
            return await asyncpg.connect(**kwargs)
        except Exception as exc:
            raise BackendError(f"Connection failed: {exc}") from exc

    def _require_connection(self) -> Any:
        if self._conn is None:
            raise BackendError("Not connected to a database.")
        return self._conn


DemoRows = Sequence[Mapping[str, Any]]

DEMO_DATABASES: Mapping[str, Mapping[str, DemoRows]] = {
    "postgres": {
        "accounts": (
            {"id": 1, "email": "anna@example.com", "status": "active"},
            {"id": 2, "email": "ben@example.com", "status": "active"},
            {"id": 3, "email": "cara@example.com", "status": "disabled"},
        ),
        "orders": (
            {"id": 1, "account_id": 1, "total": 42.5},
            {"id": 2, "account_id": 2, "total": 17.0},
        ),
    },
    "analytics": {
        "analytics.sessions": (
            {"id": 1, "user_id": 1, "device": "desktop"},
            {"id": 2, "user_id": 2, "device": "mobile"},
        ),
        "analytics.events": (
            {"id": 1, "session_id": 1, "name": "login"},
        ),
    },
}


class DemoBackend:
    """In-memory backend serving preset databases, collections and rows."""

    def __init__(self, databases: Mapping[str, Mapping[str, DemoRows]] | None = None) -> None:
        source = DEMO_DATABASES if databases is None else databases
        self._databases: dict[str, dict[str, tuple[dict[str, Any], ...]]] = {
            name: {collection: tuple(dict(row) for row in rows) for collection, rows in collections.items()}
            for name, collections in source.items()
        }
        self._session: SessionConfig | None = None
        self.calls: list[str] = []

    @property
    def session(self) -> SessionConfig | None:
        return self._session

    async def open_session(self, config: SessionConfig) -> bool:
        self.calls.append(f"open:{config.database}")
        if config.database not in self._databases:
            raise BackendError(f'Connection failed: database "{config.database}" does not exist')
        self._session = config
        return True

    async def close_session(self) -> None:
        self.calls.append("close")
        self._session = None

    async def list_databases(self) -> str:
        self.calls.append("list_databases")
        self._require_session()
        return json.dumps({"databases": list(self._databases)})

    async def list_collections(self, database: str) -> str:
        self.calls.append(f"list_collections:{database}")
        self._require_session()
        collections = self._databases.get(database)
        if collections is None:
            raise BackendError(f'database "{database}" does not exist')
        return json.dumps({"collections": list(collections)})

    async def execute_query(self, payload: Mapping[str, Any]) -> str:
        self.calls.append("execute_query")
        session = self._require_session()
        tables = self._databases[session.database]
        sql = payload.get("sql")
        if isinstance(sql, str):
            statements = split_statements(sql)
            if not statements:
                raise BackendError("No SQL statements to execute.")
            results = [self._run_statement(tables, statement) for statement in statements]
            return _dumps(results[0] if len(results) == 1 else results)
        try:
            compiled = compile_structured(payload)
        except StructuredQueryError as exc:
            raise BackendError(str(exc)) from exc
        rows = [row for row in self._rows(tables, str(payload["table"])) if _matches(row, payload.get("filter") or {})]
        if compiled.is_count:
            return _dumps({"data": [], "total": len(rows), "sql": compiled.sql})
        if compiled.operation == "findOne":
            rows = rows[:1]
        elif isinstance(payload.get("limit"), int):
            rows = rows[: payload["limit"]]
        return _dumps({"data": rows, "total": None, "sql": compiled.sql})

    def _run_statement(self, tables: Mapping[str, tuple[dict[str, Any], ...]], statement: str) -> dict[str, Any]:
        kind = statement_kind(statement)
        if kind != "select":
            return {"type": kind, "sql": statement, "rows_affected": 0}
        try:
            table = parse_one(statement, read=DIALECT).find(exp.Table)
        except (ParseError, TokenError) as exc:
            raise BackendError(f"Statement failed: {exc}") from exc
        rows = self._rows(tables, _table_key(table)) if table is not None else [{"?column?": 1}]
        return {"type": kind, "sql": statement, "data": rows, "rows_affected": len(rows)}

    @staticmethod
    def _rows(tables: Mapping[str, tuple[dict[str, Any], ...]], name: str) -> list[dict[str, Any]]:
        key = name[len("public.") :] if name.startswith("public.") else name
        if key not in tables:
            raise BackendError(f'relation "{name}" does not exist')
        return [dict(row) for row in tables[key]]

    def _require_session(self) -> SessionConfig:
        if self._session is None:
            raise BackendError("Not connected to a database.")
        return self._session


def _table_key(table: exp.Table) -> str:
    return f"{table.db}.{table.name}" if table.db else table.name


def _matches(row: Mapping[str, Any], filter_doc: Mapping[str, Any]) -> bool:
    for key, expected in filter_doc.items():
        actual = row.get(key)
        if isinstance(expected, Mapping):
            operator, operand = next(iter(expected.items()))
            if operator == "$in":
                ok = actual in operand
            elif operator == "$ne":
                ok = actual != operand
            elif actual is None:
                ok = False
            else:
                ok = {
                    "$gt": lambda: actual > operand,
                    "$gte": lambda: actual >= operand,
                    "$lt": lambda: actual < operand,
                    "$lte": lambda: actual <= operand,
                }[operator]()
        else:
            ok = actual == expected
        if not ok:
            return False
    return True


def _qualified_name(schema: str, table: str) -> str:
    return table if schema == "public" else f"{schema}.{table}"


def _affected_rows(status: str | None) -> int:
    if not status:
        return 0
    tail = status.rsplit(None, 1)[-1]
    return int(tail) if tail.isdigit() else 0


def _json_default(value: object) -> object:
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, (decimal.Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def _dumps(payload: object) -> str:
    return json.dumps(payload, default=_json_default)


async def _close_quietly(conn: Any) -> None:
    try:
        await conn.close()
    except Exception:  # pragma: no cover - best effort cleanup
        LOG.debug("Ignoring error while closing connection", exc_info=True)


__all__ = [
    "AsyncpgBackend",
    "Backend",
    "BackendError",
    "DEMO_DATABASES",
    "DemoBackend",
    "SessionConfig",
]
