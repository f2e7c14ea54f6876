"""Tests for query classification and dispatch."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

import pytest

from pgdesk.backend import BackendError, DemoBackend, SessionConfig
from pgdesk.config import DEFAULT_QUERY_TIMEOUT
from pgdesk.errors import ClassificationError
from pgdesk.query import (
    NOT_CONNECTED_MESSAGE,
    SQL_PREFIXES,
    QueryDispatcher,
    QueryKind,
    build_payload,
    classify,
)
from pgdesk.results import QueryResult


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _RecordingBackend:
    """Backend stub that records payloads and replies with canned JSON."""

    def __init__(self, reply: str = '{"data": []}', *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.payloads: list[Mapping[str, Any]] = []

    async def open_session(self, config: SessionConfig) -> bool:
        return True

    async def close_session(self) -> None:
        return None

    async def list_databases(self) -> str:
        return '{"databases": []}'

    async def list_collections(self, database: str) -> str:
        return '{"collections": []}'

    async def execute_query(self, payload: Mapping[str, Any]) -> str:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.reply


class _HangingBackend(_RecordingBackend):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def execute_query(self, payload: Mapping[str, Any]) -> str:
        self.payloads.append(payload)
        await self.release.wait()
        return '{"data": []}'


@pytest.mark.parametrize("prefix", SQL_PREFIXES)
def test_classify_recognizes_sql_prefixes_in_any_case(prefix: str) -> None:
    assert classify(f"{prefix} something") is QueryKind.SQL
    assert classify(f"  \n\t{prefix.lower()} something") is QueryKind.SQL


def test_classify_treats_everything_else_as_structured() -> None:
    assert classify('{"table": "accounts", "operation": "find"}') is QueryKind.STRUCTURED
    assert classify("WITH x AS (SELECT 1) SELECT * FROM x") is QueryKind.STRUCTURED
    assert classify("") is QueryKind.STRUCTURED


def test_build_payload_wraps_sql_verbatim() -> None:
    text = "  select * from accounts  "

    assert build_payload(text) == {"sql": text}


def test_build_payload_parses_structured_objects() -> None:
    assert build_payload('{"table": "t", "operation": "count"}') == {"table": "t", "operation": "count"}


@pytest.mark.parametrize("text", ["not json", "[1, 2]", "   "])
def test_build_payload_rejects_invalid_structured_text(text: str) -> None:
    with pytest.raises(ClassificationError):
        build_payload(text)


def test_default_timeout_is_thirty_seconds() -> None:
    dispatcher = QueryDispatcher(_RecordingBackend())

    assert DEFAULT_QUERY_TIMEOUT == 30.0
    assert dispatcher.timeout == 30.0


@pytest.mark.anyio
async def test_dispatch_without_session_never_reaches_backend() -> None:
    backend = _RecordingBackend()
    dispatcher = QueryDispatcher(backend)

    outcome = await dispatcher.dispatch("SELECT 1", connected=False)

    assert isinstance(outcome, QueryResult)
    assert outcome.error == NOT_CONNECTED_MESSAGE
    assert outcome.data == ()
    assert backend.payloads == []


@pytest.mark.anyio
async def test_dispatch_invalid_json_fails_before_backend_call() -> None:
    backend = _RecordingBackend()
    dispatcher = QueryDispatcher(backend)

    outcome = await dispatcher.dispatch("not json", connected=True)

    assert isinstance(outcome, QueryResult)
    assert outcome.error
    assert outcome.duration >= 0
    assert backend.payloads == []


@pytest.mark.anyio
async def test_dispatch_normalizes_backend_reply() -> None:
    backend = _RecordingBackend(json.dumps({"data": [{"?column?": 1}], "type": "select"}))
    dispatcher = QueryDispatcher(backend)

    outcome = await dispatcher.dispatch("SELECT 1", connected=True)

    assert isinstance(outcome, QueryResult)
    assert outcome.data == ({"?column?": 1},)
    assert outcome.duration >= 0
    assert backend.payloads == [{"sql": "SELECT 1"}]


@pytest.mark.anyio
async def test_dispatch_turns_backend_errors_into_results() -> None:
    backend = _RecordingBackend(error=BackendError('relation "missing" does not exist'))
    dispatcher = QueryDispatcher(backend)

    outcome = await dispatcher.dispatch("SELECT * FROM missing", connected=True)

    assert isinstance(outcome, QueryResult)
    assert outcome.error == 'relation "missing" does not exist'


@pytest.mark.anyio
async def test_dispatch_reports_malformed_backend_json() -> None:
    dispatcher = QueryDispatcher(_RecordingBackend("{oops"))

    outcome = await dispatcher.dispatch("SELECT 1", connected=True)

    assert isinstance(outcome, QueryResult)
    assert outcome.error is not None and "malformed JSON" in outcome.error


@pytest.mark.anyio
async def test_dispatch_times_out_without_cancelling_backend_call() -> None:
    backend = _HangingBackend()
    dispatcher = QueryDispatcher(backend, timeout=0.05)

    outcome = await dispatcher.dispatch("SELECT pg_sleep(60)", connected=True)

    assert isinstance(outcome, QueryResult)
    assert outcome.error is not None and outcome.error.startswith("Query timed out")
    assert outcome.duration >= 0.045
    assert dispatcher.abandoned == 1

    backend.release.set()
    await asyncio.sleep(0.01)

    assert dispatcher.abandoned == 0


@pytest.mark.anyio
async def test_dispatch_multi_statement_batch_against_demo_backend() -> None:
    backend = DemoBackend()
    await backend.open_session(SessionConfig("demo", 5432, "demo", "", "postgres"))
    dispatcher = QueryDispatcher(backend)

    outcome = await dispatcher.dispatch("UPDATE accounts SET status = 'x'; SELECT * FROM accounts", connected=True)

    assert isinstance(outcome, tuple)
    assert [result.statement_type for result in outcome] == ["write", "select"]
    assert outcome[0].duration == outcome[1].duration
    assert len(outcome[1].data) == 3
