"""Classify query text, dispatch it to the backend and race a deadline."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any

from .backend import Backend, BackendError
from .config import DEFAULT_QUERY_TIMEOUT
from .errors import ClassificationError, PgdeskError, QueryTimeoutError
from .results import QueryOutcome, error_result, normalize_reply

SQL_PREFIXES: tuple[str, ...] = ("SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "ALTER", "DROP")

NOT_CONNECTED_MESSAGE = "Connect to a database before running queries."

LOG = logging.getLogger(__name__)


class QueryKind(str, Enum):
    """How query text is sent to the backend."""

    SQL = "sql"
    STRUCTURED = "structured"


def classify(raw: str) -> QueryKind:
    """Raw SQL iff the trimmed, upper-cased text starts with a known keyword."""

    head = raw.strip().upper()
    if head.startswith(SQL_PREFIXES):
        return QueryKind.SQL
    return QueryKind.STRUCTURED


def build_payload(raw: str) -> dict[str, Any]:
    """Turn query text into the backend's ``execute_query`` payload."""

    if not raw.strip():
        raise ClassificationError("Enter a query to run.")
    if classify(raw) is QueryKind.SQL:
        return {"sql": raw}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ClassificationError(
            f"Query is neither SQL nor a valid JSON query object: {exc.msg} (line {exc.lineno}, column {exc.colno})"
        ) from exc
    if not isinstance(payload, dict):
        raise ClassificationError("A structured query must be a JSON object such as {\"table\": ..., \"operation\": ...}.")
    return payload


class QueryDispatcher:
    """Runs one query against the backend and always returns a result.

    The backend offers no cancellation, so a query that outlives the deadline
    is abandoned rather than cancelled: the dispatcher stops waiting and the
    backend call keeps running in the background.
    """

    def __init__(self, backend: Backend, *, timeout: float = DEFAULT_QUERY_TIMEOUT) -> None:
        self._backend = backend
        self._timeout = timeout
        self._abandoned: set[asyncio.Task[str]] = set()

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def abandoned(self) -> int:
        """Timed-out backend calls that have not finished yet."""

        return len(self._abandoned)

    async def dispatch(self, raw: str, *, connected: bool) -> QueryOutcome:
        if not connected:
            return error_result(NOT_CONNECTED_MESSAGE, 0.0)
        started = time.perf_counter()
        try:
            payload = build_payload(raw)
            reply = await self._race(payload)
            duration = time.perf_counter() - started
            outcome = normalize_reply(reply, duration)
        except (PgdeskError, BackendError) as exc:
            return self._failure(str(exc), started)
        except Exception as exc:
            LOG.exception("Unexpected error while dispatching query")
            return self._failure(str(exc) or type(exc).__name__, started)
        LOG.debug("Query finished in %.3fs", duration)
        return outcome

    async def _race(self, payload: dict[str, Any]) -> str:
        task: asyncio.Task[str] = asyncio.ensure_future(self._backend.execute_query(payload))
        done, _ = await asyncio.wait({task}, timeout=self._timeout)
        if task in done:
            return task.result()
        self._abandoned.add(task)
        task.add_done_callback(self._forget)
        raise QueryTimeoutError(self._timeout)

    def _forget(self, task: asyncio.Task[str]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.warning("Abandoned query failed after timeout: %s", exc)
        else:
            LOG.info("Abandoned query completed after timeout; result discarded")

    def _failure(self, message: str, started: float) -> QueryOutcome:
        elapsed = time.perf_counter() - started
        LOG.debug("Query failed after %.3fs: %s", elapsed, message)
        return error_result(message, elapsed)


__all__ = [
    "NOT_CONNECTED_MESSAGE",
    "QueryDispatcher",
    "QueryKind",
    "SQL_PREFIXES",
    "build_payload",
    "classify",
]
