"""Canonical query result shape and normalization of backend replies."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from .errors import BackendQueryError


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized query output returned to the UI."""

    data: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)
    duration: float = 0.0
    total: int | None = None
    sql: str | None = None
    rows_affected: int | None = None
    error: str | None = None
    statement_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def formatted_duration(self) -> str:
        return f"{self.duration:.2f}s"

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names in first-seen order across all rows."""

        seen: dict[str, None] = {}
        for row in self.data:
            for key in row:
                seen.setdefault(str(key), None)
        return tuple(seen)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"data": [dict(row) for row in self.data], "duration": self.duration}
        for name in ("total", "sql", "rows_affected", "error"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        if self.statement_type is not None:
            payload["type"] = self.statement_type
        return payload


QueryOutcome = Union[QueryResult, tuple[QueryResult, ...]]


def error_result(message: str, duration: float) -> QueryResult:
    """Build the result rendered for any failure path."""

    return QueryResult(data=(), error=message, duration=max(duration, 0.0))


def normalize_reply(raw: str, duration: float) -> QueryOutcome:
    """Parse a backend reply and stamp it with the measured duration.

    An array reply is a multi-statement batch; every element receives the
    same total duration rather than a share of it. An empty array carries no
    statements and becomes a single empty result.
    """

    duration = max(duration, 0.0)
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise BackendQueryError(f"Backend returned malformed JSON: {exc}") from exc
    if parsed == []:
        return QueryResult(duration=duration)
    if isinstance(parsed, list):
        return tuple(_from_payload(item, duration) for item in parsed)
    return _from_payload(parsed, duration)


def iter_results(outcome: QueryOutcome | None) -> tuple[QueryResult, ...]:
    """Flatten single and multi-statement outcomes into a tuple."""

    if outcome is None:
        return ()
    if isinstance(outcome, QueryResult):
        return (outcome,)
    return tuple(outcome)


def outcome_error(outcome: QueryOutcome | None) -> str | None:
    """First error carried by an outcome, if any."""

    for result in iter_results(outcome):
        if result.error:
            return result.error
    return None


def _from_payload(payload: object, duration: float) -> QueryResult:
    if not isinstance(payload, dict):
        raise BackendQueryError(f"Unexpected backend reply: {type(payload).__name__}")
    rows = payload.get("data") or []
    if not isinstance(rows, list):
        raise BackendQueryError("Backend reply 'data' must be a list of rows.")
    data = tuple(row if isinstance(row, dict) else {"value": row} for row in rows)
    error = payload.get("error")
    return QueryResult(
        data=data,
        duration=duration,
        total=_optional_int(payload.get("total")),
        sql=payload.get("sql") if isinstance(payload.get("sql"), str) else None,
        rows_affected=_optional_int(payload.get("rows_affected")),
        error=str(error) if error else None,
        statement_type=payload.get("type") if isinstance(payload.get("type"), str) else None,
    )


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


__all__ = [
    "QueryOutcome",
    "QueryResult",
    "error_result",
    "iter_results",
    "normalize_reply",
    "outcome_error",
]
