"""Compile structured JSON queries to SQL and split SQL batches.

Structured queries describe an operation on one table::

    {"table": "public.accounts", "operation": "find",
     "filter": {"status": "active", "age": {"$gte": 21}}, "limit": 50}

Supported operations are ``find``, ``findOne`` and ``count``; filter values
may be scalars (equality, ``null`` meaning ``IS NULL``) or a single-operator
object using ``$gt``, ``$gte``, ``$lt``, ``$lte``, ``$ne`` or ``$in``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.tokens import TokenType

DIALECT = "postgres"

ROW_RETURNING = frozenset({"SELECT", "WITH", "SHOW", "VALUES", "TABLE", "EXPLAIN"})
WRITE_COMMANDS = frozenset({"INSERT", "UPDATE", "DELETE"})

_COMPARISONS: Mapping[str, type[exp.Expression]] = {
    "$gt": exp.GT,
    "$gte": exp.GTE,
    "$lt": exp.LT,
    "$lte": exp.LTE,
    "$ne": exp.NEQ,
}

LOG = logging.getLogger(__name__)


class StructuredQueryError(ValueError):
    """Raised when a structured query document cannot be compiled."""


@dataclass(frozen=True, slots=True)
class CompiledQuery:
    """SQL compiled from a structured query and how to shape its reply."""

    operation: str
    sql: str

    @property
    def is_count(self) -> bool:
        return self.operation == "count"


def compile_structured(payload: Mapping[str, Any]) -> CompiledQuery:
    """Translate a ``{table, operation, filter}`` document into SQL."""

    table = payload.get("table")
    if not isinstance(table, str) or not table.strip():
        raise StructuredQueryError("Query must include a 'table' or 'sql' field.")
    operation = payload.get("operation")
    if not isinstance(operation, str) or not operation:
        raise StructuredQueryError("Query must include an 'operation' field.")
    filter_doc = payload.get("filter") or {}
    if not isinstance(filter_doc, Mapping):
        raise StructuredQueryError("'filter' must be an object.")

    try:
        source = exp.to_table(table.strip(), dialect=DIALECT)
    except (ParseError, TokenError) as exc:
        raise StructuredQueryError(f"Invalid table name '{table}'.") from exc

    if operation == "count":
        query = exp.select(exp.alias_(exp.Count(this=exp.Star()), "count")).from_(source)
    elif operation in ("find", "findOne"):
        query = exp.select("*").from_(source)
    else:
        raise StructuredQueryError(f"Unsupported operation: {operation}")

    condition = build_condition(filter_doc)
    if condition is not None:
        query = query.where(condition)
    if operation == "findOne":
        query = query.limit(1)
    elif operation == "find" and payload.get("limit") is not None:
        limit = payload["limit"]
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
            raise StructuredQueryError("'limit' must be a non-negative integer.")
        query = query.limit(limit)
    return CompiledQuery(operation=operation, sql=query.sql(dialect=DIALECT))


def build_condition(filter_doc: Mapping[str, Any]) -> exp.Expression | None:
    """AND together one predicate per filter key."""

    predicates = [_predicate(str(key), value) for key, value in filter_doc.items()]
    if not predicates:
        return None
    return exp.and_(*predicates)


def split_statements(sql: str) -> list[str]:
    """Split a batch on top-level semicolons, ignoring those inside literals."""

    try:
        tokens = sqlglot.tokenize(sql, read=DIALECT)
    except TokenError:
        LOG.debug("Tokenizer rejected batch; splitting on raw semicolons")
        return [part.strip() for part in sql.split(";") if part.strip()]
    statements: list[str] = []
    start = 0
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            statements.append(sql[start : token.start])
            start = token.end + 1
    statements.append(sql[start:])
    return [statement.strip() for statement in statements if statement.strip()]


def statement_kind(statement: str) -> str:
    """Classify a statement as ``select``, ``write`` or ``ddl``."""

    head = statement.lstrip().split(None, 1)
    keyword = head[0].upper().rstrip("(") if head else ""
    if keyword in ROW_RETURNING:
        return "select"
    if keyword in WRITE_COMMANDS:
        return "write"
    return "ddl"


def _predicate(key: str, value: Any) -> exp.Expression:
    column = exp.to_column(key)
    if isinstance(value, Mapping):
        if len(value) != 1:
            raise StructuredQueryError(f"Filter for '{key}' must use exactly one operator.")
        operator, operand = next(iter(value.items()))
        if operator == "$in":
            if not isinstance(operand, list):
                raise StructuredQueryError(f"'$in' for '{key}' expects a list.")
            return exp.In(this=column, expressions=[_literal(item) for item in operand])
        comparison = _COMPARISONS.get(operator)
        if comparison is None:
            raise StructuredQueryError(f"Unsupported filter operator '{operator}' for '{key}'.")
        return comparison(this=column, expression=_literal(operand))
    if value is None:
        return exp.Is(this=column, expression=exp.Null())
    return exp.EQ(this=column, expression=_literal(value))


def _literal(value: Any) -> exp.Expression:
    if isinstance(value, (Mapping, list)):
        raise StructuredQueryError("Filter values must be scalars.")
    return exp.convert(value)


__all__ = [
    "CompiledQuery",
    "StructuredQueryError",
    "build_condition",
    "compile_structured",
    "split_statements",
    "statement_kind",
]
