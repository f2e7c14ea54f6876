"""Error taxonomy shared by the session controller and query dispatcher."""

from __future__ import annotations


class PgdeskError(RuntimeError):
    """Base class for errors raised by the session/query core."""


class SessionConnectionError(PgdeskError):
    """Raised when a backend session cannot be opened or closed."""


class DiscoveryError(PgdeskError):
    """Raised when listing the collections of one database fails."""

    def __init__(self, database: str, reason: str) -> None:
        super().__init__(f"Failed to list collections for '{database}': {reason}")
        self.database = database


class ClassificationError(PgdeskError):
    """Raised when query text cannot be turned into a dispatch payload."""


class QueryTimeoutError(PgdeskError, TimeoutError):
    """Raised when the backend does not answer before the query deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Query timed out: no response within {timeout:g} seconds.")
        self.timeout = timeout


class BackendQueryError(PgdeskError):
    """Raised when the backend rejects a query or replies with malformed JSON."""


class ProfilePersistenceError(PgdeskError):
    """Raised when a profile change cannot be written to storage."""


__all__ = [
    "BackendQueryError",
    "ClassificationError",
    "DiscoveryError",
    "PgdeskError",
    "ProfilePersistenceError",
    "QueryTimeoutError",
    "SessionConnectionError",
]
