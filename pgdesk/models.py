"""Shared models used across the profile store, tree and session modules."""

from __future__ import annotations

import itertools
import time

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PORT = 5432

PERSISTED_FIELDS: tuple[str, ...] = ("id", "name", "host", "port", "username", "password", "database")

_ID_COUNTER = itertools.count(1)


def new_profile_id() -> str:
    """Return an id that is unique within the running process."""

    return f"{int(time.time() * 1000)}-{next(_ID_COUNTER)}"


class ProfileFields(BaseModel):
    """User-supplied connection settings, before an id is assigned."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    host: str = "localhost"
    port: int = DEFAULT_PORT
    username: str = ""
    password: str = ""
    database: str = ""


class ConnectionProfile(ProfileFields):
    """Saved connection configuration with its stable identity."""

    id: str = Field(default_factory=new_profile_id)

    def persisted(self) -> dict[str, object]:
        """Return only the fields that survive a restart."""

        return self.model_dump(include=set(PERSISTED_FIELDS))


__all__ = [
    "ConnectionProfile",
    "DEFAULT_PORT",
    "PERSISTED_FIELDS",
    "ProfileFields",
    "new_profile_id",
]
