"""Durable storage for saved connection profiles."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Mapping, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from .models import ConnectionProfile, ProfileFields

PROFILES_STORAGE_KEY = "postgresql-connections"

LOG = logging.getLogger(__name__)

_PROFILE_LIST = TypeAdapter(list[ConnectionProfile])


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal persistence facility keyed by string."""

    def read(self, key: str) -> str | None:
        """Return the raw value stored under ``key`` or ``None``."""

    def write(self, key: str, raw: str) -> None:
        """Replace the value stored under ``key``."""


class MemoryKeyValueStore:
    """In-process store used by the demo mode and tests."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self._values.get(key)

    def write(self, key: str, raw: str) -> None:
        self._values[key] = raw


class FileKeyValueStore:
    """Stores each key as ``<key>.json`` inside a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        try:
            return self.path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, key: str, raw: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(raw, encoding="utf-8")
        tmp.replace(path)


class ProfileStore:
    """Ordered list of connection profiles backed by a key-value store."""

    def __init__(self, storage: KeyValueStore, *, key: str = PROFILES_STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._profiles: list[ConnectionProfile] = self.load()

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        """Snapshot of the profiles in display (creation) order."""

        return tuple(self._profiles)

    def load(self) -> list[ConnectionProfile]:
        """Read profiles from storage, recovering to an empty list on bad data."""

        try:
            raw = self._storage.read(self._key)
        except (OSError, UnicodeDecodeError):
            LOG.warning("Could not read saved connections", exc_info=True)
            return []
        if not raw:
            return []
        try:
            return _PROFILE_LIST.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            LOG.warning("Discarding malformed saved connections: %s", exc)
            return []

    def save(self, profiles: Iterable[object] | None = None) -> None:
        """Persist profiles, keeping only their stable identity fields.

        Accepts profiles or anything exposing a ``profile`` attribute (tree
        nodes), so transient fields never reach storage. The in-memory list
        changes only once the write has succeeded.
        """

        pending = self._profiles if profiles is None else [_unwrap(entry) for entry in profiles]
        payload = [profile.persisted() for profile in pending]
        self._storage.write(self._key, json.dumps(payload))
        self._profiles = list(pending)

    def get(self, profile_id: str) -> ConnectionProfile | None:
        for profile in self._profiles:
            if profile.id == profile_id:
                return profile
        return None

    def add(self, fields: ProfileFields | Mapping[str, object]) -> ConnectionProfile:
        """Assign a fresh id, append, and persist."""

        if isinstance(fields, ProfileFields):
            values = fields.model_dump()
        else:
            values = {key: value for key, value in fields.items() if key != "id"}
        profile = ConnectionProfile(**values)
        self.save([*self._profiles, profile])
        return profile

    def update(self, profile_id: str, **changes: object) -> ConnectionProfile:
        current = self.get(profile_id)
        if current is None:
            raise KeyError(profile_id)
        updated = current.model_copy(update=changes)
        self.save([updated if profile.id == profile_id else profile for profile in self._profiles])
        return updated

    def remove(self, profile_id: str) -> bool:
        remaining = [profile for profile in self._profiles if profile.id != profile_id]
        if len(remaining) == len(self._profiles):
            return False
        self.save(remaining)
        return True


def _unwrap(entry: object) -> ConnectionProfile:
    profile = getattr(entry, "profile", entry)
    if not isinstance(profile, ConnectionProfile):
        raise TypeError(f"Expected a connection profile, got {type(entry).__name__}")
    return profile


__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PROFILES_STORAGE_KEY",
    "ProfileStore",
]
