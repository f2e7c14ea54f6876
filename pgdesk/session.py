"""Session controller owning the single backend session and the tree."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Mapping

from . import tree as tree_ops
from .backend import Backend, BackendError, SessionConfig
from .config import AppConfig
from .errors import DiscoveryError, ProfilePersistenceError, SessionConnectionError
from .models import ConnectionProfile, ProfileFields
from .profiles import ProfileStore
from .query import QueryDispatcher
from .results import QueryOutcome, QueryResult, error_result
from .tree import ConnectionTree, DatabaseNode, SelectionCursor

SessionListener = Callable[["SessionState"], None]

LOG = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Lifecycle of the single backend session slot."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SWITCHING_DATABASE = "switching_database"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot handed to the presentation layer."""

    phase: SessionPhase
    tree: ConnectionTree
    selection: SelectionCursor = SelectionCursor()
    loading: bool = False
    last_result: QueryOutcome | None = None
    active_database: str | None = None

    @property
    def connected(self) -> bool:
        return self.phase is SessionPhase.CONNECTED

    @property
    def active_node(self) -> tree_ops.ConnectionNode | None:
        return tree_ops.active_node(self.tree)


class SessionController:
    """Drives connect/switch/disconnect and funnels every state change.

    Operations that hit the backend raise ``loading`` for their duration.
    Callers are expected to avoid overlapping operations while it is set; the
    controller does not queue or lock.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        backend: Backend,
        *,
        config: AppConfig | None = None,
        dispatcher: QueryDispatcher | None = None,
    ) -> None:
        self._profiles = profiles
        self._backend = backend
        self._config = config or AppConfig()
        self._dispatcher = dispatcher or QueryDispatcher(backend, timeout=self._config.query_timeout)
        self._listeners: set[SessionListener] = set()
        self._state = SessionState(
            phase=SessionPhase.DISCONNECTED,
            tree=tree_ops.build_tree(profiles.profiles),
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def dispatcher(self) -> QueryDispatcher:
        return self._dispatcher

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        return self._profiles.profiles

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to state changes; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def connect(self, profile_id: str) -> QueryResult | None:
        """Open a session for ``profile_id`` and discover its databases."""

        profile = self._profiles.get(profile_id)
        if profile is None:
            return self._fail(f"Connection '{profile_id}' not found.", 0.0)
        if self._state.phase is SessionPhase.CONNECTED or self._state.tree.active_id is not None:
            await self.disconnect()

        started = time.perf_counter()
        self._update(phase=SessionPhase.CONNECTING, loading=True)
        session_database = profile.database or self._config.fallback_database
        try:
            await self._open(profile, session_database)
            databases = await self._discover(profile)
        except SessionConnectionError as exc:
            LOG.warning("Connecting to %s failed: %s", profile.name, exc)
            await self._close_quietly()
            return self._fail(str(exc), time.perf_counter() - started, phase=SessionPhase.DISCONNECTED)

        tree = tree_ops.activate(self._state.tree, profile_id)
        tree = tree_ops.replace_databases(tree, profile_id, databases)
        names = [database.name for database in databases]
        default = profile.database or (names[0] if names else None)
        LOG.info("Connected to %s (%d databases)", profile.name, len(databases))
        self._update(
            phase=SessionPhase.CONNECTED,
            tree=tree,
            selection=_default_selection(databases, default),
            loading=False,
            last_result=None,
            active_database=session_database,
        )
        return None

    async def switch_database(self, profile_id: str, database: str) -> QueryResult | None:
        """Reconnect the active profile to ``database`` and refresh its tables.

        The tree, profile and selection change together once the whole
        disconnect/reconnect/list round trip succeeds; on failure none of them
        change.
        """

        node = tree_ops.find_node(self._state.tree, profile_id)
        if node is None or not self._state.connected or self._state.tree.active_id != profile_id:
            return self._fail("Connect to this server before switching databases.", 0.0)

        previous_database = self._state.active_database or node.profile.database
        started = time.perf_counter()
        self._update(phase=SessionPhase.SWITCHING_DATABASE, loading=True)
        try:
            await self._close()
            await self._open(node.profile, database)
            collections = await self._list_collections(database)
            profile = self._persist_database(profile_id, database)
        except (SessionConnectionError, DiscoveryError, ProfilePersistenceError) as exc:
            LOG.warning("Switching %s to %s failed: %s", node.profile.name, database, exc)
            message = f"Failed to switch to database '{database}': {exc}"
            if await self._restore(node.profile, previous_database):
                return self._fail(message, time.perf_counter() - started, phase=SessionPhase.CONNECTED)
            return self._fail(
                message,
                time.perf_counter() - started,
                phase=SessionPhase.DISCONNECTED,
                tree=tree_ops.deactivate(self._state.tree),
                selection=SelectionCursor.cleared(),
                active_database=None,
            )

        tree = tree_ops.update_profile(self._state.tree, profile)
        tree = tree_ops.update_collections_for_database(tree, profile_id, database, collections)
        if not node.expanded:
            tree = tree_ops.toggle_expand(tree, profile_id)
        LOG.info("Switched %s to database %s", profile.name, database)
        self._update(
            phase=SessionPhase.CONNECTED,
            tree=tree,
            selection=SelectionCursor(database, collections[0] if collections else None),
            loading=False,
            last_result=None,
            active_database=database,
        )
        return None

    async def disconnect(self) -> None:
        """Close the session; local state is cleared even if the backend fails."""

        self._update(phase=SessionPhase.DISCONNECTING, loading=True)
        try:
            await self._close()
        except SessionConnectionError as exc:
            LOG.warning("Ignoring disconnect failure: %s", exc)
        finally:
            self._update(
                phase=SessionPhase.DISCONNECTED,
                tree=tree_ops.deactivate(self._state.tree),
                selection=SelectionCursor.cleared(),
                loading=False,
                last_result=None,
                active_database=None,
            )

    def select(self, database: str | None, collection: str | None) -> None:
        """Point the query editor at a database/collection pair."""

        if database and collection:
            selection = SelectionCursor(database, collection)
        else:
            selection = SelectionCursor.cleared()
        self._update(selection=selection, last_result=None)

    def toggle_expand(self, profile_id: str) -> None:
        self._update(tree=tree_ops.toggle_expand(self._state.tree, profile_id))

    def add_profile(self, fields: ProfileFields | Mapping[str, object]) -> ConnectionProfile:
        profile = self._profiles.add(fields)
        self._update(tree=tree_ops.add_node(self._state.tree, profile))
        return profile

    async def delete_profile(self, profile_id: str) -> bool:
        """Remove a profile, disconnecting first when it bears the session."""

        if self._state.tree.active_id == profile_id:
            await self.disconnect()
        removed = self._profiles.remove(profile_id)
        self._update(tree=tree_ops.remove_node(self._state.tree, profile_id))
        return removed

    async def execute(self, raw: str) -> QueryOutcome:
        """Dispatch query text; the outcome replaces the previous result."""

        self._update(loading=True, last_result=None)
        outcome: QueryOutcome | None = None
        try:
            outcome = await self._dispatcher.dispatch(raw, connected=self._state.connected)
        finally:
            self._update(loading=False, last_result=outcome)
        return outcome

    async def _open(self, profile: ConnectionProfile, database: str) -> None:
        config = SessionConfig(
            host=profile.host,
            port=profile.port,
            username=profile.username,
            password=profile.password,
            database=database,
        )
        try:
            opened = await self._backend.open_session(config)
        except BackendError as exc:
            raise SessionConnectionError(str(exc)) from exc
        except Exception as exc:
            LOG.exception("Backend failed unexpectedly while opening a session")
            raise SessionConnectionError(_describe(exc)) from exc
        if not opened:
            raise SessionConnectionError(f"Backend refused a session for '{database}'.")

    async def _close(self) -> None:
        try:
            await self._backend.close_session()
        except BackendError as exc:
            raise SessionConnectionError(f"Disconnect failed: {exc}") from exc
        except Exception as exc:
            LOG.exception("Backend failed unexpectedly while closing the session")
            raise SessionConnectionError(f"Disconnect failed: {_describe(exc)}") from exc

    async def _close_quietly(self) -> None:
        try:
            await self._close()
        except SessionConnectionError as exc:
            LOG.warning("Ignoring cleanup failure: %s", exc)

    async def _restore(self, profile: ConnectionProfile, database: str | None) -> bool:
        if not database:
            return False
        try:
            await self._close()
            await self._open(profile, database)
        except SessionConnectionError as exc:
            LOG.warning("Could not restore session on %s: %s", database, exc)
            return False
        return True

    async def _discover(self, profile: ConnectionProfile) -> tuple[DatabaseNode, ...]:
        try:
            reply = await self._backend.list_databases()
            names = _json_list(reply, "databases")
        except (BackendError, ValueError) as exc:
            raise SessionConnectionError(f"Failed to list databases: {exc}") from exc
        except Exception as exc:
            LOG.exception("Backend failed unexpectedly while listing databases")
            raise SessionConnectionError(f"Failed to list databases: {_describe(exc)}") from exc
        databases = []
        for name in names:
            try:
                collections = await self._list_collections(name)
            except DiscoveryError as exc:
                LOG.warning("%s: %s", profile.name, exc)
                collections = ()
            databases.append(DatabaseNode(name=name, collections=collections))
        return tuple(databases)

    async def _list_collections(self, database: str) -> tuple[str, ...]:
        try:
            reply = await self._backend.list_collections(database)
            return tuple(_json_list(reply, "collections"))
        except (BackendError, ValueError) as exc:
            raise DiscoveryError(database, str(exc)) from exc
        except Exception as exc:
            LOG.exception("Backend failed unexpectedly while listing collections of %s", database)
            raise DiscoveryError(database, _describe(exc)) from exc

    def _persist_database(self, profile_id: str, database: str) -> ConnectionProfile:
        try:
            return self._profiles.update(profile_id, database=database)
        except OSError as exc:
            raise ProfilePersistenceError(f"Could not save the connection: {exc}") from exc

    def _fail(self, message: str, duration: float, **changes: object) -> QueryResult:
        result = error_result(message, duration)
        self._update(loading=False, last_result=result, **changes)
        return result

    def _update(self, **changes: object) -> None:
        self._state = replace(self._state, **changes)
        for listener in tuple(self._listeners):
            listener(self._state)


def _default_selection(databases: tuple[DatabaseNode, ...], default: str | None) -> SelectionCursor:
    if not default:
        return SelectionCursor.cleared()
    for database in databases:
        if database.name == default:
            return SelectionCursor(default, database.collections[0] if database.collections else None)
    return SelectionCursor(default, None)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _json_list(reply: str, key: str) -> list[str]:
    """Extract ``reply[key]`` as a list of strings; ``ValueError`` if malformed."""

    parsed = json.loads(reply)
    if not isinstance(parsed, dict) or not isinstance(parsed.get(key), list):
        raise ValueError(f"expected a JSON object with a '{key}' list")
    return [str(item) for item in parsed[key]]


__all__ = [
    "SessionController",
    "SessionListener",
    "SessionPhase",
    "SessionState",
]
