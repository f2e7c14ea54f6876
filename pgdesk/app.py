"""Textual application entry point for pgdesk."""

from __future__ import annotations

import argparse
import logging
from typing import Callable, Mapping, Sequence

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header

from .backend import AsyncpgBackend, Backend, DemoBackend
from .config import AppConfig, load_config, save_config
from .models import ConnectionProfile, ProfileFields
from .profiles import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore, ProfileStore
from .providers import ConnectionProvider, SessionProvider
from .results import QueryOutcome, QueryResult, outcome_error
from .session import SessionController, SessionState
from .widgets import ConnectionSidebar, QueryEditor, ResultView, StatusBar

LOG = logging.getLogger(__name__)

DEMO_PROFILE = ProfileFields(name="Demo server", host="demo", username="demo")


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


class PgdeskApp(App[None]):
    """Connection browser and query console for PostgreSQL."""

    TITLE = "pgdesk"
    COMMANDS = App.COMMANDS | {ConnectionProvider, SessionProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 1 2;
        height: 1fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+d", "disconnect", "Disconnect"),
        ("ctrl+l", "toggle_theme", "Toggle theme"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        backend: Backend | None = None,
        storage: KeyValueStore | None = None,
        demo: bool = False,
    ) -> None:
        super().__init__()
        self._config = config or _load_app_config()
        if demo:
            backend = backend or DemoBackend()
            storage = storage or MemoryKeyValueStore()
        self._profile_store = ProfileStore(storage or FileKeyValueStore(self._config.data_dir))
        if demo and not self._profile_store.profiles:
            self._profile_store.add(DEMO_PROFILE)
        self._controller = SessionController(
            self._profile_store,
            backend or AsyncpgBackend(),
            config=self._config,
        )
        self._last_state: SessionState | None = None
        self._session_unsubscribe: Callable[[], None] | None = None
        self._sidebar: ConnectionSidebar | None = None
        self._editor: QueryEditor | None = None

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        self._sidebar = ConnectionSidebar(self._controller)
        if self._config.layout.sidebar_width:
            self._sidebar.styles.width = self._config.layout.sidebar_width
        self._editor = QueryEditor(self._controller)
        main_column = Vertical(
            self._editor,
            ResultView(self._controller, row_limit=self._config.result_limit),
            id="main-column",
        )
        yield Horizontal(self._sidebar, main_column, id="content")
        yield StatusBar(self._controller)
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = "textual-light" if self._config.theme == "light" else "textual-dark"
        self._session_unsubscribe = self._controller.subscribe(self._handle_session_state)

    @property
    def controller(self) -> SessionController:
        """Expose the session controller for providers and tests."""

        return self._controller

    @property
    def profile_store(self) -> ProfileStore:
        return self._profile_store

    async def request_connect(self, profile_id: str) -> QueryResult | None:
        if self._busy():
            return None
        return await self._controller.connect(profile_id)

    async def request_switch_database(self, profile_id: str, database: str) -> QueryResult | None:
        if self._busy():
            return None
        return await self._controller.switch_database(profile_id, database)

    async def request_disconnect(self) -> None:
        if self._busy():
            return
        await self._controller.disconnect()

    def request_select(self, database: str | None, collection: str | None) -> None:
        self._controller.select(database, collection)

    async def request_execute(self, text: str) -> QueryOutcome | None:
        if self._busy():
            return None
        return await self._controller.execute(text)

    def request_add_profile(self, fields: ProfileFields | Mapping[str, object]) -> ConnectionProfile:
        profile = self._controller.add_profile(fields)
        self._safe_notify(f"Added connection: {profile.name}")
        return profile

    async def request_delete_profile(self, profile_id: str) -> bool:
        if self._busy():
            return False
        return await self._controller.delete_profile(profile_id)

    def action_disconnect(self) -> None:
        self.run_worker(self.request_disconnect(), group="session")

    def action_toggle_theme(self) -> None:
        self._config = self._config.with_theme("light" if self._config.theme == "dark" else "dark")
        self.theme = "textual-light" if self._config.theme == "light" else "textual-dark"
        save_config(self._config)

    def on_connection_sidebar_connection_clicked(self, event: ConnectionSidebar.ConnectionClicked) -> None:
        if self._controller.state.tree.active_id == event.profile_id:
            self._controller.toggle_expand(event.profile_id)
            return
        self.run_worker(self.request_connect(event.profile_id), group="session")

    def on_connection_sidebar_database_clicked(self, event: ConnectionSidebar.DatabaseClicked) -> None:
        self.run_worker(self.request_switch_database(event.profile_id, event.database), group="session")

    def on_connection_sidebar_collection_clicked(self, event: ConnectionSidebar.CollectionClicked) -> None:
        self.request_select(event.database, event.collection)

    def on_connection_sidebar_delete_requested(self, event: ConnectionSidebar.DeleteRequested) -> None:
        self.run_worker(self.request_delete_profile(event.profile_id), group="session")

    def on_query_editor_execute_requested(self, event: QueryEditor.ExecuteRequested) -> None:
        self.run_worker(self.request_execute(event.text), group="query")

    async def action_quit(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        if self._controller.state.tree.active_id is not None:
            await self._controller.disconnect()
        self.exit()

    def _busy(self) -> bool:
        if not self._controller.state.loading:
            return False
        self._safe_notify("Still working on the previous request.", severity="warning")
        return True

    def _handle_session_state(self, state: SessionState) -> None:
        previous = self._last_state
        self._last_state = state
        if previous is None or state.loading or state.last_result is previous.last_result:
            return
        message = outcome_error(state.last_result)
        if message:
            self._safe_notify(message.splitlines()[0][:160], severity="error")

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if not self.is_running:
            LOG.info("%s", message)
            return
        try:
            self.notify(message, severity=severity)
        except Exception:
            LOG.exception("Failed to display notification", extra={"message": message})


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pgdesk", description="Browse PostgreSQL servers and run queries.")
    parser.add_argument("--demo", action="store_true", help="Use the in-memory demo backend")
    parser.add_argument("--log-file", help="Write debug logs to this file")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Invoke the Textual application."""

    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    config = _load_app_config()
    PgdeskApp(config=config, demo=args.demo).run()


if __name__ == "__main__":
    main()
