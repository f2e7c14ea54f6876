"""Status bar widget that mirrors session information."""

from __future__ import annotations

from typing import Callable

from textual.widgets import Static

from pgdesk.results import iter_results
from pgdesk.session import SessionController, SessionPhase, SessionState


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, controller: SessionController) -> None:
        super().__init__("", id="status-bar")
        self._controller = controller
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._controller.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self.update(describe_state(state))


def describe_state(state: SessionState) -> str:
    """One-line summary of the session for the status strip."""

    node = state.active_node
    parts = [f"Status: {_PHASE_LABELS[state.phase]}"]
    if node is not None:
        parts.append(f"Server: {node.profile.name} ({node.profile.host}:{node.profile.port})")
    if state.active_database:
        parts.append(f"Database: {state.active_database}")
    if state.selection.collection:
        parts.append(f"Table: {state.selection.collection}")
    results = iter_results(state.last_result)
    if results:
        errors = [result.error for result in results if result.error]
        if errors:
            parts.append(f"Error: {errors[0].splitlines()[0][:80]}")
        else:
            parts.append(f"Last query: {results[0].formatted_duration}")
    if state.loading:
        parts.append("Working…")
    return " | ".join(parts)


_PHASE_LABELS = {
    SessionPhase.DISCONNECTED: "Disconnected",
    SessionPhase.CONNECTING: "Connecting",
    SessionPhase.CONNECTED: "Connected",
    SessionPhase.SWITCHING_DATABASE: "Switching database",
    SessionPhase.DISCONNECTING: "Disconnecting",
}


__all__ = ["StatusBar", "describe_state"]
