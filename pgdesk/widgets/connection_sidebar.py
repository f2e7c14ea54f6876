"""Sidebar widget rendering connections, databases and collections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from rich.markup import escape as escape_markup
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.message import Message
from textual.widgets import Static, Tree

from pgdesk.session import SessionController, SessionState
from pgdesk.tree import ConnectionNode


@dataclass(frozen=True, slots=True)
class TreeEntry:
    """Payload attached to each sidebar tree node."""

    profile_id: str
    database: str | None = None
    collection: str | None = None


class ConnectionSidebar(Container):
    """Displays saved connections; the active one expands into its databases."""

    DEFAULT_CSS = """
    ConnectionSidebar {
        width: 32;
        min-width: 24;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    ConnectionSidebar .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    #connection-tree {
        height: 1fr;
        background: $surface-darken-2;
    }

    #connection-hint {
        color: $text-muted;
        padding-top: 1;
    }
    """

    BINDINGS = [
        Binding("delete", "delete_connection", "Delete connection", show=False),
    ]

    class ConnectionClicked(Message):
        """A connection row was activated."""

        def __init__(self, profile_id: str) -> None:
            super().__init__()
            self.profile_id = profile_id

    class DatabaseClicked(Message):
        """A database row under the active connection was activated."""

        def __init__(self, profile_id: str, database: str) -> None:
            super().__init__()
            self.profile_id = profile_id
            self.database = database

    class CollectionClicked(Message):
        """A table/collection row was activated."""

        def __init__(self, profile_id: str, database: str, collection: str) -> None:
            super().__init__()
            self.profile_id = profile_id
            self.database = database
            self.collection = collection

    class DeleteRequested(Message):
        """The user asked to delete the highlighted connection."""

        def __init__(self, profile_id: str) -> None:
            super().__init__()
            self.profile_id = profile_id

    def __init__(self, controller: SessionController) -> None:
        super().__init__(id="connection-sidebar")
        self._controller = controller
        self._tree: Tree[TreeEntry] | None = None
        self._hint: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Connections", classes="sidebar-heading")
        tree: Tree[TreeEntry] = Tree("connections", id="connection-tree")
        tree.show_root = False
        self._tree = tree
        yield tree
        self._hint = Static("", id="connection-hint")
        yield self._hint

    async def on_mount(self) -> None:
        self._unsubscribe = self._controller.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def on_tree_node_selected(self, event: Tree.NodeSelected[TreeEntry]) -> None:
        event.stop()
        entry = event.node.data
        if entry is None:
            return
        if entry.collection and entry.database:
            self.post_message(self.CollectionClicked(entry.profile_id, entry.database, entry.collection))
        elif entry.database:
            self.post_message(self.DatabaseClicked(entry.profile_id, entry.database))
        else:
            self.post_message(self.ConnectionClicked(entry.profile_id))

    def action_delete_connection(self) -> None:
        if not self._tree or self._tree.cursor_node is None:
            return
        entry = self._tree.cursor_node.data
        if entry is not None and entry.database is None:
            self.post_message(self.DeleteRequested(entry.profile_id))

    def _handle_session_update(self, state: SessionState) -> None:
        if not self._tree:
            return
        self._tree.clear()
        for node in state.tree.nodes:
            self._add_connection(node, state)
        if self._hint:
            self._hint.update(
                "No connections yet." if not state.tree.nodes else "Enter: connect / open · Del: delete"
            )

    def _add_connection(self, node: ConnectionNode, state: SessionState) -> None:
        if self._tree is None:
            return
        active = state.tree.active_id == node.id
        label = node_label(node.profile.name, bold=active)
        expanded = active and node.expanded
        branch = self._tree.root.add(label, data=TreeEntry(node.id), expand=expanded, allow_expand=active)
        if not active:
            return
        if not node.databases:
            branch.add_leaf("(no databases)")
            return
        for database in node.databases:
            selected = state.selection.database == database.name
            db_branch = branch.add(
                node_label(f"{database.name} ({len(database.collections)})", bold=selected),
                data=TreeEntry(node.id, database.name),
                expand=selected,
            )
            for collection in database.collections:
                marker = " ✓" if selected and state.selection.collection == collection else ""
                db_branch.add_leaf(
                    node_label(display_name(collection)) + marker,
                    data=TreeEntry(node.id, database.name, collection),
                )


def node_label(text: str, *, bold: bool = False) -> str:
    """Escape user-supplied names for Rich markup, optionally in bold."""

    escaped = escape_markup(text)
    return f"[b]{escaped}[/b]" if bold else escaped


def display_name(collection: str) -> str:
    """Render ``schema.table`` as ``table (schema)``, hiding ``public``."""

    if "." not in collection:
        return collection
    schema, table = collection.split(".", 1)
    if schema == "public":
        return table
    return f"{table} ({schema})"


__all__ = ["ConnectionSidebar", "TreeEntry", "display_name", "node_label"]
