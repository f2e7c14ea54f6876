"""In-memory connection → database → collection model.

Everything here is pure: each transition returns a new tree and leaves the
input untouched. Nodes that a transition does not touch are carried over as
the same objects.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable, Sequence

from .models import ConnectionProfile


@dataclass(frozen=True, slots=True)
class DatabaseNode:
    """A database and its table/collection names."""

    name: str
    collections: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ConnectionNode:
    """A saved profile plus the transient state of its sidebar entry."""

    profile: ConnectionProfile
    expanded: bool = False
    databases: tuple[DatabaseNode, ...] = ()

    @property
    def id(self) -> str:
        return self.profile.id


@dataclass(frozen=True, slots=True)
class SelectionCursor:
    """Database/collection pair targeted by the query editor."""

    database: str | None = None
    collection: str | None = None

    def __post_init__(self) -> None:
        if self.collection and not self.database:
            raise ValueError("A collection selection requires a database.")

    @classmethod
    def cleared(cls) -> SelectionCursor:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.database and not self.collection


@dataclass(frozen=True, slots=True)
class ConnectionTree:
    """Ordered connection nodes and the id of the one bearing the session."""

    nodes: tuple[ConnectionNode, ...] = ()
    active_id: str | None = None


def build_tree(profiles: Iterable[ConnectionProfile], previous: ConnectionTree | None = None) -> ConnectionTree:
    """Wrap profiles in nodes, keeping transient state from ``previous``."""

    known = {node.id: node for node in previous.nodes} if previous else {}
    nodes = []
    for profile in profiles:
        existing = known.get(profile.id)
        if existing is None:
            nodes.append(ConnectionNode(profile=profile))
        elif existing.profile == profile:
            nodes.append(existing)
        else:
            nodes.append(replace(existing, profile=profile))
    ids = {node.id for node in nodes}
    active = previous.active_id if previous and previous.active_id in ids else None
    return ConnectionTree(nodes=tuple(nodes), active_id=active)


def find_node(tree: ConnectionTree, profile_id: str) -> ConnectionNode | None:
    for node in tree.nodes:
        if node.id == profile_id:
            return node
    return None


def active_node(tree: ConnectionTree) -> ConnectionNode | None:
    if tree.active_id is None:
        return None
    return find_node(tree, tree.active_id)


def database_names(node: ConnectionNode) -> tuple[str, ...]:
    return tuple(database.name for database in node.databases)


def activate(tree: ConnectionTree, profile_id: str) -> ConnectionTree:
    """Mark ``profile_id`` active and expanded; collapse every other node."""

    _require(tree, profile_id)
    nodes = []
    for node in tree.nodes:
        expanded = node.id == profile_id
        nodes.append(node if node.expanded == expanded else replace(node, expanded=expanded))
    return ConnectionTree(nodes=tuple(nodes), active_id=profile_id)


def deactivate(tree: ConnectionTree) -> ConnectionTree:
    """Clear the active-session marker."""

    if tree.active_id is None:
        return tree
    return replace(tree, active_id=None)


def toggle_expand(tree: ConnectionTree, profile_id: str) -> ConnectionTree:
    """Flip expansion of the active node; other nodes are not expandable."""

    if tree.active_id != profile_id:
        return tree
    return _patch(tree, profile_id, lambda node: replace(node, expanded=not node.expanded))


def replace_databases(
    tree: ConnectionTree,
    profile_id: str,
    databases: Sequence[DatabaseNode],
) -> ConnectionTree:
    return _patch(tree, profile_id, lambda node: replace(node, databases=tuple(databases)))


def update_collections_for_database(
    tree: ConnectionTree,
    profile_id: str,
    database: str,
    collections: Sequence[str],
) -> ConnectionTree:
    """Replace one database's collection list, leaving its siblings untouched."""

    refreshed = tuple(collections)

    def _update(node: ConnectionNode) -> ConnectionNode:
        databases = tuple(
            replace(entry, collections=refreshed) if entry.name == database else entry
            for entry in node.databases
        )
        return replace(node, databases=databases)

    return _patch(tree, profile_id, _update)


def update_profile(tree: ConnectionTree, profile: ConnectionProfile) -> ConnectionTree:
    return _patch(tree, profile.id, lambda node: replace(node, profile=profile))


def add_node(tree: ConnectionTree, profile: ConnectionProfile) -> ConnectionTree:
    if find_node(tree, profile.id) is not None:
        raise ValueError(f"Connection '{profile.id}' already exists.")
    return replace(tree, nodes=tree.nodes + (ConnectionNode(profile=profile),))


def remove_node(tree: ConnectionTree, profile_id: str) -> ConnectionTree:
    nodes = tuple(node for node in tree.nodes if node.id != profile_id)
    active = None if tree.active_id == profile_id else tree.active_id
    return ConnectionTree(nodes=nodes, active_id=active)


def _require(tree: ConnectionTree, profile_id: str) -> ConnectionNode:
    node = find_node(tree, profile_id)
    if node is None:
        raise KeyError(profile_id)
    return node


def _patch(
    tree: ConnectionTree,
    profile_id: str,
    update: Callable[[ConnectionNode], ConnectionNode],
) -> ConnectionTree:
    _require(tree, profile_id)
    nodes = tuple(update(node) if node.id == profile_id else node for node in tree.nodes)
    return replace(tree, nodes=nodes)


__all__ = [
    "ConnectionNode",
    "ConnectionTree",
    "DatabaseNode",
    "SelectionCursor",
    "activate",
    "active_node",
    "add_node",
    "build_tree",
    "database_names",
    "deactivate",
    "find_node",
    "remove_node",
    "replace_databases",
    "toggle_expand",
    "update_collections_for_database",
    "update_profile",
]
