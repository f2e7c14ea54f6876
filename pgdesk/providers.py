"""Command palette providers for session features."""

from __future__ import annotations

from typing import Awaitable, Callable, NamedTuple

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionController
from .tree import active_node, database_names


class PaletteCommand(NamedTuple):
    display: str
    callback: IgnoreReturnCallbackType
    help: str


class _IntentProvider(Provider):
    """Base provider whose commands forward to ``request_*`` intents on the app."""

    async def search(self, query: str) -> Hits:
        controller = self._controller
        if controller is None:
            return
        matcher = self.matcher(query)
        for command in self.palette_commands(controller):
            score = matcher.match(command.display)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(command.display),
                    command=command.callback,
                    help=command.help,
                )

    async def discover(self) -> Hits:
        controller = self._controller
        if controller is None:
            return
        for command in self.palette_commands(controller):
            yield DiscoveryHit(display=command.display, command=command.callback, help=command.help)

    def palette_commands(self, controller: SessionController) -> list[PaletteCommand]:
        raise NotImplementedError

    @property
    def _controller(self) -> SessionController | None:
        controller = getattr(self.app, "controller", None)
        return controller if isinstance(controller, SessionController) else None

    def _intent(self, name: str, *args: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            handler: Callable[..., Awaitable[object]] | None = getattr(self.app, name, None)
            if handler is not None:
                await handler(*args)

        return _run


class ConnectionProvider(_IntentProvider):
    """Connect to or delete each saved connection."""

    def palette_commands(self, controller: SessionController) -> list[PaletteCommand]:
        commands: list[PaletteCommand] = []
        for profile in controller.profiles:
            commands.append(
                PaletteCommand(
                    f"Connect: {profile.name}",
                    self._intent("request_connect", profile.id),
                    "Open a session and list its databases.",
                )
            )
            commands.append(
                PaletteCommand(
                    f"Delete connection: {profile.name}",
                    self._intent("request_delete_profile", profile.id),
                    "Remove the saved connection (disconnects first if active).",
                )
            )
        return commands


class SessionProvider(_IntentProvider):
    """Disconnect, or switch the active session to another database."""

    def palette_commands(self, controller: SessionController) -> list[PaletteCommand]:
        node = active_node(controller.state.tree)
        if node is None:
            return []
        commands = [PaletteCommand("Disconnect", self._intent("request_disconnect"), "Close the active session.")]
        commands.extend(
            PaletteCommand(
                f"Switch database: {name}",
                self._intent("request_switch_database", node.id, name),
                f"Reconnect {node.profile.name} to {name}.",
            )
            for name in database_names(node)
        )
        return commands


__all__ = ["ConnectionProvider", "PaletteCommand", "SessionProvider"]
