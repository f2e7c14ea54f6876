"""App-level tests for the command palette providers and intents."""

from __future__ import annotations

from pathlib import Path

import pytest
from rich.text import Text

from pgdesk.app import DEMO_PROFILE, PgdeskApp, parse_args
from pgdesk.config import AppConfig
from pgdesk.profiles import MemoryKeyValueStore
from pgdesk.providers import ConnectionProvider, SessionProvider
from pgdesk.results import QueryResult
from pgdesk.session import SessionPhase
from pgdesk.widgets.connection_sidebar import display_name, node_label
from pgdesk.widgets.query_editor import format_cell, quote_table, summarize
from pgdesk.widgets.status_bar import describe_state


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def app(tmp_path: Path) -> PgdeskApp:
    return PgdeskApp(config=AppConfig(data_dir=tmp_path), demo=True)


class _DummyScreen:
    """Minimal stub so providers can reference an app without a running screen stack."""

    def __init__(self, app: PgdeskApp) -> None:
        self.app = app
        self.focused = None


def test_demo_app_seeds_profile(app: PgdeskApp) -> None:
    (profile,) = app.profile_store.profiles

    assert profile.name == DEMO_PROFILE.name
    assert app.controller.state.phase is SessionPhase.DISCONNECTED


def test_demo_app_keeps_existing_profiles(tmp_path: Path) -> None:
    storage = MemoryKeyValueStore()
    first = PgdeskApp(config=AppConfig(data_dir=tmp_path), storage=storage, demo=True)
    second = PgdeskApp(config=AppConfig(data_dir=tmp_path), storage=storage, demo=True)

    assert first.profile_store.profiles == second.profile_store.profiles


@pytest.mark.anyio
async def test_connection_provider_connects_profile(app: PgdeskApp) -> None:
    provider = ConnectionProvider(_DummyScreen(app))

    hits = [hit async for hit in provider.discover()]
    target = next(hit for hit in hits if (hit.display or "").startswith("Connect:"))
    await target.command()

    state = app.controller.state
    assert state.phase is SessionPhase.CONNECTED
    assert state.active_database == "postgres"
    assert state.selection.collection == "accounts"


@pytest.mark.anyio
async def test_session_provider_offers_database_switches(app: PgdeskApp) -> None:
    (profile,) = app.profile_store.profiles
    provider = SessionProvider(_DummyScreen(app))

    assert [hit async for hit in provider.discover()] == []

    await app.request_connect(profile.id)
    hits = [hit async for hit in provider.discover()]
    labels = [hit.display for hit in hits]
    assert labels == ["Disconnect", "Switch database: postgres", "Switch database: analytics"]

    await hits[2].command()
    assert app.controller.state.active_database == "analytics"
    assert app.profile_store.get(profile.id).database == "analytics"

    await hits[0].command()
    assert app.controller.state.phase is SessionPhase.DISCONNECTED


@pytest.mark.anyio
async def test_execute_intent_runs_demo_query(app: PgdeskApp) -> None:
    (profile,) = app.profile_store.profiles
    await app.request_connect(profile.id)

    outcome = await app.request_execute('{"table": "accounts", "operation": "count"}')

    assert isinstance(outcome, QueryResult)
    assert outcome.total == 3
    assert "total 3" in summarize(outcome)


@pytest.mark.anyio
async def test_delete_intent_disconnects_active_profile(app: PgdeskApp) -> None:
    (profile,) = app.profile_store.profiles
    await app.request_connect(profile.id)

    removed = await app.request_delete_profile(profile.id)

    assert removed is True
    assert app.profile_store.profiles == ()
    assert app.controller.state.tree.nodes == ()
    assert app.controller.state.phase is SessionPhase.DISCONNECTED


def test_add_profile_intent_updates_tree(app: PgdeskApp) -> None:
    profile = app.request_add_profile({"name": "Staging", "host": "staging.internal"})

    assert app.controller.state.tree.nodes[-1].profile == profile


def test_describe_state_reports_connection_details(app: PgdeskApp) -> None:
    text = describe_state(app.controller.state)

    assert text == "Status: Disconnected"


def test_parse_args_accepts_demo_flag() -> None:
    args = parse_args(["--demo", "--log-file", "pgdesk.log"])

    assert args.demo is True
    assert args.log_file == "pgdesk.log"


def test_widget_formatting_helpers() -> None:
    assert display_name("accounts") == "accounts"
    assert display_name("public.accounts") == "accounts"
    assert display_name("analytics.events") == "events (analytics)"
    assert quote_table("analytics.events") == '"analytics"."events"'
    assert format_cell(None) == "NULL"
    assert format_cell(True) == "TRUE"
    assert summarize(QueryResult(error="boom", duration=0.5)) == "✖ boom (0.50s)"
    assert summarize(QueryResult(rows_affected=2, statement_type="write"), 1).startswith("✔ #1 2 row(s) affected")


def test_node_labels_escape_markup_in_names() -> None:
    plain = node_label("prod [eu]")
    bold = node_label("prod [eu]", bold=True)

    assert Text.from_markup(plain).plain == "prod [eu]"
    assert Text.from_markup(bold).plain == "prod [eu]"
    assert bold.startswith("[b]") and bold.endswith("[/b]")
