"""Query editor and result view for the selected collection."""

from __future__ import annotations

from typing import Any, Callable

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.message import Message
from textual.widgets import Button, DataTable, Static, TextArea

from pgdesk.query import QueryKind, classify
from pgdesk.results import QueryOutcome, QueryResult, iter_results
from pgdesk.session import SessionController, SessionState

QUERY_TEMPLATES: tuple[tuple[str, str], ...] = (
    ("Select first 100 rows", 'SELECT * FROM {table} LIMIT 100;'),
    ("Count rows", "SELECT COUNT(*) FROM {table};"),
    ("Find (structured)", '{{"table": "{collection}", "operation": "find", "filter": {{}}, "limit": 100}}'),
    ("Count (structured)", '{{"table": "{collection}", "operation": "count"}}'),
)


class QueryEditor(Container):
    """Multi-line editor accepting SQL or a JSON query object."""

    DEFAULT_CSS = """
    QueryEditor {
        layout: vertical;
        border: round $primary 40%;
        padding: 0 1;
        height: 14;
        background: $surface;
    }

    QueryEditor .panel-title {
        text-style: bold;
    }

    QueryEditor TextArea {
        height: 1fr;
    }

    QueryEditor .query-actions {
        height: 3;
        align-horizontal: left;
    }

    QueryEditor .query-actions > * {
        margin-right: 1;
    }

    #query-kind {
        color: $text-muted;
        padding-top: 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+enter", "run_query", "Run query", priority=True),
        Binding("ctrl+t", "cycle_template", "Insert template", show=False),
    ]

    class ExecuteRequested(Message):
        """Fired when the user asks to run the editor contents."""

        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    def __init__(self, controller: SessionController) -> None:
        super().__init__(id="query-editor")
        self._controller = controller
        self._title: Static | None = None
        self._kind: Static | None = None
        self._input: TextArea | None = None
        self._run_button: Button | None = None
        self._template_index = 0
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Query", classes="panel-title", id="query-title")
        yield TextArea("", id="query-input")
        yield Horizontal(
            Button("Run query", id="run-query", variant="primary"),
            Static("", id="query-kind"),
            classes="query-actions",
        )

    async def on_mount(self) -> None:
        self._title = self.query_one("#query-title", Static)
        self._kind = self.query_one("#query-kind", Static)
        self._input = self.query_one("#query-input", TextArea)
        self._run_button = self.query_one("#run-query", Button)
        self._unsubscribe = self._controller.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def text(self) -> str:
        return self._input.text if self._input else ""

    def set_text(self, text: str) -> None:
        if self._input:
            self._input.load_text(text)
            self._render_kind()

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        self._render_kind()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "run-query":
            event.stop()
            self.action_run_query()

    def action_run_query(self) -> None:
        self.post_message(self.ExecuteRequested(self.text))

    def action_cycle_template(self) -> None:
        selection = self._controller.state.selection
        if not selection.collection:
            return
        label, template = QUERY_TEMPLATES[self._template_index % len(QUERY_TEMPLATES)]
        self._template_index += 1
        self.set_text(template.format(table=quote_table(selection.collection), collection=selection.collection))
        self.app.notify(f"Template: {label}", severity="information")

    def _handle_session_update(self, state: SessionState) -> None:
        if self._title:
            selection = state.selection
            if selection.collection:
                self._title.update(f"Query · {selection.database} / {selection.collection}")
            elif selection.database:
                self._title.update(f"Query · {selection.database}")
            else:
                self._title.update("Query · select a table")
        if self._run_button:
            self._run_button.disabled = state.loading

    def _render_kind(self) -> None:
        if not self._kind:
            return
        text = self.text
        if not text.strip():
            self._kind.update("")
            return
        kind = classify(text)
        self._kind.update("SQL" if kind is QueryKind.SQL else "JSON query")


class ResultView(Container):
    """Shows the last query outcome: summary lines plus a row grid."""

    DEFAULT_CSS = """
    ResultView {
        layout: vertical;
        height: 1fr;
        padding: 0 1;
    }

    #result-summary {
        height: auto;
        min-height: 1;
        color: $text-muted;
    }

    #result-summary.error {
        color: $error;
    }

    #result-table {
        height: 1fr;
    }
    """

    def __init__(self, controller: SessionController, *, row_limit: int = 200) -> None:
        super().__init__(id="result-view")
        self._controller = controller
        self._row_limit = row_limit
        self._summary: Static | None = None
        self._table: DataTable | None = None
        self._rendered: QueryOutcome | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("", id="result-summary")
        yield DataTable(id="result-table", zebra_stripes=True)

    async def on_mount(self) -> None:
        self._summary = self.query_one("#result-summary", Static)
        self._table = self.query_one("#result-table", DataTable)
        self._table.cursor_type = "row"
        self._unsubscribe = self._controller.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        if state.last_result is self._rendered and self._rendered is not None:
            return
        self._rendered = state.last_result
        self.render_outcome(state.last_result)

    def render_outcome(self, outcome: QueryOutcome | None) -> None:
        if not self._summary or not self._table:
            return
        self._table.clear(columns=True)
        results = iter_results(outcome)
        self._summary.set_class(any(result.error for result in results), "error")
        numbered = len(results) > 1
        self._summary.update(
            "\n".join(summarize(result, index if numbered else None) for index, result in enumerate(results, 1))
        )
        grid = next((result for result in results if result.data), None)
        if grid is None:
            return
        columns = grid.columns
        self._table.add_columns(*columns)
        for row in grid.data[: self._row_limit]:
            self._table.add_row(*(format_cell(row.get(column)) for column in columns))


def summarize(result: QueryResult, index: int | None = None) -> str:
    """Single summary line for one statement result."""

    if result.error:
        return f"✖ {result.error} ({result.formatted_duration})"
    if result.total is not None:
        detail = f"total {result.total}"
    elif result.statement_type in ("write", "ddl"):
        detail = f"{result.rows_affected or 0} row(s) affected"
    elif result.data:
        detail = f"{len(result.data)} row(s)"
    else:
        detail = "no rows"
    label = f"#{index} " if index is not None else ""
    return f"✔ {label}{detail} · {result.formatted_duration}"


def format_cell(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def quote_table(collection: str) -> str:
    return ".".join(f'"{part}"' for part in collection.split("."))


__all__ = ["QueryEditor", "ResultView", "format_cell", "quote_table", "summarize"]
