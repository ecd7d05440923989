"""Glue between key routing, the query orchestrator and the panes.

The controller owns the active pool and every piece of browser state.  All
of it is touched only from the main loop: key dispatch and poll().
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from database import (
    ConnectionConfig,
    ConnectivityError,
    DatabaseAdapter,
    ExecuteOutcome,
    TableNode,
)
from orchestrator import (
    SLOT_CONNECT,
    SLOT_COUNT,
    SLOT_DATABASES,
    SLOT_EXECUTE,
    SLOT_ROWS,
    SLOT_TABLES,
    Connect,
    Delivery,
    Execute,
    ListDatabases,
    ListTables,
    QueryOrchestrator,
)
from router import ErrorNotice, Focus, KeyEvent, Router, Tier
from schema_tree import SchemaTree, TreeLine
from settings import Settings
from table_state import TableEngine, TableSnapshot
from utils import copy_to_clipboard, export_csv, export_filename, export_json, push_status, status_messages

STATUS_LINES = 5


@dataclass
class Prompt:
    kind: str  # filter | search | execute
    label: str
    text: str = ""
    # live prompts apply on every keystroke
    live: bool = False


class Pane:
    """Key handling shared by the three panes.

    A key is offered to ``on_<action>`` for each action bound to it; the
    first handler that does not return False consumes it.
    """

    focus: Focus

    def __init__(self, controller: "Controller") -> None:
        self.controller = controller
        self.prompt: Optional[Prompt] = None

    def handle(self, event: KeyEvent, actions: List[str]) -> bool:
        if self.prompt is not None:
            self._prompt_key(event)
            return True
        for action in actions:
            method = getattr(self, f"on_{action}", None)
            if method is not None and method() is not False:
                return True
        return False

    def start_prompt(self, kind: str, label: str, text: str = "", live: bool = False) -> None:
        self.prompt = Prompt(kind, label, text, live)

    def _prompt_key(self, event: KeyEvent) -> None:
        prompt = self.prompt
        if event.key in ("escape", "c-c"):
            self.prompt = None
            self.cancel_prompt(prompt)
            return
        if event.key == "enter":
            self.prompt = None
            self.submit_prompt(prompt)
            return
        if event.key == "backspace":
            prompt.text = prompt.text[:-1]
        elif event.key == "c-u":
            prompt.text = ""
        elif event.data and event.data.isprintable():
            prompt.text += event.data
        else:
            return
        if prompt.live:
            self.submit_prompt(prompt)

    def submit_prompt(self, prompt: Prompt) -> None:
        pass

    def cancel_prompt(self, prompt: Prompt) -> None:
        pass


class ConnectionsPane(Pane):
    focus = Focus.CONNECTIONS

    def _move(self, delta: int) -> None:
        c = self.controller
        if c.connections:
            c.selected_conn = max(0, min(c.selected_conn + delta, len(c.connections) - 1))

    def on_down(self):
        self._move(1)

    def on_up(self):
        self._move(-1)

    def on_first(self):
        self.controller.selected_conn = 0

    def on_last(self):
        self._move(len(self.controller.connections))

    def on_select(self):
        return self.controller.connect(self.controller.selected_conn)

    def on_right(self):
        return self.on_select()

    def on_refresh(self):
        self.controller.refresh_schema()


class SchemaPane(Pane):
    focus = Focus.SCHEMA

    @property
    def tree(self) -> SchemaTree:
        return self.controller.schema

    def on_down(self):
        self.tree.move(1)

    def on_up(self):
        self.tree.move(-1)

    def on_page_down(self):
        self.tree.move(self.tree.height)

    def on_page_up(self):
        self.tree.move(-self.tree.height)

    def on_first(self):
        self.tree.first()

    def on_last(self):
        self.tree.last()

    def on_right(self):
        database = self.tree.expand()
        if database is not None:
            self.controller.request_tables(database)

    def on_left(self):
        self.tree.collapse()

    def on_select(self):
        line = self.tree.selected()
        if line is None:
            return False
        if line.table is not None:
            self.controller.open_table(line.table)
        elif line.expanded:
            self.tree.collapse()
        else:
            self.on_right()

    def on_columns(self):
        line = self.tree.selected()
        if line is None or line.table is None:
            return False
        self.controller.open_columns(line.table)

    def on_search(self):
        self.start_prompt("search", "Search tables", self.tree.search, live=True)

    def on_clear_filter(self):
        self.tree.apply_search("")

    def on_refresh(self):
        self.controller.refresh_schema()

    def submit_prompt(self, prompt: Prompt) -> None:
        self.tree.apply_search(prompt.text)

    def cancel_prompt(self, prompt: Prompt) -> None:
        self.tree.apply_search("")


class TablePane(Pane):
    focus = Focus.TABLE

    @property
    def engine(self) -> TableEngine:
        return self.controller.engine

    def on_down(self):
        self.engine.move(1, 0)

    def on_up(self):
        self.engine.move(-1, 0)

    def on_left(self):
        self.engine.move(0, -1)

    def on_right(self):
        self.engine.move(0, 1)

    def on_extend_down(self):
        self.engine.extend(1, 0)

    def on_extend_up(self):
        self.engine.extend(-1, 0)

    def on_extend_left(self):
        self.engine.extend(0, -1)

    def on_extend_right(self):
        self.engine.extend(0, 1)

    def on_page_down(self):
        self.engine.page_down()

    def on_page_up(self):
        self.engine.page_up()

    def on_first(self):
        self.engine.first()

    def on_last(self):
        self.engine.last()

    def on_select(self):
        cell = self.engine.current_cell()
        if cell is None:
            return False
        push_status(f"Value: {cell.display(self.engine.null_text)}")

    def on_filter(self):
        if self.engine.state.kind != "rows":
            push_status("Filters apply to table rows only")
            return
        self.start_prompt("filter", "WHERE", self.engine.state.where)

    def on_search(self):
        self.start_prompt("search", "Search", self.engine.state.search, live=True)

    def on_sort(self):
        self.engine.toggle_sort()

    def on_clear_filter(self):
        self.engine.clear_filters()

    def on_copy(self):
        self.controller.copy_selection()

    def on_export_csv(self):
        self.controller.export("csv")

    def on_export_json(self):
        self.controller.export("json")

    def on_columns(self):
        table = self.engine.state.table
        if table is None:
            return False
        self.controller.open_columns(table)

    def on_execute(self):
        self.start_prompt("execute", "SQL")

    def on_refresh(self):
        self.engine.refresh()

    def submit_prompt(self, prompt: Prompt) -> None:
        if prompt.kind == "filter":
            self.engine.apply_filter(prompt.text)
        elif prompt.kind == "search":
            self.engine.apply_search(prompt.text)
        elif prompt.kind == "execute":
            self.controller.execute(prompt.text)

    def cancel_prompt(self, prompt: Prompt) -> None:
        if prompt.kind == "search":
            self.engine.apply_search("")


@dataclass(frozen=True)
class ConnectionLine:
    label: str
    detail: str
    selected: bool
    state: str  # "", connecting, connected, lost


@dataclass(frozen=True)
class ViewModel:
    focus: Focus
    error: Optional[ErrorNotice]
    help_visible: bool
    help_rows: Tuple[Tuple[str, str], ...]
    connections: Tuple[ConnectionLine, ...]
    schema_lines: Tuple[TreeLine, ...]
    schema_cursor: int
    schema_top: int
    schema_search: str
    table: TableSnapshot
    prompt: Optional[Prompt]
    status: Tuple[str, ...]


class Controller:
    def __init__(
        self,
        connections: List[ConnectionConfig],
        settings: Optional[Settings] = None,
        orchestrator: Optional[QueryOrchestrator] = None,
        export_dir: Optional[Path] = None,
    ) -> None:
        self.connections = list(connections)
        self.settings = settings or Settings()
        self.orchestrator = orchestrator or QueryOrchestrator()
        self.engine = TableEngine(
            self.orchestrator,
            end_policy=self.settings.end_policy,
            max_buffered_pages=self.settings.max_buffered_pages,
            null_text=self.settings.null_text,
        )
        self.schema = SchemaTree()
        self.router = Router(self.settings.keymap)
        self.export_dir = export_dir

        self.pool: Optional[DatabaseAdapter] = None
        self.active_conn: Optional[int] = None
        self.connecting: Optional[int] = None
        self.lost: Optional[int] = None
        self.selected_conn = 0
        self.exit_request: Optional[str] = None

        self.panes = {
            Focus.CONNECTIONS: ConnectionsPane(self),
            Focus.SCHEMA: SchemaPane(self),
            Focus.TABLE: TablePane(self),
        }
        for focus, pane in self.panes.items():
            self.router.register(focus, pane.handle)
        self.router.app_handler = self._app_key

    # --- input -------------------------------------------------------------

    def dispatch(self, event: KeyEvent) -> Tier:
        return self.router.dispatch(event)

    def _app_key(self, event: KeyEvent, actions: List[str]) -> bool:
        for action in actions:
            if action == "quit":
                self.exit_request = "quit"
                return True
            if action == "execute":
                self.router.set_focus(Focus.TABLE)
                self.panes[Focus.TABLE].on_execute()
                return True
            if action == "add_connection":
                self.exit_request = "add"
                return True
            if action == "disconnect":
                self.disconnect()
                return True
        return False

    def click(self, focus: Focus, line: Optional[int] = None) -> None:
        """Mouse click on a pane; line is relative to the pane's first item."""
        if not self.router.set_focus(focus):
            return
        if line is None:
            return
        if focus is Focus.CONNECTIONS and 0 <= line < len(self.connections):
            self.selected_conn = line
        elif focus is Focus.SCHEMA:
            self.schema.select_line(self.schema.top + line)

    def set_viewport(self, table_rows: int, table_columns: int, schema_rows: int) -> None:
        self.engine.set_viewport(table_rows, table_columns)
        self.schema.set_viewport(schema_rows)

    @property
    def prompt(self) -> Optional[Prompt]:
        return self.panes[self.router.focus].prompt

    # --- connection lifecycle ------------------------------------------------

    def connect(self, index: int) -> bool:
        if not 0 <= index < len(self.connections):
            return False
        if index == self.active_conn and self.pool is not None and self.pool.usable:
            self.router.set_focus(Focus.SCHEMA)
            return True
        if self.pool is not None:
            self.disconnect()
        cfg = self.connections[index]
        self.connecting = index
        self.lost = None
        self.orchestrator.submit(None, Connect(cfg))
        return True

    def disconnect(self) -> None:
        pool = self.pool
        self.orchestrator.supersede(SLOT_CONNECT)
        self.connecting = None
        if pool is None:
            return
        self.engine.clear()
        self.schema.clear()
        self.orchestrator.retire(pool)
        self.pool = None
        push_status(f"Disconnected from {pool.cfg.title}.")
        self.active_conn = None

    def _connected(self, request: Connect, pool: DatabaseAdapter) -> None:
        self.connecting = None
        self.pool = pool
        self.active_conn = self.connections.index(request.cfg) if request.cfg in self.connections else None
        self.schema.clear()
        self.engine.clear()
        self.router.set_focus(Focus.SCHEMA)
        self.orchestrator.submit(pool, ListDatabases())

    def _connection_lost(self, delivery: Delivery) -> None:
        message = delivery.error.backend_message
        if delivery.token.slot == SLOT_CONNECT:
            cfg = delivery.request.cfg
            self.connecting = None
            push_status(f"Connection to {cfg.title} failed: {message}")
            self.router.show_error("Connection failed", message, return_focus=Focus.CONNECTIONS)
            return
        pool = self.pool
        if pool is not None:
            self.engine.detach()
            self.orchestrator.retire(pool)
            self.pool = None
            self.lost = self.active_conn
            push_status(f"Connection to {pool.cfg.title} lost: {message}")
        self.router.show_error("Connection lost", message, return_focus=Focus.CONNECTIONS)

    # --- requests ------------------------------------------------------------

    def _require_pool(self) -> Optional[DatabaseAdapter]:
        if self.pool is None:
            push_status("Not connected")
        return self.pool

    def request_tables(self, database: str) -> None:
        pool = self._require_pool()
        if pool is None:
            self.schema.fail_tables(database)
            return
        # one slot per database: expanding another must not drop this one
        self.orchestrator.submit(pool, ListTables(database), slot=f"{SLOT_TABLES}:{database}")

    def refresh_schema(self) -> None:
        pool = self._require_pool()
        if pool is None:
            return
        self.orchestrator.submit(pool, ListDatabases())
        for database in self.schema.refresh_targets():
            self.request_tables(database)

    def open_table(self, table: TableNode) -> None:
        pool = self._require_pool()
        if pool is None:
            return
        self.engine.open_table(pool, table)
        self.router.set_focus(Focus.TABLE)

    def open_columns(self, table: TableNode) -> None:
        pool = self._require_pool()
        if pool is None:
            return
        self.engine.open_columns(pool, table)
        self.router.set_focus(Focus.TABLE)

    def execute(self, statement: str) -> None:
        statement = statement.strip()
        if not statement:
            return
        pool = self._require_pool()
        if pool is None:
            return
        push_status(f"Running: {statement[:60]}")
        self.orchestrator.submit(pool, Execute(statement))

    # --- deliveries ------------------------------------------------------------

    def poll(self) -> bool:
        """Apply every current delivery; True when something changed."""
        deliveries = self.orchestrator.drain()
        for delivery in deliveries:
            if delivery.ok:
                self._apply(delivery)
            else:
                self._fail(delivery)
        return bool(deliveries)

    def _apply(self, delivery: Delivery) -> None:
        slot = delivery.token.slot
        if slot == SLOT_CONNECT:
            self._connected(delivery.request, delivery.outcome)
        elif slot == SLOT_DATABASES:
            self.schema.replace_databases(delivery.outcome)
            push_status(f"{len(delivery.outcome)} databases")
            for db in self.schema.databases:
                if db.name in self.schema.expanded and db.tables is None and db.name not in self.schema.loading:
                    self.schema.loading.add(db.name)
                    self.request_tables(db.name)
        elif isinstance(delivery.request, ListTables):
            self.schema.replace_tables(delivery.request.database, delivery.outcome)
            push_status(f"{len(delivery.outcome)} tables in {delivery.request.database}")
        elif slot in (SLOT_ROWS, SLOT_COUNT):
            self.engine.ingest(delivery)
        elif slot == SLOT_EXECUTE:
            self._executed(delivery.request, delivery.outcome)

    def _executed(self, request: Execute, outcome: ExecuteOutcome) -> None:
        if not outcome.columns:
            push_status(f"{outcome.affected} rows affected")
            return
        self.engine.show_result(request.statement, outcome.columns, outcome.rows)
        self.router.set_focus(Focus.TABLE)
        suffix = " (truncated)" if outcome.truncated else ""
        push_status(f"{len(outcome.rows)} rows returned{suffix}")

    def _fail(self, delivery: Delivery) -> None:
        if isinstance(delivery.error, ConnectivityError):
            self._connection_lost(delivery)
            return
        slot = delivery.token.slot
        message = delivery.error.backend_message
        if slot == SLOT_CONNECT:
            self.connecting = None
        if slot == SLOT_COUNT:
            # the row query reports the same problem
            push_status(f"Row count failed: {message}")
            return
        if slot == SLOT_ROWS:
            self.engine.fail(delivery)
        elif isinstance(delivery.request, ListTables):
            self.schema.fail_tables(delivery.request.database)
        push_status(f"Query failed: {message}")
        self.router.show_error("Query failed", message)

    # --- clipboard / export ------------------------------------------------------

    def copy_selection(self) -> bool:
        payload = self.engine.selection_payload()
        if not payload:
            push_status("Nothing selected")
            return False
        return copy_to_clipboard(payload)

    def export(self, kind: str) -> Optional[Path]:
        st = self.engine.state
        rows = self.engine.visible_rows()
        if not rows or not st.columns:
            push_status("No data to export")
            return None
        if self.active_conn is not None:
            connection = self.connections[self.active_conn].name
        else:
            connection = "result"
        table = st.table.name if st.table is not None else "query"
        path = export_filename(connection, table, kind, self.export_dir)
        try:
            if kind == "csv":
                return export_csv(path, st.columns, rows, self.engine.null_text)
            return export_json(path, st.columns, rows)
        except OSError as e:
            push_status(f"Export error: {e}")
            return None

    # --- rendering ------------------------------------------------------------------

    def _connection_state(self, index: int) -> str:
        if index == self.connecting:
            return "connecting"
        if index == self.active_conn and self.pool is not None:
            return "connected"
        if index == self.lost:
            return "lost"
        return ""

    def view(self) -> ViewModel:
        router = self.router
        prompt = self.prompt
        return ViewModel(
            focus=router.focus,
            error=router.error,
            help_visible=router.help_visible,
            help_rows=tuple(tuple(row) for row in self.settings.keymap.describe()),
            connections=tuple(
                ConnectionLine(cfg.title, cfg.describe(), i == self.selected_conn, self._connection_state(i))
                for i, cfg in enumerate(self.connections)
            ),
            schema_lines=tuple(self.schema.lines()),
            schema_cursor=self.schema.cursor,
            schema_top=self.schema.top,
            schema_search=self.schema.search,
            table=self.engine.snapshot(),
            prompt=Prompt(prompt.kind, prompt.label, prompt.text, prompt.live) if prompt else None,
            status=tuple(status_messages[-STATUS_LINES:]),
        )

    def shutdown(self) -> None:
        pool, self.pool = self.pool, None
        self.engine.detach()
        self.orchestrator.shutdown()
        if pool is not None:
            pool.close()
