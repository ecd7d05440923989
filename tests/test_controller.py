"""End-to-end key flows against a real SQLite file with hand-cranked workers."""

import csv
import json
import sqlite3
from unittest.mock import patch

import pytest

from controller import Controller
from database import ConnectionConfig, TableNode
from router import Focus, KeyEvent, Tier
from settings import DEFAULT_KEYMAP
from utils import status_messages


def pump(controller, executors):
    while True:
        executors.run_all()
        changed = controller.poll()
        if not changed and not executors.pending:
            return


def press(controller, *keys):
    for key in keys:
        controller.dispatch(KeyEvent(key))


def type_text(controller, text):
    for ch in text:
        controller.dispatch(KeyEvent(ch, ch))


@pytest.fixture
def controller(sqlite_cfg, orchestrator, tmp_path):
    c = Controller([sqlite_cfg], orchestrator=orchestrator, export_dir=tmp_path)
    c.set_viewport(10, 4, 20)
    return c


@pytest.fixture
def connected(controller, executors):
    press(controller, "enter")
    pump(controller, executors)
    return controller


@pytest.fixture
def opened(connected, executors):
    press(connected, "G", "enter")
    pump(connected, executors)
    return connected


class TestConnect:
    def test_connect_lists_schema(self, connected):
        assert connected.router.focus is Focus.SCHEMA
        assert connected.pool is not None
        assert connected.view().connections[0].state == "connected"
        labels = [line.label for line in connected.schema.lines()]
        assert labels == ["main", "T", "even_numbers", "items", "numbers"]

    def test_failed_connect(self, orchestrator, executors, tmp_path):
        cfg = ConnectionConfig(name="missing", db_type="sqlite", dbname=str(tmp_path / "absent.db"))
        controller = Controller([cfg], orchestrator=orchestrator)
        press(controller, "enter")
        pump(controller, executors)
        assert controller.router.error.title == "Connection failed"
        assert controller.pool is None
        assert controller.connecting is None
        press(controller, "escape")
        assert controller.router.focus is Focus.CONNECTIONS

    def test_connect_crash_clears_connecting(self, controller, executors):
        with patch("orchestrator.connect", side_effect=OSError("bad path")):
            press(controller, "enter")
            assert controller.view().connections[0].state == "connecting"
            pump(controller, executors)
        assert controller.connecting is None
        assert controller.pool is None
        assert controller.view().connections[0].state == ""
        assert "bad path" in controller.router.error.message

    def test_actions_without_connection(self, controller):
        controller.open_table(TableNode("numbers", "main"))
        assert status_messages[-1].endswith("Not connected")
        assert controller.router.focus is Focus.CONNECTIONS

    def test_disconnect(self, opened, executors):
        pool = opened.pool
        press(opened, "D")
        assert opened.pool is None
        assert opened.engine.state.table is None
        assert opened.schema.lines() == []
        pump(opened, executors)
        assert pool.closed


class TestSchemaRefresh:
    def test_refresh_keeps_every_expanded_database(self, connected, executors, tmp_path):
        other = tmp_path / "other.db"
        conn = sqlite3.connect(str(other))
        conn.execute("CREATE TABLE extra (x INTEGER)")
        conn.commit()
        conn.close()
        connected.pool.conn.execute(f"ATTACH DATABASE '{other}' AS other")
        press(connected, "r")
        pump(connected, executors)
        labels = [line.label for line in connected.schema.lines()]
        assert labels == ["main", "T", "even_numbers", "items", "numbers", "other"]
        connected.schema.select_line(5)
        press(connected, "l")
        pump(connected, executors)
        press(connected, "r")
        assert connected.schema.loading == {"main", "other"}
        pump(connected, executors)
        labels = [line.label for line in connected.schema.lines()]
        assert labels == ["main", "T", "even_numbers", "items", "numbers", "other", "extra"]
        assert connected.schema.loading == set()


class TestTableFlow:
    def test_open_table_from_schema(self, opened):
        assert opened.router.focus is Focus.TABLE
        assert opened.engine.state.table.name == "numbers"
        assert opened.view().table.total_rows == 100

    def test_filter_prompt(self, opened, executors):
        press(opened, "w")
        assert opened.prompt.kind == "filter"
        type_text(opened, "n > 95")
        press(opened, "enter")
        assert opened.prompt is None
        pump(opened, executors)
        assert opened.engine.current_cell().text == "96"
        assert opened.view().table.total_rows == 4

    def test_bad_filter_shows_error_and_keeps_rows(self, opened, executors):
        press(opened, "w")
        type_text(opened, "nope = 1")
        press(opened, "enter")
        pump(opened, executors)
        error = opened.router.error
        assert error.title == "Query failed"
        assert "nope" in error.message
        assert opened.engine.state.where == ""
        assert opened.dispatch(KeyEvent("j")) is Tier.ERROR
        assert opened.engine.state.cursor == (0, 0)
        press(opened, "escape")
        assert opened.router.error is None
        assert opened.router.focus is Focus.TABLE

    def test_prompt_takes_bound_keys_as_text(self, opened):
        press(opened, "/")
        type_text(opened, "q")
        assert opened.exit_request is None
        assert opened.prompt.text == "q"
        assert opened.engine.visible_rows() == []
        press(opened, "escape")
        assert len(opened.engine.visible_rows()) == 10

    def test_columns_from_click(self, connected, executors):
        connected.click(Focus.SCHEMA, 4)
        press(connected, "i")
        pump(connected, executors)
        assert connected.engine.state.kind == "columns"
        assert connected.router.focus is Focus.TABLE


class TestStatements:
    def test_execute_from_schema_pane(self, connected, executors):
        press(connected, ":")
        assert connected.router.focus is Focus.TABLE
        assert connected.prompt.kind == "execute"
        type_text(connected, "SELECT count(*) AS c FROM numbers")
        press(connected, "enter")
        pump(connected, executors)
        st = connected.engine.state
        assert st.kind == "statement"
        assert st.columns == ["c"]
        assert connected.engine.current_cell().text == "100"

    def test_execute_update_reports_affected(self, opened, executors):
        press(opened, ":")
        type_text(opened, "UPDATE numbers SET maybe = 'y' WHERE n < 3")
        press(opened, "enter")
        pump(opened, executors)
        assert status_messages[-1].endswith("3 rows affected")
        assert opened.engine.state.kind == "rows"


class TestConnectionLoss:
    def test_lost_connection_returns_to_connections(self, opened, executors):
        pool = opened.pool
        pool.conn.close()
        press(opened, "r")
        pump(opened, executors)
        assert opened.router.error.title == "Connection lost"
        assert opened.pool is None
        assert opened.view().connections[0].state == "lost"
        assert pool.closed
        # what was on screen stays readable
        assert len(opened.engine.visible_rows()) == 10
        press(opened, "escape")
        assert opened.router.focus is Focus.CONNECTIONS

    def test_reconnect_after_loss(self, opened, executors):
        opened.pool.conn.close()
        press(opened, "r")
        pump(opened, executors)
        press(opened, "escape", "enter")
        pump(opened, executors)
        assert opened.pool is not None and opened.pool.usable
        assert opened.router.focus is Focus.SCHEMA
        assert opened.view().connections[0].state == "connected"


class TestOutput:
    def test_copy_block(self, opened):
        with patch("controller.copy_to_clipboard", return_value=True) as copy:
            press(opened, "J", "y")
        copy.assert_called_once_with("0\n1")

    def test_copy_nothing(self, opened):
        press(opened, "/")
        type_text(opened, "zzz")
        press(opened, "enter")
        with patch("controller.copy_to_clipboard") as copy:
            assert not opened.copy_selection()
        copy.assert_not_called()

    def test_export_csv(self, opened, tmp_path):
        press(opened, "x")
        [path] = tmp_path.glob("local_numbers_*.csv")
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == ["n", "label", "maybe"]
        assert rows[1] == ["0", "row 0", "NULL"]
        assert len(rows) == 11

    def test_export_json(self, opened, tmp_path):
        press(opened, "X")
        [path] = tmp_path.glob("local_numbers_*.json")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data[0] == {"n": 0, "label": "row 0", "maybe": None}
        assert data[1]["maybe"] == "x"


class TestAppKeys:
    def test_quit_and_add(self, controller):
        press(controller, "a")
        assert controller.exit_request == "add"
        press(controller, "q")
        assert controller.exit_request == "quit"

    def test_help_overlay(self, opened):
        press(opened, "?")
        view = opened.view()
        assert view.help_visible
        assert len(view.help_rows) == len(DEFAULT_KEYMAP)
        press(opened, "q")
        assert not opened.router.help_visible
        assert opened.exit_request is None
