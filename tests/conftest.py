"""Shared fixtures: a real SQLite file, a hand-cranked executor and driver fakes."""

from __future__ import annotations

import sqlite3
from collections import deque
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional, Tuple

import pytest

from database import ConnectionConfig, SQLiteAdapter
from orchestrator import QueryOrchestrator

PARITY_ROWS = [
    (1, "alpha", "2024-01-02 03:04:05"),
    (2, "", "2024-02-03 04:05:06"),
    (3, None, None),
]

NUMBERS = 100


class ManualExecutor(Executor):
    """Executor that runs nothing until the test says so."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.queue: deque = deque()
        self.is_shutdown = False

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> bool:
        if not self.queue:
            return False
        future, fn, args, kwargs = self.queue.popleft()
        if not future.set_running_or_notify_cancel():
            return True
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return True

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        self.is_shutdown = True
        if cancel_futures:
            for future, *_ in self.queue:
                future.cancel()
            self.queue.clear()


class ManualExecutors:
    """executor_factory handing out ManualExecutors and remembering them."""

    def __init__(self) -> None:
        self.created: List[ManualExecutor] = []

    def __call__(self, name: str) -> ManualExecutor:
        executor = ManualExecutor(name)
        self.created.append(executor)
        return executor

    @property
    def pending(self) -> int:
        return sum(len(ex.queue) for ex in self.created)

    def run_all(self) -> None:
        progress = True
        while progress:
            progress = False
            for executor in list(self.created):
                while executor.run_next():
                    progress = True


class StubPool:
    """Just enough of a DatabaseAdapter for the orchestrator."""

    db_type = "stub"

    def __init__(self) -> None:
        self.usable = True
        self.closed = False
        self.close_calls = 0

    def mark_unusable(self) -> None:
        self.usable = False

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.usable = False


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self.description: Optional[List[Tuple]] = None
        self.rowcount = -1
        self._rows: List[Tuple] = []

    def execute(self, sql: str, params: Any = None) -> None:
        self.conn.executed.append((sql, params))
        description, rows, rowcount = self.conn.responder(sql, params)
        self.description = description
        self._rows = list(rows)
        self.rowcount = rowcount if rowcount is not None else len(self._rows)

    def fetchall(self) -> List[Tuple]:
        return list(self._rows)

    def fetchmany(self, size: int) -> List[Tuple]:
        return list(self._rows[:size])

    def close(self) -> None:
        pass


class FakeConnection:
    """DB-API connection answering statements through a responder callable.

    responder(sql, params) returns (description, rows, rowcount) or raises.
    """

    def __init__(self, responder: Callable[[str, Any], Tuple]) -> None:
        self.responder = responder
        self.executed: List[Tuple[str, Any]] = []
        self.autocommit = False
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def close(self) -> None:
        self.closed = True


def build_test_db(path) -> None:
    conn = sqlite3.connect(str(path))
    conn.executescript(
        """
        CREATE TABLE T (id INTEGER, name TEXT, created TIMESTAMP);
        CREATE TABLE numbers (n INTEGER PRIMARY KEY, label TEXT NOT NULL, maybe TEXT);
        CREATE TABLE items (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            price DECIMAL(10, 2),
            payload BLOB,
            number_id INTEGER REFERENCES numbers(n)
        );
        CREATE INDEX items_title ON items(title);
        CREATE VIEW even_numbers AS SELECT * FROM numbers WHERE n % 2 = 0;
        """
    )
    conn.executemany("INSERT INTO T VALUES (?, ?, ?)", PARITY_ROWS)
    conn.executemany(
        "INSERT INTO numbers VALUES (?, ?, ?)",
        [(n, f"row {n}", None if n % 10 == 0 else "x") for n in range(NUMBERS)],
    )
    conn.executemany(
        "INSERT INTO items VALUES (?, ?, ?, ?, ?)",
        [(1, "first", 9.5, b"\x00\xff", 1), (2, "second", None, None, None)],
    )
    conn.commit()
    conn.close()


@pytest.fixture
def sqlite_file(tmp_path):
    path = tmp_path / "browse.db"
    build_test_db(path)
    return path


@pytest.fixture
def sqlite_cfg(sqlite_file):
    return ConnectionConfig(
        name="local",
        db_type="sqlite",
        host="",
        port=0,
        dbname=str(sqlite_file),
        user="",
        password="",
    )


@pytest.fixture
def sqlite_pool(sqlite_cfg):
    pool = SQLiteAdapter(sqlite_cfg).open()
    yield pool
    pool.close()


@pytest.fixture
def executors():
    return ManualExecutors()


@pytest.fixture
def orchestrator(executors):
    orch = QueryOrchestrator(executor_factory=executors)
    yield orch
    orch.shutdown()
