"""Background query execution for the browser.

Every backend call runs on a single-thread executor bound to its pool, so one
handle never serves two statements at once and the terminal keeps painting
while a query is on the wire.  Results come back through one inbox that the
main loop drains on each paint tick.

Each submission gets a Token naming its logical slot ("rows", "tables", ...).
Only the most recent token of a slot is current; anything older that arrives
later is dropped in drain() without being looked at.
"""

from __future__ import annotations

import itertools
import queue
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from cells import Row
from database import (
    ConnectionConfig,
    ConnectivityError,
    DatabaseAdapter,
    DatabaseError,
    ExecuteOutcome,
    QueryError,
    RecordsQuery,
    TableNode,
    connect,
)

SLOT_CONNECT = "connect"
SLOT_DATABASES = "databases"
SLOT_TABLES = "tables"
SLOT_ROWS = "rows"
SLOT_COUNT = "count"
SLOT_EXECUTE = "execute"


@dataclass(frozen=True)
class Token:
    slot: str
    serial: int


@dataclass
class Page:
    """One batch of rows together with the request shape that produced it."""

    signature: Tuple[Any, ...]
    offset: int
    rows: List[Row]
    columns: List[str]
    page_size: int
    query: Optional[RecordsQuery] = None


@dataclass
class RowCount:
    signature: Tuple[Any, ...]
    value: Optional[int]
    exact: bool = True


class Request:
    slot = ""

    def run(self, pool: Optional[DatabaseAdapter]) -> Any:
        raise NotImplementedError

    def discard(self, outcome: Any) -> None:
        """Called with the outcome of a superseded request."""


@dataclass
class Connect(Request):
    cfg: ConnectionConfig
    slot = SLOT_CONNECT

    def run(self, pool: Optional[DatabaseAdapter]) -> DatabaseAdapter:
        return connect(self.cfg)

    def discard(self, outcome: Any) -> None:
        # the user moved on to another connection; nobody owns this handle
        outcome.close()


@dataclass
class ListDatabases(Request):
    slot = SLOT_DATABASES

    def run(self, pool: Optional[DatabaseAdapter]) -> Any:
        return pool.list_databases()


@dataclass
class ListTables(Request):
    database: str
    slot = SLOT_TABLES

    def run(self, pool: Optional[DatabaseAdapter]) -> Any:
        return pool.list_tables(self.database)


@dataclass
class FetchRows(Request):
    query: RecordsQuery
    slot = SLOT_ROWS

    def run(self, pool: Optional[DatabaseAdapter]) -> Page:
        rows, columns = pool.fetch_rows(self.query)
        return Page(
            signature=self.query.signature,
            offset=self.query.offset,
            rows=rows,
            columns=columns,
            page_size=self.query.page_size,
            query=self.query,
        )


@dataclass
class FetchColumns(Request):
    table: TableNode
    # shares the slot with row pages: both fill the table view
    slot = SLOT_ROWS

    def run(self, pool: Optional[DatabaseAdapter]) -> Page:
        rows, columns = pool.fetch_columns(self.table)
        return Page(
            signature=("columns", self.table.key),
            offset=0,
            rows=rows,
            columns=columns,
            page_size=max(len(rows), 1),
        )


@dataclass
class CountRows(Request):
    signature: Tuple[Any, ...]
    table: TableNode
    where: str = ""
    slot = SLOT_COUNT

    def run(self, pool: Optional[DatabaseAdapter]) -> RowCount:
        return RowCount(self.signature, pool.count_rows(self.table, self.where), exact=True)


@dataclass
class EstimateRows(Request):
    signature: Tuple[Any, ...]
    table: TableNode
    where: str = ""
    slot = SLOT_COUNT

    def run(self, pool: Optional[DatabaseAdapter]) -> RowCount:
        if self.where.strip():
            # statistics say nothing about a filtered row set
            return RowCount(self.signature, None, exact=False)
        estimate = pool.estimate_rows(self.table)
        if estimate is None:
            return RowCount(self.signature, pool.count_rows(self.table), exact=True)
        return RowCount(self.signature, estimate, exact=False)


@dataclass
class Execute(Request):
    statement: str
    slot = SLOT_EXECUTE

    def run(self, pool: Optional[DatabaseAdapter]) -> ExecuteOutcome:
        return pool.execute(self.statement)


@dataclass
class Delivery:
    token: Token
    request: Request
    outcome: Any = None
    error: Optional[DatabaseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


ExecutorFactory = Callable[[str], Executor]


def _thread_executor(name: str) -> Executor:
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"dbnav-{name}")


class QueryOrchestrator:
    """Runs requests off the main thread and hands results back via an inbox."""

    def __init__(
        self,
        executor_factory: Optional[ExecutorFactory] = None,
        notify: Optional[Callable[[], None]] = None,
    ) -> None:
        self._executor_factory = executor_factory or _thread_executor
        self.notify = notify
        self._inbox: "queue.Queue[Delivery]" = queue.Queue()
        self._serial = itertools.count(1)
        self._lock = threading.Lock()
        # slot -> token still awaiting delivery
        self._latest: Dict[str, Token] = {}
        self._owners: Dict[Token, Optional[DatabaseAdapter]] = {}
        self._executors: Dict[Optional[DatabaseAdapter], Executor] = {}
        self._futures: List[Future] = []
        self.discarded = 0

    def _executor_for(self, pool: Optional[DatabaseAdapter]) -> Executor:
        executor = self._executors.get(pool)
        if executor is None:
            name = "connect" if pool is None else pool.db_type
            executor = self._executor_factory(name)
            self._executors[pool] = executor
        return executor

    def submit(self, pool: Optional[DatabaseAdapter], request: Request, slot: Optional[str] = None) -> Token:
        """Queue request against pool and return at once.

        A pool of None is only valid for requests that create one (Connect).
        """
        token = Token(slot or request.slot, next(self._serial))
        with self._lock:
            self._latest[token.slot] = token
            self._owners[token] = pool
            self._futures = [f for f in self._futures if not f.done()]
            if pool is not None and not pool.usable:
                executor = None
            else:
                executor = self._executor_for(pool)
        if executor is None:
            self._deliver(Delivery(token, request, error=ConnectivityError("connection lost, reconnect first")))
            return token
        future = executor.submit(self._work, token, pool, request)
        with self._lock:
            self._futures.append(future)
        return token

    def _work(self, token: Token, pool: Optional[DatabaseAdapter], request: Request) -> None:
        try:
            outcome = request.run(pool)
        except ConnectivityError as exc:
            if pool is not None:
                pool.mark_unusable()
            delivery = Delivery(token, request, error=exc)
        except DatabaseError as exc:
            delivery = Delivery(token, request, error=exc)
        except Exception as exc:
            delivery = Delivery(token, request, error=QueryError(f"{exc.__class__.__name__}: {exc}"))
        else:
            delivery = Delivery(token, request, outcome=outcome)
        self._deliver(delivery)

    def _deliver(self, delivery: Delivery) -> None:
        self._inbox.put(delivery)
        if self.notify is not None:
            self.notify()

    def is_current(self, token: Token) -> bool:
        with self._lock:
            return self._latest.get(token.slot) == token

    def awaiting(self, slot: str) -> Optional[Token]:
        with self._lock:
            return self._latest.get(slot)

    def supersede(self, slot: str) -> None:
        """Forget the outstanding request of slot; its result will be dropped."""
        with self._lock:
            token = self._latest.pop(slot, None)
            if token is not None:
                self._owners.pop(token, None)

    def drain(self) -> List[Delivery]:
        """Return current deliveries in completion order without blocking."""
        current: List[Delivery] = []
        while True:
            try:
                delivery = self._inbox.get_nowait()
            except queue.Empty:
                break
            with self._lock:
                fresh = self._latest.get(delivery.token.slot) == delivery.token
                if fresh:
                    del self._latest[delivery.token.slot]
                self._owners.pop(delivery.token, None)
            if fresh:
                current.append(delivery)
                continue
            self.discarded += 1
            if delivery.ok:
                delivery.request.discard(delivery.outcome)
        return current

    def retire(self, pool: DatabaseAdapter) -> None:
        """Drop every outstanding request on pool and close it once idle.

        The close is queued behind whatever is running on the pool's worker,
        so the handle is never pulled from under an in-flight statement.
        """
        with self._lock:
            executor = self._executors.pop(pool, None)
            for slot, token in list(self._latest.items()):
                if self._owners.get(token) is pool:
                    del self._latest[slot]
                    del self._owners[token]
        if executor is None:
            pool.close()
            return
        executor.submit(pool.close)
        executor.shutdown(wait=False)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until submitted work has finished; True if all of it did."""
        with self._lock:
            pending = list(self._futures)
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        with self._lock:
            executors = list(self._executors.items())
            self._executors.clear()
            self._latest.clear()
            self._owners.clear()
        for pool, executor in executors:
            executor.shutdown(wait=False, cancel_futures=True)
            if pool is not None:
                pool.close()
