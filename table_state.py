from __future__ import annotations

import itertools
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from cells import NULL_TEXT, Cell, Row
from database import DatabaseAdapter, RecordsQuery, SortSpec, TableNode
from orchestrator import (
    CountRows,
    Delivery,
    EstimateRows,
    FetchColumns,
    FetchRows,
    Page,
    QueryOrchestrator,
    RowCount,
    SLOT_COUNT,
    Token,
)

END_POLICIES = ("exact", "estimate", "disabled")

Coord = Tuple[int, int]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


@dataclass
class TableViewState:
    """Browsing state of the result set in the table view.

    Row coordinates of ``cursor``, ``anchor`` and ``top`` index ``visible``
    (the buffered rows that pass the client-side search), not ``rows``.
    ``base_offset`` is the backend offset of ``rows[0]``.
    """

    kind: str = "empty"  # empty | rows | columns | statement
    table: Optional[TableNode] = None
    title: str = ""
    columns: List[str] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)
    base_offset: int = 0
    page_size: int = 20
    total_rows: Optional[int] = None
    total_exact: bool = False
    exhausted: bool = True
    where: str = ""
    sort: Optional[SortSpec] = None
    search: str = ""
    visible: List[int] = field(default_factory=list)
    cursor: Optional[Coord] = None
    anchor: Optional[Coord] = None
    top: int = 0
    left: int = 0
    signature: Tuple[Any, ...] = ()
    loading: bool = False


@dataclass(frozen=True)
class Selection:
    top: int
    bottom: int
    left: int
    right: int

    def contains(self, row: int, col: int) -> bool:
        return self.top <= row <= self.bottom and self.left <= col <= self.right


@dataclass(frozen=True)
class TableSnapshot:
    """Read-only copy of what the renderer needs for one frame."""

    kind: str
    title: str
    columns: Tuple[str, ...]
    # (visible index, absolute row number, row) for the rows on screen
    window: Tuple[Tuple[int, int, Row], ...]
    cursor: Optional[Coord]
    selection: Optional[Selection]
    left: int
    base_offset: int
    buffered: int
    matching: int
    total_rows: Optional[int]
    total_exact: bool
    exhausted: bool
    where: str
    sort: Optional[SortSpec]
    search: str
    loading: bool
    null_text: str


class TableEngine:
    """Owns TableViewState and keeps it consistent with the pages that land.

    The engine submits its own page requests through the orchestrator and is
    fed the deliveries of its slot by the controller.  Every mutation happens
    on the main thread.
    """

    def __init__(
        self,
        orchestrator: QueryOrchestrator,
        end_policy: str = "exact",
        max_buffered_pages: int = 5,
        null_text: str = NULL_TEXT,
    ) -> None:
        if end_policy not in END_POLICIES:
            raise ValueError(f"end_policy must be one of {END_POLICIES}")
        self.orchestrator = orchestrator
        self.pool: Optional[DatabaseAdapter] = None
        self.state = TableViewState()
        self.end_policy = end_policy
        self.max_buffered_pages = max(2, max_buffered_pages)
        self.null_text = null_text
        self.column_capacity = 8
        self._awaiting: Optional[Token] = None
        self._awaiting_query: Optional[RecordsQuery] = None
        self._counts: Dict[Tuple[Any, ...], Tuple[Optional[int], bool]] = {}
        self._jump_pending = False
        self._cursor_to_end = False
        self._backward = False
        self._statement_serial = itertools.count(1)

    # --- setup ------------------------------------------------------------

    def set_viewport(self, height: int, column_capacity: Optional[int] = None) -> None:
        """page size = visible rows"""
        self.state.page_size = max(1, height)
        if column_capacity is not None:
            self.column_capacity = max(1, column_capacity)
        self._follow()

    def _reset(self, kind: str, table: Optional[TableNode], title: str = "") -> None:
        self._supersede()
        self.state = TableViewState(
            kind=kind,
            table=table,
            title=title or (f"{table.database}.{table.name}" if table else ""),
            page_size=self.state.page_size,
        )
        self._counts.clear()

    def _supersede(self) -> None:
        if self._awaiting is not None:
            self.orchestrator.supersede(self._awaiting.slot)
        self._awaiting = None
        self._awaiting_query = None
        self._jump_pending = False
        self._cursor_to_end = False
        self._backward = False
        self.state.loading = False

    def open_table(self, pool: DatabaseAdapter, table: TableNode) -> None:
        self.pool = pool
        self._reset("rows", table)
        self._load("", None)

    def open_columns(self, pool: DatabaseAdapter, table: TableNode) -> None:
        self.pool = pool
        self._reset("columns", table, f"{table.database}.{table.name} (columns)")
        self._submit(FetchColumns(table), None)

    def show_result(self, title: str, columns: List[str], rows: List[Row]) -> None:
        """Show a static result set, e.g. the rows returned by a statement."""
        self._reset("statement", None, title)
        page = Page(("statement", next(self._statement_serial)), 0, list(rows), list(columns), max(len(rows), 1))
        self._replace(page)
        self.state.total_rows = len(rows)
        self.state.total_exact = True

    def detach(self) -> None:
        """Stop talking to the pool; the displayed buffer stays readable."""
        self._supersede()
        self.pool = None

    def clear(self) -> None:
        self.detach()
        self._counts.clear()
        self.state = TableViewState(page_size=self.state.page_size)

    # --- requests -----------------------------------------------------------

    def _submit(self, request: Any, query: Optional[RecordsQuery]) -> Optional[Token]:
        if self.pool is None:
            return None
        token = self.orchestrator.submit(self.pool, request)
        self._awaiting = token
        self._awaiting_query = query
        self.state.loading = True
        return token

    def _load(self, where: str, sort: Optional[SortSpec]) -> None:
        st = self.state
        if st.kind != "rows" or st.table is None:
            return
        query = RecordsQuery(st.table, 0, st.page_size, where, sort)
        self._jump_pending = False
        self._cursor_to_end = False
        self._backward = False
        self._submit(FetchRows(query), query)
        self._request_count(query)

    def _request_count(self, query: RecordsQuery) -> None:
        if self.end_policy == "disabled" or self.pool is None:
            return
        if query.signature in self._counts:
            return
        if self.end_policy == "exact":
            request: Any = CountRows(query.signature, query.table, query.where)
        else:
            request = EstimateRows(query.signature, query.table, query.where)
        self.orchestrator.submit(self.pool, request)

    def _request_page(self, offset: int, limit: int, to_end: bool = False, backward: bool = False) -> None:
        st = self.state
        if st.kind != "rows" or st.table is None or self.pool is None:
            return
        pending = self._awaiting_query
        if self._awaiting is not None and (pending is None or pending.signature != st.signature):
            # a reload for a new filter/sort is on its way; do not page the old one
            return
        query = RecordsQuery(st.table, offset, limit, st.where, st.sort)
        if self._awaiting is not None and pending == query:
            return
        self._cursor_to_end = to_end
        self._backward = backward
        self._submit(FetchRows(query), query)

    def _prefetch_forward(self) -> None:
        st = self.state
        if st.kind == "rows" and not st.exhausted:
            self._request_page(st.base_offset + len(st.rows), st.page_size)

    def _prefetch_backward(self) -> None:
        st = self.state
        if st.kind == "rows" and st.base_offset > 0:
            offset = max(0, st.base_offset - st.page_size)
            self._request_page(offset, st.base_offset - offset, backward=True)

    # --- ingestion ------------------------------------------------------------

    def ingest(self, delivery: Delivery) -> bool:
        """Apply a successful delivery; False when it does not belong here."""
        outcome = delivery.outcome
        if isinstance(outcome, RowCount):
            return self._ingest_count(outcome)
        if not isinstance(outcome, Page) or delivery.token != self._awaiting:
            return False
        self._awaiting = None
        self._awaiting_query = None
        self.state.loading = False
        return self._ingest_page(outcome)

    def fail(self, delivery: Delivery) -> bool:
        """Forget a failed request; the displayed state is left as it was."""
        if delivery.token != self._awaiting:
            return False
        self._awaiting = None
        self._awaiting_query = None
        self._jump_pending = False
        self._cursor_to_end = False
        self._backward = False
        self.state.loading = False
        return True

    def _ingest_count(self, count: RowCount) -> bool:
        self._counts = {count.signature: (count.value, count.exact)}
        st = self.state
        if count.signature != st.signature:
            return False
        st.total_rows, st.total_exact = count.value, count.exact
        self._update_exhausted()
        if self._jump_pending:
            self._jump_pending = False
            if count.value is not None:
                self.last()
        return True

    def _ingest_page(self, page: Page) -> bool:
        st = self.state
        backward, self._backward = self._backward, False
        # offset 0 starts over, unless it is the page just above the buffer
        if page.query is None or (page.offset == 0 and not (backward and page.signature == st.signature)):
            self._replace(page)
            return True
        if page.signature != st.signature:
            return False
        end = st.base_offset + len(st.rows)
        if not page.rows:
            if page.offset >= end:
                st.exhausted = True
            self._cursor_to_end = False
            return True

        marks = self._mark()
        if page.offset == end:
            st.rows.extend(page.rows)
            st.exhausted = len(page.rows) < page.page_size
            limit = self.max_buffered_pages * st.page_size
            if len(st.rows) > limit:
                drop = len(st.rows) - limit
                del st.rows[:drop]
                st.base_offset += drop
        elif page.offset + len(page.rows) == st.base_offset:
            st.rows[:0] = page.rows
            st.base_offset = page.offset
            limit = self.max_buffered_pages * st.page_size
            if len(st.rows) > limit:
                del st.rows[limit:]
                st.exhausted = False
        else:
            # jump to a page that is not adjacent to the buffer
            st.rows = list(page.rows)
            st.base_offset = page.offset
            st.exhausted = len(page.rows) < page.page_size
        self._update_exhausted()
        self._restore(marks)
        if self._cursor_to_end:
            self._cursor_to_end = False
            self._to_last_visible()
        return True

    def _replace(self, page: Page) -> None:
        st = self.state
        if page.query is not None:
            st.where = page.query.where
            st.sort = page.query.sort
        st.signature = page.signature
        st.columns = list(page.columns)
        st.rows = list(page.rows)
        st.base_offset = 0
        st.exhausted = page.query is None or len(page.rows) < page.page_size
        count = self._counts.get(st.signature)
        if count is not None:
            st.total_rows, st.total_exact = count
        elif page.query is not None:
            st.total_rows, st.total_exact = None, False
        self._recompute_visible()
        st.cursor = (0, 0)
        st.anchor = None
        st.top = 0
        st.left = 0
        self._clamp()
        self._update_exhausted()
        if self._cursor_to_end:
            self._cursor_to_end = False
            self._to_last_visible()
        if self._jump_pending and st.total_rows is not None:
            self._jump_pending = False
            self.last()

    def _update_exhausted(self) -> None:
        st = self.state
        if st.total_exact and st.total_rows is not None and st.base_offset + len(st.rows) >= st.total_rows:
            st.exhausted = True

    # --- position bookkeeping ---------------------------------------------------

    def _recompute_visible(self) -> None:
        st = self.state
        needle = st.search.casefold()
        if not needle:
            st.visible = list(range(len(st.rows)))
            return
        st.visible = [
            i
            for i, row in enumerate(st.rows)
            if any(needle in cell.display(self.null_text).casefold() for cell in row)
        ]

    def _mark(self) -> Tuple[Optional[Tuple[int, int]], Optional[Tuple[int, int]], Optional[int]]:
        """Absolute row numbers of cursor, anchor and top before a buffer change."""
        st = self.state

        def absolute(coord: Optional[Coord]) -> Optional[Tuple[int, int]]:
            if coord is None or coord[0] >= len(st.visible):
                return None
            return (st.base_offset + st.visible[coord[0]], coord[1])

        top = st.base_offset + st.visible[st.top] if st.top < len(st.visible) else None
        return absolute(st.cursor), absolute(st.anchor), top

    def _restore(self, marks: Tuple[Optional[Tuple[int, int]], Optional[Tuple[int, int]], Optional[int]]) -> None:
        st = self.state
        self._recompute_visible()
        positions = [st.base_offset + i for i in st.visible]

        def locate(absolute: int) -> int:
            return min(bisect_left(positions, absolute), max(len(positions) - 1, 0))

        cursor, anchor, top = marks
        st.cursor = (locate(cursor[0]), cursor[1]) if cursor is not None else (0, 0)
        st.anchor = (locate(anchor[0]), anchor[1]) if anchor is not None else None
        st.top = locate(top) if top is not None else 0
        self._clamp()
        self._follow()

    def _clamp(self) -> None:
        st = self.state
        rows, cols = len(st.visible), len(st.columns)
        if rows == 0 or cols == 0:
            st.cursor = None
            st.anchor = None
            st.top = 0
            st.left = 0
            return
        r, c = st.cursor if st.cursor is not None else (0, 0)
        st.cursor = (_clamp(r, 0, rows - 1), _clamp(c, 0, cols - 1))
        if st.anchor is not None:
            st.anchor = (_clamp(st.anchor[0], 0, rows - 1), _clamp(st.anchor[1], 0, cols - 1))
        st.top = _clamp(st.top, 0, rows - 1)
        st.left = _clamp(st.left, 0, cols - 1)

    def _follow(self) -> None:
        """Scroll the window so the cursor stays on screen."""
        st = self.state
        if st.cursor is None:
            return
        r, c = st.cursor
        if r < st.top:
            st.top = r
        elif r >= st.top + st.page_size:
            st.top = r - st.page_size + 1
        if c < st.left:
            st.left = c
        elif c >= st.left + self.column_capacity:
            st.left = c - self.column_capacity + 1

    def _to_last_visible(self) -> None:
        st = self.state
        if st.cursor is None:
            return
        st.cursor = (len(st.visible) - 1, st.cursor[1])
        self._follow()

    # --- navigation -------------------------------------------------------------

    def _move(self, drow: int, dcol: int, extend: bool) -> None:
        st = self.state
        if st.cursor is None:
            return
        if extend:
            if st.anchor is None:
                st.anchor = st.cursor
        else:
            st.anchor = None
        r, c = st.cursor
        last = len(st.visible) - 1
        target = r + drow
        if target > last:
            self._prefetch_forward()
        elif target < 0:
            self._prefetch_backward()
        st.cursor = (_clamp(target, 0, last), _clamp(c + dcol, 0, len(st.columns) - 1))
        self._follow()

    def move(self, drow: int, dcol: int) -> None:
        self._move(drow, dcol, extend=False)

    def extend(self, drow: int, dcol: int) -> None:
        self._move(drow, dcol, extend=True)

    def page_down(self) -> None:
        self._move(self.state.page_size, 0, extend=False)

    def page_up(self) -> None:
        self._move(-self.state.page_size, 0, extend=False)

    def first(self) -> None:
        st = self.state
        st.anchor = None
        if st.cursor is None:
            return
        if st.kind == "rows" and st.base_offset > 0:
            self._request_page(0, st.page_size)
        st.cursor = (0, st.cursor[1])
        self._follow()

    def last(self) -> None:
        st = self.state
        st.anchor = None
        if st.cursor is None:
            return
        self._to_last_visible()
        if st.kind != "rows" or st.exhausted:
            return
        end = st.base_offset + len(st.rows)
        if st.total_rows is not None:
            if st.total_rows > end:
                self._request_page(max(end, st.total_rows - st.page_size), st.page_size, to_end=True)
        elif self.end_policy != "disabled":
            # wait for the count, then jump
            self._jump_pending = True
            if self.orchestrator.awaiting(SLOT_COUNT) is None:
                self._counts.pop(st.signature, None)
                self._request_count(RecordsQuery(st.table, 0, st.page_size, st.where, st.sort))

    # --- filter / sort ----------------------------------------------------------

    def apply_filter(self, where: str) -> None:
        """Push a WHERE fragment to the engine; the page lands re-signed."""
        self._load(where.strip(), self.state.sort)

    def toggle_sort(self) -> None:
        st = self.state
        if st.kind != "rows" or st.cursor is None:
            return
        column = st.columns[st.cursor[1]]
        current = st.sort
        if current is None or current.column != column:
            new: Optional[SortSpec] = SortSpec(column)
        elif not current.descending:
            new = SortSpec(column, descending=True)
        else:
            new = None
        self._load(st.where, new)

    def apply_search(self, text: str) -> None:
        """Client-side substring filter over the buffered rows."""
        st = self.state
        marks = self._mark()
        st.search = text
        self._restore((marks[0], None, marks[2]))

    def clear_filters(self) -> None:
        st = self.state
        if st.search:
            self.apply_search("")
        if st.where or st.sort is not None:
            self._load("", None)

    def refresh(self) -> None:
        st = self.state
        if st.table is None or self.pool is None:
            return
        if st.kind == "columns":
            self.open_columns(self.pool, st.table)
        elif st.kind == "rows":
            self._counts.clear()
            self._load(st.where, st.sort)

    # --- reading ------------------------------------------------------------------

    @property
    def awaiting(self) -> Optional[Token]:
        return self._awaiting

    def selection(self) -> Optional[Selection]:
        st = self.state
        if st.cursor is None:
            return None
        r, c = st.cursor
        ar, ac = st.anchor if st.anchor is not None else st.cursor
        return Selection(min(r, ar), max(r, ar), min(c, ac), max(c, ac))

    def current_cell(self) -> Optional[Cell]:
        st = self.state
        if st.cursor is None:
            return None
        r, c = st.cursor
        return st.rows[st.visible[r]][c]

    def visible_rows(self) -> List[Row]:
        st = self.state
        return [st.rows[i] for i in st.visible]

    def selection_payload(self) -> str:
        """Selected cells as tab separated lines; NULL keeps its own text."""
        sel = self.selection()
        if sel is None:
            return ""
        st = self.state
        lines = []
        for r in range(sel.top, sel.bottom + 1):
            row = st.rows[st.visible[r]]
            lines.append(
                "\t".join(
                    row[c].display(self.null_text) if c < len(row) else ""
                    for c in range(sel.left, sel.right + 1)
                )
            )
        return "\n".join(lines)

    def snapshot(self) -> TableSnapshot:
        st = self.state
        end = min(len(st.visible), st.top + st.page_size)
        window = tuple(
            (i, st.base_offset + st.visible[i], st.rows[st.visible[i]]) for i in range(st.top, end)
        )
        return TableSnapshot(
            kind=st.kind,
            title=st.title,
            columns=tuple(st.columns),
            window=window,
            cursor=st.cursor,
            selection=self.selection(),
            left=st.left,
            base_offset=st.base_offset,
            buffered=len(st.rows),
            matching=len(st.visible),
            total_rows=st.total_rows,
            total_exact=st.total_exact,
            exhausted=st.exhausted,
            where=st.where,
            sort=st.sort,
            search=st.search,
            loading=st.loading,
            null_text=self.null_text,
        )
