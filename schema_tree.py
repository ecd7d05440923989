from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from database import Database, TableNode


@dataclass(frozen=True)
class TreeLine:
    depth: int  # 0 database, 1 table
    label: str
    database: str
    table: Optional[TableNode] = None
    expanded: bool = False
    loading: bool = False


class SchemaTree:
    """Databases with their lazily fetched tables, flattened for display.

    Tables of a database are fetched on first expansion.  Each database has
    its own table request, so expanding several at once loads them all.
    """

    def __init__(self) -> None:
        self.databases: List[Database] = []
        self.expanded: set = set()
        # databases whose table list is in flight
        self.loading: set = set()
        self.search = ""
        self.cursor = 0
        self.top = 0
        self.height = 20

    def clear(self) -> None:
        self.databases = []
        self.expanded = set()
        self.loading = set()
        self.search = ""
        self.cursor = 0
        self.top = 0

    def replace_databases(self, databases: List[Database]) -> None:
        """Swap in a fresh database list; expanded state survives by name."""
        selected = self.selected()
        # known tables stay on screen until a refetch replaces them
        previous = {db.name: db.tables for db in self.databases}
        self.databases = [
            Database(db.name, db.tables if db.tables is not None else previous.get(db.name)) for db in databases
        ]
        names = {db.name for db in self.databases}
        self.expanded &= names
        self.loading &= names
        # a single database needs no click to open
        if len(self.databases) == 1:
            self.expanded.add(self.databases[0].name)
        self._reselect(selected)

    def database(self, name: str) -> Optional[Database]:
        for db in self.databases:
            if db.name == name:
                return db
        return None

    def replace_tables(self, database: str, tables: List[TableNode]) -> None:
        db = self.database(database)
        if db is None:
            return
        selected = self.selected()
        db.tables = list(tables)
        self.loading.discard(database)
        self._reselect(selected)

    def fail_tables(self, database: str) -> None:
        self.loading.discard(database)
        self.expanded.discard(database)
        self._clamp()

    # --- flattened view -------------------------------------------------------

    def lines(self) -> List[TreeLine]:
        needle = self.search.lower()
        result: List[TreeLine] = []
        for db in self.databases:
            is_open = db.name in self.expanded
            result.append(
                TreeLine(0, db.name, db.name, expanded=is_open, loading=db.name in self.loading)
            )
            if not is_open or db.tables is None:
                continue
            for table in db.tables:
                if needle and needle not in f"{db.name}.{table.name}".lower():
                    continue
                result.append(TreeLine(1, table.name, db.name, table=table))
        return result

    def selected(self) -> Optional[TreeLine]:
        lines = self.lines()
        if not lines:
            return None
        return lines[min(self.cursor, len(lines) - 1)]

    def _reselect(self, previous: Optional[TreeLine]) -> None:
        if previous is not None:
            for i, line in enumerate(self.lines()):
                if line.database == previous.database and line.table == previous.table:
                    self.cursor = i
                    break
        self._clamp()

    def _clamp(self) -> None:
        count = len(self.lines())
        self.cursor = max(0, min(self.cursor, count - 1))
        if self.cursor < self.top:
            self.top = self.cursor
        elif self.cursor >= self.top + self.height:
            self.top = self.cursor - self.height + 1
        self.top = max(0, min(self.top, max(count - self.height, 0)))

    def set_viewport(self, height: int) -> None:
        self.height = max(1, height)
        self._clamp()

    # --- navigation ------------------------------------------------------------

    def move(self, delta: int) -> None:
        self.cursor += delta
        self._clamp()

    def first(self) -> None:
        self.cursor = 0
        self._clamp()

    def last(self) -> None:
        self.cursor = len(self.lines()) - 1
        self._clamp()

    def select_line(self, index: int) -> Optional[TreeLine]:
        lines = self.lines()
        if not 0 <= index < len(lines):
            return None
        self.cursor = index
        self._clamp()
        return lines[index]

    def expand(self) -> Optional[str]:
        """Open the database under the cursor.

        Returns the database name when its tables still have to be fetched.
        """
        line = self.selected()
        if line is None or line.depth != 0:
            return None
        self.expanded.add(line.database)
        db = self.database(line.database)
        if db is not None and db.tables is None:
            self.loading.add(line.database)
            return line.database
        return None

    def collapse(self) -> None:
        line = self.selected()
        if line is None:
            return
        self.expanded.discard(line.database)
        self.loading.discard(line.database)
        for i, candidate in enumerate(self.lines()):
            if candidate.depth == 0 and candidate.database == line.database:
                self.cursor = i
                break
        self._clamp()

    def refresh_targets(self) -> List[str]:
        """Open databases whose tables a refresh should re-fetch."""
        names = [db.name for db in self.databases if db.name in self.expanded]
        self.loading.update(names)
        return names

    def apply_search(self, text: str) -> None:
        selected = self.selected()
        self.search = text.strip()
        self._reselect(selected)
