from __future__ import annotations

import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type

import psycopg2
import psycopg2.extensions
import pymysql
from pymysql.constants import FIELD_TYPE

from cells import Row, normalize_rows, text_row

CONFIG_DIR = Path(os.getenv("DBNAV_CONFIG_DIR") or Path.home() / ".config" / "dbnav")
CONNECTIONS_FILE = CONFIG_DIR / "connections.json"

DB_TYPES = ("postgres", "mysql", "sqlite")
DEFAULT_PORTS = {"postgres": 5432, "mysql": 3306, "sqlite": 0}

# Header of the rows returned by fetch_columns.
COLUMN_INFO_HEADER = ["column", "type", "nullable", "key", "indexes"]

# The statement prompt is not paged; keep the result bounded.
STATEMENT_ROW_LIMIT = 1000


class DatabaseError(Exception):
    """Base for errors surfaced by any adapter."""

    def __init__(self, backend_message: str) -> None:
        super().__init__(backend_message)
        self.backend_message = backend_message


class ConnectivityError(DatabaseError):
    """The handle is unusable: network drop, auth failure, unreadable file."""


class QueryError(DatabaseError):
    """One statement failed but the handle is still usable."""


class ConfigError(Exception):
    """Malformed configuration, raised before the browser starts."""


@dataclass
class ConnectionConfig:
    name: str = "default"
    db_type: str = "postgres"  # postgres, mysql, sqlite
    host: str = "localhost"
    port: int = 5432
    dbname: str = "postgres"
    user: str = "postgres"
    password: str = ""
    label: str = ""
    # Для SQLite: dbname используется как путь к файлу

    @property
    def title(self) -> str:
        return self.label or self.name

    def describe(self) -> str:
        if self.db_type == "sqlite":
            return self.dbname
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


@dataclass(frozen=True)
class TableNode:
    name: str
    database: str
    kind: str = "table"  # table | view
    size: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.database, self.name)

    @property
    def is_view(self) -> bool:
        return self.kind == "view"


@dataclass
class Database:
    name: str
    # None until the tables have been fetched
    tables: Optional[List[TableNode]] = None


@dataclass(frozen=True)
class SortSpec:
    column: str
    descending: bool = False

    def label(self) -> str:
        return f"{self.column} {'DESC' if self.descending else 'ASC'}"


@dataclass(frozen=True)
class RecordsQuery:
    table: TableNode
    offset: int = 0
    page_size: int = 50
    where: str = ""
    sort: Optional[SortSpec] = None

    @property
    def signature(self) -> Tuple[Any, ...]:
        return ("rows", self.table.key, self.where, self.sort)


@dataclass
class ExecuteOutcome:
    affected: int
    columns: List[str] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)
    truncated: bool = False


class DatabaseAdapter(ABC):
    """A live handle to one backend plus the browsing operations over it.

    One adapter instance owns exactly one driver connection.  Statements are
    serialized with a lock because none of the drivers allow two cursors to run
    concurrently on one connection.  Driver exceptions never leave the adapter:
    they are translated into ConnectivityError or QueryError.
    """

    db_type = ""

    def __init__(self, cfg: ConnectionConfig) -> None:
        self.cfg = cfg
        self.conn: Any = None
        self.usable = False
        self._closed = False
        self._query_lock = threading.Lock()
        self._state_lock = threading.Lock()

    # --- driver specifics -------------------------------------------------

    @abstractmethod
    def _connect(self) -> Any:
        """Open the native driver connection."""

    @abstractmethod
    def translate_error(self, exc: Exception) -> Optional[DatabaseError]:
        """Map a driver exception to the shared taxonomy, None if foreign."""

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Заключить идентификатор в кавычки."""

    @abstractmethod
    def list_databases(self) -> List[Database]:
        pass

    @abstractmethod
    def list_tables(self, database: str) -> List[TableNode]:
        pass

    @abstractmethod
    def fetch_columns(self, table: TableNode) -> Tuple[List[Row], List[str]]:
        pass

    @abstractmethod
    def column_indexes(self, table: TableNode) -> Dict[str, List[str]]:
        """Index names covering each column of table."""

    @abstractmethod
    def estimate_rows(self, table: TableNode) -> Optional[int]:
        """Cheap row estimate from engine statistics, None when unavailable."""

    def column_hints(self, description: Sequence[Sequence[Any]], table: Optional[TableNode] = None) -> List[str]:
        """Declared-type hints used by cells.normalize, one per result column."""
        return []

    # --- lifecycle --------------------------------------------------------

    def open(self) -> "DatabaseAdapter":
        try:
            self.conn = self._connect()
        except Exception as exc:
            err = self.translate_error(exc)
            if err is None:
                raise
            # any failure while connecting leaves us without a handle
            raise ConnectivityError(err.backend_message) from exc
        self.usable = True
        return self

    def mark_unusable(self) -> None:
        self.usable = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self.usable = False
            conn, self.conn = self.conn, None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as exc:
            from utils import push_status

            push_status(f"Close error: {exc}")

    # --- statement plumbing -----------------------------------------------

    @contextmanager
    def _guard(self) -> Iterator[Any]:
        with self._query_lock:
            conn = self.conn
            if self._closed or not self.usable or conn is None:
                raise ConnectivityError("connection is closed")
            try:
                yield conn
            except DatabaseError:
                raise
            except Exception as exc:
                err = self.translate_error(exc)
                if err is None:
                    raise
                if isinstance(err, ConnectivityError):
                    self.usable = False
                raise err from exc

    def run(
        self,
        query: str,
        params: Optional[Sequence] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Tuple], List[Tuple], int]:
        """Execute one statement; return raw rows, cursor description and rowcount."""
        with self._guard() as conn:
            cur = conn.cursor()
            try:
                # params=None keeps '%' in user predicates away from the paramstyle
                if params is None:
                    cur.execute(query)
                else:
                    cur.execute(query, params)
                description = [tuple(d) for d in cur.description] if cur.description else []
                if not description:
                    rows: List[Tuple] = []
                elif limit is None:
                    rows = [tuple(r) for r in cur.fetchall()]
                else:
                    rows = [tuple(r) for r in cur.fetchmany(limit + 1)]
                rowcount = cur.rowcount
            finally:
                cur.close()
        return rows, description, rowcount

    def qualified_name(self, table: TableNode) -> str:
        if table.database:
            return f"{self.quote_identifier(table.database)}.{self.quote_identifier(table.name)}"
        return self.quote_identifier(table.name)

    def build_select(self, query: RecordsQuery) -> str:
        sql = f"SELECT * FROM {self.qualified_name(query.table)}"
        if query.where.strip():
            sql += f" WHERE {query.where}"
        if query.sort is not None:
            direction = "DESC" if query.sort.descending else "ASC"
            sql += f" ORDER BY {self.quote_identifier(query.sort.column)} {direction}"
        sql += f" LIMIT {int(query.page_size)} OFFSET {int(query.offset)}"
        return sql

    # --- the browsing contract ----------------------------------------------

    def execute(self, statement: str) -> ExecuteOutcome:
        rows, description, rowcount = self.run(statement, limit=STATEMENT_ROW_LIMIT)
        truncated = len(rows) > STATEMENT_ROW_LIMIT
        rows = rows[:STATEMENT_ROW_LIMIT]
        columns = [d[0] for d in description]
        affected = rowcount if rowcount is not None and rowcount >= 0 else len(rows)
        return ExecuteOutcome(
            affected=affected,
            columns=columns,
            rows=normalize_rows(rows, self.column_hints(description)),
            truncated=truncated,
        )

    def fetch_rows(self, query: RecordsQuery) -> Tuple[List[Row], List[str]]:
        rows, description, _ = self.run(self.build_select(query))
        columns = [d[0] for d in description]
        return normalize_rows(rows, self.column_hints(description, query.table)), columns

    def count_rows(self, table: TableNode, where: str = "") -> int:
        sql = f"SELECT COUNT(*) FROM {self.qualified_name(table)}"
        if where.strip():
            sql += f" WHERE {where}"
        rows, _, _ = self.run(sql)
        return int(rows[0][0]) if rows else 0


def _driver_message(exc: Exception) -> str:
    return str(exc).strip() or exc.__class__.__name__


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _index_map(pairs: Sequence[Sequence[Any]]) -> Dict[str, List[str]]:
    """(index, column) pairs -> column -> index names."""
    result: Dict[str, List[str]] = {}
    for index, column in pairs:
        names = result.setdefault(_as_text(column), [])
        if _as_text(index) not in names:
            names.append(_as_text(index))
    return result


class PostgreSQLAdapter(DatabaseAdapter):
    db_type = "postgres"

    def _connect(self) -> Any:
        kwargs: Dict[str, Any] = {"dbname": self.cfg.dbname, "connect_timeout": 10}
        if self.cfg.host:
            kwargs["host"] = self.cfg.host
        if self.cfg.port:
            kwargs["port"] = self.cfg.port
        if self.cfg.user:
            kwargs["user"] = self.cfg.user
        if self.cfg.password:
            kwargs["password"] = self.cfg.password
        conn = psycopg2.connect(**kwargs)
        conn.autocommit = True
        return conn

    def translate_error(self, exc: Exception) -> Optional[DatabaseError]:
        message = _driver_message(exc)
        if isinstance(exc, psycopg2.extensions.QueryCanceledError):
            return QueryError(message)
        if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return ConnectivityError(message)
        if isinstance(exc, psycopg2.Error):
            return QueryError(message)
        return None

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def list_databases(self) -> List[Database]:
        rows, _, _ = self.run(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE schema_name <> 'information_schema'
              AND schema_name !~ '^pg_'
            ORDER BY schema_name
            """
        )
        return [Database(name=row[0]) for row in rows]

    def list_tables(self, database: str) -> List[TableNode]:
        rows, _, _ = self.run(
            """
            SELECT c.relname AS table_name,
                   c.relkind,
                   pg_total_relation_size(c.oid) AS total_size
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE c.relkind IN ('r', 'p', 'v', 'm', 'f')
              AND n.nspname = %s
            ORDER BY c.relname
            """,
            (database,),
        )
        return [
            TableNode(
                name=name,
                database=database,
                kind="view" if relkind in ("v", "m") else "table",
                size=int(size or 0),
            )
            for (name, relkind, size) in rows
        ]

    def fetch_columns(self, table: TableNode) -> Tuple[List[Row], List[str]]:
        key_rows, _, _ = self.run(
            """
            SELECT kcu.column_name, tc.constraint_type
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = %s AND tc.table_name = %s
            """,
            (table.database, table.name),
        )
        roles: Dict[str, List[str]] = {}
        for column, constraint in key_rows:
            role = {"PRIMARY KEY": "PRI", "UNIQUE": "UNI", "FOREIGN KEY": "FK"}.get(constraint)
            if role and role not in roles.setdefault(column, []):
                roles[column].append(role)
        rows, _, _ = self.run(
            """
            SELECT column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (table.database, table.name),
        )
        indexes = self.column_indexes(table)
        result = [
            text_row(name, dtype, nullable, ",".join(roles.get(name, [])), ", ".join(indexes.get(name, [])))
            for (name, dtype, nullable) in rows
        ]
        return result, list(COLUMN_INFO_HEADER)

    def column_indexes(self, table: TableNode) -> Dict[str, List[str]]:
        rows, _, _ = self.run(
            """
            SELECT i.relname, a.attname
            FROM pg_index x
            JOIN pg_class t ON t.oid = x.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_class i ON i.oid = x.indexrelid
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(x.indkey)
            WHERE n.nspname = %s AND t.relname = %s
            ORDER BY i.relname
            """,
            (table.database, table.name),
        )
        return _index_map(rows)

    def estimate_rows(self, table: TableNode) -> Optional[int]:
        rows, _, _ = self.run(
            """
            SELECT c.reltuples::bigint
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = %s AND c.relname = %s
            """,
            (table.database, table.name),
        )
        if not rows or rows[0][0] is None or rows[0][0] < 0:
            # never analyzed
            return None
        return int(rows[0][0])


# PyMySQL error codes that mean the connection itself is gone.
MYSQL_CONNECTION_LOST = frozenset({0, 2003, 2006, 2013, 2055})


class MySQLAdapter(DatabaseAdapter):
    db_type = "mysql"

    def _connect(self) -> Any:
        return pymysql.connect(
            host=self.cfg.host,
            port=self.cfg.port,
            user=self.cfg.user,
            password=self.cfg.password,
            database=self.cfg.dbname or None,
            autocommit=True,
            connect_timeout=10,
        )

    def translate_error(self, exc: Exception) -> Optional[DatabaseError]:
        if not isinstance(exc, pymysql.err.MySQLError):
            return None
        if len(exc.args) > 1:
            message = str(exc.args[1])
        else:
            message = _driver_message(exc)
        if isinstance(exc, pymysql.err.InterfaceError):
            return ConnectivityError(message)
        if isinstance(exc, pymysql.err.OperationalError) and exc.args and exc.args[0] in MYSQL_CONNECTION_LOST:
            return ConnectivityError(message)
        return QueryError(message)

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace("`", "``")
        return f"`{escaped}`"

    def column_hints(self, description: Sequence[Sequence[Any]], table: Optional[TableNode] = None) -> List[str]:
        hints = {
            FIELD_TYPE.BIT: "bit",
            FIELD_TYPE.TIME: "time",
            FIELD_TYPE.JSON: "json",
        }
        return [hints.get(d[1], "") for d in description]

    def list_databases(self) -> List[Database]:
        rows, _, _ = self.run(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE schema_name NOT IN ('information_schema', 'mysql', 'performance_schema', 'sys')
            ORDER BY schema_name
            """
        )
        return [Database(name=row[0]) for row in rows]

    def list_tables(self, database: str) -> List[TableNode]:
        rows, _, _ = self.run(
            """
            SELECT table_name, table_type,
                   COALESCE(data_length + index_length, 0) AS total_size
            FROM information_schema.tables
            WHERE table_schema = %s
            ORDER BY table_name
            """,
            (database,),
        )
        return [
            TableNode(
                name=name,
                database=database,
                kind="view" if "VIEW" in str(table_type).upper() else "table",
                size=int(size or 0),
            )
            for (name, table_type, size) in rows
        ]

    def fetch_columns(self, table: TableNode) -> Tuple[List[Row], List[str]]:
        rows, _, _ = self.run(
            """
            SELECT column_name, column_type, is_nullable, column_key
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (table.database, table.name),
        )
        indexes = self.column_indexes(table)
        result = [
            text_row(
                _as_text(name),
                _as_text(ctype),
                _as_text(nullable),
                _as_text(key),
                ", ".join(indexes.get(_as_text(name), [])),
            )
            for (name, ctype, nullable, key) in rows
        ]
        return result, list(COLUMN_INFO_HEADER)

    def column_indexes(self, table: TableNode) -> Dict[str, List[str]]:
        rows, _, _ = self.run(
            """
            SELECT index_name, column_name
            FROM information_schema.statistics
            WHERE table_schema = %s AND table_name = %s
            ORDER BY index_name, seq_in_index
            """,
            (table.database, table.name),
        )
        return _index_map(rows)

    def estimate_rows(self, table: TableNode) -> Optional[int]:
        rows, _, _ = self.run(
            """
            SELECT table_rows
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s
            """,
            (table.database, table.name),
        )
        if not rows or rows[0][0] is None:
            return None
        return int(rows[0][0])


class SQLiteAdapter(DatabaseAdapter):
    db_type = "sqlite"

    def __init__(self, cfg: ConnectionConfig) -> None:
        super().__init__(cfg)
        self._declared: Dict[Tuple[str, str], Dict[str, str]] = {}

    def _connect(self) -> Any:
        path = self.cfg.dbname
        if path == ":memory:":
            target, uri = path, False
        else:
            # mode=rw: a browser must not create a missing database file
            target, uri = Path(path).expanduser().resolve().as_uri() + "?mode=rw", True
        return sqlite3.connect(target, uri=uri, check_same_thread=False, isolation_level=None)

    def translate_error(self, exc: Exception) -> Optional[DatabaseError]:
        message = _driver_message(exc)
        lowered = message.lower()
        if isinstance(exc, sqlite3.ProgrammingError) and "closed" in lowered:
            return ConnectivityError(message)
        if isinstance(exc, sqlite3.OperationalError) and (
            "unable to open" in lowered or "disk i/o error" in lowered
        ):
            return ConnectivityError(message)
        if isinstance(exc, (sqlite3.Error, sqlite3.Warning)):
            return QueryError(message)
        return None

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def _table_info(self, table: TableNode) -> List[Tuple]:
        rows, _, _ = self.run(
            f"PRAGMA {self.quote_identifier(table.database)}.table_info({self.quote_identifier(table.name)})"
        )
        self._declared[table.key] = {row[1]: str(row[2] or "").lower() for row in rows}
        return rows

    def column_hints(self, description: Sequence[Sequence[Any]], table: Optional[TableNode] = None) -> List[str]:
        if table is None:
            return []
        declared = self._declared.get(table.key)
        if declared is None:
            self._table_info(table)
            declared = self._declared.get(table.key, {})
        return [declared.get(d[0], "") for d in description]

    def list_databases(self) -> List[Database]:
        rows, _, _ = self.run("PRAGMA database_list")
        return [Database(name=row[1]) for row in rows if row[1] != "temp"]

    def list_tables(self, database: str) -> List[TableNode]:
        # SQLite не поддерживает размер таблиц напрямую, возвращаем 0
        rows, _, _ = self.run(
            f"""
            SELECT name, type
            FROM {self.quote_identifier(database)}.sqlite_master
            WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [TableNode(name=name, database=database, kind=kind, size=0) for (name, kind) in rows]

    def fetch_columns(self, table: TableNode) -> Tuple[List[Row], List[str]]:
        info = self._table_info(table)
        fk_rows, _, _ = self.run(
            f"PRAGMA {self.quote_identifier(table.database)}.foreign_key_list({self.quote_identifier(table.name)})"
        )
        foreign = {row[3] for row in fk_rows}
        indexes = self.column_indexes(table)
        result = []
        for (_cid, name, dtype, notnull, _default, pk) in info:
            roles = []
            if pk:
                roles.append("PRI")
            if name in foreign:
                roles.append("FK")
            result.append(
                text_row(
                    name,
                    dtype or "",
                    "NO" if notnull or pk else "YES",
                    ",".join(roles),
                    ", ".join(indexes.get(name, [])),
                )
            )
        return result, list(COLUMN_INFO_HEADER)

    def column_indexes(self, table: TableNode) -> Dict[str, List[str]]:
        schema = self.quote_identifier(table.database)
        index_rows, _, _ = self.run(f"PRAGMA {schema}.index_list({self.quote_identifier(table.name)})")
        pairs = []
        for row in sorted(index_rows, key=lambda r: r[1]):
            columns, _, _ = self.run(f"PRAGMA {schema}.index_info({self.quote_identifier(row[1])})")
            pairs.extend((row[1], col[2]) for col in columns if col[2] is not None)
        return _index_map(pairs)

    def execute(self, statement: str) -> ExecuteOutcome:
        try:
            return super().execute(statement)
        finally:
            # an ALTER TABLE may have changed declared types
            self._declared.clear()

    def estimate_rows(self, table: TableNode) -> Optional[int]:
        return None


ADAPTERS: Dict[str, Type[DatabaseAdapter]] = {
    "postgres": PostgreSQLAdapter,
    "mysql": MySQLAdapter,
    "sqlite": SQLiteAdapter,
}


def get_adapter(cfg: ConnectionConfig) -> DatabaseAdapter:
    """Получить адаптер для типа БД."""
    try:
        adapter_cls = ADAPTERS[cfg.db_type]
    except KeyError:
        raise ConfigError(f"Unsupported database type: {cfg.db_type}") from None
    return adapter_cls(cfg)


def ensure_config_dir() -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def _config_from_dict(name: str, data: Any) -> ConnectionConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"Connection {name!r}: expected an object")
    db_type = data.get("db_type", "postgres")
    if db_type not in DB_TYPES:
        raise ConfigError(f"Connection {name!r}: unsupported db_type {db_type!r}")
    try:
        port = int(data.get("port", DEFAULT_PORTS[db_type]))
    except (TypeError, ValueError):
        raise ConfigError(f"Connection {name!r}: port must be an integer") from None
    if db_type == "sqlite" and not data.get("dbname"):
        raise ConfigError(f"Connection {name!r}: sqlite needs a file path in dbname")
    return ConnectionConfig(
        name=name,
        db_type=db_type,
        host=str(data.get("host", "localhost")),
        port=port,
        dbname=str(data.get("dbname", "postgres")),
        user=str(data.get("user", "postgres")),
        password=str(data.get("password", "")),
        label=str(data.get("label", "")),
    )


def load_saved_connections(path: Optional[Path] = None) -> Dict[str, ConnectionConfig]:
    path = path or CONNECTIONS_FILE
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected an object of connections")
    return {name: _config_from_dict(name, cfg) for name, cfg in data.items()}


def save_connection_config(cfg: ConnectionConfig, path: Optional[Path] = None) -> None:
    path = path or CONNECTIONS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    all_cfgs = load_saved_connections(path)
    all_cfgs[cfg.name] = cfg
    serializable = {
        name: {
            "db_type": c.db_type,
            "host": c.host,
            "port": c.port,
            "dbname": c.dbname,
            "user": c.user,
            "password": c.password,
            "label": c.label,
        }
        for name, c in all_cfgs.items()
    }
    path.write_text(json.dumps(serializable, indent=2), encoding="utf-8")


def configure_connection_from_env() -> Optional[ConnectionConfig]:
    dsn_url = os.getenv("DATABASE_URL")
    if not dsn_url:
        return None

    import urllib.parse as up

    parsed = up.urlparse(dsn_url)
    scheme = parsed.scheme.lower()
    if scheme in ("postgresql", "postgres"):
        db_type = "postgres"
    elif scheme in ("mysql", "mariadb"):
        db_type = "mysql"
    elif scheme == "sqlite":
        db_type = "sqlite"
    else:
        return None

    if db_type == "sqlite":
        # sqlite:///relative.db and sqlite:////abs/path.db
        return ConnectionConfig(
            db_type=db_type,
            host="",
            port=0,
            dbname=parsed.path[1:] if parsed.path.startswith("/") else parsed.path,
            user="",
            password="",
        )

    try:
        port = parsed.port or DEFAULT_PORTS[db_type]
    except ValueError:
        return None
    return ConnectionConfig(
        db_type=db_type,
        host=parsed.hostname or "localhost",
        port=int(port),
        dbname=parsed.path.lstrip("/") or ("postgres" if db_type == "postgres" else ""),
        user=up.unquote(parsed.username or ("postgres" if db_type == "postgres" else "root")),
        password=up.unquote(parsed.password or ""),
    )


def ask_connection_config() -> ConnectionConfig:
    from utils import print_header, input_with_default, IntValidator
    from prompt_toolkit.completion import WordCompleter

    print_header("Add a database connection")

    cfg_env = configure_connection_from_env()
    if cfg_env:
        print("DATABASE_URL is set, its values are used as defaults.")

    base = cfg_env or ConnectionConfig()

    name = input_with_default("Connection name", base.name)
    label = input_with_default("Label (optional)", base.label)

    db_type_completer = WordCompleter(list(DB_TYPES), ignore_case=True)
    db_type = input_with_default("Database type (postgres/mysql/sqlite)", base.db_type, completer=db_type_completer).lower()
    if db_type not in DB_TYPES:
        db_type = "postgres"

    if db_type == "sqlite":
        dbname = input_with_default("Database file path", base.dbname if base.db_type == "sqlite" else "")
        return ConnectionConfig(
            name=name,
            db_type=db_type,
            host="",
            port=0,
            dbname=dbname,
            user="",
            password="",
            label=label,
        )

    default_port = base.port if base.db_type == db_type else DEFAULT_PORTS[db_type]
    host = input_with_default("Host", base.host)
    port_str = input_with_default("Port", str(default_port), validator=IntValidator())
    dbname = input_with_default("Database name", base.dbname)
    user = input_with_default("User", base.user)
    password = input_with_default("Password", base.password or "", is_password=True)

    return ConnectionConfig(
        name=name,
        db_type=db_type,
        host=host,
        port=int(port_str),
        dbname=dbname,
        user=user,
        password=password,
        label=label,
    )


def connect(cfg: ConnectionConfig) -> DatabaseAdapter:
    from utils import push_status

    adapter = get_adapter(cfg)
    push_status(f"Connecting to {cfg.title} ({cfg.describe()})...")
    adapter.open()
    push_status(f"Connected to {cfg.title}.")
    return adapter
