"""Query execution adapters.

The core only needs something that runs a parameterized statement and returns
rows as dictionaries. These thin adapters wrap the DB-API drivers for each
supported dialect and translate driver failures into schemaloom errors.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ConnectionError, QueryError
from .dialects import Dialect

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class QueryExecutor(ABC):
    """Runs parameterized statements for a single dialect.

    Values are always passed as bound parameters; implementations never
    format them into the statement text.
    """

    dialect: Dialect

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Execute a statement and return its rows.

        Args:
            sql: Statement text using the dialect's placeholder style
            params: Bound values

        Returns:
            List of rows, each a column-name to value dictionary
        """
        pass

    def close(self):
        """Release the underlying connection."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _rows_from_cursor(description, records) -> List[Row]:
    if not description:
        return []
    names = [d[0] for d in description]
    return [dict(zip(names, record)) for record in records]


class SQLiteExecutor(QueryExecutor):
    """Executor backed by the standard library sqlite3 driver."""

    dialect = Dialect.SQLITE

    def __init__(self, database: str = ":memory:", connection=None):
        """Initialize the executor.

        Args:
            database: Path to the SQLite file, or :memory:
            connection: Existing sqlite3 connection to reuse instead of opening one
        """
        self.database = database
        self._connection = connection
        self._lock = threading.RLock()

    def connect(self):
        if self._connection is not None:
            return self._connection

        import sqlite3

        try:
            # Discovery runs on a worker thread; access is serialized by _lock.
            self._connection = sqlite3.connect(self.database, check_same_thread=False)
        except sqlite3.Error as e:
            raise ConnectionError(
                f"Cannot open SQLite database {self.database}: {e}",
                details={"database": self.database},
            ) from e
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        import sqlite3

        with self._lock:
            conn = self.connect()
            logger.debug("sqlite: %s %r", sql, params)
            try:
                cursor = conn.execute(sql, tuple(params))
                try:
                    return _rows_from_cursor(cursor.description, cursor.fetchall())
                finally:
                    cursor.close()
            except sqlite3.ProgrammingError as e:
                if "closed" in str(e).lower():
                    raise ConnectionError(f"SQLite connection is closed: {e}") from e
                raise QueryError(str(e), sql=sql) from e
            except sqlite3.OperationalError as e:
                message = str(e).lower()
                if "unable to open" in message or "disk i/o" in message:
                    raise ConnectionError(f"SQLite database unavailable: {e}") from e
                raise QueryError(str(e), sql=sql) from e
            except sqlite3.Error as e:
                raise QueryError(str(e), sql=sql) from e

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class DuckDBExecutor(QueryExecutor):
    """Executor backed by the duckdb Python package."""

    dialect = Dialect.DUCKDB

    def __init__(self, database: str = ":memory:", read_only: bool = False, connection=None):
        """Initialize the executor.

        Args:
            database: Path to a .duckdb file (can be :memory: for in-memory)
            read_only: Open the file in read-only mode
            connection: Existing duckdb connection to reuse
        """
        self.database = database
        self.read_only = read_only
        self._connection = connection
        self._lock = threading.RLock()

    def connect(self):
        if self._connection is not None:
            return self._connection

        try:
            import duckdb
        except ImportError:
            raise ImportError(
                "duckdb is required. "
                "Install it with: pip install duckdb"
            )

        path = self.database
        if path.startswith("duckdb:///"):
            path = path[10:]
        elif path.startswith("duckdb://"):
            path = path[9:]

        try:
            if path == ":memory:":
                self._connection = duckdb.connect(":memory:")
            else:
                self._connection = duckdb.connect(path, read_only=self.read_only)
        except duckdb.Error as e:
            raise ConnectionError(
                f"Cannot open DuckDB database {self.database}: {e}",
                details={"database": self.database},
            ) from e
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        with self._lock:
            conn = self.connect()
            import duckdb

            logger.debug("duckdb: %s %r", sql, params)
            try:
                result = conn.execute(sql, list(params))
                return _rows_from_cursor(result.description, result.fetchall())
            except (duckdb.ConnectionException, duckdb.IOException) as e:
                raise ConnectionError(f"DuckDB connection failed: {e}") from e
            except duckdb.Error as e:
                raise QueryError(str(e), sql=sql) from e

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class PostgresExecutor(QueryExecutor):
    """Executor backed by psycopg2."""

    dialect = Dialect.POSTGRES

    def __init__(self, dsn: str, connection=None):
        """Initialize the executor.

        Args:
            dsn: libpq connection string or postgresql:// URL
            connection: Existing psycopg2 connection to reuse
        """
        self.dsn = dsn
        self._connection = connection
        self._lock = threading.RLock()

    def connect(self):
        if self._connection is not None:
            return self._connection

        try:
            import psycopg2
        except ImportError:
            raise ImportError(
                "psycopg2 is required for PostgreSQL connections. "
                "Install it with: pip install psycopg2-binary"
            )

        try:
            self._connection = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            raise ConnectionError(f"Cannot connect to PostgreSQL: {e}") from e
        # Catalog reads only; autocommit keeps one failed statement from
        # aborting the rest of the pass.
        self._connection.autocommit = True
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        with self._lock:
            conn = self.connect()
            import psycopg2

            logger.debug("postgres: %s %r", sql, params)
            try:
                with conn.cursor() as cursor:
                    cursor.execute(sql, tuple(params))
                    records = cursor.fetchall() if cursor.description else []
                    return _rows_from_cursor(cursor.description, records)
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                raise ConnectionError(f"PostgreSQL connection failed: {e}") from e
            except psycopg2.Error as e:
                raise QueryError(str(e), sql=sql) from e

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def create_executor(dialect, database: str, read_only: Optional[bool] = None) -> QueryExecutor:
    """Build an executor for a configured dialect and database.

    Args:
        dialect: Dialect or dialect name
        database: File path for SQLite/DuckDB, DSN for PostgreSQL
        read_only: DuckDB only; open the file read-only (default True for files)

    Returns:
        A QueryExecutor for the dialect
    """
    dialect = Dialect.parse(dialect)
    if dialect is Dialect.SQLITE:
        return SQLiteExecutor(database)
    if dialect is Dialect.DUCKDB:
        if read_only is None:
            read_only = database != ":memory:"
        return DuckDBExecutor(database, read_only=read_only)
    return PostgresExecutor(database)
