"""Tests for query executors and dialect helpers."""

import pytest

from schemaloom.database.dialects import Dialect
from schemaloom.database.executor import (
    DuckDBExecutor,
    PostgresExecutor,
    SQLiteExecutor,
    create_executor,
)
from schemaloom.errors import ConnectionError, QueryError


class TestDialect:
    """Test dialect parsing and quoting."""

    @pytest.mark.parametrize("value,expected", [
        ("sqlite", Dialect.SQLITE),
        ("SQLite3", Dialect.SQLITE),
        ("postgresql", Dialect.POSTGRES),
        ("pg", Dialect.POSTGRES),
        (Dialect.DUCKDB, Dialect.DUCKDB),
    ])
    def test_parse(self, value, expected):
        assert Dialect.parse(value) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Dialect.parse("oracle")

    def test_quote_identifier_escapes_quotes(self):
        assert Dialect.SQLITE.quote_identifier('we"ird') == '"we""ird"'
        assert Dialect.POSTGRES.quote_qualified("users", "app") == '"app"."users"'

    def test_placeholders(self):
        assert Dialect.SQLITE.placeholders(3) == "?, ?, ?"
        assert Dialect.POSTGRES.placeholders(2) == "%s, %s"
        assert Dialect.POSTGRES.default_namespace == "public"
        assert Dialect.DUCKDB.default_namespace == "main"


class TestSQLiteExecutor:
    """Test the sqlite3 adapter."""

    def test_rows_as_dicts(self, users_posts_executor):
        users_posts_executor.execute("INSERT INTO users (id, email) VALUES (?, ?)", (1, "a@example.com"))
        rows = users_posts_executor.execute("SELECT id, email FROM users WHERE id = ?", (1,))
        assert rows == [{"id": 1, "email": "a@example.com"}]

    def test_statement_error(self, users_posts_executor):
        with pytest.raises(QueryError) as exc_info:
            users_posts_executor.execute("SELECT * FROM nowhere")
        assert exc_info.value.sql == "SELECT * FROM nowhere"

    def test_closed_connection(self):
        executor = SQLiteExecutor()
        executor.execute("SELECT 1")
        executor.connect().close()
        with pytest.raises(ConnectionError):
            executor.execute("SELECT 1")

    def test_context_manager_closes(self):
        with SQLiteExecutor() as executor:
            executor.execute("CREATE TABLE t (id INTEGER)")
        assert executor._connection is None


class TestCreateExecutor:
    """Test executor construction from settings."""

    def test_sqlite(self):
        executor = create_executor("sqlite", ":memory:")
        assert isinstance(executor, SQLiteExecutor)

    def test_duckdb_files_default_to_read_only(self, tmp_path):
        executor = create_executor("duckdb", str(tmp_path / "data.duckdb"))
        assert isinstance(executor, DuckDBExecutor)
        assert executor.read_only is True
        assert create_executor("duckdb", ":memory:").read_only is False

    def test_postgres_is_lazy(self):
        executor = create_executor("postgresql", "postgresql://localhost/app")
        assert isinstance(executor, PostgresExecutor)
        assert executor._connection is None
