"""DuckDB database introspector."""

import re
from typing import List, Optional, Tuple

from .base import DialectIntrospector
from .dialects import Dialect
from .models import (
    RawCheckFact,
    RawColumnFact,
    RawForeignKeyFact,
    RawIndexFact,
    RawTableFact,
    RawUniqueFact,
)
from .type_mappers import parse_type_modifiers

_FK_TEXT_RE = re.compile(
    r"FOREIGN\s+KEY\s*\((?P<source>[^)]*)\)\s*REFERENCES\s+(?P<target>[^\s(]+)\s*(?:\((?P<target_cols>[^)]*)\))?",
    re.IGNORECASE,
)
_INDEX_COLUMNS_RE = re.compile(r"\bON\s+[^\s(]+\s*\((?P<cols>.*)\)", re.IGNORECASE | re.DOTALL)
_ENUM_RE = re.compile(r"^ENUM\s*\((?P<values>.*)\)$", re.IGNORECASE | re.DOTALL)


def _split_identifiers(text: Optional[str]) -> List[str]:
    """Split ``a, "B c"`` into bare identifiers, dropping quotes."""
    if not text:
        return []
    names = []
    for part in text.split(","):
        part = part.strip()
        if len(part) > 1 and part[0] == '"' and part[-1] == '"':
            part = part[1:-1].replace('""', '"')
        if part:
            names.append(part)
    return names


def _split_qualified(name: str) -> Tuple[Optional[str], str]:
    """Split ``schema.table`` (either part possibly quoted)."""
    parts = re.findall(r'"(?:[^"]|"")*"|[^.]+', name)
    parts = [p[1:-1].replace('""', '"') if p.startswith('"') else p for p in parts]
    if len(parts) >= 2:
        return parts[-2], parts[-1]
    return None, parts[0] if parts else name


def _parse_enum_values(native_type: str) -> List[str]:
    match = _ENUM_RE.match(native_type.strip())
    if not match:
        return []
    return [v.replace("''", "'") for v in re.findall(r"'((?:[^']|'')*)'", match.group("values"))]


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    # older releases hand back "[a, b]" strings
    return _split_identifiers(str(value).strip("[]"))


class DuckDBIntrospector(DialectIntrospector):
    """Client for introspecting DuckDB database schema.

    DuckDB exposes columns through information_schema and everything else
    through the ``duckdb_constraints()`` and ``duckdb_indexes()`` table
    functions. Foreign key targets are only available as constraint text on
    older releases, so they are parsed from it.
    """

    dialect = Dialect.DUCKDB

    def discover_tables(self, include_views: bool = True) -> List[RawTableFact]:
        """Get all tables (and optionally views) in the namespace."""
        table_types = ["BASE TABLE", "VIEW"] if include_views else ["BASE TABLE"]
        rows = self.query(
            f"""
            SELECT table_name, table_type
            FROM information_schema.tables
            WHERE table_catalog = current_database()
              AND table_schema = ?
              AND table_type IN ({self.dialect.placeholders(len(table_types))})
            ORDER BY table_name
            """,
            self.namespace, *table_types,
        )
        return [
            RawTableFact(name=row["table_name"], namespace=self.namespace, is_view=row["table_type"] == "VIEW")
            for row in rows
        ]

    def _constraints(self, table: str, constraint_type: str) -> List[dict]:
        return self.query(
            """
            SELECT constraint_index, constraint_text, constraint_column_names
            FROM duckdb_constraints()
            WHERE database_name = current_database()
              AND schema_name = ?
              AND table_name = ?
              AND constraint_type = ?
            ORDER BY constraint_index
            """,
            self.namespace, table, constraint_type,
        )

    def get_primary_keys(self, table: str) -> List[str]:
        """Get primary key columns for a table, in key order."""
        rows = self._constraints(table, "PRIMARY KEY")
        if not rows:
            return []
        return _as_list(rows[0]["constraint_column_names"])

    def get_columns(self, table: str) -> List[RawColumnFact]:
        rows = self.query(
            """
            SELECT column_name, data_type, is_nullable, column_default, ordinal_position
            FROM information_schema.columns
            WHERE table_catalog = current_database()
              AND table_schema = ?
              AND table_name = ?
            ORDER BY ordinal_position
            """,
            self.namespace, table,
        )
        if not rows:
            raise LookupError(f"information_schema.columns returned no columns for {table}")

        pks = self.get_primary_keys(table)

        columns = []
        for row in rows:
            native_type = row["data_type"] or ""
            default = row["column_default"]
            max_length, precision, scale = parse_type_modifiers(native_type)
            enum_values = _parse_enum_values(native_type)
            if enum_values:
                max_length, precision, scale = None, None, None
            columns.append(RawColumnFact(
                name=row["column_name"],
                native_type=native_type,
                nullable=row["is_nullable"] == "YES",
                default=None if default is None else str(default),
                primary_key_position=pks.index(row["column_name"]) + 1 if row["column_name"] in pks else 0,
                auto_increment=default is not None and str(default).lower().startswith("nextval("),
                max_length=max_length,
                precision=precision,
                scale=scale,
                enum_values=enum_values,
                ordinal=int(row["ordinal_position"]),
            ))
        return columns

    def get_indexes(self, table: str) -> List[RawIndexFact]:
        """Get explicitly created indexes.

        Constraint-backed indexes are not listed by ``duckdb_indexes()``;
        primary keys and unique constraints are read as constraints instead.
        """
        rows = self.query(
            """
            SELECT index_name, is_unique, is_primary, sql
            FROM duckdb_indexes()
            WHERE database_name = current_database()
              AND schema_name = ?
              AND table_name = ?
            ORDER BY index_name
            """,
            self.namespace, table,
        )
        indexes = []
        for row in rows:
            match = _INDEX_COLUMNS_RE.search(row["sql"] or "")
            columns = _split_identifiers(match.group("cols")) if match else []
            if not columns:
                continue
            indexes.append(RawIndexFact(
                name=row["index_name"],
                columns=columns,
                unique=bool(row["is_unique"]),
                primary=bool(row["is_primary"]),
            ))
        return indexes

    def get_foreign_keys(self, table: str) -> List[RawForeignKeyFact]:
        foreign_keys = []
        seen = set()
        for row in self._constraints(table, "FOREIGN KEY"):
            text = row["constraint_text"] or ""
            if text in seen:
                continue
            seen.add(text)
            match = _FK_TEXT_RE.search(text)
            if not match:
                raise ValueError(f"Unrecognised foreign key definition: {text}")
            target_namespace, target_table = _split_qualified(match.group("target"))
            columns = _as_list(row["constraint_column_names"]) or _split_identifiers(match.group("source"))
            foreign_keys.append(RawForeignKeyFact(
                name=None,
                columns=columns,
                target_table=target_table,
                target_columns=_split_identifiers(match.group("target_cols")),
                target_namespace=target_namespace,
            ))
        return foreign_keys

    def get_unique_constraints(self, table: str) -> List[RawUniqueFact]:
        uniques = []
        for row in self._constraints(table, "UNIQUE"):
            columns = _as_list(row["constraint_column_names"])
            if columns:
                uniques.append(RawUniqueFact(name=None, columns=columns))
        return uniques

    def get_check_constraints(self, table: str) -> List[RawCheckFact]:
        checks = []
        for row in self._constraints(table, "CHECK"):
            text = (row["constraint_text"] or "").strip()
            if text.upper().startswith("CHECK"):
                text = text[5:].strip()
                if text.startswith("(") and text.endswith(")"):
                    text = text[1:-1].strip()
            checks.append(RawCheckFact(name=None, expression=text))
        return checks

