"""SQLite database introspector."""

import re
from collections import OrderedDict
from typing import Dict, List, Optional

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

_CHECK_RE = re.compile(
    r'(?:\bCONSTRAINT\s+("[^"]+"|`[^`]+`|\[[^\]]+\]|\w+)\s+)?\bCHECK\s*\(',
    re.IGNORECASE,
)
_WITHOUT_ROWID_RE = re.compile(r"\)\s*WITHOUT\s+ROWID\b", re.IGNORECASE)


def _unquote(name: Optional[str]) -> Optional[str]:
    if name and name[0] in '"`[' and len(name) > 1:
        return name[1:-1]
    return name


def extract_check_constraints(sql: Optional[str]) -> List[RawCheckFact]:
    """Pull ``CHECK (...)`` expressions out of a CREATE TABLE statement.

    Parentheses are balanced and string literals are skipped, so nested
    calls such as ``CHECK (length(trim(name)) > 0)`` stay intact.
    """
    checks: List[RawCheckFact] = []
    if not sql:
        return checks

    pos = 0
    while True:
        match = _CHECK_RE.search(sql, pos)
        if not match:
            break
        start = match.end()
        depth = 1
        quote = None
        i = start
        while i < len(sql) and depth:
            ch = sql[i]
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ("'", '"'):
                quote = ch
            elif ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            i += 1
        if depth:
            break  # unbalanced; give up on the rest
        checks.append(RawCheckFact(
            name=_unquote(match.group(1)),
            expression=sql[start:i - 1].strip(),
        ))
        pos = i
    return checks


class SQLiteIntrospector(DialectIntrospector):
    """Introspects SQLite through sqlite_master and table-valued PRAGMA functions."""

    dialect = Dialect.SQLITE

    def __init__(self, executor, namespace: Optional[str] = None):
        super().__init__(executor, namespace)
        self._definitions: Dict[str, Optional[str]] = {}

    @property
    def _master(self) -> str:
        return f"{self.quote(self.namespace)}.sqlite_master"

    def discover_tables(self, include_views: bool = True) -> List[RawTableFact]:
        """Get all tables (and optionally views), skipping sqlite_ internals."""
        types = ["table", "view"] if include_views else ["table"]
        rows = self.query(
            f"SELECT name, type, sql FROM {self._master} "
            f"WHERE type IN ({self.dialect.placeholders(len(types))}) "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name",
            *types,
        )
        tables = []
        for row in rows:
            self._definitions[row["name"]] = row["sql"]
            tables.append(RawTableFact(
                name=row["name"],
                namespace=self.namespace,
                is_view=row["type"] == "view",
                definition=row["sql"],
            ))
        return tables

    def _definition(self, table: str) -> Optional[str]:
        if table not in self._definitions:
            rows = self.query(f"SELECT sql FROM {self._master} WHERE name = ?", table)
            self._definitions[table] = rows[0]["sql"] if rows else None
        return self._definitions[table]

    def get_columns(self, table: str) -> List[RawColumnFact]:
        """Get columns from pragma_table_info.

        SQLite spells auto-increment two ways: the AUTOINCREMENT keyword and
        the INTEGER PRIMARY KEY alias for rowid. Both require a single-column
        primary key declared exactly as INTEGER in a rowid table, so that is
        the rule applied here.
        """
        rows = self.query(
            "SELECT cid, name, type, \"notnull\", dflt_value, pk "
            "FROM pragma_table_info(?, ?) ORDER BY cid",
            table, self.namespace,
        )
        if not rows:
            raise LookupError(f"pragma_table_info returned no columns for {table}")

        definition = self._definition(table) or ""
        pk_rows = [r for r in rows if r["pk"]]
        rowid_alias = (
            len(pk_rows) == 1
            and (pk_rows[0]["type"] or "").strip().upper() == "INTEGER"
            and not _WITHOUT_ROWID_RE.search(definition)
        )

        columns = []
        for row in rows:
            native_type = row["type"] or ""
            max_length, precision, scale = parse_type_modifiers(native_type)
            is_pk = bool(row["pk"])
            columns.append(RawColumnFact(
                name=row["name"],
                native_type=native_type,
                # An INTEGER PRIMARY KEY can never hold NULL even without NOT NULL
                nullable=not row["notnull"] and not (is_pk and rowid_alias),
                default=None if row["dflt_value"] is None else str(row["dflt_value"]),
                primary_key_position=int(row["pk"] or 0),
                auto_increment=is_pk and rowid_alias,
                max_length=max_length,
                precision=precision,
                scale=scale,
                ordinal=int(row["cid"]),
            ))
        return columns

    def _index_list(self, table: str) -> List[dict]:
        return self.query(
            "SELECT seq, name, \"unique\", origin, partial FROM pragma_index_list(?, ?)",
            table, self.namespace,
        )

    def _index_columns(self, index: str) -> List[str]:
        rows = self.query(
            "SELECT seqno, name FROM pragma_index_info(?, ?) ORDER BY seqno",
            index, self.namespace,
        )
        return [r["name"] for r in rows if r["name"] is not None]

    def get_indexes(self, table: str) -> List[RawIndexFact]:
        indexes = []
        for row in sorted(self._index_list(table), key=lambda r: r["name"]):
            columns = self._index_columns(row["name"])
            if not columns:
                continue  # expression-only index
            indexes.append(RawIndexFact(
                name=row["name"],
                columns=columns,
                unique=bool(row["unique"]),
                primary=row["origin"] == "pk",
                partial=bool(row["partial"]),
            ))
        return indexes

    def get_foreign_keys(self, table: str) -> List[RawForeignKeyFact]:
        """Get foreign keys from pragma_foreign_key_list.

        Composite keys share an ``id``. SQLite numbers them in reverse
        declaration order, so ids are walked from highest to lowest.
        """
        rows = self.query(
            "SELECT id, seq, \"table\", \"from\", \"to\", on_update, on_delete "
            "FROM pragma_foreign_key_list(?, ?) ORDER BY id DESC, seq",
            table, self.namespace,
        )
        grouped: "OrderedDict[int, List[dict]]" = OrderedDict()
        for row in rows:
            grouped.setdefault(row["id"], []).append(row)

        foreign_keys = []
        for parts in grouped.values():
            first = parts[0]
            target_columns = [p["to"] for p in parts]
            foreign_keys.append(RawForeignKeyFact(
                name=None,
                columns=[p["from"] for p in parts],
                target_table=first["table"],
                # REFERENCES users (no column list) points at the primary key
                target_columns=[] if any(c is None for c in target_columns) else target_columns,
                on_delete=(first["on_delete"] or "NO ACTION").upper(),
                on_update=(first["on_update"] or "NO ACTION").upper(),
            ))
        return foreign_keys

    def get_unique_constraints(self, table: str) -> List[RawUniqueFact]:
        uniques = []
        for row in sorted(self._index_list(table), key=lambda r: r["name"]):
            if row["origin"] != "u":
                continue
            uniques.append(RawUniqueFact(name=row["name"], columns=self._index_columns(row["name"])))
        return uniques

    def get_check_constraints(self, table: str) -> List[RawCheckFact]:
        return extract_check_constraints(self._definition(table))
