"""PostgreSQL database introspector."""

from collections import OrderedDict
from typing import Dict, List

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

# pg_constraint.confdeltype / confupdtype codes
FK_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

TABLE_KINDS = ("r", "p")
VIEW_KINDS = ("v", "m")


class PostgresIntrospector(DialectIntrospector):
    """Introspects PostgreSQL through pg_catalog and information_schema.

    Only one namespace (schema) is read per pass; foreign keys pointing into
    other namespaces keep their target table name and are left for the
    builder to mark unresolved.
    """

    dialect = Dialect.POSTGRES

    def discover_tables(self, include_views: bool = True) -> List[RawTableFact]:
        kinds = list(TABLE_KINDS) + (list(VIEW_KINDS) if include_views else [])
        rows = self.query(
            """
            SELECT c.relname AS name, c.relkind AS kind
            FROM pg_catalog.pg_class c
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = %s
              AND c.relkind = ANY(%s)
              AND NOT c.relispartition
            ORDER BY c.relname
            """,
            self.namespace, kinds,
        )
        return [
            RawTableFact(name=row["name"], namespace=self.namespace, is_view=row["kind"] in VIEW_KINDS)
            for row in rows
        ]

    def _primary_key_positions(self, table: str) -> Dict[str, int]:
        rows = self.query(
            """
            SELECT a.attname AS column_name, k.ord AS position
            FROM pg_catalog.pg_index i
            JOIN pg_catalog.pg_class t ON t.oid = i.indrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
            CROSS JOIN LATERAL unnest(i.indkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
            WHERE i.indisprimary AND n.nspname = %s AND t.relname = %s
            ORDER BY k.ord
            """,
            self.namespace, table,
        )
        return {row["column_name"]: int(row["position"]) for row in rows}

    def _enum_values(self, type_names: List[str]) -> Dict[str, List[str]]:
        if not type_names:
            return {}
        rows = self.query(
            """
            SELECT t.typname AS type_name, e.enumlabel AS label
            FROM pg_catalog.pg_type t
            JOIN pg_catalog.pg_enum e ON e.enumtypid = t.oid
            WHERE t.typname = ANY(%s)
            ORDER BY t.typname, e.enumsortorder
            """,
            sorted(set(type_names)),
        )
        values: Dict[str, List[str]] = {}
        for row in rows:
            values.setdefault(row["type_name"], []).append(row["label"])
        return values

    def get_columns(self, table: str) -> List[RawColumnFact]:
        """Get columns from information_schema.columns.

        Serial columns show up as ``nextval(...)`` defaults and identity
        columns as ``is_identity = 'YES'``; both count as auto-increment.
        """
        rows = self.query(
            """
            SELECT column_name, data_type, udt_name, is_nullable, column_default,
                   character_maximum_length, numeric_precision, numeric_scale,
                   datetime_precision, is_identity, ordinal_position
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            self.namespace, table,
        )
        if not rows:
            raise LookupError(f"information_schema.columns returned no columns for {table}")

        pk_positions = self._primary_key_positions(table)
        enum_values = self._enum_values(
            [r["udt_name"] for r in rows if r["data_type"] == "USER-DEFINED"]
        )

        columns = []
        for row in rows:
            native_type = self._native_type(row)
            default = row["column_default"]
            serial = default is not None and str(default).startswith("nextval(")
            identity = (row["is_identity"] or "NO") == "YES"

            max_length = row["character_maximum_length"]
            precision = row["numeric_precision"]
            scale = row["numeric_scale"]
            if max_length is None and precision is None:
                max_length, precision, scale = parse_type_modifiers(native_type)
            if row["data_type"] in ("integer", "bigint", "smallint"):
                # information_schema reports binary precision for integers
                precision, scale = None, None

            columns.append(RawColumnFact(
                name=row["column_name"],
                native_type=native_type,
                nullable=row["is_nullable"] == "YES",
                default=None if default is None else str(default),
                primary_key_position=pk_positions.get(row["column_name"], 0),
                auto_increment=serial or identity,
                max_length=max_length,
                precision=precision,
                scale=scale,
                enum_values=enum_values.get(row["udt_name"], []) if row["data_type"] == "USER-DEFINED" else [],
                ordinal=int(row["ordinal_position"]),
            ))
        return columns

    @staticmethod
    def _native_type(row: dict) -> str:
        data_type = row["data_type"]
        if data_type in ("USER-DEFINED", "ARRAY"):
            return row["udt_name"]
        return data_type

    def get_indexes(self, table: str) -> List[RawIndexFact]:
        rows = self.query(
            """
            SELECT ic.relname AS index_name, i.indisunique AS is_unique,
                   i.indisprimary AS is_primary, (i.indpred IS NOT NULL) AS is_partial,
                   a.attname AS column_name, k.ord AS position
            FROM pg_catalog.pg_index i
            JOIN pg_catalog.pg_class t ON t.oid = i.indrelid
            JOIN pg_catalog.pg_class ic ON ic.oid = i.indexrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
            CROSS JOIN LATERAL unnest(i.indkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
            WHERE n.nspname = %s AND t.relname = %s
            ORDER BY ic.relname, k.ord
            """,
            self.namespace, table,
        )
        indexes: "OrderedDict[str, RawIndexFact]" = OrderedDict()
        for row in rows:
            index = indexes.get(row["index_name"])
            if index is None:
                index = RawIndexFact(
                    name=row["index_name"],
                    unique=bool(row["is_unique"]),
                    primary=bool(row["is_primary"]),
                    partial=bool(row["is_partial"]),
                )
                indexes[row["index_name"]] = index
            index.columns.append(row["column_name"])
        return list(indexes.values())

    def get_foreign_keys(self, table: str) -> List[RawForeignKeyFact]:
        rows = self.query(
            """
            SELECT con.conname AS name, con.confdeltype AS on_delete, con.confupdtype AS on_update,
                   tn.nspname AS target_namespace, tc.relname AS target_table,
                   sa.attname AS source_column, ta.attname AS target_column, k.ord AS position
            FROM pg_catalog.pg_constraint con
            JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            JOIN pg_catalog.pg_class tc ON tc.oid = con.confrelid
            JOIN pg_catalog.pg_namespace tn ON tn.oid = tc.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(src, tgt, ord)
            JOIN pg_catalog.pg_attribute sa ON sa.attrelid = con.conrelid AND sa.attnum = k.src
            JOIN pg_catalog.pg_attribute ta ON ta.attrelid = con.confrelid AND ta.attnum = k.tgt
            WHERE con.contype = 'f' AND n.nspname = %s AND c.relname = %s
            ORDER BY con.oid, k.ord
            """,
            self.namespace, table,
        )
        foreign_keys: "OrderedDict[str, RawForeignKeyFact]" = OrderedDict()
        for row in rows:
            fk = foreign_keys.get(row["name"])
            if fk is None:
                fk = RawForeignKeyFact(
                    name=row["name"],
                    columns=[],
                    target_table=row["target_table"],
                    target_columns=[],
                    target_namespace=row["target_namespace"],
                    on_delete=FK_ACTIONS.get(row["on_delete"], "NO ACTION"),
                    on_update=FK_ACTIONS.get(row["on_update"], "NO ACTION"),
                )
                foreign_keys[row["name"]] = fk
            fk.columns.append(row["source_column"])
            fk.target_columns.append(row["target_column"])
        return list(foreign_keys.values())

    def get_unique_constraints(self, table: str) -> List[RawUniqueFact]:
        rows = self.query(
            """
            SELECT con.conname AS name, a.attname AS column_name, k.ord AS position
            FROM pg_catalog.pg_constraint con
            JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_catalog.pg_attribute a ON a.attrelid = c.oid AND a.attnum = k.attnum
            WHERE con.contype = 'u' AND n.nspname = %s AND c.relname = %s
            ORDER BY con.conname, k.ord
            """,
            self.namespace, table,
        )
        uniques: "OrderedDict[str, RawUniqueFact]" = OrderedDict()
        for row in rows:
            uniques.setdefault(row["name"], RawUniqueFact(name=row["name"])).columns.append(row["column_name"])
        return list(uniques.values())

    def get_check_constraints(self, table: str) -> List[RawCheckFact]:
        rows = self.query(
            """
            SELECT con.conname AS name, pg_get_constraintdef(con.oid) AS definition
            FROM pg_catalog.pg_constraint con
            JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            WHERE con.contype = 'c' AND n.nspname = %s AND c.relname = %s
            ORDER BY con.conname
            """,
            self.namespace, table,
        )
        checks = []
        for row in rows:
            definition = row["definition"] or ""
            # pg_get_constraintdef returns "CHECK ((expr))"
            if definition.upper().startswith("CHECK"):
                definition = definition[5:].strip()
                if definition.startswith("(") and definition.endswith(")"):
                    definition = definition[1:-1].strip()
            checks.append(RawCheckFact(name=row["name"], expression=definition))
        return checks
