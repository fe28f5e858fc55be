"""Canonical schema model builder.

Turns the raw per-dialect facts of one introspection pass into an immutable
SchemaSnapshot. The build is a pure function of its input: identical raw
facts always give a structurally identical snapshot.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .dialects import Dialect
from .models import (
    CheckConstraintDescriptor,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    RawCheckFact,
    RawColumnFact,
    RawForeignKeyFact,
    RawIndexFact,
    RawSchemaFacts,
    RawTableFact,
    RawUniqueFact,
    SchemaSnapshot,
    TableDescriptor,
    UniqueConstraintDescriptor,
)
from .type_mappers import TypeMapper, get_type_mapper

logger = logging.getLogger(__name__)

# CHECK (status IN ('draft', 'published'))
_CHECK_IN_RE = re.compile(
    r'^\(*\s*["`\[]?(?P<column>\w+)["`\]]?\s+IN\s*\((?P<values>.*)\)\s*\)*$',
    re.IGNORECASE | re.DOTALL,
)
# PostgreSQL renders the same constraint as
# ((status)::text = ANY ((ARRAY['draft'::character varying, ...])::text[]))
_CHECK_ANY_RE = re.compile(
    r'^\(*\s*"?(?P<column>\w+)"?\)?(?:::[\w ]+)?\s*=\s*ANY\s*\(+\s*ARRAY\s*\[(?P<values>[^\]]*)\]',
    re.IGNORECASE | re.DOTALL,
)
_LITERAL_RE = re.compile(r"'((?:[^']|'')*)'")
_NON_LITERAL_RE = re.compile(r"'(?:[^']|'')*'|::[\w ]+(?:\[\])?|[\s,()]")


def enum_values_from_check(expression: str) -> Tuple[Optional[str], List[str]]:
    """Read an enumerated value list out of a check constraint.

    Only constraints that are nothing but a list of string literals for one
    column qualify. Anything else returns ``(None, [])``.

    Returns:
        Tuple of (column name, values in declared order)
    """
    text = (expression or "").strip()
    for pattern in (_CHECK_IN_RE, _CHECK_ANY_RE):
        match = pattern.match(text)
        if not match:
            continue
        values_text = match.group("values")
        # every token must be a string literal (optionally cast)
        if _NON_LITERAL_RE.sub("", values_text):
            return None, []
        values = [v.replace("''", "'") for v in _LITERAL_RE.findall(values_text)]
        if values:
            return match.group("column"), values
    return None, []


def carry_forward(fact: RawTableFact, previous: TableDescriptor) -> RawTableFact:
    """Fill the failed facets of ``fact`` with the facts of an earlier build.

    The input is not modified. Facets that were read successfully are kept.
    """
    failed = set(fact.failed_facets)
    changes = {}
    if "columns" in failed:
        changes["columns"] = [
            RawColumnFact(
                name=col.name,
                native_type=col.native_type,
                nullable=col.nullable,
                default=col.default,
                primary_key_position=(
                    previous.primary_key.index(col.name) + 1 if col.name in previous.primary_key else 0
                ),
                auto_increment=col.auto_increment,
                max_length=col.max_length,
                precision=col.precision,
                scale=col.scale,
                enum_values=list(col.enum_values),
                ordinal=col.ordinal,
            )
            for col in previous.columns
        ]
    if "indexes" in failed:
        changes["indexes"] = [
            RawIndexFact(
                name=idx.name,
                columns=list(idx.columns),
                unique=idx.unique,
                primary=idx.primary,
                partial=idx.partial,
            )
            for idx in previous.indexes
        ]
    if "foreign_keys" in failed:
        changes["foreign_keys"] = [
            RawForeignKeyFact(
                name=fk.name,
                columns=list(fk.columns),
                target_table=fk.target_table,
                target_columns=list(fk.target_columns),
                on_delete=fk.on_delete,
                on_update=fk.on_update,
            )
            for fk in previous.foreign_keys
        ]
    if "unique_constraints" in failed:
        changes["unique_constraints"] = [
            RawUniqueFact(name=u.name, columns=list(u.columns)) for u in previous.unique_constraints
        ]
    if "check_constraints" in failed:
        changes["check_constraints"] = [
            RawCheckFact(name=c.name, expression=c.expression) for c in previous.check_constraints
        ]
    logger.info("Keeping last known %s for table %s", ", ".join(sorted(failed)), fact.name)
    return replace(fact, **changes)


class SchemaBuilder:
    """Builds SchemaSnapshot objects from raw introspection facts.

    Warnings about inconsistent input (duplicate table or column names) are
    collected in ``warnings`` for the most recent build.
    """

    def __init__(self, dialect, type_overrides: Optional[Dict[str, str]] = None):
        self.dialect = Dialect.parse(dialect)
        self.type_mapper: TypeMapper = get_type_mapper(dialect, type_overrides)
        self.warnings: List[str] = []

    def build(
        self,
        facts: RawSchemaFacts,
        version: int = 1,
        previous: Optional[SchemaSnapshot] = None,
    ) -> SchemaSnapshot:
        """Normalize raw facts into a snapshot.

        Facets that could not be read for a table (``failed_facets``) are
        taken from the same table in ``previous`` when there is one, so a
        failed read never looks like dropped columns, indexes or keys.

        Args:
            facts: Raw output of one introspection pass
            version: Version number to stamp on the snapshot
            previous: Last good snapshot to fill failed facets from

        Returns:
            The canonical SchemaSnapshot, tables ordered by name
        """
        self.warnings = []

        raw_tables: Dict[str, RawTableFact] = {}
        for fact in facts.tables:
            if fact.name in raw_tables:
                self._warn("Duplicate table %s in introspection output; keeping the first", fact.name)
                continue
            if fact.failed_facets and previous is not None and fact.name in previous:
                fact = carry_forward(fact, previous.table(fact.name))
            raw_tables[fact.name] = fact

        # First pass without foreign keys so targets can be checked against
        # every table's keys.
        tables: Dict[str, TableDescriptor] = {}
        for name in sorted(raw_tables):
            tables[name] = self._build_table(raw_tables[name])

        for name, table in tables.items():
            foreign_keys = tuple(
                self._build_foreign_key(table, fk, tables) for fk in raw_tables[name].foreign_keys
            )
            tables[name] = replace(table, foreign_keys=foreign_keys)

        snapshot = SchemaSnapshot(tables=tables, dialect=self.dialect.value, version=version)
        logger.debug("Built snapshot v%d with %d tables", version, len(tables))
        return snapshot

    def _warn(self, message: str, *args):
        text = message % args
        logger.warning("%s", text)
        self.warnings.append(text)

    def _build_table(self, fact: RawTableFact) -> TableDescriptor:
        enum_checks: Dict[str, List[str]] = {}
        for check in fact.check_constraints:
            column, values = enum_values_from_check(check.expression)
            if column and column not in enum_checks:
                enum_checks[column] = values

        seen = set()
        raw_columns: List[RawColumnFact] = []
        for col in sorted(fact.columns, key=lambda c: c.ordinal):
            if col.name in seen:
                self._warn("Duplicate column %s.%s; keeping the first", fact.name, col.name)
                continue
            seen.add(col.name)
            raw_columns.append(col)

        primary_key = tuple(
            c.name for c in sorted(
                (c for c in raw_columns if c.primary_key_position > 0),
                key=lambda c: c.primary_key_position,
            )
        )
        if not primary_key:
            primary_index = next((i for i in fact.indexes if i.primary and i.columns), None)
            if primary_index is not None:
                primary_key = tuple(primary_index.columns)

        columns = tuple(
            self._build_column(col, col.name in primary_key, enum_checks.get(col.name))
            for col in raw_columns
        )

        return TableDescriptor(
            name=fact.name,
            namespace=fact.namespace,
            columns=columns,
            indexes=tuple(
                IndexDescriptor(
                    name=idx.name,
                    columns=tuple(idx.columns),
                    unique=idx.unique or idx.primary,
                    primary=idx.primary,
                    partial=idx.partial,
                )
                for idx in sorted(fact.indexes, key=lambda i: i.name)
            ),
            unique_constraints=tuple(
                UniqueConstraintDescriptor(name=u.name, columns=tuple(u.columns))
                for u in fact.unique_constraints
                if u.columns
            ),
            check_constraints=tuple(self._build_check(c) for c in fact.check_constraints),
            primary_key=primary_key,
            is_view=fact.is_view,
            partial=fact.partial,
            warnings=tuple(fact.warnings),
        )

    def _build_column(
        self,
        col: RawColumnFact,
        primary_key: bool,
        check_values: Optional[List[str]],
    ) -> ColumnDescriptor:
        enum_values = tuple(col.enum_values or check_values or ())
        return ColumnDescriptor(
            name=col.name,
            logical_type=self.type_mapper.to_logical_type(col.native_type, enum_values),
            native_type=col.native_type,
            nullable=col.nullable and not primary_key,
            primary_key=primary_key,
            auto_increment=col.auto_increment,
            max_length=col.max_length,
            precision=col.precision,
            scale=col.scale,
            enum_values=enum_values,
            default=col.default,
            ordinal=col.ordinal,
        )

    @staticmethod
    def _build_check(check: RawCheckFact) -> CheckConstraintDescriptor:
        return CheckConstraintDescriptor(name=check.name, expression=check.expression)

    def _build_foreign_key(
        self,
        table: TableDescriptor,
        fk: RawForeignKeyFact,
        tables: Dict[str, TableDescriptor],
    ) -> ForeignKeyDescriptor:
        target = tables.get(fk.target_table)
        if target is not None and fk.target_namespace and target.namespace and fk.target_namespace != target.namespace:
            target = None  # same name, different schema

        target_columns: Sequence[str] = fk.target_columns
        if not target_columns and target is not None:
            target_columns = target.primary_key

        resolved = (
            target is not None
            and len(target_columns) == len(fk.columns)
            and all(target.has_column(c) for c in target_columns)
            and target.is_key(target_columns)
        )
        if not resolved:
            logger.info(
                "Foreign key %s.%s -> %s%s does not reference a unique key; marked unresolved",
                table.name, ",".join(fk.columns), fk.target_table,
                f"({','.join(target_columns)})" if target_columns else "",
            )

        return ForeignKeyDescriptor(
            table=table.name,
            name=fk.name,
            columns=tuple(fk.columns),
            target_table=fk.target_table,
            target_columns=tuple(target_columns),
            on_delete=(fk.on_delete or "NO ACTION").upper(),
            on_update=(fk.on_update or "NO ACTION").upper(),
            resolved=resolved,
        )
