"""Relationship inference from foreign keys and uniqueness metadata."""

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterator, List, Optional, Sequence, Set

from ..database.models import (
    Cardinality,
    ForeignKeyDescriptor,
    JunctionDescriptor,
    RelationshipDescriptor,
    SchemaSnapshot,
    TableDescriptor,
)
from ..errors import RelationshipAmbiguityWarning, RelationshipNotFoundError
from .models import RelationshipPatterns

logger = logging.getLogger(__name__)

_ID_SUFFIX_RE = re.compile(r"(?:_id|Id|_ID)$")


def name_from_column(column: str) -> Optional[str]:
    """``user_id`` -> ``user``, ``authorId`` -> ``author``; None when no suffix."""
    stripped = _ID_SUFFIX_RE.sub("", column)
    if stripped == column or not stripped.strip("_"):
        return None
    return stripped


def pluralize(name: str) -> str:
    """Simple English pluralization for relationship names.

    Names that already end in a plural ``s`` are returned unchanged, which
    covers the common plural table naming (``posts``, ``categories``).
    """
    lower = name.lower()
    if lower.endswith("s") and not lower.endswith("ss"):
        return name
    if lower.endswith("y") and len(name) > 1 and lower[-2] not in "aeiou":
        return name[:-1] + "ies"
    if lower.endswith(("ss", "sh", "ch", "x", "z")):
        return name + "es"
    return name + "s"


def _cols(columns: Sequence[str]) -> str:
    return "_".join(columns)


class RelationshipResolver:
    """Infers one forward relationship per foreign key.

    The referenced side of a foreign key is always "one". The referencing
    side is "many" unless its foreign key columns are themselves covered by a
    primary key, unique constraint or non-partial unique index, in which case
    the relationship is one-to-one.
    """

    def __init__(self):
        self.warnings: List[RelationshipAmbiguityWarning] = []

    def resolve(self, snapshot: SchemaSnapshot) -> List[RelationshipDescriptor]:
        """Resolve relationships for every foreign key in the snapshot.

        Args:
            snapshot: The schema snapshot

        Returns:
            Relationships grouped by source table (snapshot order), each group
            in foreign key discovery order
        """
        self.warnings = []
        relationships: List[RelationshipDescriptor] = []

        for table in snapshot:
            used: Set[str] = set(table.column_names)
            for fk in table.foreign_keys:
                rel = self._resolve_foreign_key(snapshot, table, fk, used)
                used.add(rel.name)
                relationships.append(rel)

        logger.debug(
            "Resolved %d relationships (%d warnings)", len(relationships), len(self.warnings)
        )
        return relationships

    def _resolve_foreign_key(
        self,
        snapshot: SchemaSnapshot,
        table: TableDescriptor,
        fk: ForeignKeyDescriptor,
        used: Set[str],
    ) -> RelationshipDescriptor:
        name = self._forward_name(fk, used)

        cardinality = Cardinality.ONE_TO_ONE if table.is_unique(fk.columns) else Cardinality.MANY_TO_ONE
        optional = any(
            table.column(c) is None or table.column(c).nullable for c in fk.columns
        )

        if fk.target_table not in snapshot:
            self._warn(
                f"Foreign key {fk.identity} on {table.name} references missing table "
                f"{fk.target_table}; assuming {cardinality.value}",
                name, fk.identity,
            )
        elif not fk.resolved:
            self._warn(
                f"Foreign key {fk.identity} on {table.name} does not reference a unique key of "
                f"{fk.target_table}; assuming {cardinality.value}",
                name, fk.identity,
            )

        return RelationshipDescriptor(
            name=name,
            source_table=table.name,
            source_columns=fk.columns,
            target_table=fk.target_table,
            target_columns=fk.target_columns,
            cardinality=cardinality,
            foreign_key=fk.identity,
            optional=optional,
        )

    @staticmethod
    def _forward_name(fk: ForeignKeyDescriptor, used: Set[str]) -> str:
        base = None
        if len(fk.columns) == 1:
            base = name_from_column(fk.columns[0])
        base = base or fk.target_table
        if base not in used:
            return base
        name = f"{base}_by_{_cols(fk.columns)}"
        n = 2
        while name in used:
            name = f"{base}_by_{_cols(fk.columns)}_{n}"
            n += 1
        return name

    def _warn(self, message: str, relationship: str, foreign_key: str):
        warning = RelationshipAmbiguityWarning(message, relationship=relationship, foreign_key=foreign_key)
        logger.warning("%s", message)
        self.warnings.append(warning)


def is_junction_table(table: TableDescriptor, snapshot: Optional[SchemaSnapshot] = None) -> bool:
    """Check if a table only links two other rows (many-to-many).

    Junction tables have:
    1. Exactly two resolved foreign keys with disjoint columns
    2. No columns besides the foreign key columns and an auto-increment id
    """
    if table.is_view or len(table.foreign_keys) != 2:
        return False
    first, second = table.foreign_keys
    if not (first.resolved and second.resolved):
        return False
    if set(first.columns) & set(second.columns):
        return False
    if snapshot is not None and not all(fk.target_table in snapshot for fk in (first, second)):
        return False
    fk_columns = set(first.columns) | set(second.columns)
    return all(
        col.name in fk_columns or (col.primary_key and col.auto_increment)
        for col in table.columns
    )


def find_junction_tables(snapshot: SchemaSnapshot) -> List[TableDescriptor]:
    return [t for t in snapshot if is_junction_table(t, snapshot)]


class RelationshipGraph:
    """Navigable relationships per table.

    Holds the resolver's forward relationships, the inverse of each (the
    "has many" side), and many-to-many relationships through junction tables.
    """

    def __init__(
        self,
        snapshot: SchemaSnapshot,
        relationships: Optional[List[RelationshipDescriptor]] = None,
        detect_many_to_many: bool = True,
    ):
        self.snapshot = snapshot
        if relationships is None:
            relationships = RelationshipResolver().resolve(snapshot)
        self.forward = list(relationships)

        self._by_table: Dict[str, "OrderedDict[str, RelationshipDescriptor]"] = {
            t.name: OrderedDict() for t in snapshot
        }
        self._used: Dict[str, Set[str]] = {t.name: set(t.column_names) for t in snapshot}

        for rel in self.forward:
            self._add(rel)
        self._add_inverses()
        if detect_many_to_many:
            self._add_many_to_many()

    def _add(self, rel: RelationshipDescriptor):
        self._by_table.setdefault(rel.source_table, OrderedDict())[rel.name] = rel
        self._used.setdefault(rel.source_table, set()).add(rel.name)

    def _claim(self, table: str, base: str, suffix: str) -> str:
        used = self._used.setdefault(table, set())
        name = base if base not in used else f"{base}_{suffix}"
        n = 2
        while name in used:
            name = f"{base}_{suffix}_{n}"
            n += 1
        return name

    def _add_inverses(self):
        # Several FKs from one table into the same target all get suffixed
        counts: Dict[tuple, int] = {}
        for rel in self.forward:
            key = (rel.target_table, rel.source_table)
            counts[key] = counts.get(key, 0) + 1

        for rel in self.forward:
            if rel.target_table not in self.snapshot:
                continue
            one_to_one = rel.cardinality is Cardinality.ONE_TO_ONE
            base = rel.source_table if one_to_one else pluralize(rel.source_table)
            suffix = f"by_{_cols(rel.source_columns)}"
            if counts[(rel.target_table, rel.source_table)] > 1 or rel.is_self_referencing:
                base = f"{base}_{suffix}"
            name = self._claim(rel.target_table, base, suffix)
            self._add(RelationshipDescriptor(
                name=name,
                source_table=rel.target_table,
                source_columns=rel.target_columns,
                target_table=rel.source_table,
                target_columns=rel.source_columns,
                cardinality=Cardinality.ONE_TO_ONE if one_to_one else Cardinality.ONE_TO_MANY,
                foreign_key=rel.foreign_key,
                optional=True,
                inverse=True,
            ))

    def _add_many_to_many(self):
        for junction in find_junction_tables(self.snapshot):
            first, second = junction.foreign_keys
            self._add_through(junction, first, second)
            self._add_through(junction, second, first)

    def _add_through(self, junction: TableDescriptor, near: ForeignKeyDescriptor, far: ForeignKeyDescriptor):
        base = pluralize(far.target_table)
        if near.target_table == far.target_table and len(far.columns) == 1:
            base = pluralize(name_from_column(far.columns[0]) or far.target_table)
        name = self._claim(near.target_table, base, f"via_{junction.name}")
        self._add(RelationshipDescriptor(
            name=name,
            source_table=near.target_table,
            source_columns=near.target_columns,
            target_table=far.target_table,
            target_columns=far.target_columns,
            cardinality=Cardinality.MANY_TO_MANY,
            foreign_key=junction.name,
            optional=True,
            via=JunctionDescriptor(
                table=junction.name,
                source_columns=near.columns,
                target_columns=far.columns,
            ),
        ))

    def for_table(self, table: str) -> List[RelationshipDescriptor]:
        """All relationships navigable from a table, forward ones first."""
        return list(self._by_table.get(table, {}).values())

    def names(self, table: str) -> List[str]:
        return list(self._by_table.get(table, {}).keys())

    def get(self, table: str, name: str) -> RelationshipDescriptor:
        """Look up a relationship by table and name.

        Raises:
            SchemaNotFoundError: If the table is not in the snapshot
            RelationshipNotFoundError: If the table has no such relationship
        """
        self.snapshot.table(table)
        rel = self._by_table.get(table, {}).get(name)
        if rel is None:
            raise RelationshipNotFoundError(name, table, self.names(table))
        return rel

    def __iter__(self) -> Iterator[RelationshipDescriptor]:
        for rels in self._by_table.values():
            yield from rels.values()

    def __len__(self) -> int:
        return sum(len(r) for r in self._by_table.values())


def detect_circular_references(snapshot: SchemaSnapshot) -> List[List[str]]:
    """Find foreign key chains that lead back to a table already on the path.

    Self references are not reported here; each cycle is returned as the
    list of tables along it, ending with the starting table again.
    """
    cycles: List[List[str]] = []
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    def dfs(table_name: str, path: List[str]):
        if table_name in on_stack:
            start = path.index(table_name)
            cycles.append(path[start:] + [table_name])
            return
        if table_name in visited:
            return

        visited.add(table_name)
        on_stack.add(table_name)
        table = snapshot.get(table_name)
        if table is not None:
            targets = OrderedDict.fromkeys(
                fk.target_table for fk in table.foreign_keys if fk.target_table != table_name
            )
            for target in targets:
                dfs(target, path + [table_name])
        on_stack.discard(table_name)

    for table in snapshot:
        if table.name not in visited:
            dfs(table.name, [])
    return cycles


def analyze_patterns(
    snapshot: SchemaSnapshot,
    relationships: Optional[List[RelationshipDescriptor]] = None,
) -> RelationshipPatterns:
    """Summarize self references, junction tables, cycles and cardinalities."""
    if relationships is None:
        relationships = RelationshipResolver().resolve(snapshot)

    patterns = RelationshipPatterns()
    for rel in relationships:
        if rel.is_self_referencing:
            patterns.self_referencing.append(f"{rel.source_table}.{rel.name}")
        if rel.cardinality is Cardinality.ONE_TO_ONE:
            patterns.one_to_one += 1
        else:
            patterns.many_to_one += 1

    junctions = find_junction_tables(snapshot)
    patterns.junction_tables = [t.name for t in junctions]
    patterns.many_to_many = len(junctions)
    patterns.circular_references = detect_circular_references(snapshot)
    return patterns
