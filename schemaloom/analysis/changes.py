"""Change detection between two schema snapshots."""

from typing import Dict, List, Optional

from ..database.models import (
    ColumnDescriptor,
    ForeignKeyDescriptor,
    SchemaSnapshot,
    TableDescriptor,
)
from .models import ChangeKind, SchemaChange

# Column fields whose mismatch makes a column "altered"
ALTERABLE_FIELDS = (
    "logical_type",
    "enum_values",
    "nullable",
    "primary_key",
    "auto_increment",
    "max_length",
    "precision",
    "scale",
)


def column_altered(before: ColumnDescriptor, after: ColumnDescriptor) -> bool:
    """Whether a column present in both snapshots changed in a tracked field."""
    if (before.native_type or "").strip().upper() != (after.native_type or "").strip().upper():
        return True
    return any(getattr(before, f) != getattr(after, f) for f in ALTERABLE_FIELDS)


def altered_fields(before: ColumnDescriptor, after: ColumnDescriptor) -> List[str]:
    fields = []
    if (before.native_type or "").strip().upper() != (after.native_type or "").strip().upper():
        fields.append("native_type")
    fields.extend(f for f in ALTERABLE_FIELDS if getattr(before, f) != getattr(after, f))
    return fields


def diff_snapshots(before: Optional[SchemaSnapshot], after: SchemaSnapshot) -> List[SchemaChange]:
    """Compute the ordered list of changes from one snapshot to the next.

    Tables are compared by name. For tables in both snapshots, columns are
    compared by name and a changed column gives exactly one ColumnAltered
    event however many of its fields changed. Indexes are compared by name
    and foreign keys by their structural signature.

    Order: removed tables, added tables, then per common table (in the newer
    snapshot's order) columns removed/added/altered, indexes removed/added and
    foreign keys removed/added.

    Args:
        before: Previously published snapshot, or None for the first one
        after: Newly discovered snapshot

    Returns:
        List of SchemaChange events
    """
    before_tables: Dict[str, TableDescriptor] = dict(before.tables) if before is not None else {}
    after_tables: Dict[str, TableDescriptor] = dict(after.tables)
    changes: List[SchemaChange] = []

    for name, table in before_tables.items():
        if name not in after_tables:
            changes.append(SchemaChange(ChangeKind.TABLE_REMOVED, name, before=table))
    for name, table in after_tables.items():
        if name not in before_tables:
            changes.append(SchemaChange(ChangeKind.TABLE_ADDED, name, after=table))

    for name, new in after_tables.items():
        old = before_tables.get(name)
        if old is not None and old != new:
            changes.extend(_diff_table(old, new))

    return changes


def _diff_table(old: TableDescriptor, new: TableDescriptor) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    table = new.name

    old_columns = {c.name: c for c in old.columns}
    new_columns = {c.name: c for c in new.columns}
    for name, col in old_columns.items():
        if name not in new_columns:
            changes.append(SchemaChange(ChangeKind.COLUMN_REMOVED, table, name, before=col))
    for name, col in new_columns.items():
        if name not in old_columns:
            changes.append(SchemaChange(ChangeKind.COLUMN_ADDED, table, name, after=col))
    for name, col in new_columns.items():
        previous = old_columns.get(name)
        if previous is not None and column_altered(previous, col):
            changes.append(SchemaChange(ChangeKind.COLUMN_ALTERED, table, name, before=previous, after=col))

    old_indexes = {i.name: i for i in old.indexes}
    new_indexes = {i.name: i for i in new.indexes}
    for name, idx in old_indexes.items():
        if name not in new_indexes or new_indexes[name] != idx:
            changes.append(SchemaChange(ChangeKind.INDEX_REMOVED, table, name, before=idx))
    for name, idx in new_indexes.items():
        if name not in old_indexes or old_indexes[name] != idx:
            changes.append(SchemaChange(ChangeKind.INDEX_ADDED, table, name, after=idx))

    old_fks = _by_signature(old.foreign_keys)
    new_fks = _by_signature(new.foreign_keys)
    for signature, fk in old_fks.items():
        if signature not in new_fks:
            changes.append(SchemaChange(ChangeKind.FOREIGN_KEY_REMOVED, table, fk.identity, before=fk))
    for signature, fk in new_fks.items():
        if signature not in old_fks:
            changes.append(SchemaChange(ChangeKind.FOREIGN_KEY_ADDED, table, fk.identity, after=fk))

    return changes


def _by_signature(foreign_keys) -> Dict[tuple, ForeignKeyDescriptor]:
    result: Dict[tuple, ForeignKeyDescriptor] = {}
    for fk in foreign_keys:
        result.setdefault(fk.signature, fk)
    return result
