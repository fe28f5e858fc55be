"""Data models for schema analysis results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChangeKind(str, Enum):
    """Kind of a schema change event."""

    TABLE_ADDED = "TableAdded"
    TABLE_REMOVED = "TableRemoved"
    COLUMN_ADDED = "ColumnAdded"
    COLUMN_REMOVED = "ColumnRemoved"
    COLUMN_ALTERED = "ColumnAltered"
    INDEX_ADDED = "IndexAdded"
    INDEX_REMOVED = "IndexRemoved"
    FOREIGN_KEY_ADDED = "ForeignKeyAdded"
    FOREIGN_KEY_REMOVED = "ForeignKeyRemoved"


@dataclass(frozen=True)
class SchemaChange:
    """One difference between two snapshots.

    ``name`` is the column name, index name or foreign key identity the
    change is about; it is None for table-level changes. ``before`` and
    ``after`` hold the descriptors on either side (None where absent).
    """

    kind: ChangeKind
    table: str
    name: Optional[str] = None
    before: Any = None
    after: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind.value, "table": self.table}
        if self.name is not None:
            data["name"] = self.name
        for side in ("before", "after"):
            value = getattr(self, side)
            if value is not None:
                data[side] = value.to_dict() if hasattr(value, "to_dict") else value
        return data

    def __str__(self) -> str:
        if self.name:
            return f"{self.kind.value} {self.table}.{self.name}"
        return f"{self.kind.value} {self.table}"


@dataclass
class RelationshipPatterns:
    """Summary of structural relationship patterns in a snapshot.

    Identified through:
    - Foreign keys whose target is their own table (self references)
    - Tables made only of two foreign keys (junction tables)
    - Foreign key chains that lead back to their start (cycles)
    """

    self_referencing: List[str] = field(default_factory=list)
    junction_tables: List[str] = field(default_factory=list)
    circular_references: List[List[str]] = field(default_factory=list)
    one_to_one: int = 0
    many_to_one: int = 0
    many_to_many: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "self_referencing": list(self.self_referencing),
            "junction_tables": list(self.junction_tables),
            "circular_references": [list(c) for c in self.circular_references],
            "one_to_one": self.one_to_one,
            "many_to_one": self.many_to_one,
            "many_to_many": self.many_to_many,
        }
