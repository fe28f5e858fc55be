"""Database data models for schema introspection.

Two layers live here:

- Raw facts (``Raw*Fact``): what a dialect introspector read from its system
  catalogs, one record per table/column/constraint, still in dialect terms.
- Canonical descriptors: the dialect-independent, immutable schema model that
  the builder produces and every consumer reads.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..errors import SchemaNotFoundError


class LogicalType(str, Enum):
    """Closed vocabulary of canonical column types."""
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TEXT = "text"
    DATETIME = "datetime"
    BINARY = "binary"
    JSON = "json"
    UUID = "uuid"
    ENUM = "enum"
    UNKNOWN = "unknown"


class Cardinality(str, Enum):
    """Relationship multiplicity, read from the source table's side."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"

    @property
    def returns_many(self) -> bool:
        """Whether navigating this relationship yields a list of rows."""
        return self in (Cardinality.ONE_TO_MANY, Cardinality.MANY_TO_MANY)


# ---------------------------------------------------------------------------
# Raw facts
# ---------------------------------------------------------------------------

@dataclass
class RawColumnFact:
    """A column as reported by a dialect's catalog."""
    name: str
    native_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key_position: int = 0  # 1-based position in the primary key, 0 if not a PK column
    auto_increment: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    enum_values: List[str] = field(default_factory=list)
    ordinal: int = 0


@dataclass
class RawIndexFact:
    name: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False
    primary: bool = False
    partial: bool = False


@dataclass
class RawForeignKeyFact:
    """A foreign key; ``target_columns`` may be empty when the dialect
    references the target's primary key implicitly."""
    name: Optional[str]
    columns: List[str]
    target_table: str
    target_columns: List[str] = field(default_factory=list)
    target_namespace: Optional[str] = None
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"


@dataclass
class RawUniqueFact:
    name: Optional[str]
    columns: List[str] = field(default_factory=list)


@dataclass
class RawCheckFact:
    name: Optional[str]
    expression: str


@dataclass
class RawTableFact:
    """Everything one discovery pass learned about a table.

    ``partial`` is set when one or more facets could not be read; the
    reasons are kept in ``warnings`` and the facet names in ``failed_facets``.
    """
    name: str
    namespace: Optional[str] = None
    is_view: bool = False
    definition: Optional[str] = None
    columns: List[RawColumnFact] = field(default_factory=list)
    indexes: List[RawIndexFact] = field(default_factory=list)
    foreign_keys: List[RawForeignKeyFact] = field(default_factory=list)
    unique_constraints: List[RawUniqueFact] = field(default_factory=list)
    check_constraints: List[RawCheckFact] = field(default_factory=list)
    partial: bool = False
    warnings: List[str] = field(default_factory=list)
    failed_facets: List[str] = field(default_factory=list)


@dataclass
class RawSchemaFacts:
    """Raw output of one introspection pass."""
    dialect: str
    tables: List[RawTableFact] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnDescriptor:
    """Represents a database column in canonical form."""
    name: str
    logical_type: LogicalType
    native_type: str
    nullable: bool = True
    primary_key: bool = False
    auto_increment: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    enum_values: Tuple[str, ...] = ()
    default: Optional[str] = None  # opaque; never evaluated
    ordinal: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "logical_type": self.logical_type.value,
            "native_type": self.native_type,
            "nullable": self.nullable,
            "primary_key": self.primary_key,
            "auto_increment": self.auto_increment,
            "max_length": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
            "enum_values": list(self.enum_values),
            "default": self.default,
            "ordinal": self.ordinal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDescriptor":
        return cls(
            name=data["name"],
            logical_type=LogicalType(data["logical_type"]),
            native_type=data["native_type"],
            nullable=data.get("nullable", True),
            primary_key=data.get("primary_key", False),
            auto_increment=data.get("auto_increment", False),
            max_length=data.get("max_length"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            enum_values=tuple(data.get("enum_values", ())),
            default=data.get("default"),
            ordinal=data.get("ordinal", 0),
        )


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False
    primary: bool = False
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "columns": list(self.columns),
            "unique": self.unique,
            "primary": self.primary,
            "partial": self.partial,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexDescriptor":
        return cls(
            name=data["name"],
            columns=tuple(data.get("columns", ())),
            unique=data.get("unique", False),
            primary=data.get("primary", False),
            partial=data.get("partial", False),
        )


@dataclass(frozen=True)
class UniqueConstraintDescriptor:
    name: Optional[str]
    columns: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "columns": list(self.columns)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UniqueConstraintDescriptor":
        return cls(name=data.get("name"), columns=tuple(data.get("columns", ())))


@dataclass(frozen=True)
class CheckConstraintDescriptor:
    name: Optional[str]
    expression: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "expression": self.expression}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckConstraintDescriptor":
        return cls(name=data.get("name"), expression=data["expression"])


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    """Represents a foreign key from ``table`` to ``target_table``."""
    table: str
    name: Optional[str]
    columns: Tuple[str, ...]
    target_table: str
    target_columns: Tuple[str, ...]
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"
    resolved: bool = True

    @property
    def identity(self) -> str:
        """Stable identifier, used to tell apart several FKs between the same tables."""
        if self.name:
            return self.name
        return f"fk_{self.table}_{'_'.join(self.columns)}"

    @property
    def signature(self) -> Tuple:
        """Structural key used for change detection (names are not always stable)."""
        return (self.columns, self.target_table, self.target_columns, self.on_delete, self.on_update)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "name": self.name,
            "columns": list(self.columns),
            "target_table": self.target_table,
            "target_columns": list(self.target_columns),
            "on_delete": self.on_delete,
            "on_update": self.on_update,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForeignKeyDescriptor":
        return cls(
            table=data["table"],
            name=data.get("name"),
            columns=tuple(data["columns"]),
            target_table=data["target_table"],
            target_columns=tuple(data.get("target_columns", ())),
            on_delete=data.get("on_delete", "NO ACTION"),
            on_update=data.get("on_update", "NO ACTION"),
            resolved=data.get("resolved", True),
        )


@dataclass(frozen=True)
class TableDescriptor:
    """Represents a database table or view in canonical form."""
    name: str
    namespace: Optional[str] = None
    columns: Tuple[ColumnDescriptor, ...] = ()
    indexes: Tuple[IndexDescriptor, ...] = ()
    foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()
    unique_constraints: Tuple[UniqueConstraintDescriptor, ...] = ()
    check_constraints: Tuple[CheckConstraintDescriptor, ...] = ()
    primary_key: Tuple[str, ...] = ()
    is_view: bool = False
    # Degradation markers are not structure; a table read partially compares
    # equal to the same table read in full.
    partial: bool = field(default=False, compare=False)
    warnings: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        """Find a column by name."""
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def has_column(self, name: str) -> bool:
        return self.column(name) is not None

    def unique_keys(self) -> List[Tuple[str, ...]]:
        """All column sets that are guaranteed unique.

        Primary key first, then unique constraints, then non-partial unique
        indexes, without duplicates.
        """
        keys: List[Tuple[str, ...]] = []
        seen = set()

        def add(columns: Sequence[str]):
            key = tuple(columns)
            if key and frozenset(key) not in seen:
                seen.add(frozenset(key))
                keys.append(key)

        add(self.primary_key)
        for uc in self.unique_constraints:
            add(uc.columns)
        for idx in self.indexes:
            if idx.unique and not idx.partial:
                add(idx.columns)
        return keys

    def is_key(self, columns: Sequence[str]) -> bool:
        """Whether ``columns`` is exactly one of this table's unique keys (as a set)."""
        wanted = frozenset(columns)
        return any(frozenset(key) == wanted for key in self.unique_keys())

    def is_unique(self, columns: Sequence[str]) -> bool:
        """Whether ``columns`` is covered by a unique key (superset of one)."""
        wanted = frozenset(columns)
        return any(frozenset(key) <= wanted for key in self.unique_keys())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "is_view": self.is_view,
            "primary_key": list(self.primary_key),
            "columns": [c.to_dict() for c in self.columns],
            "indexes": [i.to_dict() for i in self.indexes],
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
            "unique_constraints": [u.to_dict() for u in self.unique_constraints],
            "check_constraints": [c.to_dict() for c in self.check_constraints],
            "partial": self.partial,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableDescriptor":
        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            columns=tuple(ColumnDescriptor.from_dict(c) for c in data.get("columns", ())),
            indexes=tuple(IndexDescriptor.from_dict(i) for i in data.get("indexes", ())),
            foreign_keys=tuple(ForeignKeyDescriptor.from_dict(f) for f in data.get("foreign_keys", ())),
            unique_constraints=tuple(
                UniqueConstraintDescriptor.from_dict(u) for u in data.get("unique_constraints", ())
            ),
            check_constraints=tuple(
                CheckConstraintDescriptor.from_dict(c) for c in data.get("check_constraints", ())
            ),
            primary_key=tuple(data.get("primary_key", ())),
            is_view=data.get("is_view", False),
            partial=data.get("partial", False),
            warnings=tuple(data.get("warnings", ())),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SchemaSnapshot:
    """One immutable, versioned view of the discovered schema.

    Equality is structural: two snapshots compare equal when their tables are
    identical, regardless of version or creation time.
    """
    tables: Mapping[str, TableDescriptor]
    dialect: str = ""
    version: int = field(default=1, compare=False)
    created_at: datetime = field(default_factory=_utcnow, compare=False)

    def __post_init__(self):
        if not isinstance(self.tables, MappingProxyType):
            object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    def __iter__(self) -> Iterator[TableDescriptor]:
        return iter(self.tables.values())

    def __len__(self) -> int:
        return len(self.tables)

    def __contains__(self, name: str) -> bool:
        return name in self.tables

    @property
    def table_names(self) -> List[str]:
        return list(self.tables.keys())

    def get(self, name: str) -> Optional[TableDescriptor]:
        return self.tables.get(name)

    def table(self, name: str) -> TableDescriptor:
        """Get a table by name.

        Raises:
            SchemaNotFoundError: If the table is not part of this snapshot
        """
        table = self.tables.get(name)
        if table is None:
            raise SchemaNotFoundError(name, self.table_names)
        return table

    def with_version(self, version: int) -> "SchemaSnapshot":
        """Return a copy carrying a different version number."""
        return replace(self, version=version, created_at=_utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "dialect": self.dialect,
            "created_at": self.created_at.isoformat(),
            "tables": [t.to_dict() for t in self.tables.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaSnapshot":
        tables = [TableDescriptor.from_dict(t) for t in data.get("tables", ())]
        created_at = data.get("created_at")
        return cls(
            tables={t.name: t for t in tables},
            dialect=data.get("dialect", ""),
            version=data.get("version", 1),
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
        )


@dataclass(frozen=True)
class JunctionDescriptor:
    """The junction table a many-to-many relationship navigates through.

    ``source_columns`` reference the relationship's source table and
    ``target_columns`` reference its target table.
    """
    table: str
    source_columns: Tuple[str, ...]
    target_columns: Tuple[str, ...]


@dataclass(frozen=True)
class RelationshipDescriptor:
    """Represents a navigable relationship between two tables.

    For a forward relationship the source side holds the foreign key. For an
    inverse one the source is the referenced table. Many-to-many
    relationships carry the junction table in ``via``.
    """
    name: str
    source_table: str
    source_columns: Tuple[str, ...]
    target_table: str
    target_columns: Tuple[str, ...]
    cardinality: Cardinality
    foreign_key: str
    optional: bool = True
    inverse: bool = False
    via: Optional[JunctionDescriptor] = None

    @property
    def is_self_referencing(self) -> bool:
        return self.source_table == self.target_table

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "source_table": self.source_table,
            "source_columns": list(self.source_columns),
            "target_table": self.target_table,
            "target_columns": list(self.target_columns),
            "cardinality": self.cardinality.value,
            "foreign_key": self.foreign_key,
            "optional": self.optional,
            "inverse": self.inverse,
        }
        if self.via is not None:
            data["via"] = {
                "table": self.via.table,
                "source_columns": list(self.via.source_columns),
                "target_columns": list(self.via.target_columns),
            }
        return data
