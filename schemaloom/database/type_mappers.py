"""Database-specific type mapping strategies."""

import re
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from .dialects import Dialect
from .models import LogicalType

_MODIFIER_RE = re.compile(r"\(\s*(\d+)\s*(?:,\s*(-?\d+)\s*)?\)")

TEXT_TYPES = ("CHAR", "TEXT", "CLOB", "STRING", "CITEXT", "NAME")
NUMERIC_WITH_SCALE = ("DECIMAL", "NUMERIC", "NUMBER", "DEC")


def base_type(native_type: str) -> str:
    """Strip modifiers and array markers: ``varchar(255)`` -> ``VARCHAR``."""
    return native_type.split("(")[0].strip().upper()


def parse_type_modifiers(native_type: str) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """Read length/precision/scale out of a native type string.

    Returns:
        Tuple of (max_length, precision, scale); unknown parts are None
    """
    if not native_type:
        return None, None, None
    match = _MODIFIER_RE.search(native_type)
    if not match:
        return None, None, None

    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) is not None else None
    type_upper = base_type(native_type)

    if any(t in type_upper for t in NUMERIC_WITH_SCALE):
        return None, first, second if second is not None else 0
    if any(t in type_upper for t in TEXT_TYPES) or "BINARY" in type_upper or "BIT" in type_upper:
        return first, None, None
    if any(t in type_upper for t in ("FLOAT", "REAL", "DOUBLE")):
        return None, first, None
    # TIMESTAMP(3), TIME(6): fractional second precision
    if "TIME" in type_upper:
        return None, first, None
    return None, None, None


class TypeMapper(ABC):
    """Abstract base class for native type to logical type mapping.

    ``overrides`` maps native type names (compared case-insensitively, with and
    without modifiers) to logical type names and takes priority over the
    dialect rules.
    """

    def __init__(self, overrides: Optional[Dict[str, str]] = None):
        self.overrides: Dict[str, LogicalType] = {}
        for native, logical in (overrides or {}).items():
            self.overrides[native.strip().upper()] = LogicalType(str(logical).lower())

    def to_logical_type(self, native_type: str, enum_values=None) -> LogicalType:
        """Convert a native type to the canonical logical type."""
        native = (native_type or "").strip()
        upper = native.upper()
        if upper in self.overrides:
            return self.overrides[upper]
        if base_type(native) in self.overrides:
            return self.overrides[base_type(native)]
        if enum_values:
            return LogicalType.ENUM
        if not native:
            return LogicalType.UNKNOWN
        return self._map(upper)

    @abstractmethod
    def _map(self, type_upper: str) -> LogicalType:
        """Dialect rules; ``type_upper`` is the upper-cased native type."""
        pass


class SQLiteTypeMapper(TypeMapper):
    """Type mapper for SQLite declared types.

    Follows SQLite's affinity rules, with the common declared names for
    booleans, dates, JSON and UUIDs recognised first.
    """

    def _map(self, type_upper: str) -> LogicalType:
        base = base_type(type_upper)
        if base in ("BOOLEAN", "BOOL"):
            return LogicalType.BOOLEAN
        if base in ("DATE", "DATETIME", "TIMESTAMP", "TIME") or base.startswith("TIMESTAMP"):
            return LogicalType.DATETIME
        if base in ("JSON", "JSONB"):
            return LogicalType.JSON
        if base in ("UUID", "GUID"):
            return LogicalType.UUID
        # Affinity rules, in SQLite's own precedence order
        if "INT" in base:
            return LogicalType.INTEGER
        if any(t in base for t in ("CHAR", "CLOB", "TEXT")):
            return LogicalType.TEXT
        if "BLOB" in base:
            return LogicalType.BINARY
        if any(t in base for t in ("REAL", "FLOA", "DOUB")):
            return LogicalType.FLOAT
        if any(t in base for t in ("NUMERIC", "DECIMAL")):
            return LogicalType.FLOAT
        return LogicalType.UNKNOWN


class PostgresTypeMapper(TypeMapper):
    """Type mapper for PostgreSQL types (``udt_name`` or SQL-standard names)."""

    INTEGER_TYPES = {
        "INT2", "INT4", "INT8", "SMALLINT", "INTEGER", "BIGINT", "INT",
        "SERIAL", "BIGSERIAL", "SMALLSERIAL", "SERIAL2", "SERIAL4", "SERIAL8", "OID",
    }
    FLOAT_TYPES = {"FLOAT4", "FLOAT8", "REAL", "DOUBLE PRECISION", "NUMERIC", "DECIMAL", "MONEY"}
    TEXT_TYPES = {"TEXT", "VARCHAR", "BPCHAR", "CHAR", "CHARACTER", "CHARACTER VARYING", "CITEXT", "NAME"}
    DATETIME_TYPES = {
        "DATE", "TIME", "TIMETZ", "TIMESTAMP", "TIMESTAMPTZ",
        "TIMESTAMP WITHOUT TIME ZONE", "TIMESTAMP WITH TIME ZONE",
        "TIME WITHOUT TIME ZONE", "TIME WITH TIME ZONE",
    }

    def _map(self, type_upper: str) -> LogicalType:
        if type_upper.startswith("_") or type_upper.endswith("[]"):
            return LogicalType.UNKNOWN  # arrays
        base = base_type(type_upper)
        if base in self.INTEGER_TYPES:
            return LogicalType.INTEGER
        if base in self.FLOAT_TYPES:
            return LogicalType.FLOAT
        if base in ("BOOL", "BOOLEAN"):
            return LogicalType.BOOLEAN
        if base in self.TEXT_TYPES:
            return LogicalType.TEXT
        if base in self.DATETIME_TYPES:
            return LogicalType.DATETIME
        if base == "BYTEA":
            return LogicalType.BINARY
        if base in ("JSON", "JSONB"):
            return LogicalType.JSON
        if base == "UUID":
            return LogicalType.UUID
        return LogicalType.UNKNOWN


class DuckDBTypeMapper(TypeMapper):
    """Type mapper for DuckDB database types."""

    def _map(self, type_upper: str) -> LogicalType:
        if type_upper.endswith("[]") or type_upper.startswith(("STRUCT", "MAP", "LIST", "UNION")):
            return LogicalType.UNKNOWN

        # String types
        if any(t in type_upper for t in ["VARCHAR", "TEXT", "STRING", "CHAR", "BPCHAR"]):
            return LogicalType.TEXT
        elif "UUID" in type_upper:
            return LogicalType.UUID
        elif "JSON" in type_upper:
            return LogicalType.JSON

        # Integer types
        elif any(t in type_upper for t in ["BIGINT", "HUGEINT", "INTEGER", "SMALLINT", "TINYINT"]) or type_upper == "INT":
            return LogicalType.INTEGER
        elif any(t in type_upper for t in ["UBIGINT", "UINTEGER", "USMALLINT", "UTINYINT", "UHUGEINT"]):
            return LogicalType.INTEGER

        # Floating point types
        elif any(t in type_upper for t in ["DOUBLE", "FLOAT", "REAL", "NUMERIC", "DECIMAL"]):
            return LogicalType.FLOAT

        # Boolean
        elif any(t in type_upper for t in ["BOOLEAN", "BOOL"]):
            return LogicalType.BOOLEAN

        # Date/Time types
        elif type_upper == "DATE" or "TIMESTAMP" in type_upper or type_upper.startswith("TIME"):
            return LogicalType.DATETIME

        # Binary types
        elif "BLOB" in type_upper or "BYTEA" in type_upper or "VARBINARY" in type_upper:
            return LogicalType.BINARY

        elif type_upper.startswith("ENUM"):
            return LogicalType.ENUM

        return LogicalType.UNKNOWN


def get_type_mapper(dialect, overrides: Optional[Dict[str, str]] = None) -> TypeMapper:
    """Return the type mapper for a dialect."""
    dialect = Dialect.parse(dialect)
    mappers = {
        Dialect.SQLITE: SQLiteTypeMapper,
        Dialect.POSTGRES: PostgresTypeMapper,
        Dialect.DUCKDB: DuckDBTypeMapper,
    }
    return mappers[dialect](overrides)
