"""Database introspection module for schemaloom.

This module provides dialect-independent introspection with specific
implementations for SQLite, PostgreSQL and DuckDB, plus the builder that
turns their raw facts into canonical schema snapshots.
"""

from .dialects import Dialect
from .executor import (
    QueryExecutor,
    SQLiteExecutor,
    DuckDBExecutor,
    PostgresExecutor,
    create_executor,
)
from .models import (
    Cardinality,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    JunctionDescriptor,
    LogicalType,
    RawSchemaFacts,
    RelationshipDescriptor,
    SchemaSnapshot,
    TableDescriptor,
    UniqueConstraintDescriptor,
    CheckConstraintDescriptor,
)
from .base import DialectIntrospector, IntrospectionResult
from .type_mappers import (
    TypeMapper,
    SQLiteTypeMapper,
    PostgresTypeMapper,
    DuckDBTypeMapper,
    get_type_mapper,
)
from .sqlite import SQLiteIntrospector
from .postgres import PostgresIntrospector
from .duckdb import DuckDBIntrospector
from .factory import create_introspector
from .builder import SchemaBuilder

__all__ = [
    "Dialect",
    # Executors
    "QueryExecutor",
    "SQLiteExecutor",
    "DuckDBExecutor",
    "PostgresExecutor",
    "create_executor",
    # Data models
    "Cardinality",
    "ColumnDescriptor",
    "ForeignKeyDescriptor",
    "IndexDescriptor",
    "JunctionDescriptor",
    "LogicalType",
    "RawSchemaFacts",
    "RelationshipDescriptor",
    "SchemaSnapshot",
    "TableDescriptor",
    "UniqueConstraintDescriptor",
    "CheckConstraintDescriptor",
    # Base classes
    "DialectIntrospector",
    "IntrospectionResult",
    # Type mappers
    "TypeMapper",
    "SQLiteTypeMapper",
    "PostgresTypeMapper",
    "DuckDBTypeMapper",
    "get_type_mapper",
    # Introspectors
    "SQLiteIntrospector",
    "PostgresIntrospector",
    "DuckDBIntrospector",
    "create_introspector",
    # Builder
    "SchemaBuilder",
]
