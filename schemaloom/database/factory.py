"""Introspector lookup by dialect."""

from typing import Dict, Optional, Type

from .base import DialectIntrospector
from .dialects import Dialect
from .duckdb import DuckDBIntrospector
from .executor import QueryExecutor
from .postgres import PostgresIntrospector
from .sqlite import SQLiteIntrospector

INTROSPECTORS: Dict[Dialect, Type[DialectIntrospector]] = {
    Dialect.SQLITE: SQLiteIntrospector,
    Dialect.POSTGRES: PostgresIntrospector,
    Dialect.DUCKDB: DuckDBIntrospector,
}


def create_introspector(
    executor: QueryExecutor,
    dialect=None,
    namespace: Optional[str] = None,
) -> DialectIntrospector:
    """Create the introspector matching an executor's dialect.

    Args:
        executor: Query executor connected to the database
        dialect: Override for the executor's dialect
        namespace: Schema to introspect

    Returns:
        A DialectIntrospector for the dialect

    Raises:
        ValueError: If the dialect is not supported
    """
    dialect = Dialect.parse(dialect or executor.dialect)
    introspector_class = INTROSPECTORS.get(dialect)
    if introspector_class is None:
        raise ValueError(f"No introspector registered for dialect: {dialect.value}")
    return introspector_class(executor, namespace=namespace)
