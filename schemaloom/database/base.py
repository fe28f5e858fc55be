"""Abstract base class for dialect introspection."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import DiscoveryConfig
from ..errors import (
    ConnectionError,
    DiscoveryCancelledError,
    IntrospectionError,
    SchemaError,
)
from .dialects import Dialect
from .executor import QueryExecutor
from .models import (
    RawCheckFact,
    RawColumnFact,
    RawForeignKeyFact,
    RawIndexFact,
    RawSchemaFacts,
    RawTableFact,
    RawUniqueFact,
)

logger = logging.getLogger(__name__)


@dataclass
class IntrospectionResult:
    """Raw facts from one pass plus the per-table errors that degraded it."""
    facts: RawSchemaFacts
    errors: List[SchemaError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class DialectIntrospector(ABC):
    """Abstract base class for dialect introspection.

    Subclasses read their system catalogs through a QueryExecutor and return
    raw fact records. Each subclass folds its own auto-increment notation and
    length/precision metadata into the canonical RawColumnFact fields.
    """

    dialect: Dialect

    # Override in subclasses to hide internal tables
    EXCLUDED_TABLES: set = set()

    def __init__(self, executor: QueryExecutor, namespace: Optional[str] = None):
        """Initialize the introspector.

        Args:
            executor: Query executor connected to the database
            namespace: Schema to introspect; defaults to the dialect's default
        """
        self.executor = executor
        self.namespace = namespace or self.dialect.default_namespace

    def query(self, sql: str, *params) -> List[dict]:
        return self.executor.execute(sql, params)

    def quote(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    @abstractmethod
    def discover_tables(self, include_views: bool = True) -> List[RawTableFact]:
        """List the tables (and optionally views) in the namespace.

        Returns:
            RawTableFact records carrying only name, namespace and view flag
        """
        pass

    @abstractmethod
    def get_columns(self, table: str) -> List[RawColumnFact]:
        """Get all columns for a table, in ordinal order."""
        pass

    @abstractmethod
    def get_indexes(self, table: str) -> List[RawIndexFact]:
        """Get all indexes for a table."""
        pass

    @abstractmethod
    def get_foreign_keys(self, table: str) -> List[RawForeignKeyFact]:
        """Get foreign keys for a table, in declaration order."""
        pass

    @abstractmethod
    def get_unique_constraints(self, table: str) -> List[RawUniqueFact]:
        """Get declared unique constraints for a table."""
        pass

    @abstractmethod
    def get_check_constraints(self, table: str) -> List[RawCheckFact]:
        """Get check constraints for a table."""
        pass

    def introspect(
        self,
        config: Optional[DiscoveryConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> IntrospectionResult:
        """Introspect every accepted table and collect raw facts.

        A failure reading one facet of one table degrades only that table.
        Failures enumerating the tables, and connection-level failures at any
        point, abort the pass.

        Args:
            config: Table filters and view handling
            cancel_event: Checked between tables; when set the pass stops

        Returns:
            IntrospectionResult with facts, errors and warnings

        Raises:
            ConnectionError: If the table list cannot be read or the connection drops
            DiscoveryCancelledError: If cancel_event is set during the pass
        """
        config = config or DiscoveryConfig(dialect=self.dialect.value)
        self._check_cancelled(cancel_event)

        try:
            tables = self.discover_tables(include_views=config.include_views)
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(
                f"Failed to enumerate tables in {self.dialect.value} namespace {self.namespace}: {e}",
                details={"dialect": self.dialect.value, "namespace": self.namespace},
            ) from e

        result = IntrospectionResult(facts=RawSchemaFacts(dialect=self.dialect.value))

        for fact in tables:
            if fact.name in self.EXCLUDED_TABLES or not config.accepts_table(fact.name):
                logger.debug("Skipping table %s", fact.name)
                continue
            self._check_cancelled(cancel_event)

            fact.columns = self._read_facet(fact, "columns", self.get_columns, result)
            fact.indexes = self._read_facet(fact, "indexes", self.get_indexes, result)
            fact.foreign_keys = self._read_facet(fact, "foreign_keys", self.get_foreign_keys, result)
            fact.unique_constraints = self._read_facet(
                fact, "unique_constraints", self.get_unique_constraints, result
            )
            fact.check_constraints = self._read_facet(
                fact, "check_constraints", self.get_check_constraints, result
            )
            result.facts.tables.append(fact)

        self._check_cancelled(cancel_event)
        logger.info(
            "Introspected %d tables from %s (%d errors)",
            len(result.facts.tables), self.dialect.value, len(result.errors),
        )
        return result

    def _read_facet(self, fact: RawTableFact, facet: str, reader: Callable, result: IntrospectionResult) -> list:
        try:
            return list(reader(fact.name))
        except (ConnectionError, DiscoveryCancelledError):
            raise
        except Exception as e:
            error = IntrospectionError(
                f"Failed to read {facet} for table {fact.name}: {e}",
                table=fact.name,
                facet=facet,
            )
            logger.warning("%s", error.message)
            fact.partial = True
            fact.failed_facets.append(facet)
            fact.warnings.append(error.message)
            result.errors.append(error)
            result.warnings.append(error.message)
            return []

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise DiscoveryCancelledError()
