"""Discovery pipeline: introspect, build the snapshot, resolve relationships."""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from .analysis.relationships import RelationshipGraph, RelationshipResolver
from .config import DiscoveryConfig
from .database.base import DialectIntrospector
from .database.builder import SchemaBuilder
from .database.executor import QueryExecutor
from .database.factory import create_introspector
from .database.models import RelationshipDescriptor, SchemaSnapshot
from .errors import RelationshipAmbiguityWarning, SchemaError

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    """Outcome of one discovery pass.

    ``success`` stays True when individual tables were degraded; those
    tables are marked partial in the snapshot and listed in ``errors``.
    """
    success: bool
    snapshot: Optional[SchemaSnapshot] = None
    relationships: List[RelationshipDescriptor] = field(default_factory=list)
    graph: Optional[RelationshipGraph] = None
    errors: List[SchemaError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    ambiguities: List[RelationshipAmbiguityWarning] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class SchemaDiscovery:
    """Runs one full discovery pass against a database."""

    def __init__(self, introspector: DialectIntrospector, config: Optional[DiscoveryConfig] = None):
        """Initialize discovery.

        Args:
            introspector: Dialect introspector bound to a connection
            config: Table filters, view handling and type overrides
        """
        self.introspector = introspector
        self.config = config or DiscoveryConfig(dialect=introspector.dialect.value)

    @classmethod
    def for_executor(cls, executor: QueryExecutor, config: Optional[DiscoveryConfig] = None) -> "SchemaDiscovery":
        """Create discovery for an executor, picking the introspector by dialect."""
        config = config or DiscoveryConfig(dialect=executor.dialect.value)
        introspector = create_introspector(executor, namespace=config.namespace)
        return cls(introspector, config)

    @property
    def dialect(self):
        return self.introspector.dialect

    def run(
        self,
        version: int = 1,
        cancel_event: Optional[threading.Event] = None,
        previous: Optional[SchemaSnapshot] = None,
    ) -> DiscoveryResult:
        """Discover the schema.

        Args:
            version: Version number to stamp on the snapshot
            cancel_event: Checked between tables; set it to abandon the pass
            previous: Last good snapshot; facets that fail to read are kept from it

        Returns:
            DiscoveryResult with snapshot, relationships and any per-table errors

        Raises:
            ConnectionError: If the database cannot be read at all
            DiscoveryCancelledError: If cancel_event is set during the pass
        """
        introspection = self.introspector.introspect(self.config, cancel_event=cancel_event)

        builder = SchemaBuilder(self.dialect, self.config.type_overrides)
        snapshot = builder.build(introspection.facts, version=version, previous=previous)

        resolver = RelationshipResolver()
        relationships = resolver.resolve(snapshot)
        graph = RelationshipGraph(
            snapshot,
            relationships,
            detect_many_to_many=self.config.detect_many_to_many,
        )

        warnings = list(introspection.warnings) + list(builder.warnings)
        warnings.extend(w.message for w in resolver.warnings)

        logger.info(
            "Discovered %d tables and %d relationships (%d errors, %d warnings)",
            len(snapshot), len(relationships), len(introspection.errors), len(warnings),
        )
        return DiscoveryResult(
            success=True,
            snapshot=snapshot,
            relationships=relationships,
            graph=graph,
            errors=list(introspection.errors),
            warnings=warnings,
            ambiguities=list(resolver.warnings),
        )
