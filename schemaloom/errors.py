"""Error and warning types for schemaloom."""

from typing import Optional, Dict, Any, List


class SchemaError(Exception):
    """Base exception for schemaloom errors."""

    def __init__(self, message: str, code: str = "SCHEMA_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for result objects and CLI output."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConnectionError(SchemaError):
    """Connection-level failure; fatal to the current discovery attempt."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONNECTION_ERROR", details=details)


class QueryError(SchemaError):
    """A single statement failed to execute."""

    def __init__(self, message: str, sql: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        if sql is not None:
            error_details["sql"] = sql
        super().__init__(message, code="QUERY_ERROR", details=error_details)
        self.sql = sql


class IntrospectionError(SchemaError):
    """Recoverable failure while reading one table's facts.

    Degrades only the affected table; discovery continues with the rest.
    """

    def __init__(self, message: str, table: Optional[str] = None, facet: Optional[str] = None):
        details = {}
        if table is not None:
            details["table"] = table
        if facet is not None:
            details["facet"] = facet
        super().__init__(message, code="INTROSPECTION_ERROR", details=details)
        self.table = table
        self.facet = facet


class SchemaNotFoundError(SchemaError):
    """Lookup of a table that is not in the current snapshot."""

    def __init__(self, table: str, available: Optional[List[str]] = None):
        available = available or []
        super().__init__(
            f"Table not found: {table}",
            code="SCHEMA_NOT_FOUND",
            details={"table": table, "available": available},
        )
        self.table = table
        self.available = available


class RelationshipNotFoundError(SchemaError):
    """Relationship name not navigable from the given table."""

    def __init__(self, name: str, table: str, available: Optional[List[str]] = None):
        available = available or []
        super().__init__(
            f"Relationship '{name}' not found on table '{table}'",
            code="RELATIONSHIP_NOT_FOUND",
            details={"relationship": name, "table": table, "available": available},
        )
        self.name = name
        self.table = table
        self.available = available


class CacheStaleError(SchemaError):
    """A guaranteed-fresh read was requested and the refresh failed."""

    def __init__(self, message: str, errors: Optional[List[SchemaError]] = None):
        errors = errors or []
        super().__init__(
            message,
            code="CACHE_STALE",
            details={"errors": [e.to_dict() for e in errors]},
        )
        self.errors = errors


class DiscoveryCancelledError(SchemaError):
    """A discovery attempt was cancelled or timed out before publishing."""

    def __init__(self, message: str = "Discovery was cancelled"):
        super().__init__(message, code="DISCOVERY_CANCELLED")


class RelationshipAmbiguityWarning(UserWarning):
    """Non-fatal: a relationship was given a best-effort cardinality."""

    def __init__(self, message: str, relationship: Optional[str] = None, foreign_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.relationship = relationship
        self.foreign_key = foreign_key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": "RELATIONSHIP_AMBIGUITY",
            "message": self.message,
            "details": {
                "relationship": self.relationship,
                "foreign_key": self.foreign_key,
            },
        }
