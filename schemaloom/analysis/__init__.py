"""Schema analysis module.

This module derives higher-level structure from a canonical snapshot:
- Relationship cardinality from foreign keys and unique keys
- Inverse and many-to-many navigation (junction tables)
- Structural patterns (self references, cycles)
- Change events between two snapshots
"""

from schemaloom.analysis.models import (
    ChangeKind,
    RelationshipPatterns,
    SchemaChange,
)
from schemaloom.analysis.relationships import (
    RelationshipGraph,
    RelationshipResolver,
    analyze_patterns,
    detect_circular_references,
    find_junction_tables,
    is_junction_table,
    pluralize,
)
from schemaloom.analysis.changes import column_altered, diff_snapshots

__all__ = [
    # Models
    "ChangeKind",
    "RelationshipPatterns",
    "SchemaChange",
    # Relationships
    "RelationshipGraph",
    "RelationshipResolver",
    "analyze_patterns",
    "detect_circular_references",
    "find_junction_tables",
    "is_junction_table",
    "pluralize",
    # Changes
    "column_altered",
    "diff_snapshots",
]
