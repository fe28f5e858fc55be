"""schemaloom - canonical schema discovery, relationship inference and batched loading."""

__version__ = "0.1.0"

from .cache import CacheState, RefreshResult, SchemaCache
from .config import DiscoveryConfig, Settings
from .discovery import DiscoveryResult, SchemaDiscovery
from .loader import BatchedRelationshipLoader, RelationAttachments

__all__ = [
    "BatchedRelationshipLoader",
    "CacheState",
    "DiscoveryConfig",
    "DiscoveryResult",
    "RefreshResult",
    "RelationAttachments",
    "SchemaCache",
    "SchemaDiscovery",
    "Settings",
]
