"""Configuration management for schemaloom."""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Optional[str]:
    """Find .env file in multiple locations.

    Search order:
    1. Current working directory
    2. ~/.schemaloom/.env
    """
    if os.path.exists(".env"):
        return ".env"

    user_env = Path.home() / ".schemaloom" / ".env"
    if user_env.exists():
        return str(user_env)

    return None


@dataclass
class DiscoveryConfig:
    """Options honoured by discovery, the builder and the cache.

    Table filters accept exact names or shell-style globs (``tmp_*``).
    """
    dialect: str = "sqlite"
    namespace: Optional[str] = None
    include_tables: List[str] = field(default_factory=list)
    exclude_tables: List[str] = field(default_factory=list)
    include_views: bool = True
    cache_ttl: Optional[float] = None  # seconds; advisory only
    type_overrides: Dict[str, str] = field(default_factory=dict)
    detect_many_to_many: bool = True

    def accepts_table(self, name: str) -> bool:
        """Apply include/exclude filters to a table name."""
        if self.include_tables and not any(fnmatch.fnmatchcase(name, p) for p in self.include_tables):
            return False
        return not any(fnmatch.fnmatchcase(name, p) for p in self.exclude_tables)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEMALOOM_",
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dialect: str = Field(
        default="sqlite",
        description="Database dialect: sqlite, postgres or duckdb"
    )
    database: str = Field(
        default=":memory:",
        description="SQLite/DuckDB file path, or PostgreSQL DSN"
    )
    namespace: Optional[str] = Field(
        default=None,
        description="Schema to introspect (default: public for PostgreSQL, main otherwise)"
    )
    include_tables: List[str] = Field(
        default_factory=list,
        description="Only introspect these tables (names or globs)"
    )
    exclude_tables: List[str] = Field(
        default_factory=list,
        description="Skip these tables (names or globs)"
    )
    include_views: bool = Field(
        default=True,
        description="Include views in discovery"
    )
    cache_ttl: Optional[float] = Field(
        default=None,
        description="Seconds before a cached snapshot is checked in the background (advisory)"
    )
    type_overrides: Dict[str, str] = Field(
        default_factory=dict,
        description="Native type name to logical type overrides, e.g. {\"citext\": \"text\"}"
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI"
    )

    def to_discovery_config(self) -> DiscoveryConfig:
        return DiscoveryConfig(
            dialect=self.dialect,
            namespace=self.namespace,
            include_tables=list(self.include_tables),
            exclude_tables=list(self.exclude_tables),
            include_views=self.include_views,
            cache_ttl=self.cache_ttl,
            type_overrides=dict(self.type_overrides),
        )
