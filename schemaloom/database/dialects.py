"""SQL dialect identifiers, identifier quoting and parameter placeholders."""

from enum import Enum
from typing import List, Sequence


class Dialect(str, Enum):
    """Supported database dialects."""
    SQLITE = "sqlite"
    POSTGRES = "postgres"
    DUCKDB = "duckdb"

    @classmethod
    def parse(cls, value) -> "Dialect":
        """Accept a Dialect or a (case-insensitive) name, including common aliases."""
        if isinstance(value, Dialect):
            return value
        normalized = str(value).strip().lower()
        aliases = {
            "sqlite3": "sqlite",
            "postgresql": "postgres",
            "pg": "postgres",
        }
        normalized = aliases.get(normalized, normalized)
        return cls(normalized)

    @property
    def default_namespace(self) -> str:
        if self is Dialect.POSTGRES:
            return "public"
        return "main"

    def quote_identifier(self, name: str) -> str:
        """Quote a discovered identifier (table/column name) for this dialect.

        All three dialects accept ANSI double quotes; embedded quotes are doubled.
        """
        return '"' + str(name).replace('"', '""') + '"'

    def quote_qualified(self, name: str, namespace: str = None) -> str:
        if namespace:
            return f"{self.quote_identifier(namespace)}.{self.quote_identifier(name)}"
        return self.quote_identifier(name)

    @property
    def placeholder(self) -> str:
        """Positional placeholder understood by this dialect's DB-API driver."""
        if self is Dialect.POSTGRES:
            return "%s"
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def quote_all(self, names: Sequence[str]) -> List[str]:
        return [self.quote_identifier(n) for n in names]
