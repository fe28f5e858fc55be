"""Batched relationship loading.

Resolves a relationship for a whole set of rows with one query per hop
instead of one query per row.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .analysis.relationships import RelationshipGraph
from .cache import SchemaCache
from .database.executor import QueryExecutor
from .database.models import RelationshipDescriptor, SchemaSnapshot, TableDescriptor

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]
Key = Tuple[Any, ...]

_VIA_PREFIX = "__via_"
_KEYS = "batch_keys"


class RelationAttachments:
    """Side-map from (row identity, relationship name) to loaded results.

    Rows are never modified. The map holds a reference to every row it has
    an entry for, so row identities stay valid for its lifetime.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[int, str], Tuple[Row, Any]] = {}

    def set(self, row: Row, name: str, value: Any):
        with self._lock:
            self._entries[(id(row), name)] = (row, value)

    def get(self, row: Row, name: str, default: Any = None) -> Any:
        entry = self._entries.get((id(row), name))
        if entry is None or entry[0] is not row:
            return default
        return entry[1]

    def has(self, row: Row, name: str) -> bool:
        entry = self._entries.get((id(row), name))
        return entry is not None and entry[0] is row

    def for_row(self, row: Row) -> Dict[str, Any]:
        """All relationships loaded for one row, by name."""
        with self._lock:
            return {
                name: value
                for (row_id, name), (owner, value) in self._entries.items()
                if row_id == id(row) and owner is row
            }

    def __contains__(self, item: Tuple[Row, str]) -> bool:
        row, name = item
        return self.has(row, name)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[Row, str, Any]]:
        with self._lock:
            entries = list(self._entries.items())
        for (_, name), (row, value) in entries:
            yield row, name, value


def _split_path(path: Union[str, Sequence[str]]) -> List[str]:
    segments = path.split(".") if isinstance(path, str) else list(path)
    segments = [s.strip() for s in segments]
    if not segments or any(not s for s in segments):
        raise ValueError(f"Invalid relationship path: {path!r}")
    return segments


def _check_join_columns(rel: RelationshipDescriptor):
    """Reject relationships whose foreign key never resolved to a target key."""
    pairs = [(rel.source_columns, rel.target_columns)]
    if rel.via is not None:
        pairs = [
            (rel.source_columns, rel.via.source_columns),
            (rel.target_columns, rel.via.target_columns),
        ]
    for left, right in pairs:
        if not left or len(left) != len(right):
            raise ValueError(
                f"Relationship {rel.source_table}.{rel.name} has no key to join on in "
                f"{rel.target_table}; its foreign key is unresolved"
            )


@dataclass
class _KeyFilter:
    """SQL fragments restricting a query to a batch of join keys.

    Single-column keys become a ``WHERE ... IN`` list. Composite keys are
    bound into a ``VALUES`` table joined on every key column.
    """
    with_clause: str = ""
    join: str = ""
    where: str = ""
    params: List[Any] = field(default_factory=list)


class BatchedRelationshipLoader:
    """Loads related rows for many source rows at once.

    Each hop of a relationship path is one query: the distinct non-null join
    keys of all current rows are bound into that query, either as an ``IN``
    list or, for composite keys, as a joined ``VALUES`` table. Many-to-many
    hops join through the junction table in the same query.
    """

    def __init__(self, cache: SchemaCache, executor: QueryExecutor, max_workers: int = 4):
        """Initialize the loader.

        Args:
            cache: Schema cache providing tables and relationships
            executor: Query executor used for the data queries
            max_workers: Threads used by load_many for independent paths
        """
        self.cache = cache
        self.executor = executor
        self.max_workers = max_workers

    @property
    def dialect(self):
        return self.executor.dialect

    def load(
        self,
        rows: Iterable[Row],
        path: Union[str, Sequence[str]],
        *,
        table: str,
        into: Optional[RelationAttachments] = None,
    ) -> RelationAttachments:
        """Load a relationship path for a set of rows.

        Every hop reads the same cache entry, so a refresh published while
        the load runs does not mix schema versions.

        Args:
            rows: Source rows (mappings of column name to value) from ``table``
            path: Relationship name or dot-separated chain (``"posts.tags"``)
            table: Table the source rows come from
            into: Existing attachment map to add to

        Returns:
            The attachment map holding the results of every hop

        Raises:
            SchemaNotFoundError: If ``table`` is unknown
            RelationshipNotFoundError: If a path segment is not navigable
            ValueError: If a relationship on the path has no usable join key
        """
        attachments = into if into is not None else RelationAttachments()
        entry = self.cache.current_entry()

        relationships = []
        current = table
        for segment in _split_path(path):
            rel = self._relationship(entry.graph, current, segment)
            relationships.append(rel)
            current = rel.target_table

        sources = list(rows)
        for rel in relationships:
            sources = self._load_hop(sources, rel, attachments, entry.snapshot)
        return attachments

    def load_many(
        self,
        rows: Iterable[Row],
        paths: Iterable[Union[str, Sequence[str]]],
        *,
        table: str,
        into: Optional[RelationAttachments] = None,
    ) -> RelationAttachments:
        """Load several relationship paths for the same rows.

        Shared prefixes are loaded once. Independent branches at the same
        depth run concurrently; each branch still issues one query per hop.
        """
        attachments = into if into is not None else RelationAttachments()
        entry = self.cache.current_entry()
        graph = entry.graph

        tree: "OrderedDict[str, OrderedDict]" = OrderedDict()
        for path in paths:
            node = tree
            for segment in _split_path(path):
                node = node.setdefault(segment, OrderedDict())
        self._validate_tree(graph, table, tree)

        level = [(list(rows), table, tree)]
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="schemaloom-load") as pool:
            while level:
                jobs = []
                for sources, source_table, node in level:
                    for name, children in node.items():
                        rel = graph.get(source_table, name)
                        future = pool.submit(self._load_hop, sources, rel, attachments, entry.snapshot)
                        jobs.append((rel, children, future))

                level = []
                for rel, children, future in jobs:
                    targets = future.result()
                    if children:
                        level.append((targets, rel.target_table, children))
        return attachments

    @staticmethod
    def _relationship(graph: RelationshipGraph, table: str, name: str) -> RelationshipDescriptor:
        rel = graph.get(table, name)
        _check_join_columns(rel)
        return rel

    def _validate_tree(self, graph: RelationshipGraph, table: str, tree: Mapping[str, Mapping]):
        for name, children in tree.items():
            rel = self._relationship(graph, table, name)
            self._validate_tree(graph, rel.target_table, children)

    # ------------------------------------------------------------------
    # One hop
    # ------------------------------------------------------------------

    def _load_hop(
        self,
        rows: List[Row],
        rel: RelationshipDescriptor,
        attachments: RelationAttachments,
        snapshot: SchemaSnapshot,
    ) -> List[Row]:
        """Run one hop and return the distinct target rows that were attached."""
        if not rows:
            return []

        keys = [self._row_key(row, rel.source_columns, rel) for row in rows]
        distinct = list(OrderedDict.fromkeys(k for k in keys if k is not None))

        grouped: Dict[Key, List[Row]] = {}
        targets: List[Row] = []
        if distinct:
            if rel.via is not None:
                grouped, targets = self._fetch_through(rel, distinct, snapshot)
            else:
                grouped, targets = self._fetch(rel, distinct, snapshot)

        for row, key in zip(rows, keys):
            matches = grouped.get(key, []) if key is not None else []
            if rel.cardinality.returns_many:
                attachments.set(row, rel.name, list(matches))
            else:
                attachments.set(row, rel.name, matches[0] if matches else None)

        logger.debug(
            "Loaded %s.%s for %d rows (%d keys, %d targets)",
            rel.source_table, rel.name, len(rows), len(distinct), len(targets),
        )
        return targets

    @staticmethod
    def _row_key(row: Row, columns: Sequence[str], rel: RelationshipDescriptor) -> Optional[Key]:
        values = []
        for column in columns:
            try:
                value = row[column]
            except KeyError:
                raise ValueError(
                    f"Row from {rel.source_table} has no column {column} needed by relationship {rel.name}"
                ) from None
            if value is None:
                return None
            values.append(value)
        return tuple(values)

    def _qualified(self, table: TableDescriptor) -> str:
        return self.dialect.quote_qualified(table.name, table.namespace)

    def _key_filter(self, alias: str, columns: Sequence[str], keys: List[Key]) -> _KeyFilter:
        q = self.dialect.quote_identifier
        if len(columns) == 1:
            return _KeyFilter(
                where=f"{alias}.{q(columns[0])} IN ({self.dialect.placeholders(len(keys))})",
                params=[k[0] for k in keys],
            )

        names = [f"k{i}" for i in range(len(columns))]
        row = f"({self.dialect.placeholders(len(columns))})"
        on = " AND ".join(f"{alias}.{q(c)} = {_KEYS}.{n}" for c, n in zip(columns, names))
        return _KeyFilter(
            with_clause=f"WITH {_KEYS}({', '.join(names)}) AS (VALUES {', '.join([row] * len(keys))}) ",
            join=f" JOIN {_KEYS} ON {on}",
            params=[value for key in keys for value in key],
        )

    def _order_by(self, alias: str, target: TableDescriptor, fallback: Sequence[str]) -> List[str]:
        q = self.dialect.quote_identifier
        return [f"{alias}.{q(c)}" for c in (target.primary_key or fallback)]

    def _fetch(
        self,
        rel: RelationshipDescriptor,
        keys: List[Key],
        snapshot: SchemaSnapshot,
    ) -> Tuple[Dict[Key, List[Row]], List[Row]]:
        target = snapshot.table(rel.target_table)
        keyed = self._key_filter("t", rel.target_columns, keys)
        where = f" WHERE {keyed.where}" if keyed.where else ""
        sql = (
            f"{keyed.with_clause}SELECT t.* FROM {self._qualified(target)} AS t{keyed.join}{where} "
            f"ORDER BY {', '.join(self._order_by('t', target, rel.target_columns))}"
        )
        result = self.executor.execute(sql, keyed.params)

        grouped: Dict[Key, List[Row]] = {}
        for row in result:
            key = tuple(row[c] for c in rel.target_columns)
            grouped.setdefault(key, []).append(row)
        return grouped, result

    def _fetch_through(
        self,
        rel: RelationshipDescriptor,
        keys: List[Key],
        snapshot: SchemaSnapshot,
    ) -> Tuple[Dict[Key, List[Row]], List[Row]]:
        target = snapshot.table(rel.target_table)
        junction = snapshot.table(rel.via.table)
        q = self.dialect.quote_identifier

        via_aliases = [f"{_VIA_PREFIX}{i}" for i in range(len(rel.via.source_columns))]
        select_via = ", ".join(
            f"j.{q(c)} AS {q(alias)}" for c, alias in zip(rel.via.source_columns, via_aliases)
        )
        join_on = " AND ".join(
            f"t.{q(t)} = j.{q(j)}" for t, j in zip(rel.target_columns, rel.via.target_columns)
        )
        keyed = self._key_filter("j", rel.via.source_columns, keys)
        where = f" WHERE {keyed.where}" if keyed.where else ""
        order = self._order_by("t", target, rel.target_columns) + [f"j.{q(c)}" for c in rel.via.source_columns]
        sql = (
            f"{keyed.with_clause}SELECT t.*, {select_via} FROM {self._qualified(target)} AS t "
            f"JOIN {self._qualified(junction)} AS j ON {join_on}{keyed.join}{where} "
            f"ORDER BY {', '.join(order)}"
        )
        result = self.executor.execute(sql, keyed.params)

        # The same target row reached from several sources is one object
        identity_columns = target.primary_key or rel.target_columns
        by_identity: "OrderedDict[Key, Row]" = OrderedDict()
        grouped: Dict[Key, List[Row]] = {}
        for record in result:
            key = tuple(record[a] for a in via_aliases)
            row = {k: v for k, v in record.items() if not k.startswith(_VIA_PREFIX)}
            identity = tuple(row[c] for c in identity_columns)
            row = by_identity.setdefault(identity, row)
            grouped.setdefault(key, []).append(row)
        return grouped, list(by_identity.values())
