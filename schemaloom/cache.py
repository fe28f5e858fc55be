"""Schema cache with change detection and single-flight refresh."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .analysis.changes import diff_snapshots
from .analysis.models import SchemaChange
from .analysis.relationships import RelationshipGraph
from .database.models import RelationshipDescriptor, SchemaSnapshot, TableDescriptor
from .discovery import SchemaDiscovery
from .errors import CacheStaleError, DiscoveryCancelledError, SchemaError

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[SchemaChange], SchemaSnapshot], None]


class CacheState(str, Enum):
    EMPTY = "empty"
    POPULATED = "populated"
    STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    """Everything published together for one snapshot version."""
    snapshot: SchemaSnapshot
    relationships: Tuple[RelationshipDescriptor, ...]
    graph: RelationshipGraph
    checked_at: float


@dataclass
class RefreshResult:
    """Outcome of one refresh.

    ``snapshot`` is the cache's current snapshot after the refresh, which is
    the previous one when nothing changed or the refresh failed.
    """
    success: bool
    snapshot: Optional[SchemaSnapshot] = None
    changes: List[SchemaChange] = field(default_factory=list)
    errors: List[SchemaError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    published: bool = False

    @property
    def version(self) -> Optional[int]:
        return self.snapshot.version if self.snapshot is not None else None


class _RefreshAttempt:
    """One in-flight discovery. ``committed`` flips under the cache lock at
    the moment the attempt decides its outcome; cancellation after that
    point has no effect."""

    def __init__(self):
        self.cancel = threading.Event()
        self.committed = False
        self.future: Optional[Future] = None


class SchemaCache:
    """Holds the current schema snapshot and publishes new versions.

    State machine: ``EMPTY -> POPULATED(v1) -> STALE -> POPULATED(v2) ...``

    Reads never lock: the published state is a single immutable CacheEntry
    that is swapped on publication. At most one discovery runs per cache;
    callers asking for a refresh while one is running share its result.

    Callbacks registered with ``on_change`` run on the refresh worker thread
    and must not wait on ``refresh()`` themselves.
    """

    def __init__(
        self,
        discovery: SchemaDiscovery,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            discovery: Discovery pipeline bound to the database
            ttl: Seconds after which reads schedule a background refresh;
                defaults to the discovery config's cache_ttl
            clock: Monotonic time source
        """
        self.discovery = discovery
        self.ttl = ttl if ttl is not None else discovery.config.cache_ttl
        self._clock = clock

        self._lock = threading.RLock()
        self._entry: Optional[CacheEntry] = None
        self._previous: Optional[SchemaSnapshot] = None
        self._pinned: Dict[int, SchemaSnapshot] = {}
        self._state = CacheState.EMPTY
        self._version = 0
        self._attempt: Optional[_RefreshAttempt] = None
        self._listeners: List[ChangeCallback] = []
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="schemaloom-refresh")
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection of the cache itself
    # ------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def version(self) -> int:
        """Version of the current snapshot, 0 while empty."""
        entry = self._entry
        return entry.snapshot.version if entry is not None else 0

    @property
    def previous(self) -> Optional[SchemaSnapshot]:
        """The snapshot that was current before the latest publication."""
        return self._previous

    @property
    def dialect(self):
        return self.discovery.dialect

    @property
    def refreshing(self) -> bool:
        attempt = self._attempt
        return attempt is not None and not attempt.future.done()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _current(self) -> CacheEntry:
        entry = self._entry
        if entry is None:
            result = self.refresh()
            if not result.success:
                if result.errors:
                    raise result.errors[0]
                raise CacheStaleError("Initial schema discovery failed")
            entry = self._entry
        self._check_ttl(entry)
        return entry

    def current_entry(self) -> CacheEntry:
        """Snapshot, relationships and graph of one version, read together."""
        return self._current()

    def get_snapshot(self) -> SchemaSnapshot:
        """Return the current snapshot, discovering it on first use."""
        return self._current().snapshot

    def get_table(self, name: str, fresh: bool = False) -> TableDescriptor:
        """Look up a table in the current snapshot.

        Args:
            name: Table name
            fresh: Refresh first and fail instead of serving a stale snapshot

        Raises:
            SchemaNotFoundError: If the table is not in the snapshot
            CacheStaleError: If ``fresh`` was requested and the refresh failed
        """
        if fresh:
            result = self.refresh()
            if not result.success:
                raise CacheStaleError(
                    f"Could not refresh schema before reading table {name}",
                    errors=result.errors,
                )
            return result.snapshot.table(name)
        return self._current().snapshot.table(name)

    def get_relationships(self) -> List[RelationshipDescriptor]:
        """Forward relationships of the current snapshot."""
        return list(self._current().relationships)

    def get_graph(self) -> RelationshipGraph:
        """Navigable relationships (forward, inverse and many-to-many)."""
        return self._current().graph

    def get_relationship(self, table: str, name: str) -> RelationshipDescriptor:
        return self._current().graph.get(table, name)

    def get_version(self, version: int) -> Optional[SchemaSnapshot]:
        """Return a snapshot still held by the cache (current, previous or pinned)."""
        entry = self._entry
        if entry is not None and entry.snapshot.version == version:
            return entry.snapshot
        if self._previous is not None and self._previous.version == version:
            return self._previous
        return self._pinned.get(version)

    def _check_ttl(self, entry: CacheEntry):
        if self.ttl is None or self._closed:
            return
        if self._clock() - entry.checked_at < self.ttl:
            return
        with self._lock:
            if self.refreshing or self._entry is not entry:
                return
            logger.debug("Schema cache TTL expired for v%d; scheduling refresh", entry.snapshot.version)
            self._start_refresh()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def mark_stale(self):
        """Flag the current snapshot as possibly out of date (e.g. after drift was noticed)."""
        with self._lock:
            if self._state is CacheState.POPULATED:
                self._state = CacheState.STALE

    def _start_refresh(self) -> _RefreshAttempt:
        with self._lock:
            if self._closed:
                raise RuntimeError("Schema cache is closed")
            attempt = self._attempt
            if attempt is not None and not attempt.future.done() and not attempt.cancel.is_set():
                return attempt
            attempt = _RefreshAttempt()
            attempt.future = self._worker.submit(self._run_refresh, attempt)
            self._attempt = attempt
            if self._state is CacheState.POPULATED:
                self._state = CacheState.STALE
            return attempt

    def refresh(self, timeout: Optional[float] = None) -> RefreshResult:
        """Re-discover the schema and publish it if it changed.

        Joins the in-flight attempt when there is one. When ``timeout``
        expires the attempt is cancelled for every caller waiting on it and
        nothing is published.

        Args:
            timeout: Seconds to wait for discovery

        Returns:
            RefreshResult with the changes against the previous snapshot

        Raises:
            DiscoveryCancelledError: If the attempt was cancelled or timed out
        """
        attempt = self._start_refresh()
        try:
            return attempt.future.result(timeout=timeout)
        except FutureTimeoutError:
            with self._lock:
                if not attempt.committed:
                    attempt.cancel.set()
                    raise DiscoveryCancelledError(f"Schema refresh timed out after {timeout}s")
            # The attempt committed just as the timeout fired
            return attempt.future.result()

    def detect_changes(self) -> List[SchemaChange]:
        """Run discovery and return the changes against the last published snapshot.

        Raises:
            SchemaError: The underlying error when discovery fails outright
        """
        result = self.refresh()
        if not result.success:
            if result.errors:
                raise result.errors[0]
            raise CacheStaleError("Schema discovery failed")
        return result.changes

    def _run_refresh(self, attempt: _RefreshAttempt) -> RefreshResult:
        with self._lock:
            current = self._entry
            next_version = self._version + 1

        try:
            discovered = self.discovery.run(
                version=next_version,
                cancel_event=attempt.cancel,
                previous=current.snapshot if current is not None else None,
            )
        except DiscoveryCancelledError:
            logger.info("Schema refresh cancelled")
            raise
        except SchemaError as e:
            logger.warning("Schema refresh failed: %s", e.message)
            with self._lock:
                attempt.committed = True
                if current is not None and self._entry is current:
                    # next TTL retry is one full TTL from now
                    self._entry = replace(current, checked_at=self._clock())
            return RefreshResult(
                success=False,
                snapshot=current.snapshot if current is not None else None,
                errors=[e],
            )

        before = current.snapshot if current is not None else None
        changes = diff_snapshots(before, discovered.snapshot)

        with self._lock:
            if attempt.cancel.is_set():
                logger.info("Schema refresh cancelled before publication")
                raise DiscoveryCancelledError()
            attempt.committed = True

            now = self._clock()
            published = before is None or discovered.snapshot != before
            if published:
                self._version = next_version
                self._previous = before
                self._entry = CacheEntry(
                    snapshot=discovered.snapshot,
                    relationships=tuple(discovered.relationships),
                    graph=discovered.graph,
                    checked_at=now,
                )
            else:
                self._entry = CacheEntry(
                    snapshot=current.snapshot,
                    relationships=current.relationships,
                    graph=current.graph,
                    checked_at=now,
                )
            self._state = CacheState.POPULATED
            snapshot = self._entry.snapshot
            listeners = list(self._listeners)

        if published:
            logger.info("Published schema snapshot v%d (%d changes)", snapshot.version, len(changes))
            for callback in listeners:
                try:
                    callback(changes, snapshot)
                except Exception:
                    logger.exception("Schema change callback %r failed", callback)
        else:
            logger.debug("Schema unchanged at v%d", snapshot.version)

        return RefreshResult(
            success=True,
            snapshot=snapshot,
            changes=changes,
            errors=list(discovered.errors),
            warnings=list(discovered.warnings),
            published=published,
        )

    # ------------------------------------------------------------------
    # Subscriptions and retention
    # ------------------------------------------------------------------

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register ``callback(changes, snapshot)`` for every publication.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def pin(self, version: Optional[int] = None) -> SchemaSnapshot:
        """Keep a snapshot reachable after newer versions are published.

        Args:
            version: Version to pin; defaults to the current one

        Raises:
            ValueError: If the version is no longer held by the cache
        """
        snapshot = self.get_snapshot() if version is None else self.get_version(version)
        if snapshot is None:
            raise ValueError(f"Snapshot version {version} is no longer available")
        with self._lock:
            self._pinned[snapshot.version] = snapshot
        return snapshot

    def unpin(self, version: int):
        with self._lock:
            self._pinned.pop(version, None)

    @property
    def pinned_versions(self) -> List[int]:
        return sorted(self._pinned)

    def close(self):
        """Cancel any in-flight refresh and stop the worker."""
        with self._lock:
            self._closed = True
            if self._attempt is not None and not self._attempt.committed:
                self._attempt.cancel.set()
        self._worker.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
