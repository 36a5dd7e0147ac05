"""
Cache Module: Context Bundle Mirror

Keeps one on-disk entry per context bundle, tracks freshness, and
refreshes bundles from remote storage. Refresh is the only mutator;
concurrent refreshes of the same bundle inside one process share a
single fetch.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..api.storage import BundleSource
from ..exceptions import CacheWriteError, NotFoundError, PamError
from ..models.enums import StaleReason
from ..models.schemas import (
    BundleRefreshOutcome,
    BundleStatus,
    CacheStats,
    ContextBundle,
    RefreshReport,
    utc_now,
)
from ..utils.logging import get_logger
from .config import PamConfig
from .storage import atomic_write_json, read_json, safe_filename

logger = get_logger(__name__)

T = TypeVar("T")

BUNDLE_ALIASES = {
    "git": "github",
    "db": "database",
    "ambition": "daily",
    "daily-ambition": "daily",
}


class _Flight(Generic[T]):
    """One in-progress call shared by every waiter on the same key."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Optional[T] = None
        self.error: Optional[BaseException] = None
        self.waiters = 0


class SingleFlight(Generic[T]):
    """
    Keyed guard allowing at most one in-flight call per key.

    The first caller for a key runs the function; callers arriving while
    it runs wait for it and receive the same result (or exception).

    Example:
        flights = SingleFlight()
        bundle = flights.do("github", lambda: fetch("github"))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flights: Dict[str, _Flight[T]] = {}

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._flights

    def waiting(self, key: str) -> int:
        """Number of callers blocked on the in-flight call for ``key``."""
        with self._lock:
            flight = self._flights.get(key)
            return flight.waiters if flight is not None else 0

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
            else:
                flight.waiters += 1

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result  # type: ignore[return-value]

        try:
            flight.result = fn()
            return flight.result
        except BaseException as e:
            flight.error = e
            raise
        finally:
            # Released on every exit path, including failure
            with self._lock:
                self._flights.pop(key, None)
            flight.done.set()


class ContextCacheManager:
    """
    On-disk mirror of named context bundles.

    Features:
    - One JSON entry per bundle, replaced atomically on refresh
    - Age-based staleness from local timestamps only
    - Optional remote version check (HEAD) for ``status(freshness=True)``
    - Per-bundle failure isolation in bulk refresh
    - Single-flight refresh per bundle name

    Example:
        cache = ContextCacheManager(config, HttpBundleSource(client), paths.cache_dir)
        report = cache.refresh()
        bundle = cache.get("github")
    """

    def __init__(
        self,
        config: PamConfig,
        source: BundleSource,
        cache_dir: Path,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the cache manager.

        Args:
            config: Configuration (freshness window and bundle names)
            source: Remote storage the bundles are mirrored from
            cache_dir: Directory holding one entry per bundle
            clock: Time source, overridable for tests
        """
        self.config = config
        self.source = source
        self.cache_dir = Path(cache_dir)
        self.freshness_window_seconds = config.freshness_window_seconds
        self._clock = clock or utc_now
        self._flights: SingleFlight[ContextBundle] = SingleFlight()

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> str:
        """Canonical bundle name for a friendly name or alias."""
        key = name.strip().lower()
        return BUNDLE_ALIASES.get(key, key)

    def cached_bundles(self) -> List[str]:
        names = []
        if not self.cache_dir.exists():
            return names
        for entry in sorted(self.cache_dir.glob("*.json")):
            bundle = self._read_entry(entry)
            if bundle is not None:
                names.append(bundle.name)
        return names

    def known_bundles(self) -> List[str]:
        """Configured bundles plus anything already cached."""
        return sorted(set(self.config.context_bundles) | set(self.cached_bundles()))

    def _entry_path(self, name: str) -> Path:
        return self.cache_dir / f"{safe_filename(name)}.json"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read_entry(self, path: Path) -> Optional[ContextBundle]:
        try:
            data = read_json(path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("cache_entry_unreadable", path=str(path), error=str(e))
            return None
        try:
            bundle = ContextBundle(**data)
        except (TypeError, ValueError) as e:
            logger.warning("cache_entry_invalid", path=str(path), error=str(e))
            return None
        return bundle.model_copy(update={"freshness_window_seconds": self.freshness_window_seconds})

    def _load(self, name: str) -> Optional[ContextBundle]:
        return self._read_entry(self._entry_path(name))

    def get(self, name: str) -> ContextBundle:
        """
        Return a cached bundle without network access.

        Raises:
            NotFoundError: If the bundle has never been fetched
        """
        name = self.resolve(name)
        bundle = self._load(name)
        if bundle is None:
            raise NotFoundError("context bundle", name)
        return bundle

    def status(self, name: Optional[str] = None, freshness: bool = False) -> Dict[str, BundleStatus]:
        """
        Report freshness for one bundle or all known bundles.

        Without ``freshness`` only local timestamps are consulted and no
        network call is made. With it, each cached bundle's remote version
        is checked with a HEAD-style request.

        Raises:
            NotFoundError: If ``name`` is neither configured nor cached
        """
        if name is not None:
            resolved = self.resolve(name)
            if resolved not in self.config.context_bundles and self._load(resolved) is None:
                raise NotFoundError("context bundle", resolved)
            names = [resolved]
        else:
            names = self.known_bundles()

        now = self._clock()
        return {n: self._status_of(n, now, freshness) for n in names}

    def _status_of(self, name: str, now: datetime, freshness: bool) -> BundleStatus:
        bundle = self._load(name)
        if bundle is None:
            return BundleStatus(
                name=name,
                cached=False,
                is_stale=True,
                stale_reason=StaleReason.NOT_CACHED,
            )

        reason = StaleReason.AGE if bundle.is_expired(now) else None
        remote_checked = False
        check_error = None

        if freshness:
            try:
                remote_version = self.source.head(bundle.object_name)
                remote_checked = True
                if (
                    remote_version is not None
                    and bundle.remote_version is not None
                    and remote_version != bundle.remote_version
                ):
                    reason = StaleReason.REMOTE_CHANGED
            except PamError as e:
                check_error = e.user_message
                logger.warning("remote_version_check_failed", bundle=name, error=str(e))

        return BundleStatus(
            name=name,
            cached=True,
            fetched_at=bundle.fetched_at,
            age_seconds=bundle.age(now).total_seconds(),
            size_bytes=bundle.size_bytes,
            remote_version=bundle.remote_version,
            is_stale=reason is not None,
            stale_reason=reason,
            remote_checked=remote_checked,
            remote_check_error=check_error,
        )

    def stats(self) -> CacheStats:
        """Aggregate statistics from local state only."""
        now = self._clock()
        bundles = [b for b in (self._load(n) for n in self.cached_bundles()) if b is not None]
        total_bytes = sum(b.size_bytes for b in bundles)

        return CacheStats(
            bundle_count=len(bundles),
            total_bytes=total_bytes,
            oldest_fetched_at=min((b.fetched_at for b in bundles), default=None),
            stale_count=sum(1 for b in bundles if b.is_expired(now)),
            estimated_tokens=total_bytes // 4,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def refresh(self, name: Optional[str] = None) -> RefreshReport:
        """
        Fetch full content for one bundle, or for every known bundle.

        Each bundle is fetched completely before its cache entry is
        replaced. A failure for one bundle is recorded in the report and
        does not stop the others.
        """
        names = [self.resolve(name)] if name is not None else self.known_bundles()
        report = RefreshReport()

        for bundle_name in names:
            report.outcomes.append(self._refresh_one(bundle_name))

        logger.info(
            "context_refresh_completed",
            requested=len(names),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    def _refresh_one(self, name: str) -> BundleRefreshOutcome:
        try:
            bundle = self._flights.do(name, lambda: self._fetch_and_store(name))
        except Exception as e:
            error = e.user_message if isinstance(e, PamError) else f"{type(e).__name__}: {e}"
            logger.error("bundle_refresh_failed", bundle=name, error=error)
            return BundleRefreshOutcome(name=name, success=False, error=error)

        return BundleRefreshOutcome(
            name=name,
            success=True,
            size_bytes=bundle.size_bytes,
            remote_version=bundle.remote_version,
            fetched_at=bundle.fetched_at,
        )

    def _fetch_and_store(self, name: str) -> ContextBundle:
        object_name = self.config.object_name_for(name)
        content, version = self.source.fetch(object_name)

        fetched_at = self._clock()
        previous = self._load(name)
        if previous is not None and previous.fetched_at > fetched_at:
            fetched_at = previous.fetched_at

        bundle = ContextBundle(
            name=name,
            object_name=object_name,
            content=content,
            fetched_at=fetched_at,
            remote_version=version,
            freshness_window_seconds=self.freshness_window_seconds,
        )

        path = self._entry_path(name)
        try:
            atomic_write_json(path, bundle.model_dump(mode="json"))
        except OSError as e:
            raise CacheWriteError(path, str(e)) from e

        logger.info(
            "bundle_refreshed",
            bundle=name,
            object_name=object_name,
            bytes=bundle.size_bytes,
            remote_version=version,
        )
        return bundle

    def evict(self, name: str) -> bool:
        """Delete one cached bundle. Returns False if it was not cached."""
        path = self._entry_path(self.resolve(name))
        if not path.exists():
            return False
        path.unlink()
        logger.info("bundle_evicted", bundle=name)
        return True

    def clear(self) -> int:
        """Delete every cached bundle and return how many were removed."""
        count = 0
        for name in self.cached_bundles():
            if self.evict(name):
                count += 1
        logger.info("cache_cleared", count=count)
        return count

    def describe(self) -> Dict[str, Any]:
        """Known bundles with the remote object each mirrors."""
        return {name: self.config.object_name_for(name) for name in self.known_bundles()}
