"""In-memory cache of loaded package repositories.

Loading a package is fast but not free; the HTTP service and batch callers
ask for the same package repeatedly. :class:`PackageCache` keeps loaded
repositories keyed by package path and drops an entry when its TTL expires or
the package file on disk changes (mtime newer than when it was cached).

Quick example::

    from xsd_repository.cache import load_package_cached
    repo = load_package_cached("city.xsdpkg")        # miss: loads from disk
    repo_again = load_package_cached("city.xsdpkg")  # hit: same object
    assert repo is repo_again

The cache TTL defaults to ``XSD_REPOSITORY_CACHE_TTL`` (seconds, 3600 when
unset). Hits, misses and evictions are reported to the process monitor.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .config import get_cache_ttl
from .monitoring import get_monitor
from .package import from_package
from .repository import SchemaRepository

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value with TTL and source file mtime."""

    data: Any
    timestamp: float = field(default_factory=time.time)
    ttl: float = 3600.0
    file_mtime: float = 0.0

    def is_expired(self) -> bool:
        return time.time() - self.timestamp > self.ttl

    def is_stale(self, file_path: Path) -> bool:
        """Check if cache is stale based on file modification time."""
        if not file_path.exists():
            return True
        return file_path.stat().st_mtime > self.file_mtime


class PackageCache:
    """Thread-safe TTL cache for repositories loaded from packages."""

    def __init__(self, default_ttl: float = 3600.0, enable_monitoring: bool = True):
        self.default_ttl = default_ttl
        self.enable_monitoring = enable_monitoring
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def _make_key(self, *args) -> str:
        """Create cache key from arguments."""
        return hashlib.md5(str(args).encode()).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._record("miss")
                return None
            if entry.is_expired():
                del self._cache[key]
                self._record("miss")
                self._record("eviction")
                return None
            self._record("hit")
            return entry.data

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        file_path: Optional[Path] = None,
    ) -> None:
        file_mtime = 0.0
        if file_path is not None and file_path.exists():
            file_mtime = file_path.stat().st_mtime
        with self._lock:
            self._cache[key] = CacheEntry(
                data=data, ttl=ttl or self.default_ttl, file_mtime=file_mtime
            )
            if self.enable_monitoring:
                get_monitor().update_cache_size(len(self._cache))

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            if self.enable_monitoring:
                get_monitor().update_cache_size(0)

    def check_file_staleness(self, key: str, file_path: Path) -> bool:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return True
        return entry.is_stale(file_path)

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cache_size": len(self._cache),
                "default_ttl": self.default_ttl,
                "monitoring_enabled": self.enable_monitoring,
            }

    def load(
        self, path: Union[str, Path], force_refresh: bool = False
    ) -> SchemaRepository:
        """Return the repository for ``path``, loading it on a miss.

        Args:
            path: Package file.
            force_refresh: Ignore any cached entry and reload.
        """
        package_path = Path(os.path.abspath(path))
        key = self._make_key("package", str(package_path))
        if not force_refresh and not self.check_file_staleness(key, package_path):
            cached = self.get(key)
            if cached is not None:
                return cached
        elif self.enable_monitoring:
            self._record("miss")

        logger.debug(f"Loading package {package_path} into cache")
        with get_monitor().track("package_load"):
            repository = from_package(package_path)
        self.set(key, repository, file_path=package_path)
        return repository

    def _record(self, event: str) -> None:
        if not self.enable_monitoring:
            return
        monitor = get_monitor()
        if event == "hit":
            monitor.record_cache_hit()
        elif event == "miss":
            monitor.record_cache_miss()
        else:
            monitor.record_cache_eviction()


_package_cache: Optional[PackageCache] = None


def get_package_cache() -> PackageCache:
    """Return the process-wide package cache, created on first use."""
    global _package_cache
    if _package_cache is None:
        _package_cache = PackageCache(default_ttl=get_cache_ttl())
    return _package_cache


def load_package_cached(path: Union[str, Path], force_refresh: bool = False) -> SchemaRepository:
    return get_package_cache().load(path, force_refresh=force_refresh)
