"""Cache diagnostics for support and debugging."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .storage.cache import CacheStats, LRUCacheStore
from .storage.kvstore import KeyValueStore
from .versioning.invalidator import VersionInvalidator

logger = logging.getLogger(__name__)

SAMPLE_KEYS = 10
MAX_STORAGE_KEYS = 100
MAX_STORAGE_BYTES = 1024 * 1024


@dataclass
class DiagnosticReport:
    """Snapshot of persisted and in-memory cache state."""

    timestamp: datetime
    storage_keys: list[str]
    estimated_size_bytes: int
    version_info: dict[str, Any]
    cache_stats: dict[str, CacheStats] = field(default_factory=dict)

    @property
    def storage_key_count(self) -> int:
        return len(self.storage_keys)


@dataclass
class IssueReport:
    has_issues: bool
    issues: list[str]
    recommendations: list[str]


class CacheDiagnostics:
    """Collects cache state and flags common problems.

    Example:
        diagnostics = CacheDiagnostics(store, invalidator, caches=[page_cache])
        report = await diagnostics.collect()
        problems = await diagnostics.check_for_issues()
    """

    def __init__(
        self,
        store: KeyValueStore,
        invalidator: VersionInvalidator,
        caches: Optional[list[LRUCacheStore[Any]]] = None,
    ):
        self._store = store
        self._invalidator = invalidator
        self._caches = list(caches or [])

    async def _estimate_size(self, keys: list[str]) -> int:
        """Estimate total stored bytes from the first few keys."""
        sample = keys[:SAMPLE_KEYS]
        if not sample:
            return 0

        sampled_bytes = 0
        for key in sample:
            value = await self._store.get(key)
            if value is not None:
                sampled_bytes += len(value.encode("utf-8"))
        return int(sampled_bytes / len(sample) * len(keys))

    async def collect(self) -> DiagnosticReport:
        """Gather persisted keys, size estimate, version info and cache stats."""
        keys = await self._store.list_keys()
        return DiagnosticReport(
            timestamp=datetime.now(),
            storage_keys=keys,
            estimated_size_bytes=await self._estimate_size(keys),
            version_info=await self._invalidator.get_diagnostic_info(),
            cache_stats={cache.name: cache.stats() for cache in self._caches},
        )

    async def check_for_issues(self) -> IssueReport:
        """Check the collected state against known problem patterns."""
        report = await self.collect()
        issues: list[str] = []
        recommendations: list[str] = []

        if report.storage_key_count > MAX_STORAGE_KEYS:
            issues.append(f"Too many stored keys: {report.storage_key_count}")
            recommendations.append("Clear the persistent storage")

        if report.estimated_size_bytes > MAX_STORAGE_BYTES:
            size_mb = report.estimated_size_bytes / (1024 * 1024)
            issues.append(f"Storage too large: {size_mb:.2f} MB")
            recommendations.append("Remove stale cached data")

        stored = report.version_info.get("stored")
        current = report.version_info.get("current", {})
        if stored is None:
            issues.append("No stored version info")
            recommendations.append("Run the startup version check")
        elif (
            stored.get("app_version") != current.get("app_version")
            or stored.get("build_version") != current.get("build_version")
        ):
            issues.append("Stored version differs from the running build")
            recommendations.append("Clear all caches")

        if issues:
            logger.warning(f"Cache diagnostics found {len(issues)} issue(s)")

        return IssueReport(
            has_issues=bool(issues),
            issues=issues,
            recommendations=recommendations,
        )
