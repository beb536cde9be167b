"""
Category Cache

Redis-backed cache-aside store for category reads, plus the invalidation
contract each mutation type uses. The cache is injected into the services;
with no Redis configured every read is a miss and invalidation is a no-op.

Store failures never reach the caller: they are logged and treated as misses.
"""
import json
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional, Set

import redis
from redis.exceptions import RedisError

from catalog.core.settings import settings
from catalog.exceptions import CacheUnavailableError
from catalog.logging_config import get_logger

logger = get_logger(__name__)

ACTIVE = "active"
ALL = "all"
SCOPES = (ACTIVE, ALL)

STATISTICS_KEY = "statistics"

# Keys deleted per SCAN batch
_DELETE_BATCH = 500


def scope(only_active: bool) -> str:
    return ACTIVE if only_active else ALL


def tree_key(only_active: bool) -> str:
    return f"tree:{scope(only_active)}"


def tree_shard_key(root_id: int, only_active: bool) -> str:
    return f"tree_shard:{scope(only_active)}:{root_id}"


def breadcrumbs_key(category_id: int) -> str:
    return f"breadcrumbs:{category_id}"


def children_key(parent_id: Optional[int], only_active: bool) -> str:
    parent = "root" if parent_id is None else parent_id
    return f"children:{parent}:{scope(only_active)}"


def root_ids_key(only_active: bool) -> str:
    return f"root_ids:{scope(only_active)}"


@dataclass
class CacheInvalidation:
    """
    Keys and glob patterns a committed mutation must evict.

    Builders return ``self`` so a mutation can chain everything it touched.
    """
    keys: Set[str] = field(default_factory=set)
    patterns: Set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.keys or self.patterns)

    def breadcrumbs(self, category_ids: Iterable[int]) -> "CacheInvalidation":
        self.keys.update(breadcrumbs_key(category_id) for category_id in category_ids)
        return self

    def children_of(self, *parent_ids: Optional[int]) -> "CacheInvalidation":
        for parent_id in parent_ids:
            self.keys.update(children_key(parent_id, only_active) for only_active in (True, False))
        return self

    def tree_shards(self, *root_ids: Optional[int]) -> "CacheInvalidation":
        for root_id in root_ids:
            if root_id is None:
                # Root unknown (unreadable path): evict every shard
                self.all_tree_shards()
            else:
                self.keys.update(tree_shard_key(root_id, only_active) for only_active in (True, False))
        return self

    def trees(self) -> "CacheInvalidation":
        self.patterns.add("tree:*")
        return self

    def all_tree_shards(self) -> "CacheInvalidation":
        self.patterns.add("tree_shard:*")
        return self

    def statistics(self) -> "CacheInvalidation":
        self.keys.add(STATISTICS_KEY)
        return self

    def root_ids(self) -> "CacheInvalidation":
        self.keys.update(root_ids_key(only_active) for only_active in (True, False))
        return self

    # --- contract per mutation type -------------------------------------

    def for_update(self, category_id: int, parent_id: Optional[int], root_id: Optional[int],
                   status_changed: bool = False) -> "CacheInvalidation":
        # Trees embed the scalar fields, so the forest and the node's shard go too
        self.breadcrumbs([category_id]).children_of(parent_id).tree_shards(root_id).trees()
        if status_changed:
            self.statistics().root_ids()
        return self

    def for_move(self, subtree_ids: Iterable[int], old_parent_id: Optional[int],
                 new_parent_id: Optional[int], old_root_id: Optional[int],
                 new_root_id: Optional[int]) -> "CacheInvalidation":
        return (
            self.breadcrumbs(subtree_ids)
            .children_of(old_parent_id, new_parent_id)
            .tree_shards(old_root_id, new_root_id)
            .trees()
            .statistics()
            .root_ids()
        )

    def for_status_toggle(self, parent_ids: Iterable[Optional[int]]) -> "CacheInvalidation":
        return self.statistics().trees().all_tree_shards().children_of(*parent_ids).root_ids()

    def for_create(self, parent_id: Optional[int], root_id: Optional[int]) -> "CacheInvalidation":
        return self.children_of(parent_id).tree_shards(root_id).trees().statistics().root_ids()

    def for_delete(self, category_id: int, parent_id: Optional[int],
                   root_id: Optional[int]) -> "CacheInvalidation":
        return (
            self.breadcrumbs([category_id])
            .children_of(parent_id)
            .tree_shards(root_id)
            .trees()
            .statistics()
            .root_ids()
        )

    def for_reorder(self, parent_ids: Iterable[Optional[int]],
                    root_ids: Iterable[Optional[int]]) -> "CacheInvalidation":
        # Root ordering is cached with the root id sets
        return self.children_of(*parent_ids).tree_shards(*root_ids).trees().root_ids()


class CategoryCache:
    """JSON values in Redis under a per-environment prefix"""

    def __init__(self, client: Optional[redis.Redis] = None, prefix: Optional[str] = None,
                 ttl: Optional[int] = None):
        self.client = client
        self.prefix = settings.cache_prefix if prefix is None else prefix
        self.ttl = settings.CACHE_TTL_SECONDS if ttl is None else ttl

    @classmethod
    def from_settings(cls) -> "CategoryCache":
        client = None
        if settings.REDIS_URL:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                socket_timeout=settings.CACHE_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.CACHE_SOCKET_TIMEOUT,
                decode_responses=True,
            )
            logger.info("Category cache enabled", extra={"cache_prefix": settings.cache_prefix})
        else:
            logger.info("REDIS_URL not set; category cache disabled")
        return cls(client=client)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self._execute("get", key, lambda: self.client.get(self.prefix + key))
        except CacheUnavailableError as exc:
            self._degraded(exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry", extra={"cache_key": key})
            return None

    def set(self, key: str, value: Any) -> bool:
        if not self.enabled:
            return False
        payload = json.dumps(value, default=str)
        try:
            self._execute("set", key, lambda: self.client.setex(self.prefix + key, self.ttl, payload))
        except CacheUnavailableError as exc:
            self._degraded(exc)
            return False
        return True

    def exists(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self._execute("exists", key, lambda: self.client.exists(self.prefix + key)))
        except CacheUnavailableError as exc:
            self._degraded(exc)
            return False

    def remember(self, key: str, loader: Callable[[], Any]) -> Any:
        """Cache-aside read: return the cached value or load, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, invalidation: CacheInvalidation) -> int:
        """Evict the keys and patterns of a committed mutation. Returns keys removed."""
        if not self.enabled or not invalidation:
            return 0

        removed = 0
        try:
            if invalidation.keys:
                keys = [self.prefix + key for key in sorted(invalidation.keys)]
                removed += self._execute("delete", ",".join(sorted(invalidation.keys)),
                                         lambda: self.client.delete(*keys))
            for pattern in sorted(invalidation.patterns):
                removed += self._execute("delete", pattern, lambda: self._delete_matching(pattern))
        except CacheUnavailableError as exc:
            self._degraded(exc)
            return removed

        logger.debug(
            "Category cache invalidated",
            extra={"keys": sorted(invalidation.keys), "patterns": sorted(invalidation.patterns),
                   "removed": removed},
        )
        return removed

    def flush(self) -> int:
        """Drop every key under this cache's prefix."""
        if not self.enabled:
            return 0
        try:
            removed = self._execute("flush", "*", lambda: self._delete_matching("*"))
        except CacheUnavailableError as exc:
            self._degraded(exc)
            return 0
        logger.info("Category cache flushed", extra={"removed": removed})
        return removed

    def _delete_matching(self, pattern: str) -> int:
        removed = 0
        batch = []
        for key in self.client.scan_iter(match=self.prefix + pattern, count=_DELETE_BATCH):
            batch.append(key)
            if len(batch) >= _DELETE_BATCH:
                removed += self.client.delete(*batch)
                batch = []
        if batch:
            removed += self.client.delete(*batch)
        return removed

    @staticmethod
    def _execute(operation: str, key: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except RedisError as exc:
            raise CacheUnavailableError(
                f"Cache {operation} failed",
                details={"key": key, "reason": str(exc)},
            ) from exc

    @staticmethod
    def _degraded(exc: CacheUnavailableError) -> None:
        logger.warning(
            f"{exc.message}; falling back to the database",
            extra={"error_code": exc.error_code, **exc.details},
        )


@lru_cache()
def get_category_cache() -> CategoryCache:
    """FastAPI dependency: process-wide cache built from settings"""
    return CategoryCache.from_settings()
