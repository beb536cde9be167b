"""
Unit tests for the category cache and its invalidation contract
"""
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.services.category_cache import (
    CacheInvalidation,
    CategoryCache,
    breadcrumbs_key,
    children_key,
    root_ids_key,
    tree_key,
    tree_shard_key,
)


@pytest.fixture
def failing_cache():
    client = MagicMock()
    client.get.side_effect = RedisConnectionError("connection refused")
    client.setex.side_effect = RedisConnectionError("connection refused")
    client.exists.side_effect = RedisConnectionError("connection refused")
    client.delete.side_effect = RedisConnectionError("connection refused")
    client.scan_iter.side_effect = RedisConnectionError("connection refused")
    return CategoryCache(client=client, prefix="test_", ttl=60)


class TestKeys:
    """Key naming by scope"""

    def test_key_names(self):
        assert tree_key(True) == "tree:active"
        assert tree_key(False) == "tree:all"
        assert tree_shard_key(3, True) == "tree_shard:active:3"
        assert breadcrumbs_key(9) == "breadcrumbs:9"
        assert children_key(None, True) == "children:root:active"
        assert children_key(4, False) == "children:4:all"
        assert root_ids_key(False) == "root_ids:all"


class TestCacheAside:
    """remember/get/set against fakeredis"""

    def test_remember_loads_once(self, cache):
        loader = MagicMock(return_value=[{"id": 1}])

        assert cache.remember("tree:active", loader) == [{"id": 1}]
        assert cache.remember("tree:active", loader) == [{"id": 1}]
        loader.assert_called_once()

    def test_values_stored_under_prefix_with_ttl(self, cache, redis_client):
        cache.set("statistics", {"total": 3})

        assert redis_client.get("test_statistics") == '{"total": 3}'
        assert 0 < redis_client.ttl("test_statistics") <= 60

    def test_none_is_not_cached(self, cache):
        loader = MagicMock(return_value=None)

        cache.remember("tree_shard:active:5", loader)
        cache.remember("tree_shard:active:5", loader)

        assert loader.call_count == 2

    def test_undecodable_entry_is_a_miss(self, cache, redis_client):
        redis_client.set("test_tree:all", "{not json")
        assert cache.get("tree:all") is None

    def test_disabled_cache_always_misses(self):
        cache = CategoryCache(client=None, prefix="test_")
        loader = MagicMock(return_value=[1, 2])

        assert cache.enabled is False
        assert cache.remember("root_ids:active", loader) == [1, 2]
        assert cache.remember("root_ids:active", loader) == [1, 2]
        assert loader.call_count == 2
        assert cache.invalidate(CacheInvalidation().trees()) == 0


class TestInvalidate:
    """Key and pattern eviction"""

    def test_keys_and_patterns_removed(self, cache, redis_client):
        for key in ("tree:active", "tree:all", "tree_shard:active:1", "statistics", "breadcrumbs:4"):
            cache.set(key, [])

        removed = cache.invalidate(CacheInvalidation().trees().breadcrumbs([4]))

        assert removed == 3
        assert cache.get("tree:active") is None
        assert cache.get("tree:all") is None
        assert cache.get("breadcrumbs:4") is None
        # "tree:*" does not reach the per-root shards
        assert cache.get("tree_shard:active:1") == []
        assert cache.get("statistics") == []

    def test_flush_only_touches_own_prefix(self, cache, redis_client):
        redis_client.set("other_app:key", "1")
        cache.set("statistics", {"total": 1})

        cache.flush()

        assert redis_client.get("other_app:key") == "1"
        assert cache.get("statistics") is None


class TestStoreFailures:
    """Store errors degrade to misses and never propagate"""

    def test_get_degrades_to_miss(self, failing_cache):
        assert failing_cache.get("tree:active") is None

    def test_remember_falls_back_to_loader(self, failing_cache):
        assert failing_cache.remember("statistics", lambda: {"total": 0}) == {"total": 0}

    def test_set_reports_failure(self, failing_cache):
        assert failing_cache.set("statistics", {}) is False

    def test_invalidate_and_flush_do_not_raise(self, failing_cache):
        assert failing_cache.invalidate(CacheInvalidation().statistics().trees()) == 0
        assert failing_cache.flush() == 0

    def test_failure_is_logged_as_warning(self, failing_cache, caplog):
        with caplog.at_level("WARNING"):
            failing_cache.get("tree:active")
        assert any(record.error_code == "CACHE_UNAVAILABLE" for record in caplog.records)


class TestInvalidationContract:
    """Affected key sets per mutation type"""

    def test_scalar_update(self):
        inv = CacheInvalidation().for_update(5, 2, 1)

        assert "breadcrumbs:5" in inv.keys
        assert {"children:2:active", "children:2:all"} <= inv.keys
        assert {"tree_shard:active:1", "tree_shard:all:1"} <= inv.keys
        assert "statistics" not in inv.keys
        assert inv.patterns == {"tree:*"}

    def test_scalar_update_with_status_change(self):
        inv = CacheInvalidation().for_update(5, 2, 1, status_changed=True)
        assert "statistics" in inv.keys
        assert "root_ids:active" in inv.keys

    def test_move_covers_both_parents(self):
        inv = CacheInvalidation().for_move([2, 3], 1, 4, 1, 4)

        assert {"breadcrumbs:2", "breadcrumbs:3"} <= inv.keys
        assert {"children:1:active", "children:4:active"} <= inv.keys
        assert {"tree_shard:active:1", "tree_shard:active:4"} <= inv.keys
        assert "statistics" in inv.keys
        assert "tree:*" in inv.patterns

    def test_move_to_root_uses_root_children_key(self):
        inv = CacheInvalidation().for_move([2], 1, None, 1, 2)
        assert "children:root:all" in inv.keys

    def test_status_toggle_leaves_breadcrumbs(self):
        inv = CacheInvalidation().for_status_toggle({None, 1})

        assert "statistics" in inv.keys
        assert {"tree:*", "tree_shard:*"} <= inv.patterns
        assert not any(key.startswith("breadcrumbs:") for key in inv.keys)

    def test_unknown_root_evicts_all_shards(self):
        inv = CacheInvalidation().tree_shards(None)
        assert inv.patterns == {"tree_shard:*"}

    def test_empty_invalidation_is_falsy(self):
        assert not CacheInvalidation()
        assert CacheInvalidation().statistics()
