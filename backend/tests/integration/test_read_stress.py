"""
Integration tests for the read stress runner
"""
import pytest

from catalog.exceptions import ValidationError
from catalog.services.category_cache import CategoryCache
from catalog.services.read_stress import ReadStressRunner


@pytest.fixture
def tree(create_category):
    create_category("Electronics")
    create_category("Phones", parent_id=1)
    create_category("Smartphones", parent_id=2)
    create_category("Garden")


class TestReadStressRunner:

    def test_cache_scenario(self, db_session, cache, tree):
        results = ReadStressRunner(db_session, cache, seed=1).run(("cache",), requests=8)
        cached = results["cache"]

        assert cached["total_requests"] == 8
        assert cached["succeeded"] == 8
        assert cached["errors"] == 0
        # The second tree and root-id reads are served from the cache
        assert cached["cache_hits"] >= 2
        assert cached["cache_hits"] + cached["cache_misses"] == 8

    def test_query_scenario_counts_statements(self, db_session, cache, tree):
        results = ReadStressRunner(db_session, cache, seed=1).run(("query",), requests=10)
        query = results["query"]

        assert query["succeeded"] == 10
        assert query["avg_db_queries"] >= 1
        assert query["cache_hits"] == 0
        assert query["min_response_ms"] <= query["avg_response_ms"] <= query["max_response_ms"]

    def test_disabled_cache_always_misses(self, db_session, tree):
        runner = ReadStressRunner(db_session, CategoryCache(client=None), seed=1)
        cached = runner.run(("cache",), requests=4)["cache"]

        assert cached["cache_hits"] == 0
        assert cached["cache_misses"] == 4

    def test_all_scenarios_by_default(self, db_session, cache, tree):
        assert set(ReadStressRunner(db_session, cache).run(requests=5)) == {"cache", "query"}

    def test_unknown_scenario(self, db_session, cache, tree):
        with pytest.raises(ValidationError):
            ReadStressRunner(db_session, cache).run(("crud",))

    def test_empty_catalog(self, db_session, cache):
        with pytest.raises(ValidationError):
            ReadStressRunner(db_session, cache)
