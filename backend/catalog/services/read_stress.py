"""
Read Stress Runner

Times repeated category reads against the live database and cache.

Scenarios:
- cache: tree, breadcrumbs, children and root-id reads through the cache
- query: listings, descendants and uncached tree assembly straight from SQL

Cache hits are counted by checking the key before each read; SQL statements
are counted with an engine event listener.
"""
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

from catalog.exceptions import CatalogException, ValidationError
from catalog.logging_config import get_logger
from catalog.models.category import ProductCategory
from catalog.schemas.category import CategoryFilters
from catalog.services.category_cache import (
    CategoryCache,
    breadcrumbs_key,
    children_key,
    root_ids_key,
    tree_key,
)
from catalog.services.category_query_service import CategoryQueryService

logger = get_logger(__name__)

SCENARIOS = ("cache", "query")


@dataclass
class ScenarioResult:
    scenario: str
    total_requests: int = 0
    succeeded: int = 0
    errors: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    db_queries: int = 0
    timings_ms: List[float] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        timings = self.timings_ms
        return {
            "scenario": self.scenario,
            "total_requests": self.total_requests,
            "succeeded": self.succeeded,
            "errors": self.errors,
            "avg_response_ms": round(sum(timings) / len(timings), 3) if timings else 0,
            "min_response_ms": round(min(timings), 3) if timings else 0,
            "max_response_ms": round(max(timings), 3) if timings else 0,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": round(self.cache_hits / self.total_requests * 100, 1) if self.total_requests else 0,
            "avg_db_queries": round(self.db_queries / self.total_requests, 2) if self.total_requests else 0,
        }


class ReadStressRunner:
    """Replays a fixed mix of reads ``requests`` times per scenario"""

    def __init__(self, db: Session, cache: CategoryCache, seed: Optional[int] = None):
        self.db = db
        self.cache = cache
        self.queries = CategoryQueryService(db, cache)
        self.rng = random.Random(seed)

        self.ids = [row.id for row in self.queries.repository.query().with_entities(ProductCategory.id)]
        if not self.ids:
            raise ValidationError("No categories to read; seed a tree first")
        self.root_ids = self.queries.repository.root_ids(only_active=False)

    def run(self, scenarios: Tuple[str, ...] = SCENARIOS, requests: int = 100) -> Dict[str, dict]:
        unknown = [name for name in scenarios if name not in SCENARIOS]
        if unknown:
            raise ValidationError(
                f"Unknown stress scenario: {', '.join(unknown)}",
                details={"allowed": list(SCENARIOS)},
            )
        if requests < 1:
            raise ValidationError("requests must be greater than 0", details={"requests": requests})

        results = {}
        for name in scenarios:
            operations = self._cache_operations() if name == "cache" else self._query_operations()
            result = self._replay(name, operations, requests)
            logger.info("Read stress scenario finished", extra=result.to_dict())
            results[name] = result.to_dict()
        return results

    def _replay(self, name: str, operations: List[Callable[[], Optional[str]]], requests: int) -> ScenarioResult:
        result = ScenarioResult(scenario=name, total_requests=requests)
        engine = self.db.get_bind()

        def count_statement(*_):
            result.db_queries += 1

        event.listen(engine, "before_cursor_execute", count_statement)
        try:
            for i in range(requests):
                operation = operations[i % len(operations)]
                started = time.perf_counter()
                try:
                    outcome = operation()
                except CatalogException as exc:
                    result.errors += 1
                    logger.warning(
                        f"Read stress request failed: {exc.message}",
                        extra={"scenario": name, "error_code": exc.error_code},
                    )
                    continue
                finally:
                    result.timings_ms.append((time.perf_counter() - started) * 1000)
                result.succeeded += 1
                if outcome is not None:
                    if outcome == "hit":
                        result.cache_hits += 1
                    else:
                        result.cache_misses += 1
        finally:
            event.remove(engine, "before_cursor_execute", count_statement)
        return result

    # Cached reads return "hit"/"miss"; uncached reads return None

    def _cached(self, key: str, read: Callable[[], object]) -> str:
        hit = self.cache.exists(key)
        read()
        return "hit" if hit else "miss"

    def _cache_operations(self) -> List[Callable[[], Optional[str]]]:
        def tree():
            return self._cached(tree_key(True), lambda: self.queries.get_tree(True))

        def breadcrumbs():
            category_id = self.rng.choice(self.ids)
            return self._cached(breadcrumbs_key(category_id), lambda: self.queries.get_breadcrumbs(category_id))

        def children():
            parent_id = self.rng.choice(self.ids)
            return self._cached(children_key(parent_id, True), lambda: self.queries.get_children(parent_id))

        def root_ids():
            return self._cached(root_ids_key(True), lambda: self.queries.get_root_ids(True))

        return [tree, breadcrumbs, children, root_ids]

    def _query_operations(self) -> List[Callable[[], Optional[str]]]:
        repository = self.queries.repository

        def active_listing():
            repository.paginate(CategoryFilters(status=True), per_page=20)

        def descendants():
            if self.root_ids:
                repository.get_descendants(repository.get(self.rng.choice(self.root_ids)))

        def search():
            repository.paginate(CategoryFilters(search="Category"), per_page=10)

        def shallow_listing():
            repository.paginate(CategoryFilters(max_depth=3), per_page=100)

        def tree():
            repository.get_tree(only_active=True)

        return [active_listing, descendants, search, shallow_listing, tree]
