"""
Category Query Service

Read side of the category engine. Tree, shard, breadcrumb, children, root-id
and statistics reads go through the cache-aside CategoryCache; listings and
descendant lookups always hit the database.
"""
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from catalog.exceptions import NotFoundError
from catalog.logging_config import get_logger
from catalog.models.category import ProductCategory
from catalog.repositories.category_repository import CategoryRepository, Page
from catalog.schemas.category import CategoryFilters
from catalog.services.category_cache import (
    STATISTICS_KEY,
    CategoryCache,
    breadcrumbs_key,
    children_key,
    root_ids_key,
    tree_key,
    tree_shard_key,
)

logger = get_logger(__name__)


class CategoryQueryService:
    """Cached reads over the category tree"""

    def __init__(self, db: Session, cache: Optional[CategoryCache] = None):
        self.db = db
        self.cache = cache if cache is not None else CategoryCache()
        self.repository = CategoryRepository(db)

    def list_categories(
        self,
        filters: Optional[CategoryFilters] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Page:
        return self.repository.paginate(filters, page=page, per_page=per_page)

    def get(self, category_id: int, with_trashed: bool = False) -> ProductCategory:
        return self.repository.get(category_id, with_trashed=with_trashed)

    def get_tree(self, only_active: bool = True) -> List[dict]:
        return self.cache.remember(
            tree_key(only_active),
            lambda: self.repository.get_tree(only_active),
        )

    def get_tree_shard(self, root_id: int, only_active: bool = True) -> dict:
        """
        Subtree under one root category.

        Raises:
            NotFoundError: root missing, not a root, or hidden by ``only_active``
        """
        shard = self.cache.remember(
            tree_shard_key(root_id, only_active),
            lambda: self.repository.get_tree_shard(root_id, only_active),
        )
        if shard is None:
            raise NotFoundError(
                f"Root category {root_id} not found",
                details={"id": root_id, "only_active": only_active},
            )
        return shard

    def get_breadcrumbs(self, category_id: int) -> dict:
        """Ancestors (root first) plus the category itself"""
        def load() -> dict:
            category = self.repository.get(category_id)
            return {
                "ancestors": [ancestor.to_dict() for ancestor in self.repository.get_ancestors(category)],
                "current": category.to_dict(),
            }

        return self.cache.remember(breadcrumbs_key(category_id), load)

    def get_descendants(self, category_id: int, only_active: bool = False) -> List[ProductCategory]:
        category = self.repository.get(category_id)
        return self.repository.get_descendants(category, only_active=only_active)

    def get_children(self, parent_id: Optional[int], only_active: bool = True) -> List[dict]:
        def load() -> List[dict]:
            if parent_id is not None:
                self.repository.get(parent_id)
            return [row.to_dict() for row in self.repository.get_children(parent_id, only_active)]

        return self.cache.remember(children_key(parent_id, only_active), load)

    def get_root_ids(self, only_active: bool = True) -> List[int]:
        return self.cache.remember(
            root_ids_key(only_active),
            lambda: self.repository.root_ids(only_active),
        )

    def get_statistics(self) -> dict:
        stats = self.cache.remember(STATISTICS_KEY, self.repository.get_statistics)
        # JSON round trip turns the depth keys into strings
        stats["depth_distribution"] = {
            int(depth): count for depth, count in stats["depth_distribution"].items()
        }
        return stats

    def warmup(self, only_active: Optional[bool] = None, force: bool = False) -> List[str]:
        """
        Populate the tree, root-id and statistics caches.

        Keys already cached are left alone unless ``force`` is set, in which
        case the whole category key space is flushed first. Returns the keys
        written by this call.
        """
        if not self.cache.enabled:
            logger.warning("Category cache disabled; nothing to warm up")
            return []

        if force:
            self.cache.flush()

        scopes = [True, False] if only_active is None else [only_active]
        loaders: Dict[str, Callable[[], Any]] = {}
        for active in scopes:
            loaders[tree_key(active)] = lambda active=active: self.repository.get_tree(active)
            loaders[root_ids_key(active)] = lambda active=active: self.repository.root_ids(active)
        loaders[STATISTICS_KEY] = self.repository.get_statistics

        warmed = []
        for key, loader in loaders.items():
            if self.cache.exists(key):
                continue
            if self.cache.set(key, loader()):
                warmed.append(key)

        logger.info("Category cache warmed", extra={"warmed": warmed, "force": force})
        return warmed
