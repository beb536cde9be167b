"""
Category Repository

Data access for product categories. Ancestor and descendant lookups go through
the materialized path (prefix match / decoded id list), never through
recursive parent walks, so every read is a fixed number of queries.
"""
from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, Query

from catalog.core.settings import settings
from catalog.exceptions import CorruptPathError, NotFoundError
from catalog.logging_config import get_logger
from catalog.models.category import ProductCategory
from catalog.schemas.category import CategoryFilters, ROOT
from catalog.tree import path_codec

logger = get_logger(__name__)


@dataclass
class Page:
    """One page of a filtered category listing"""
    items: List[ProductCategory]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return ceil(self.total / self.per_page) if self.per_page else 0


@dataclass
class PathAssignment:
    """Replacement path/depth for one row of a subtree being moved"""
    id: int
    path: str
    depth: int
    previous_path: Optional[str] = field(default=None, compare=False)


class CategoryRepository:
    """Persistence operations for ProductCategory rows"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def query(self, with_trashed: bool = False) -> Query:
        query = self.db.query(ProductCategory)
        if not with_trashed:
            query = query.filter(ProductCategory.deleted_at.is_(None))
        return query

    def find(self, category_id: int, with_trashed: bool = False, lock: bool = False) -> Optional[ProductCategory]:
        query = self.query(with_trashed).filter(ProductCategory.id == category_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def get(self, category_id: int, with_trashed: bool = False, lock: bool = False) -> ProductCategory:
        """
        Fetch a category or raise.

        Raises:
            NotFoundError: no live row (or no row at all when with_trashed)
        """
        category = self.find(category_id, with_trashed=with_trashed, lock=lock)
        if category is None:
            raise NotFoundError(
                f"Category {category_id} not found",
                details={"id": category_id},
            )
        return category

    def lock(self, category_id: int) -> ProductCategory:
        """Fetch a live category with a row lock held until commit."""
        return self.get(category_id, lock=True)

    def find_many(self, ids: List[int], with_trashed: bool = False, lock: bool = False) -> Dict[int, ProductCategory]:
        if not ids:
            return {}
        query = self.query(with_trashed).filter(ProductCategory.id.in_(ids))
        if lock:
            query = query.with_for_update()
        return {row.id: row for row in query.all()}

    def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        # Slugs are unique at the column level, so trashed rows count too
        query = self.query(with_trashed=True).filter(ProductCategory.slug == slug)
        if exclude_id:
            query = query.filter(ProductCategory.id != exclude_id)
        return self.db.query(query.exists()).scalar()

    def max_position(self, parent_id: Optional[int]) -> int:
        query = self.db.query(func.max(ProductCategory.position)).filter(
            ProductCategory.deleted_at.is_(None)
        )
        query = query.filter(self._parent_clause(parent_id))
        return query.scalar() or 0

    def has_children(self, category_id: int) -> bool:
        """True if the category has at least one live child"""
        query = self.query().filter(ProductCategory.parent_id == category_id)
        return self.db.query(query.exists()).scalar()

    def next_id(self) -> int:
        return (self.db.query(func.max(ProductCategory.id)).scalar() or 0) + 1

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def paginate(
        self,
        filters: Optional[CategoryFilters] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Page:
        filters = filters or CategoryFilters()
        per_page = max(1, min(per_page or settings.CATEGORY_PER_PAGE_DEFAULT, settings.CATEGORY_PER_PAGE_MAX))
        page = max(1, page)

        query = self.apply_filters(self.query(filters.with_trashed), filters)
        total = query.count()
        items = (
            self._ordered(query)
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return Page(items=items, total=total, page=page, per_page=per_page)

    def apply_filters(self, query: Query, filters: CategoryFilters) -> Query:
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(
                ProductCategory.name.ilike(term),
                ProductCategory.description.ilike(term),
            ))

        if filters.status is not None:
            query = query.filter(ProductCategory.status == filters.status)

        if filters.parent_id is not None:
            parent_id = None if filters.parent_id == ROOT else filters.parent_id
            query = query.filter(self._parent_clause(parent_id))

        if filters.depth is not None:
            query = query.filter(ProductCategory.depth == filters.depth)

        if filters.max_depth is not None:
            query = query.filter(ProductCategory.depth <= filters.max_depth)

        return query

    # ------------------------------------------------------------------
    # Tree reads
    # ------------------------------------------------------------------

    def get_tree(self, only_active: bool = True) -> List[dict]:
        """
        Build the whole forest from one flat query.

        Rows arrive parents-first (ordered by depth), so each row only needs
        its parent's node from the index built during the same pass.
        """
        query = self.query()
        if only_active:
            query = query.filter(ProductCategory.status.is_(True))
        rows = query.order_by(
            ProductCategory.depth,
            ProductCategory.position,
            ProductCategory.name,
            ProductCategory.id,
        ).all()
        return self.assemble(rows)

    def get_tree_shard(self, root_id: int, only_active: bool = True) -> Optional[dict]:
        """Subtree of a single root category, or None if the root is not visible."""
        query = self.query().filter(
            ProductCategory.path.like(f"{path_codec.encode(None, root_id)}%")
        )
        if only_active:
            query = query.filter(ProductCategory.status.is_(True))
        rows = query.order_by(
            ProductCategory.depth,
            ProductCategory.position,
            ProductCategory.name,
            ProductCategory.id,
        ).all()
        forest = [node for node in self.assemble(rows) if node["id"] == root_id]
        return forest[0] if forest else None

    @staticmethod
    def assemble(rows: List[ProductCategory]) -> List[dict]:
        """
        Group flat, parents-first rows into nested dicts.

        Raises:
            CorruptPathError: a row's path is malformed or does not end with its id
        """
        index: Dict[int, dict] = {}
        forest: List[dict] = []

        for row in rows:
            try:
                path_codec.verify(row.path, row.id)
            except CorruptPathError:
                logger.error(
                    "Corrupt category path in tree read",
                    extra={"category_id": row.id, "path": row.path},
                )
                raise

            node = row.to_dict()
            node["children"] = []

            if row.parent_id is None:
                forest.append(node)
            else:
                parent = index.get(row.parent_id)
                if parent is None:
                    # Parent filtered out (disabled) hides the whole branch
                    continue
                parent["children"].append(node)
            index[row.id] = node

        return forest

    def get_children(self, parent_id: Optional[int], only_active: bool = True) -> List[ProductCategory]:
        query = self.query().filter(self._parent_clause(parent_id))
        if only_active:
            query = query.filter(ProductCategory.status.is_(True))
        return query.order_by(ProductCategory.position, ProductCategory.name, ProductCategory.id).all()

    def root_ids(self, only_active: bool = True) -> List[int]:
        query = self.db.query(ProductCategory.id).filter(
            ProductCategory.deleted_at.is_(None),
            ProductCategory.parent_id.is_(None),
        )
        if only_active:
            query = query.filter(ProductCategory.status.is_(True))
        return [row.id for row in query.order_by(ProductCategory.position, ProductCategory.id).all()]

    def get_ancestors(self, category: ProductCategory) -> List[ProductCategory]:
        """
        Ancestors ordered root first, immediate parent last.

        Raises:
            CorruptPathError: path malformed or references missing rows
        """
        ids = self.decode_path(category)[:-1]
        if not ids:
            return []

        found = self.find_many(ids, with_trashed=True)
        missing = [ancestor_id for ancestor_id in ids if ancestor_id not in found]
        if missing:
            logger.error(
                "Category path references missing ancestors",
                extra={"category_id": category.id, "path": category.path, "missing": missing},
            )
            raise CorruptPathError(category.path, details={"category_id": category.id, "missing": missing})

        return [found[ancestor_id] for ancestor_id in ids]

    def get_descendants(
        self,
        category: ProductCategory,
        only_active: bool = False,
        with_trashed: bool = False,
    ) -> List[ProductCategory]:
        """Every row under the category (excluding itself) via one prefix query"""
        self.decode_path(category)
        query = self.query(with_trashed).filter(
            ProductCategory.path.like(f"{category.path}%"),
            ProductCategory.id != category.id,
        )
        if only_active:
            query = query.filter(ProductCategory.status.is_(True))
        return query.order_by(ProductCategory.depth, ProductCategory.position, ProductCategory.id).all()

    def subtree(self, category: ProductCategory, lock: bool = False) -> List[ProductCategory]:
        """The category plus all descendants, trashed rows included"""
        query = self.query(with_trashed=True).filter(
            ProductCategory.path.like(f"{category.path}%")
        )
        if lock:
            query = query.with_for_update()
        return query.order_by(ProductCategory.depth, ProductCategory.id).all()

    def max_subtree_depth(self, category: ProductCategory) -> int:
        deepest = self.db.query(func.max(ProductCategory.depth)).filter(
            ProductCategory.path.like(f"{category.path}%")
        ).scalar()
        return deepest if deepest is not None else category.depth

    def decode_path(self, category: ProductCategory) -> List[int]:
        try:
            return path_codec.verify(category.path, category.id)
        except CorruptPathError:
            logger.error(
                "Corrupt category path",
                extra={"category_id": category.id, "path": category.path},
            )
            raise

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict:
        live = ProductCategory.deleted_at.is_(None)

        total = self.db.query(func.count(ProductCategory.id)).filter(live).scalar() or 0
        active = self.db.query(func.count(ProductCategory.id)).filter(
            live, ProductCategory.status.is_(True)
        ).scalar() or 0
        deleted = self.db.query(func.count(ProductCategory.id)).filter(
            ProductCategory.deleted_at.isnot(None)
        ).scalar() or 0
        roots = self.db.query(func.count(ProductCategory.id)).filter(
            live, ProductCategory.parent_id.is_(None)
        ).scalar() or 0
        max_depth = self.db.query(func.max(ProductCategory.depth)).filter(live).scalar() or 0

        distribution = (
            self.db.query(ProductCategory.depth, func.count(ProductCategory.id))
            .filter(live)
            .group_by(ProductCategory.depth)
            .order_by(ProductCategory.depth)
            .all()
        )

        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "deleted": deleted,
            "root_categories": roots,
            "max_depth": max_depth,
            "depth_distribution": {depth: count for depth, count in distribution},
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, category: ProductCategory) -> ProductCategory:
        self.db.add(category)
        self.db.flush()
        return category

    def apply_paths(self, assignments: Dict[int, PathAssignment]) -> int:
        """Write new path/depth onto subtree rows; flushed as one batch."""
        rows = self.find_many(list(assignments), with_trashed=True)
        changed = 0
        for row_id, assignment in assignments.items():
            row = rows.get(row_id)
            if row is None:
                continue
            if row.path != assignment.path or row.depth != assignment.depth:
                row.path = assignment.path
                row.depth = assignment.depth
                changed += 1
        self.db.flush()
        return changed

    def soft_delete(self, category: ProductCategory) -> None:
        category.deleted_at = datetime.utcnow()
        self.db.flush()

    def update_status(self, ids: List[int], status: bool) -> int:
        """Set status on every live id in one statement; returns matched rows"""
        if not ids:
            return 0
        return (
            self.query()
            .filter(ProductCategory.id.in_(ids))
            .update(
                {ProductCategory.status: status, ProductCategory.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parent_clause(parent_id: Optional[int]):
        if parent_id is None:
            return ProductCategory.parent_id.is_(None)
        return ProductCategory.parent_id == parent_id

    @staticmethod
    def _ordered(query: Query) -> Query:
        return query.order_by(
            ProductCategory.parent_id,
            ProductCategory.position,
            ProductCategory.name,
            ProductCategory.id,
        )
