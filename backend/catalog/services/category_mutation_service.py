"""
Category Mutation Service

Every write to the category tree runs here as one transaction:

- create / update / move / delete / restore return a MutationResult
- batch status and batch delete return a BatchResult with per-id outcomes
- reorder (optionally reparenting) is all-or-nothing

Business-rule failures roll the transaction back and come back as the result's
``error``; they are never raised to the caller. Cache invalidation and audit
events are emitted only after the commit succeeds.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from slugify import slugify
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog.core.settings import settings
from catalog.exceptions import (
    CatalogException,
    DuplicateSlugError,
    HasChildrenError,
    InvalidPositionError,
    NotFoundError,
    ParentInactiveError,
    ParentNotFoundError,
    ValidationError,
)
from catalog.logging_config import audit_log, get_logger
from catalog.models.category import ProductCategory
from catalog.repositories.category_repository import CategoryRepository
from catalog.schemas.category import CategoryCreate, CategoryUpdate, PositionAssignment
from catalog.services.category_cache import CacheInvalidation, CategoryCache
from catalog.services.results import BatchResult, MutationResult
from catalog.tree import path_codec
from catalog.tree.guard import TreeInvariantGuard

logger = get_logger(__name__)

# Columns that may not be cleared through an update
_NON_NULLABLE_FIELDS = {"name", "status", "position"}
_SLUG_MAX_LENGTH = 100


@dataclass
class _MutationContext:
    invalidation: CacheInvalidation = field(default_factory=CacheInvalidation)
    events: List[Tuple[str, Any, Dict[str, Any]]] = field(default_factory=list)

    def record(self, event: str, resource_id: Any = None, **details) -> None:
        self.events.append((event, resource_id, details))


class CategoryMutationService:
    """Transactional writes for the category tree"""

    def __init__(self, db: Session, cache: Optional[CategoryCache] = None, max_depth: Optional[int] = None):
        self.db = db
        self.cache = cache if cache is not None else CategoryCache()
        self.repository = CategoryRepository(db)
        self.guard = TreeInvariantGuard(self.repository, max_depth=max_depth)

    # ------------------------------------------------------------------
    # Single-category mutations
    # ------------------------------------------------------------------

    def create(self, data: CategoryCreate) -> MutationResult[ProductCategory]:
        """
        Create a category under ``data.parent_id`` (or as a root).

        The parent is re-read under lock inside the transaction; position
        defaults to one past the last sibling.
        """
        def operation(ctx: _MutationContext) -> ProductCategory:
            parent = self._active_parent(data.parent_id) if data.parent_id is not None else None
            if parent is not None:
                # Legacy parents without a path must be backfilled first
                self.repository.decode_path(parent)
            depth = self.guard.validate_depth(parent)

            category = ProductCategory(
                parent_id=data.parent_id,
                name=data.name,
                slug=self._resolve_slug(data.slug, data.name),
                description=data.description,
                meta_title=data.meta_title,
                meta_description=data.meta_description,
                status=data.status,
                position=(
                    data.position if data.position is not None
                    else self.repository.max_position(data.parent_id) + 1
                ),
                depth=depth,
            )
            self.repository.add(category)

            # Path needs the id assigned by the flush above
            category.path = path_codec.encode(parent.path if parent else None, category.id)
            self.db.flush()

            ctx.invalidation.for_create(data.parent_id, path_codec.root_id(category.path))
            ctx.record(
                "CATEGORY_CREATED", category.id,
                name=category.name, parent_id=category.parent_id, path=category.path,
            )
            return category

        return self._run(operation)

    def update(self, category_id: int, data: CategoryUpdate) -> MutationResult[ProductCategory]:
        """
        Apply the fields set on ``data``.

        A changed ``parent_id`` moves the category (and its subtree) in the
        same transaction; a changed name without an explicit slug regenerates
        the slug.
        """
        changes = {
            key: value for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key not in _NON_NULLABLE_FIELDS
        }

        def operation(ctx: _MutationContext) -> ProductCategory:
            category = self.repository.lock(category_id)

            if "parent_id" in changes:
                new_parent_id = changes.pop("parent_id")
                if new_parent_id != category.parent_id:
                    self._move(category, new_parent_id, ctx)

            slug = changes.pop("slug", None)
            if slug:
                if slug != category.slug:
                    category.slug = self._resolve_slug(slug, category.name, exclude_id=category.id)
            elif "name" in changes and changes["name"] != category.name:
                category.slug = self.generate_unique_slug(changes["name"], exclude_id=category.id)

            status_changed = "status" in changes and changes["status"] != category.status
            for key, value in changes.items():
                setattr(category, key, value)
            self.db.flush()

            ctx.invalidation.for_update(
                category.id, category.parent_id, self._root_of(category), status_changed=status_changed,
            )
            if path_codec.is_well_formed(category.path):
                # Descendant breadcrumbs embed this category
                ctx.invalidation.breadcrumbs(
                    row.id for row in self.repository.get_descendants(category, with_trashed=True)
                )
            ctx.record("CATEGORY_UPDATED", category.id, fields=sorted(data.model_fields_set))
            return category

        return self._run(operation)

    def move(self, category_id: int, new_parent_id: Optional[int]) -> MutationResult[ProductCategory]:
        """Reparent a category; ``None`` makes it a root."""
        def operation(ctx: _MutationContext) -> ProductCategory:
            category = self.repository.lock(category_id)
            if new_parent_id != category.parent_id:
                self._move(category, new_parent_id, ctx)
            return category

        return self._run(operation)

    def delete(self, category_id: int) -> MutationResult[bool]:
        """Soft delete a category that has no live children."""
        def operation(ctx: _MutationContext) -> bool:
            category = self.repository.lock(category_id)
            self._ensure_childless(category)

            self.repository.soft_delete(category)

            ctx.invalidation.for_delete(category.id, category.parent_id, self._root_of(category))
            ctx.record("CATEGORY_DELETED", category.id, parent_id=category.parent_id)
            return True

        return self._run(operation)

    def restore(self, category_id: int) -> MutationResult[ProductCategory]:
        """Undo a soft delete. The parent must be live; the stored path is reused."""
        def operation(ctx: _MutationContext) -> ProductCategory:
            category = self.repository.get(category_id, with_trashed=True, lock=True)
            if not category.is_deleted:
                return category

            if category.parent_id is not None and self.repository.find(category.parent_id) is None:
                raise ParentNotFoundError(
                    f"Cannot restore category {category_id}: parent {category.parent_id} is deleted",
                    details={"id": category_id, "parent_id": category.parent_id},
                )

            category.deleted_at = None
            self.db.flush()

            ctx.invalidation.for_create(category.parent_id, self._root_of(category))
            ctx.record("CATEGORY_RESTORED", category.id, parent_id=category.parent_id)
            return category

        return self._run(operation)

    # ------------------------------------------------------------------
    # Batch mutations
    # ------------------------------------------------------------------

    def batch_update_status(self, ids: List[int], status: bool) -> BatchResult:
        """
        Set ``status`` on every live id with one UPDATE.

        Paths and depths are untouched. Re-applying the same status is still
        reported as affected, with ``changed`` dropping to zero.
        """
        ids = list(dict.fromkeys(ids))

        def operation(ctx: _MutationContext) -> BatchResult:
            rows = self.repository.find_many(ids, lock=True)
            changed = sum(1 for row in rows.values() if bool(row.status) != status)
            affected = self.repository.update_status(list(rows), status)

            result = BatchResult(
                affected=affected,
                changed=changed,
                succeeded=[category_id for category_id in ids if category_id in rows],
                failed={
                    category_id: NotFoundError.error_code
                    for category_id in ids if category_id not in rows
                },
            )

            if rows:
                ctx.invalidation.for_status_toggle({row.parent_id for row in rows.values()})
                ctx.record(
                    "CATEGORY_BATCH_STATUS", result.succeeded,
                    status=status, affected=affected, changed=changed,
                )
            return result

        return self._run_batch(operation)

    def batch_delete(self, ids: List[int]) -> BatchResult:
        """
        Soft delete each id that has no live children.

        Ids are processed deepest first, so a parent whose children are all
        in the same batch is deleted too. Ids that fail are reported in
        ``failed`` and do not stop the rest of the batch.
        """
        ids = list(dict.fromkeys(ids))

        def operation(ctx: _MutationContext) -> BatchResult:
            rows = self.repository.find_many(ids, lock=True)
            result = BatchResult(failed={
                category_id: NotFoundError.error_code
                for category_id in ids if category_id not in rows
            })

            for row in sorted(rows.values(), key=lambda r: (-r.depth, r.id)):
                if self.repository.has_children(row.id):
                    result.failed[row.id] = HasChildrenError.error_code
                    continue
                self.repository.soft_delete(row)
                result.succeeded.append(row.id)
                ctx.invalidation.for_delete(row.id, row.parent_id, self._root_of(row))

            result.affected = result.changed = len(result.succeeded)
            if result.succeeded:
                ctx.record(
                    "CATEGORY_BATCH_DELETED", result.succeeded,
                    failed={str(k): v for k, v in result.failed.items()},
                )
            return result

        return self._run_batch(operation)

    def update_positions(self, assignments: List[PositionAssignment]) -> MutationResult[bool]:
        """
        Write new sibling positions atomically.

        An assignment that explicitly carries a different ``parent_id`` moves
        that category first; any failure rolls back every assignment.
        """
        def operation(ctx: _MutationContext) -> bool:
            ids = [assignment.id for assignment in assignments]
            if len(set(ids)) != len(ids):
                raise InvalidPositionError(
                    "Each category may appear only once in a reorder request",
                    details={"ids": ids},
                )

            rows = self.repository.find_many(ids, lock=True)
            missing = [category_id for category_id in ids if category_id not in rows]
            if missing:
                raise NotFoundError(
                    f"Categories not found: {missing}",
                    details={"ids": missing},
                )

            parent_ids = set()
            root_ids = set()
            for assignment in assignments:
                row = rows[assignment.id]
                parent_ids.add(row.parent_id)
                root_ids.add(self._root_of(row))

                if "parent_id" in assignment.model_fields_set and assignment.parent_id != row.parent_id:
                    self._move(row, assignment.parent_id, ctx)
                    parent_ids.add(row.parent_id)
                    root_ids.add(self._root_of(row))

                row.position = assignment.position
            self.db.flush()

            ctx.invalidation.for_reorder(parent_ids, root_ids)
            ctx.record(
                "CATEGORY_REORDERED", ids,
                positions={str(a.id): a.position for a in assignments},
            )
            return True

        return self._run(operation)

    # ------------------------------------------------------------------
    # Slugs
    # ------------------------------------------------------------------

    def generate_unique_slug(self, name: str, exclude_id: Optional[int] = None) -> str:
        """
        Slug for ``name`` that no other row (trashed included) uses.

        Tries ``base``, ``base-2``, ``base-3`` ... up to the retry limit, then
        falls back to a timestamp suffix.
        """
        base = slugify(name or "", max_length=_SLUG_MAX_LENGTH, word_boundary=True) or "category"

        if not self.repository.slug_exists(base, exclude_id):
            return base

        for attempt in range(2, settings.CATEGORY_SLUG_RETRY_MAX + 2):
            candidate = f"{base}-{attempt}"
            if not self.repository.slug_exists(candidate, exclude_id):
                return candidate

        return f"{base}-{datetime.utcnow().strftime('%Y%m%d%H%M%S%f')}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _move(self, category: ProductCategory, new_parent_id: Optional[int], ctx: _MutationContext) -> None:
        new_parent = self.guard.validate_reparent(category, new_parent_id)
        if new_parent is not None and not new_parent.status:
            raise ParentInactiveError(
                f"Parent category {new_parent.id} is disabled",
                details={"parent_id": new_parent.id},
            )

        old_parent_id = category.parent_id
        old_root_id = self._root_of(category)

        assignments = self.guard.compute_subtree_paths(category, new_parent.path if new_parent else None)
        category.parent_id = new_parent_id
        rewritten = self.repository.apply_paths(assignments)

        ctx.invalidation.for_move(
            assignments.keys(), old_parent_id, new_parent_id, old_root_id, self._root_of(category),
        )
        ctx.record(
            "CATEGORY_MOVED", category.id,
            old_parent_id=old_parent_id, new_parent_id=new_parent_id,
            path=category.path, rows=rewritten,
        )

    def _active_parent(self, parent_id: int) -> ProductCategory:
        parent = self.repository.find(parent_id, lock=True)
        if parent is None:
            raise ParentNotFoundError(
                f"Parent category {parent_id} not found",
                details={"parent_id": parent_id},
            )
        if not parent.status:
            raise ParentInactiveError(
                f"Parent category {parent_id} is disabled",
                details={"parent_id": parent_id},
            )
        return parent

    def _ensure_childless(self, category: ProductCategory) -> None:
        if self.repository.has_children(category.id):
            raise HasChildrenError(
                f"Category {category.id} has child categories; move or delete them first",
                details={"id": category.id},
            )

    def _resolve_slug(self, slug: Optional[str], name: str, exclude_id: Optional[int] = None) -> str:
        if not slug:
            return self.generate_unique_slug(name, exclude_id)
        if self.repository.slug_exists(slug, exclude_id):
            raise DuplicateSlugError(
                f"Slug '{slug}' already exists",
                details={"slug": slug},
            )
        return slug

    @staticmethod
    def _root_of(category: ProductCategory) -> Optional[int]:
        if not path_codec.is_well_formed(category.path):
            return None
        return path_codec.root_id(category.path)

    def _execute(self, operation: Callable[[_MutationContext], Any]) -> Any:
        ctx = _MutationContext()
        try:
            value = operation(ctx)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ValidationError(
                "Category write violates a database constraint",
                details={"reason": str(exc.orig)},
            ) from exc
        except Exception:
            self.db.rollback()
            raise

        self.cache.invalidate(ctx.invalidation)
        for event, resource_id, details in ctx.events:
            audit_log(event, resource_id=resource_id, details=details)
        return value

    def _run(self, operation: Callable[[_MutationContext], Any]) -> MutationResult:
        try:
            return MutationResult.success(self._execute(operation))
        except CatalogException as exc:
            logger.info(
                f"Category mutation rejected: {exc.message}",
                extra={"error_code": exc.error_code},
            )
            return MutationResult.failure(exc)

    def _run_batch(self, operation: Callable[[_MutationContext], BatchResult]) -> BatchResult:
        try:
            return self._execute(operation)
        except CatalogException as exc:
            logger.info(
                f"Category batch rejected: {exc.message}",
                extra={"error_code": exc.error_code},
            )
            return BatchResult(error=exc)
