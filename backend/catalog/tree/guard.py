"""
Tree Invariant Guard

Validates reparent requests and computes the replacement path/depth for every
row of a subtree being moved. Both steps read through the same session as the
write that follows, so they see the rows the mutation has locked.
"""
from typing import Dict, Optional

from catalog.core.settings import settings
from catalog.exceptions import CycleError, DepthExceededError, ParentNotFoundError
from catalog.models.category import ProductCategory
from catalog.repositories.category_repository import CategoryRepository, PathAssignment
from catalog.tree import path_codec


class TreeInvariantGuard:
    """Cycle and depth checks for category moves"""

    def __init__(self, repository: CategoryRepository, max_depth: Optional[int] = None):
        self.repository = repository
        self.max_depth = settings.CATEGORY_MAX_DEPTH if max_depth is None else max_depth

    def validate_reparent(
        self,
        node: ProductCategory,
        new_parent_id: Optional[int],
    ) -> Optional[ProductCategory]:
        """
        Check that ``node`` may be placed under ``new_parent_id``.

        Args:
            node: Category being moved (locked by the caller)
            new_parent_id: Target parent, or None to make the node a root

        Returns:
            The locked new parent row, or None when moving to root

        Raises:
            CycleError: target is the node itself or one of its descendants
            ParentNotFoundError: target does not exist
            DepthExceededError: deepest descendant would land below max depth
        """
        if new_parent_id is not None and new_parent_id == node.id:
            raise CycleError(
                "A category cannot be its own parent",
                details={"id": node.id, "parent_id": new_parent_id},
            )

        new_parent = None
        if new_parent_id is not None:
            new_parent = self.repository.find(new_parent_id, lock=True)
            if new_parent is None:
                raise ParentNotFoundError(
                    f"Parent category {new_parent_id} not found",
                    details={"parent_id": new_parent_id},
                )
            if path_codec.contains(new_parent.path, node.id):
                raise CycleError(
                    f"Category {new_parent_id} is a descendant of category {node.id}",
                    details={"id": node.id, "parent_id": new_parent_id},
                )

        new_depth = path_codec.depth_for_parent(new_parent.depth if new_parent else None)
        subtree_height = self.repository.max_subtree_depth(node) - node.depth
        deepest = new_depth + subtree_height
        if deepest > self.max_depth:
            raise DepthExceededError(
                f"Moving category {node.id} would reach depth {deepest} "
                f"(maximum {self.max_depth})",
                details={"id": node.id, "depth": deepest, "max_depth": self.max_depth},
            )

        return new_parent

    def validate_depth(self, parent: Optional[ProductCategory]) -> int:
        """Depth a new child of ``parent`` would get; raises past the limit."""
        depth = path_codec.depth_for_parent(parent.depth if parent else None)
        if depth > self.max_depth:
            raise DepthExceededError(
                f"Category depth {depth} exceeds maximum {self.max_depth}",
                details={"parent_id": parent.id if parent else None, "max_depth": self.max_depth},
            )
        return depth

    def compute_subtree_paths(
        self,
        node: ProductCategory,
        new_parent_path: Optional[str],
    ) -> Dict[int, PathAssignment]:
        """
        Replacement paths for ``node`` and every row under it.

        The old ``node.path`` prefix is swapped for ``new_parent_path + node.id``;
        the suffix below the node is kept as-is and depth follows from segment count.
        """
        old_prefix = node.path
        new_prefix = path_codec.encode(new_parent_path, node.id)

        assignments: Dict[int, PathAssignment] = {}
        for row in self.repository.subtree(node, lock=True):
            new_path = path_codec.rebase(row.path, old_prefix, new_prefix)
            assignments[row.id] = PathAssignment(
                id=row.id,
                path=new_path,
                depth=path_codec.depth_of(new_path),
                previous_path=row.path,
            )
        return assignments
