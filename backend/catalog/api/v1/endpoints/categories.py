"""
Product Category API Endpoints

Thin adapter over the category services. Mutation results carrying an error
are raised as their CatalogException and rendered by the app-level handler.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from catalog.db.session import get_db
from catalog.exceptions import ValidationError
from catalog.logging_config import get_logger
from catalog.schemas.category import (
    BatchDeleteRequest,
    BatchResultResponse,
    BatchStatusRequest,
    BreadcrumbsResponse,
    CacheWarmupResponse,
    CategoryCreate,
    CategoryFilters,
    CategoryListResponse,
    CategoryMoveRequest,
    CategoryResponse,
    CategorySortRequest,
    CategoryStatisticsResponse,
    CategoryTreeNode,
    CategoryUpdate,
)
from catalog.services.category_cache import CategoryCache, get_category_cache
from catalog.services.category_mutation_service import CategoryMutationService
from catalog.services.category_query_service import CategoryQueryService
from catalog.services.results import BatchResult, MutationResult

router = APIRouter()
logger = get_logger(__name__)


def get_query_service(
    db: Session = Depends(get_db),
    cache: CategoryCache = Depends(get_category_cache),
) -> CategoryQueryService:
    return CategoryQueryService(db, cache)


def get_mutation_service(
    db: Session = Depends(get_db),
    cache: CategoryCache = Depends(get_category_cache),
) -> CategoryMutationService:
    return CategoryMutationService(db, cache)


def _unwrap(result: MutationResult):
    if not result.ok:
        raise result.error
    return result.value


def _batch_response(result: BatchResult) -> BatchResultResponse:
    if not result.ok:
        raise result.error
    return BatchResultResponse(**result.to_dict())


# ============================================================================
# Reads
# ============================================================================

@router.get("", response_model=CategoryListResponse)
async def list_categories(
    search: Optional[str] = None,
    status: Optional[bool] = None,
    parent_id: Optional[str] = Query(None, description="Parent id, or 'root' for top-level categories"),
    depth: Optional[int] = Query(None, ge=0),
    max_depth: Optional[int] = Query(None, ge=0),
    with_trashed: bool = False,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
    service: CategoryQueryService = Depends(get_query_service),
):
    """
    List categories with filters

    - **search**: Match name or description
    - **parent_id**: Children of a category, or `root` for top-level categories
    - **max_depth**: Only categories with depth <= max_depth
    - **per_page**: Clamped to the configured maximum
    """
    try:
        filters = CategoryFilters(
            search=search,
            status=status,
            parent_id=parent_id,
            depth=depth,
            max_depth=max_depth,
            with_trashed=with_trashed,
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid category filters",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    result = service.list_categories(filters, page=page, per_page=per_page)
    return CategoryListResponse(
        items=[CategoryResponse.model_validate(category) for category in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
    )


@router.get("/tree", response_model=List[CategoryTreeNode])
async def get_category_tree(
    only_active: bool = True,
    service: CategoryQueryService = Depends(get_query_service),
):
    """Whole category forest, children ordered by position"""
    return service.get_tree(only_active)


@router.get("/tree/{root_id}", response_model=CategoryTreeNode)
async def get_category_tree_shard(
    root_id: int,
    only_active: bool = True,
    service: CategoryQueryService = Depends(get_query_service),
):
    """Tree under a single root category"""
    return service.get_tree_shard(root_id, only_active)


@router.get("/statistics", response_model=CategoryStatisticsResponse)
async def get_category_statistics(
    service: CategoryQueryService = Depends(get_query_service),
):
    return service.get_statistics()


@router.get("/root-ids", response_model=List[int])
async def get_root_category_ids(
    only_active: bool = True,
    service: CategoryQueryService = Depends(get_query_service),
):
    return service.get_root_ids(only_active)


@router.get("/roots", response_model=List[CategoryResponse])
async def get_root_categories(
    only_active: bool = True,
    service: CategoryQueryService = Depends(get_query_service),
):
    """Top-level categories ordered by position"""
    return service.get_children(None, only_active)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: int,
    with_trashed: bool = False,
    service: CategoryQueryService = Depends(get_query_service),
):
    return service.get(category_id, with_trashed=with_trashed)


@router.get("/{category_id}/breadcrumbs", response_model=BreadcrumbsResponse)
async def get_category_breadcrumbs(
    category_id: int,
    service: CategoryQueryService = Depends(get_query_service),
):
    """Ancestors from the root down to the parent, plus the category itself"""
    return service.get_breadcrumbs(category_id)


@router.get("/{category_id}/descendants", response_model=List[CategoryResponse])
async def get_category_descendants(
    category_id: int,
    only_active: bool = False,
    service: CategoryQueryService = Depends(get_query_service),
):
    return service.get_descendants(category_id, only_active=only_active)


@router.get("/{category_id}/children", response_model=List[CategoryResponse])
async def get_category_children(
    category_id: int,
    only_active: bool = True,
    service: CategoryQueryService = Depends(get_query_service),
):
    return service.get_children(category_id, only_active)


# ============================================================================
# Writes
# ============================================================================

@router.post("", response_model=CategoryResponse, status_code=201)
async def create_category(
    request: CategoryCreate,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    """Create a category; slug and position are generated when omitted"""
    category = _unwrap(service.create(request))
    logger.info(f"Created category {category.id}: {category.name}")
    return category


@router.post("/sort")
async def sort_categories(
    request: CategorySortRequest,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    """
    Reorder categories (all-or-nothing)

    An entry with a different `parent_id` also moves that category.
    """
    _unwrap(service.update_positions(request.positions))
    return {"message": "Category order updated", "count": len(request.positions)}


@router.post("/batch-status", response_model=BatchResultResponse)
async def batch_update_category_status(
    request: BatchStatusRequest,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    return _batch_response(service.batch_update_status(request.ids, request.status))


@router.post("/batch-delete", response_model=BatchResultResponse)
async def batch_delete_categories(
    request: BatchDeleteRequest,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    """
    Soft delete several categories

    Categories that still have live children are skipped and listed in `failed`.
    """
    return _batch_response(service.batch_delete(request.ids))


@router.post("/cache/warmup", response_model=CacheWarmupResponse)
async def warmup_category_cache(
    only_active: Optional[bool] = None,
    force: bool = False,
    service: CategoryQueryService = Depends(get_query_service),
):
    return CacheWarmupResponse(warmed=service.warmup(only_active=only_active, force=force), force=force)


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    request: CategoryUpdate,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    """Update a category; a new `parent_id` moves it with its whole subtree"""
    return _unwrap(service.update(category_id, request))


@router.post("/{category_id}/move", response_model=CategoryResponse)
async def move_category(
    category_id: int,
    request: CategoryMoveRequest,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    return _unwrap(service.move(category_id, request.parent_id))


@router.post("/{category_id}/restore", response_model=CategoryResponse)
async def restore_category(
    category_id: int,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    return _unwrap(service.restore(category_id))


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    service: CategoryMutationService = Depends(get_mutation_service),
):
    """
    Soft delete a category

    Fails with CATEGORY_HAS_CHILDREN while the category has live children.
    """
    _unwrap(service.delete(category_id))
    logger.info(f"Deleted category {category_id}")
    return {"message": f"Category {category_id} deleted", "id": category_id}
