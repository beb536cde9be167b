"""
Product Category Pydantic Schemas

Request/response shapes for the category engine operations, plus the explicit
filter record accepted by category listing.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Union, Literal
from datetime import datetime

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"

# parent_id filter value meaning "parent_id IS NULL"
ROOT = "root"


# ============================================================================
# Filters
# ============================================================================

class CategoryFilters(BaseModel):
    """
    Supported listing filters. Absent filters mean "no constraint".
    """
    search: Optional[str] = Field(None, description="Free-text match on name/description")
    status: Optional[bool] = None
    parent_id: Optional[Union[int, Literal["root"]]] = Field(
        None, description="Parent id, or 'root' for top-level categories"
    )
    depth: Optional[int] = Field(None, ge=0)
    max_depth: Optional[int] = Field(None, ge=0, description="depth <= max_depth")
    with_trashed: bool = False

    @field_validator("parent_id", mode="before")
    @classmethod
    def parse_parent_id(cls, v):
        """Accept 'root'/'null' sentinels and numeric strings from query params."""
        if isinstance(v, str):
            value = v.strip().lower()
            if value in ("root", "null"):
                return ROOT
            if value.isdigit():
                return int(value)
        return v

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


# ============================================================================
# Category Schemas
# ============================================================================

class CategoryBase(BaseModel):
    """Descriptive category fields"""
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(None, max_length=1000)
    meta_title: Optional[str] = Field(None, max_length=100)
    meta_description: Optional[str] = Field(None, max_length=255)
    status: bool = True


class CategoryCreate(CategoryBase):
    """Create a new category"""
    parent_id: Optional[int] = Field(None, description="Parent category ID (null for root)")
    position: Optional[int] = Field(None, ge=0, description="Defaults to after the last sibling")


class CategoryUpdate(BaseModel):
    """
    Update an existing category. Only fields that are set are applied;
    setting parent_id to a different value moves the category.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(None, max_length=1000)
    meta_title: Optional[str] = Field(None, max_length=100)
    meta_description: Optional[str] = Field(None, max_length=255)
    status: Optional[bool] = None
    position: Optional[int] = Field(None, ge=0)
    parent_id: Optional[int] = None


class CategoryResponse(BaseModel):
    """Category row as stored"""
    id: int
    parent_id: Optional[int] = None
    name: str
    slug: str
    description: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    status: bool
    position: int
    depth: int
    path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CategoryTreeNode(CategoryResponse):
    """Category with nested children for tree views"""
    children: List["CategoryTreeNode"] = Field(default_factory=list)


CategoryTreeNode.model_rebuild()


class BreadcrumbsResponse(BaseModel):
    ancestors: List[CategoryResponse]
    current: CategoryResponse


class CategoryListResponse(BaseModel):
    items: List[CategoryResponse]
    total: int
    page: int
    per_page: int
    pages: int


class CategoryStatisticsResponse(BaseModel):
    total: int
    active: int
    inactive: int
    deleted: int
    root_categories: int
    max_depth: int
    depth_distribution: Dict[int, int]


# ============================================================================
# Reorder / Batch Schemas
# ============================================================================

class PositionAssignment(BaseModel):
    """New position for one category; parent_id, when set, reparents it too"""
    id: int
    position: int = Field(..., ge=0)
    parent_id: Optional[int] = None


class CategoryMoveRequest(BaseModel):
    parent_id: Optional[int] = Field(None, description="New parent (null to make the category a root)")


class CategorySortRequest(BaseModel):
    positions: List[PositionAssignment] = Field(..., min_length=1)


class BatchStatusRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)
    status: bool


class BatchDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class BatchResultResponse(BaseModel):
    """Per-id outcome of a batch operation"""
    affected: int
    changed: int
    succeeded: List[int]
    failed: Dict[int, str]


class CacheWarmupResponse(BaseModel):
    warmed: List[str]
    force: bool
