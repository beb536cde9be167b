"""
API v1 Router - Product Category Engine
"""
from fastapi import APIRouter
from catalog.api.v1.endpoints import categories

router = APIRouter()

# Product categories
router.include_router(
    categories.router,
    prefix="/categories",
    tags=["categories"]
)
