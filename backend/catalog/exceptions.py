"""
Product Category Engine - Domain exceptions

Every error the category engine reports carries a stable error code and the
HTTP status an adapter should render it with. Mutation services return these
as values (see catalog.services.results); read paths raise them.
"""
from typing import Any, Dict, Optional


class CatalogException(Exception):
    """Base class for all category engine errors."""

    error_code = "CATALOG_ERROR"
    status_code = 400
    default_message = "Category operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        payload: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self):
        return f"<{type(self).__name__} {self.error_code}: {self.message}>"


class ValidationError(CatalogException):
    """Bad input shape or constraint violation"""
    error_code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Invalid category data"


class DuplicateSlugError(ValidationError):
    error_code = "DUPLICATE_SLUG"
    default_message = "Slug already exists"


class InvalidPositionError(ValidationError):
    error_code = "INVALID_POSITION"
    default_message = "Invalid sort position"


class NotFoundError(CatalogException):
    """Category id does not resolve to a live row"""
    error_code = "CATEGORY_NOT_FOUND"
    status_code = 404
    default_message = "Category not found"


class ParentNotFoundError(NotFoundError):
    error_code = "PARENT_NOT_FOUND"
    default_message = "Parent category not found"


class ParentInactiveError(CatalogException):
    error_code = "PARENT_INACTIVE"
    status_code = 422
    default_message = "Parent category is disabled"


class CycleError(CatalogException):
    """Move would make a category its own ancestor"""
    error_code = "CIRCULAR_REFERENCE_DETECTED"
    status_code = 422
    default_message = "A category cannot be moved under itself or one of its descendants"


class DepthExceededError(CatalogException):
    error_code = "MAX_DEPTH_EXCEEDED"
    status_code = 422
    default_message = "Category tree depth limit exceeded"


class HasChildrenError(CatalogException):
    error_code = "CATEGORY_HAS_CHILDREN"
    status_code = 422
    default_message = "Category still has child categories"


class CorruptPathError(CatalogException):
    """
    Stored materialized path is malformed or disagrees with the tree.

    Never repaired during a read; run the path backfill tool.
    """
    error_code = "CORRUPT_PATH"
    status_code = 500
    default_message = "Category path is corrupt; run the path backfill"

    def __init__(self, path: Optional[str], message: Optional[str] = None, **kwargs):
        self.path = path
        details = kwargs.pop("details", None) or {}
        details.setdefault("path", path)
        super().__init__(message or f"Corrupt category path: {path!r}", details=details, **kwargs)


class CacheUnavailableError(CatalogException):
    """Cache store failed; callers degrade to direct store reads"""
    error_code = "CACHE_UNAVAILABLE"
    status_code = 503
    default_message = "Category cache unavailable"
