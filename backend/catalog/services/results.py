"""
Typed outcomes returned by category mutations.

Business-rule failures (cycle, depth, has-children, ...) come back as values on
these records instead of propagating, so callers decide how to surface them.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from catalog.exceptions import CatalogException

T = TypeVar("T")


@dataclass
class MutationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[CatalogException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the carried error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T = None) -> "MutationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: CatalogException) -> "MutationResult[T]":
        return cls(error=error)


@dataclass
class BatchResult:
    """
    Per-id outcome of a batch mutation.

    ``affected`` counts live rows the operation matched, ``changed`` the rows
    whose stored state actually differed afterwards. ``failed`` maps id to an
    error code.
    """
    affected: int = 0
    changed: int = 0
    succeeded: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    error: Optional[CatalogException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "affected": self.affected,
            "changed": self.changed,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
        }
