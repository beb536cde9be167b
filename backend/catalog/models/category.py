"""
Product Category model - self-referencing tree with a materialized path

Examples:
    Electronics                 path=/1/      depth=0
    Electronics > Phones        path=/1/4/    depth=1
    Electronics > Phones > 5G   path=/1/4/9/  depth=2
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index
from datetime import datetime

from catalog.db.base import Base


class ProductCategory(Base):
    """
    Hierarchical product category.

    ``path`` and ``depth`` are denormalized from the ``parent_id`` chain so that
    ancestor/descendant lookups are single prefix queries. Rows are soft deleted
    via ``deleted_at`` and keep their path so repair tooling can still see them.
    """
    __tablename__ = "product_categories"
    __table_args__ = (
        Index("ix_product_categories_parent_position", "parent_id", "position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("product_categories.id"), nullable=True, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(150), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    meta_title = Column(String(100), nullable=True)
    meta_description = Column(String(255), nullable=True)
    status = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    depth = Column(Integer, default=0, nullable=False)
    # Null only for legacy rows awaiting the path backfill
    path = Column(String(500), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self):
        return f"<ProductCategory {self.id}: {self.name} path={self.path}>"

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict:
        """JSON-safe representation used by the cache and API layers"""
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "meta_title": self.meta_title,
            "meta_description": self.meta_description,
            "status": bool(self.status),
            "position": self.position,
            "depth": self.depth,
            "path": self.path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }
