"""
ORM models for the product category engine
"""
from catalog.models.category import ProductCategory

__all__ = ["ProductCategory"]
