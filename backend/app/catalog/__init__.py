"""
Product Catalog

Product lookup for quotation items, backed by the products table.
"""

from app.catalog.repository import CatalogRepository, get_catalog_repo, set_catalog_repo

__all__ = ["CatalogRepository", "get_catalog_repo", "set_catalog_repo"]
