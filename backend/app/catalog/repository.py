"""
Catalog Repository

SQLAlchemy-backed product lookup and inventory adjustment.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update

from app.db.models import Product
from app.quotation.collaborators import ProductCatalog, ProductSnapshot

logger = logging.getLogger(__name__)


# === Global accessor ===

_catalog_repo: Optional["CatalogRepository"] = None


def get_catalog_repo() -> "CatalogRepository":
    """Shared CatalogRepository instance"""
    global _catalog_repo
    if _catalog_repo is None:
        from app.db.database import AsyncSessionLocal
        _catalog_repo = CatalogRepository(session_factory=AsyncSessionLocal)
    return _catalog_repo


def set_catalog_repo(repo: Optional["CatalogRepository"]) -> None:
    """Replace the shared instance (test injection)"""
    global _catalog_repo
    _catalog_repo = repo


class CatalogRepository(ProductCatalog):
    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        return self._session_factory()

    async def add_product(
        self,
        product_id: str,
        name: str,
        price: float,
        inventory: int = 0,
        image: str = "",
    ) -> ProductSnapshot:
        async with self._session() as session:
            row = await session.get(Product, product_id)
            if row is None:
                row = Product(id=product_id, name=name, price=price, inventory=inventory, image=image)
                session.add(row)
            else:
                row.name = name
                row.price = price
                row.inventory = inventory
                row.image = image
            await session.commit()
        return ProductSnapshot(product_id=product_id, name=name, image=image, price=price, inventory=inventory)

    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        async with self._session() as session:
            row = await session.get(Product, product_id)
            if not row:
                return None
            return self._to_snapshot(row)

    async def list_products(self) -> List[ProductSnapshot]:
        async with self._session() as session:
            rows = (await session.execute(select(Product).order_by(Product.name))).scalars().all()
        return [self._to_snapshot(r) for r in rows]

    async def adjust_inventory(self, session, product_id: str, delta: int) -> bool:
        """
        Change stock inside the caller's transaction.

        Removals only apply while enough stock is left; returns False when
        nothing was changed (unknown product or insufficient inventory).
        """
        stmt = update(Product).where(Product.id == product_id)
        if delta < 0:
            stmt = stmt.where(Product.inventory >= -delta)
        result = await session.execute(
            stmt.values(inventory=Product.inventory + delta).execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @staticmethod
    def _to_snapshot(row: Product) -> ProductSnapshot:
        return ProductSnapshot(
            product_id=row.id,
            name=row.name,
            image=row.image or "",
            price=row.price,
            inventory=row.inventory,
        )
