"""
Catalog access used by the sync engine.

The product catalog is owned elsewhere; the engine only needs to read a
product and adjust its status and quantity. ``DatabaseCatalog`` implements
that against the local ``products`` table.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import ProductStatus
from crosslister.core.exceptions import ProductNotFoundError
from crosslister.models.product import Product
from crosslister.schemas.listing import ProductSnapshot

logger = logging.getLogger(__name__)

# Fields an approved third-party change may write back
UPDATABLE_FIELDS = {"price", "quantity", "title", "description"}


class CatalogClient(ABC):

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        """Return the product or None when it does not exist"""

    @abstractmethod
    async def set_product_status(self, product_id: int, status: ProductStatus) -> None:
        pass

    @abstractmethod
    async def decrement_quantity(self, product_id: int, n: int = 1) -> int:
        """Decrease stock by ``n`` (floored at 0) and return the new quantity"""

    @abstractmethod
    async def update_product_fields(self, product_id: int, fields: Dict[str, Any]) -> None:
        pass


class DatabaseCatalog(CatalogClient):
    """Catalog client backed by the products table. Does not commit; the caller owns the transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, product_id: int) -> Product:
        product = await self.db.get(Product, product_id)
        if not product:
            raise ProductNotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    async def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if not product:
            return None
        return ProductSnapshot.model_validate(product)

    async def set_product_status(self, product_id: int, status: ProductStatus) -> None:
        product = await self._load(product_id)
        product.status = ProductStatus(status).value
        await self.db.flush()

    async def decrement_quantity(self, product_id: int, n: int = 1) -> int:
        product = await self._load(product_id)
        await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(quantity=Product.quantity - n)
            .execution_options(synchronize_session=False)
        )
        # Floor at zero in a second statement; portable across PostgreSQL and SQLite
        await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.quantity < 0)
            .values(quantity=0)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(product)
        quantity = product.quantity
        logger.info(f"Product {product_id} quantity decremented by {n}, now {quantity}")
        return quantity

    async def update_product_fields(self, product_id: int, fields: Dict[str, Any]) -> None:
        product = await self._load(product_id)
        for key, value in fields.items():
            if key in UPDATABLE_FIELDS:
                setattr(product, key, value)
        await self.db.flush()
