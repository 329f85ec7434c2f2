import logging
from typing import List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.exceptions import StoreError
from ..models import ProductRecord, utcnow
from ..schemas import Product, ProductCreate, ProductFilter

logger = logging.getLogger(__name__)


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def apply_filter(query, product_filter: Optional[ProductFilter]):
    if product_filter is None:
        return query
    if product_filter.category is not None:
        query = query.where(ProductRecord.category == product_filter.category)
    if product_filter.is_active is not None:
        query = query.where(ProductRecord.is_active == product_filter.is_active)
    if product_filter.is_wishlist_status is not None:
        query = query.where(ProductRecord.is_wishlist_status == product_filter.is_wishlist_status)
    if product_filter.search is not None:
        pattern = f"%{escape_like(product_filter.search)}%"
        query = query.where(
            or_(
                ProductRecord.name.ilike(pattern, escape="\\"),
                ProductRecord.description.ilike(pattern, escape="\\"),
            )
        )
    if product_filter.price_range is not None:
        query = query.where(
            ProductRecord.price >= product_filter.price_range.min,
            ProductRecord.price <= product_filter.price_range.max,
        )
    return query


class ProductStore:
    """
    Persistent product store, the single source of truth.

    Borrows a session from the pool for each call and never holds one
    across calls. Any database failure is raised as StoreError.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _fail(self, operation: str, error: SQLAlchemyError) -> StoreError:
        logger.error(f"Product store {operation} failed: {error}")
        return StoreError(f"Product store {operation} failed")

    async def insert_one(self, data: ProductCreate) -> Product:
        try:
            async with self.session_factory() as session:
                record = ProductRecord(**data.model_dump())
                session.add(record)
                await session.commit()
                await session.refresh(record)
                return Product.model_validate(record)
        except SQLAlchemyError as e:
            raise self._fail("insert", e) from e

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        try:
            async with self.session_factory() as session:
                record = await session.get(ProductRecord, product_id)
                return Product.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise self._fail("find_by_id", e) from e

    async def find_many(self, product_filter: Optional[ProductFilter], skip: int, limit: int) -> List[Product]:
        query = apply_filter(select(ProductRecord), product_filter)
        query = query.order_by(ProductRecord.created_at.desc(), ProductRecord.id).offset(skip).limit(limit)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [Product.model_validate(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._fail("find_many", e) from e

    async def count(self, product_filter: Optional[ProductFilter]) -> int:
        query = apply_filter(select(func.count()).select_from(ProductRecord), product_filter)
        try:
            async with self.session_factory() as session:
                return int(await session.scalar(query) or 0)
        except SQLAlchemyError as e:
            raise self._fail("count", e) from e

    async def update_by_id(self, product_id: str, fields: dict) -> Optional[Product]:
        try:
            async with self.session_factory() as session:
                record = await session.get(ProductRecord, product_id)
                if record is None:
                    return None
                for name, value in fields.items():
                    setattr(record, name, value)
                record.updated_at = utcnow()
                await session.commit()
                await session.refresh(record)
                return Product.model_validate(record)
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e

    async def delete_by_id(self, product_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(ProductRecord).where(ProductRecord.id == product_id))
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._fail("delete", e) from e

    async def ping(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Product store ping failed: {e}")
            return False
