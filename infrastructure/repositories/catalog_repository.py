"""
目录协作方的SQLAlchemy实现：商品库存、用户目录、卖家指标
"""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.catalog.entity import ProductSnapshot, SellerMetrics, UserSnapshot
from domain.catalog.repository import ProductRepository, SellerRepository, UserDirectory
from infrastructure.models.catalog import ProductModel, SellerModel, UserModel


logger = get_logger(__name__)


class SQLAlchemyProductRepository(ProductRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, product_id: str) -> Optional[ProductSnapshot]:
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.id == product_id).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return ProductSnapshot(
            id=model.id,
            title=model.title,
            price=model.price,
            stock=model.stock,
            seller_id=model.seller_id,
            seller_name=model.seller_name,
            is_active=model.is_active,
            sku=model.sku,
        )

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """UPDATE products SET stock = stock - q WHERE id = :id AND stock >= q"""
        result = await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        ok = result.rowcount == 1
        if not ok:
            logger.warning("stock_decrement_rejected", product_id=product_id, quantity=quantity)
        return ok

    async def restore_stock(self, product_id: str, quantity: int) -> None:
        await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=ProductModel.stock + quantity)
            .execution_options(synchronize_session=False)
        )


class SQLAlchemyUserDirectory(UserDirectory):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> Optional[UserSnapshot]:
        model = await self.session.get(UserModel, user_id)
        if model is None:
            return None
        return UserSnapshot(id=model.id, email=model.email, name=model.name)


class SQLAlchemySellerRepository(SellerRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def increment_sales_metrics(self, seller_id: str, amount: int, orders: int = 1) -> None:
        result = await self.session.execute(
            update(SellerModel)
            .where(SellerModel.id == seller_id)
            .values(
                total_sales=SellerModel.total_sales + amount,
                total_orders=SellerModel.total_orders + orders,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("seller_metrics_missing_seller", seller_id=seller_id)

    async def get_metrics(self, seller_id: str) -> Optional[SellerMetrics]:
        result = await self.session.execute(
            select(SellerModel).where(SellerModel.id == seller_id).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return SellerMetrics(seller_id=model.id, total_sales=model.total_sales, total_orders=model.total_orders)
