"""
目录端口 - 商品库存、用户目录、卖家指标
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import ProductSnapshot, UserSnapshot, SellerMetrics


class ProductRepository(ABC):
    """商品仓储：读取快照与原子库存增减"""

    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[ProductSnapshot]:
        pass

    @abstractmethod
    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """
        条件扣减：stock >= quantity 时扣减并返回 True，否则不修改并返回 False
        """
        pass

    @abstractmethod
    async def restore_stock(self, product_id: str, quantity: int) -> None:
        pass


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserSnapshot]:
        pass


class SellerRepository(ABC):
    @abstractmethod
    async def increment_sales_metrics(self, seller_id: str, amount: int, orders: int = 1) -> None:
        """累加卖家销售额与订单数（卖家不存在时忽略）"""
        pass

    @abstractmethod
    async def get_metrics(self, seller_id: str) -> Optional[SellerMetrics]:
        pass
