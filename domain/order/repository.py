"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order, OrderStatus


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """
        创建订单

        order_number 冲突时抛出 OrderNumberConflict，由调用方重新生成。
        """
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        """根据网关订单号获取订单"""
        pass

    @abstractmethod
    async def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        """根据网关支付号获取订单"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """
        条件更新：仅当存储中的 version 等于 order.version 时写入

        成功后 version + 1；版本不一致时抛出 ConcurrentUpdateException。
        """
        pass

    @abstractmethod
    async def list_by_user(
        self,
        user_id: str,
        skip: int = 0,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_by_user(self, user_id: str, status: Optional[OrderStatus] = None) -> int:
        pass


class OrderNumberConflict(Exception):
    """订单号唯一约束冲突"""

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(order_number)
