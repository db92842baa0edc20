"""
结算单仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Payout, PayoutStatus


class PayoutRepository(ABC):

    @abstractmethod
    async def create_many(self, payouts: List[Payout]) -> List[Payout]:
        pass

    @abstractmethod
    async def get_by_id(self, payout_id: str) -> Optional[Payout]:
        pass

    @abstractmethod
    async def get_by_transfer_id(self, transfer_id: str) -> Optional[Payout]:
        pass

    @abstractmethod
    async def update(self, payout: Payout) -> Payout:
        """条件更新（version 不一致时抛出 ConcurrentUpdateException）"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[Payout]:
        pass

    @abstractmethod
    async def list_by_status(self, status: PayoutStatus, skip: int = 0, limit: int = 100) -> List[Payout]:
        """按创建时间升序（最早的先结算）"""
        pass

    @abstractmethod
    async def list_by_seller(self, seller_id: str, skip: int = 0, limit: int = 20) -> List[Payout]:
        pass
