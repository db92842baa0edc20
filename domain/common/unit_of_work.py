"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.order.repository import OrderRepository
from domain.payout.repository import PayoutRepository
from domain.catalog.repository import ProductRepository, UserDirectory, SellerRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    订单写入、库存扣减、结算单写入必须在同一个 UoW 中完成。
    """

    orders: OrderRepository
    payouts: PayoutRepository
    products: ProductRepository
    users: UserDirectory
    sellers: SellerRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.orders = None  # type: ignore[assignment]
        self.payouts = None  # type: ignore[assignment]
        self.products = None  # type: ignore[assignment]
        self.users = None  # type: ignore[assignment]
        self.sellers = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
