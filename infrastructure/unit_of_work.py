"""SQLAlchemy Unit of Work 实现

一个 UoW 对应一个会话和一个事务：订单条件写、库存增减、卖家指标与结算单
写入在同一事务内提交。只读 UoW 不显式开启事务，也不提交。
"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payout_repository import SQLAlchemyPayoutRepository
from infrastructure.repositories.catalog_repository import (
    SQLAlchemyProductRepository,
    SQLAlchemySellerRepository,
    SQLAlchemyUserDirectory,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._owns_session = session is None
        self._transaction: Optional[AsyncSessionTransaction] = None
        self.session: Optional[AsyncSession] = session

    def _bind(self, session: AsyncSession) -> None:
        self.orders = SQLAlchemyOrderRepository(session)
        self.payouts = SQLAlchemyPayoutRepository(session)
        self.products = SQLAlchemyProductRepository(session)
        self.users = SQLAlchemyUserDirectory(session)
        self.sellers = SQLAlchemySellerRepository(session)

    def _unbind(self) -> None:
        self.orders = self.payouts = self.products = self.users = self.sellers = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._bind(self.session)
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # commit/rollback 之后事务已结束；提交失败时兜底回滚
            if self._transaction is not None and self._transaction.is_active:
                await self._transaction.rollback()
            self._transaction = None
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None
            self._unbind()

    async def commit(self) -> None:
        if not self._readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
