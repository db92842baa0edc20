"""
结算单仓储实现
"""
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentUpdateException
from domain.payout.entity import Payout, PayoutStatus
from domain.payout.repository import PayoutRepository
from infrastructure.models.payout import PayoutModel
from infrastructure.repositories.order_repository import aware


logger = get_logger(__name__)

_MUTABLE = (
    "status",
    "transfer_id",
    "failure_reason",
    "processed_at",
    "completed_at",
    "updated_at",
)


class SQLAlchemyPayoutRepository(PayoutRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PayoutModel) -> Payout:
        return Payout(
            id=model.id,
            seller_id=model.seller_id,
            seller_name=model.seller_name,
            order_ids=list(model.order_ids or [model.order_id]),
            gross_amount=model.gross_amount,
            platform_fee=model.platform_fee,
            processing_fee=model.processing_fee,
            net_amount=model.net_amount,
            status=PayoutStatus(model.status),
            currency=model.currency,
            method=model.method,
            settlement_start=aware(model.settlement_start),
            settlement_end=aware(model.settlement_end),
            transfer_id=model.transfer_id,
            failure_reason=model.failure_reason,
            processed_at=aware(model.processed_at),
            completed_at=aware(model.completed_at),
            created_at=aware(model.created_at),
            updated_at=aware(model.updated_at),
            version=model.version,
        )

    def _to_model(self, payout: Payout) -> PayoutModel:
        return PayoutModel(
            id=payout.id,
            order_id=payout.order_ids[0],
            order_ids=list(payout.order_ids),
            seller_id=payout.seller_id,
            seller_name=payout.seller_name,
            gross_amount=payout.gross_amount,
            platform_fee=payout.platform_fee,
            processing_fee=payout.processing_fee,
            net_amount=payout.net_amount,
            currency=payout.currency,
            method=payout.method,
            status=payout.status.value,
            transfer_id=payout.transfer_id,
            failure_reason=payout.failure_reason,
            settlement_start=payout.settlement_start,
            settlement_end=payout.settlement_end,
            processed_at=payout.processed_at,
            completed_at=payout.completed_at,
            version=payout.version,
            created_at=payout.created_at,
            updated_at=payout.updated_at,
        )

    async def create_many(self, payouts: List[Payout]) -> List[Payout]:
        self.session.add_all([self._to_model(p) for p in payouts])
        await self.session.flush()
        return payouts

    async def _one(self, *criteria) -> Optional[Payout]:
        result = await self.session.execute(
            select(PayoutModel).where(*criteria).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_id(self, payout_id: str) -> Optional[Payout]:
        return await self._one(PayoutModel.id == payout_id)

    async def get_by_transfer_id(self, transfer_id: str) -> Optional[Payout]:
        return await self._one(PayoutModel.transfer_id == transfer_id)

    async def update(self, payout: Payout) -> Payout:
        expected = payout.version
        values = {name: getattr(payout, name) for name in _MUTABLE}
        values["status"] = payout.status.value
        result = await self.session.execute(
            update(PayoutModel)
            .where(PayoutModel.id == payout.id, PayoutModel.version == expected)
            .values(version=expected + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("payout_update_conflict", payout_id=payout.id, expected_version=expected)
            raise ConcurrentUpdateException("Payout", payout.id, expected)
        payout.version = expected + 1
        return payout

    async def _many(self, stmt) -> List[Payout]:
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_order(self, order_id: str) -> List[Payout]:
        return await self._many(
            select(PayoutModel)
            .where(PayoutModel.order_id == order_id)
            .order_by(PayoutModel.created_at, PayoutModel.seller_id, PayoutModel.id)
        )

    async def list_by_status(self, status: PayoutStatus, skip: int = 0, limit: int = 100) -> List[Payout]:
        return await self._many(
            select(PayoutModel)
            .where(PayoutModel.status == status.value)
            .order_by(PayoutModel.created_at.asc(), PayoutModel.id)
            .offset(skip)
            .limit(limit)
        )

    async def list_by_seller(self, seller_id: str, skip: int = 0, limit: int = 20) -> List[Payout]:
        return await self._many(
            select(PayoutModel)
            .where(PayoutModel.seller_id == seller_id)
            .order_by(PayoutModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
