"""
Payout application service: hooks for the batch payer.

Transfers are executed outside this system; the batch payer reads pending
payouts, starts a transfer at the gateway and reports the transfer id back
here. Completion and failure arrive as transfer.* webhooks.
"""
from __future__ import annotations

from typing import Callable

from application.dtos.checkout import MarkPayoutProcessingDTO, PayoutDTO
from application.utils.concurrency import retry_on_conflict
from core.logging_config import get_logger
from domain.common.exceptions import PayoutNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payout.entity import PayoutStatus


logger = get_logger(__name__)


class PayoutApplicationService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], *, max_retries: int = 3) -> None:
        self._uow_factory = uow_factory
        self._max_retries = max_retries

    async def list_pending(self, *, skip: int = 0, limit: int = 100) -> list[PayoutDTO]:
        async with self._uow_factory(readonly=True) as uow:
            payouts = await uow.payouts.list_by_status(PayoutStatus.PENDING, skip=skip, limit=limit)
        return [PayoutDTO.from_entity(p) for p in payouts]

    async def list_by_seller(self, seller_id: str, *, skip: int = 0, limit: int = 20) -> list[PayoutDTO]:
        async with self._uow_factory(readonly=True) as uow:
            payouts = await uow.payouts.list_by_seller(seller_id, skip=skip, limit=limit)
        return [PayoutDTO.from_entity(p) for p in payouts]

    async def mark_processing(self, payout_id: str, req: MarkPayoutProcessingDTO) -> PayoutDTO:
        """pending -> processing; any other state raises InvalidTransition."""

        async def _mark() -> PayoutDTO:
            async with self._uow_factory() as uow:
                payout = await uow.payouts.get_by_id(payout_id)
                if payout is None:
                    raise PayoutNotFoundException(payout_id)
                payout.mark_processing(req.transfer_id)
                payout = await uow.payouts.update(payout)
                return PayoutDTO.from_entity(payout)

        dto = await retry_on_conflict(_mark, attempts=self._max_retries, op="payout_mark_processing")
        logger.info("payout_processing", payout_id=payout_id, transfer_id=req.transfer_id, seller_id=dto.seller_id)
        return dto
