"""
结算单领域实体

每个 (订单, 卖家) 对应一条结算单；状态只由结算事件或批量打款方驱动。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence
import uuid

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.order.pricing import SellerSplit, round_half_up


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


OPEN_PAYOUT_STATUSES = frozenset({PayoutStatus.PENDING, PayoutStatus.PROCESSING})


@dataclass(frozen=True)
class FeeSchedule:
    """平台费率与结算周期配置"""

    platform_fee_percent: Decimal = Decimal("5")
    processing_fee: int = 0
    settlement_window_days: int = 7

    def __post_init__(self):
        if self.platform_fee_percent < 0 or self.platform_fee_percent > 100:
            raise DomainValidationException("platform_fee_percent must be within 0..100", field="platform_fee_percent")
        if self.processing_fee < 0:
            raise DomainValidationException("processing_fee must not be negative", field="processing_fee")


@dataclass
class Payout:
    """
    结算单实体

    net_amount = gross_amount - platform_fee - processing_fee（不低于 0）
    """

    id: Optional[str]
    seller_id: str
    seller_name: str
    order_ids: list[str]
    gross_amount: int
    platform_fee: int
    processing_fee: int
    net_amount: int
    status: PayoutStatus = PayoutStatus.PENDING
    currency: str = "INR"
    method: str = "razorpay_transfer"
    settlement_start: Optional[datetime] = None
    settlement_end: Optional[datetime] = None
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if self.gross_amount < 0:
            raise DomainValidationException("gross_amount must not be negative", field="gross_amount")
        if self.net_amount < 0:
            raise DomainValidationException("net_amount must not be negative", field="net_amount")

    def _touch(self) -> datetime:
        now = datetime.now(timezone.utc)
        self.updated_at = now
        return now

    def mark_processing(self, transfer_id: str) -> None:
        """批量打款方发起转账：pending → processing"""
        if not transfer_id:
            raise DomainValidationException("transfer_id is required", field="transferId")
        if self.status != PayoutStatus.PENDING:
            raise InvalidTransitionException(
                f"Payout in status {self.status.value} cannot start processing",
                current_status=self.status.value,
                operation="mark_processing",
            )
        self.status = PayoutStatus.PROCESSING
        self.transfer_id = transfer_id
        self.processed_at = self._touch()

    def apply_transfer_processed(self) -> bool:
        if self.status not in OPEN_PAYOUT_STATUSES:
            return False
        self.status = PayoutStatus.COMPLETED
        self.completed_at = self._touch()
        return True

    def apply_transfer_failed(self, reason: Optional[str]) -> bool:
        if self.status not in OPEN_PAYOUT_STATUSES:
            return False
        self.status = PayoutStatus.FAILED
        self.failure_reason = reason or "Transfer failed"
        self._touch()
        return True

    def reverse(self, reason: str) -> bool:
        """订单取消/全额退款时撤销尚未发起的结算单"""
        if self.status != PayoutStatus.PENDING:
            return False
        self.status = PayoutStatus.REVERSED
        self.failure_reason = reason
        self._touch()
        return True


def new_payout_id() -> str:
    return uuid.uuid4().hex


def compute_fees(gross: int, schedule: FeeSchedule) -> tuple[int, int]:
    """返回 (platform_fee, net_amount)"""
    platform_fee = round_half_up(Decimal(gross) * schedule.platform_fee_percent / Decimal(100))
    net = max(0, gross - platform_fee - schedule.processing_fee)
    return platform_fee, net


def derive_payouts(
    order_id: str,
    seller_splits: Sequence[SellerSplit],
    fee_schedule: FeeSchedule,
    *,
    currency: str = "INR",
    now: Optional[datetime] = None,
) -> list[Payout]:
    """按卖家拆分生成待结算单（gross 为拆分金额扣除分摊优惠）"""
    now = now or datetime.now(timezone.utc)
    window_end = now + timedelta(days=fee_schedule.settlement_window_days)
    payouts = []
    for split in seller_splits:
        gross = split.payable
        platform_fee, net = compute_fees(gross, fee_schedule)
        payouts.append(
            Payout(
                id=new_payout_id(),
                seller_id=split.seller_id,
                seller_name=split.seller_name,
                order_ids=[order_id],
                gross_amount=gross,
                platform_fee=platform_fee,
                processing_fee=fee_schedule.processing_fee,
                net_amount=net,
                currency=currency,
                settlement_start=now,
                settlement_end=window_end,
                created_at=now,
                updated_at=now,
            )
        )
    return payouts
