"""
Order domain events.

Facts emitted by the order and settlement domain services; the application
layer logs them after the owning transaction commits.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: str
    order_number: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        # OrderPaid -> order_paid
        out = []
        for i, ch in enumerate(type(self).__name__):
            if ch.isupper() and i:
                out.append("_")
            out.append(ch.lower())
        return "".join(out)


@dataclass
class OrderPlaced(OrderEvent):
    grand_total: int = 0
    seller_count: int = 0


@dataclass
class PaymentAuthorized(OrderEvent):
    payment_id: Optional[str] = None


@dataclass
class OrderPaid(OrderEvent):
    payment_id: Optional[str] = None
    stock_committed: bool = False


@dataclass
class PaymentFailed(OrderEvent):
    payment_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class OrderCancelled(OrderEvent):
    reason: Optional[str] = None
    stock_restored: bool = False
    payouts_reversed: int = 0


@dataclass
class OrderRefunded(OrderEvent):
    refund_id: Optional[str] = None
    amount: int = 0


@dataclass
class SettlementAnomaly(OrderEvent):
    """重复/迟到事件被忽略，或数据需要人工核对"""
    kind: str = ""
    detail: Optional[str] = None
