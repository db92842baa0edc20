"""
Settlement events.

A closed set of event kinds, each with its own typed payload. Webhook
envelopes are decoded into these once at the boundary; the settlement
service dispatches on `kind` and never looks at raw dicts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union
import uuid


class EventKind(str, Enum):
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"
    TRANSFER_PROCESSED = "transfer.processed"
    TRANSFER_FAILED = "transfer.failed"
    REFUND_PROCESSED = "refund.processed"


class EventSource(str, Enum):
    WEBHOOK = "webhook"
    VERIFY = "verify"


@dataclass(frozen=True)
class PaymentPayload:
    payment_id: str
    gateway_order_id: Optional[str] = None
    method: Optional[str] = None
    amount: Optional[int] = None
    signature: Optional[str] = None
    error_description: Optional[str] = None


@dataclass(frozen=True)
class OrderPaidPayload:
    gateway_order_id: str
    amount_paid: Optional[int] = None


@dataclass(frozen=True)
class TransferPayload:
    transfer_id: str
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class RefundPayload:
    refund_id: str
    payment_id: str
    amount: int


EventPayload = Union[PaymentPayload, OrderPaidPayload, TransferPayload, RefundPayload]

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.PAYMENT_AUTHORIZED: PaymentPayload,
    EventKind.PAYMENT_CAPTURED: PaymentPayload,
    EventKind.PAYMENT_FAILED: PaymentPayload,
    EventKind.ORDER_PAID: OrderPaidPayload,
    EventKind.TRANSFER_PROCESSED: TransferPayload,
    EventKind.TRANSFER_FAILED: TransferPayload,
    EventKind.REFUND_PROCESSED: RefundPayload,
}


@dataclass(frozen=True)
class SettlementEvent:
    kind: EventKind
    payload: EventPayload
    source: EventSource = EventSource.WEBHOOK
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(f"{self.kind.value} requires {expected.__name__}, got {type(self.payload).__name__}")
