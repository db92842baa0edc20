"""
Webhook envelope decoding (Pydantic v2).

The gateway posts `{"event": "<kind>", "payload": {"<entity>": {"entity": {...}}}}`.
`decode_webhook` turns the raw body into a typed SettlementEvent exactly
once; unknown kinds decode to `None` so the caller can acknowledge them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from domain.common.exceptions import DomainValidationException
from domain.settlement.events import (
    EventKind,
    EventSource,
    OrderPaidPayload,
    PaymentPayload,
    RefundPayload,
    SettlementEvent,
    TransferPayload,
)


class _Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PaymentEntity(_Entity):
    id: str
    order_id: Optional[str] = None
    method: Optional[str] = None
    amount: Optional[int] = None
    error_description: Optional[str] = None


class OrderEntity(_Entity):
    id: str
    amount_paid: Optional[int] = None


class TransferEntity(_Entity):
    id: str
    failure_reason: Optional[str] = None


class RefundEntity(_Entity):
    id: str
    payment_id: str
    amount: int = Field(ge=0)


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    payload: dict[str, Any] = Field(default_factory=dict)


# kind -> (payload key, entity model)
_ENTITY_BY_KIND = {
    EventKind.PAYMENT_AUTHORIZED: ("payment", PaymentEntity),
    EventKind.PAYMENT_CAPTURED: ("payment", PaymentEntity),
    EventKind.PAYMENT_FAILED: ("payment", PaymentEntity),
    EventKind.ORDER_PAID: ("order", OrderEntity),
    EventKind.TRANSFER_PROCESSED: ("transfer", TransferEntity),
    EventKind.TRANSFER_FAILED: ("transfer", TransferEntity),
    EventKind.REFUND_PROCESSED: ("refund", RefundEntity),
}


@dataclass(frozen=True)
class DecodedWebhook:
    name: str
    event: Optional[SettlementEvent]


class MalformedWebhookException(DomainValidationException):
    def __init__(self, name: str, reason: str):
        super().__init__(f"Malformed webhook payload for {name}", field="payload", details={"reason": reason})
        self.event_name = name


def _to_payload(kind: EventKind, entity: BaseModel):
    if isinstance(entity, PaymentEntity):
        return PaymentPayload(
            payment_id=entity.id,
            gateway_order_id=entity.order_id,
            method=entity.method,
            amount=entity.amount,
            error_description=entity.error_description,
        )
    if isinstance(entity, OrderEntity):
        return OrderPaidPayload(gateway_order_id=entity.id, amount_paid=entity.amount_paid)
    if isinstance(entity, TransferEntity):
        return TransferPayload(transfer_id=entity.id, failure_reason=entity.failure_reason)
    if isinstance(entity, RefundEntity):
        return RefundPayload(refund_id=entity.id, payment_id=entity.payment_id, amount=entity.amount)
    raise TypeError(f"no payload mapping for {kind.value}")


def decode_webhook(raw_body: bytes) -> DecodedWebhook:
    """
    Decode a verified webhook body.

    Raises MalformedWebhookException when the envelope, or the entity of a
    known kind, does not have the expected shape.
    """
    try:
        envelope = WebhookEnvelope.model_validate_json(raw_body)
    except ValidationError as exc:
        raise MalformedWebhookException("<envelope>", exc.errors()[0].get("msg", "invalid")) from exc

    try:
        kind = EventKind(envelope.event)
    except ValueError:
        return DecodedWebhook(name=envelope.event, event=None)

    key, model = _ENTITY_BY_KIND[kind]
    try:
        wrapper = envelope.payload[key]
        entity = model.model_validate(wrapper["entity"])
    except (KeyError, TypeError) as exc:
        raise MalformedWebhookException(envelope.event, f"missing payload.{key}.entity") from exc
    except ValidationError as exc:
        raise MalformedWebhookException(envelope.event, exc.errors()[0].get("msg", "invalid")) from exc

    event = SettlementEvent(kind=kind, payload=_to_payload(kind, entity), source=EventSource.WEBHOOK)
    return DecodedWebhook(name=envelope.event, event=event)
