"""
Application service applying settlement events (webhooks and direct
verification) to orders and payouts.

Each event is applied in its own unit of work; a lost optimistic-concurrency
race reloads and re-applies the event. Gateway I/O never happens inside a
transaction.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.checkout import VerifyPaymentDTO, VerifyPaymentResultDTO, WebhookAckDTO
from application.dtos.webhooks import MalformedWebhookException, decode_webhook
from application.ports.payment_gateway import PaymentGateway
from application.services.policy import SettlementPolicy
from application.utils.concurrency import retry_on_conflict
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    ManualInterventionRequiredException,
    OrderNotFoundException,
    SignatureMismatchException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.settlement.events import EventKind, EventSource, PaymentPayload, SettlementEvent
from domain.settlement.service import ApplyResult, SettlementDomainService


logger = get_logger(__name__)

# gateway payment status -> event applied on the verify path
_VERIFY_KIND_BY_STATUS = {
    "captured": EventKind.PAYMENT_CAPTURED,
    "authorized": EventKind.PAYMENT_AUTHORIZED,
    "failed": EventKind.PAYMENT_FAILED,
}


def log_domain_events(events: list) -> None:
    for ev in events:
        fields = {k: v for k, v in vars(ev).items() if k not in ("event_id", "occurred_at")}
        if ev.name == "settlement_anomaly":
            logger.warning(ev.name, **fields)
        else:
            logger.info(ev.name, **fields)


class SettlementApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        policy: Optional[SettlementPolicy] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._policy = policy or SettlementPolicy()

    async def apply_event(self, event: SettlementEvent) -> ApplyResult:
        """Apply one event; returns the result (``applied`` is False for no-ops)."""
        collected: list = []

        async def _once() -> ApplyResult:
            async with self._uow_factory() as uow:
                domain_service = SettlementDomainService(uow)
                result = await domain_service.apply(event)
                collected[:] = domain_service.events
                return result

        result = await retry_on_conflict(_once, attempts=self._policy.max_apply_retries, op=event.kind.value)
        log_domain_events(collected)
        logger.info(
            "settlement_event_applied",
            kind=event.kind.value,
            source=event.source.value,
            event_id=event.event_id,
            applied=result.applied,
            order_id=result.order.id if result.order else None,
            payout_id=result.payout.id if result.payout else None,
            anomaly=result.anomaly,
        )
        return result

    async def verify_payment(self, req: VerifyPaymentDTO) -> VerifyPaymentResultDTO:
        """
        Direct verification after client-side checkout.

        Constant-time signature check before any lookup, then the order
        lookup (404); the authoritative payment status decides which
        transition is applied.
        """
        if not self._gateway.verify_signature(req.gateway_order_id, req.payment_id, req.signature):
            logger.warning(
                "payment_signature_mismatch",
                gateway_order_id=req.gateway_order_id,
                payment_id=req.payment_id,
            )
            raise SignatureMismatchException()

        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_gateway_order_id(req.gateway_order_id)
        if order is None:
            raise OrderNotFoundException(req.gateway_order_id)

        details = await self._gateway.fetch_payment(req.payment_id)
        if details.gateway_order_id and details.gateway_order_id != req.gateway_order_id:
            logger.warning(
                "payment_order_mismatch",
                order_id=order.id,
                expected=req.gateway_order_id,
                actual=details.gateway_order_id,
            )
            raise DomainValidationException("Payment does not belong to this order", field="paymentId")

        kind = _VERIFY_KIND_BY_STATUS.get(details.status)
        result = ApplyResult(applied=False, order=order)
        if kind is not None:
            event = SettlementEvent(
                kind=kind,
                payload=PaymentPayload(
                    payment_id=req.payment_id,
                    gateway_order_id=req.gateway_order_id,
                    method=details.method,
                    amount=details.amount,
                    signature=req.signature,
                    error_description=details.error_description,
                ),
                source=EventSource.VERIFY,
            )
            result = await self.apply_event(event)

        if result.manual_intervention:
            raise ManualInterventionRequiredException(result.manual_intervention, order_id=order.id)

        final = result.order or order
        return VerifyPaymentResultDTO(
            order_id=final.id,
            order_number=final.order_number,
            status=final.status.value,
            payment_status=final.payment.status.value,
            applied=result.applied,
        )

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookAckDTO:
        """
        Verify, decode and apply a gateway webhook.

        A bad signature and a malformed payload produce the same client error.
        Unknown events, missing orders and manual-intervention conditions are
        acknowledged; anything else propagates so the gateway retries.
        """
        if not self._gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("webhook_signature_invalid", body_bytes=len(raw_body))
            raise SignatureMismatchException("Invalid webhook request")

        try:
            decoded = decode_webhook(raw_body)
        except MalformedWebhookException as exc:
            logger.warning("webhook_payload_malformed", kind=exc.event_name, details=exc.details)
            raise SignatureMismatchException("Invalid webhook request") from exc

        if decoded.event is None:
            logger.info("webhook_event_ignored", kind=decoded.name)
            return WebhookAckDTO(event=decoded.name, applied=False)

        result = await self.apply_event(decoded.event)
        if result.manual_intervention:
            logger.error(
                "manual_intervention_required",
                kind=decoded.name,
                order_id=result.order.id if result.order else None,
                reason=result.manual_intervention,
            )
        return WebhookAckDTO(event=decoded.name, applied=result.applied)
