"""
Razorpay-compatible REST adapter over httpx.

Endpoints used (basic auth with key id / key secret):
- POST /v1/orders                       create remote order
- GET  /v1/payments/{id}                fetch authoritative payment
- POST /v1/payments/{id}/refund         refund (full when amount omitted)

Checkout signature is HMAC-SHA256(key_secret, "<order_id>|<payment_id>");
webhook signature is HMAC-SHA256(webhook_secret, raw_body). Both hex digests,
compared with hmac.compare_digest.
"""
from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreateRemoteOrder,
    GatewayOrderRef,
    PaymentDetails,
    RefundRequest,
    RefundResult,
)
from core.logging_config import get_logger
from core.settings import RazorpaySettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


logger = get_logger(__name__)


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        config: Optional[RazorpaySettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = config or payment_settings.razorpay
        if not cfg.key_id or not cfg.key_secret:
            raise RuntimeError("PAYMENT__RAZORPAY__KEY_ID / KEY_SECRET not configured")
        super().__init__(
            base_url=cfg.base_url,
            auth=(cfg.key_id, cfg.key_secret),
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.key_id = cfg.key_id
        self._key_secret = cfg.key_secret
        self._webhook_secret = cfg.webhook_secret or cfg.key_secret

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _json_or_raise(self, op: str, resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.is_success and isinstance(body, dict):
            return body
        error = (body or {}).get("error", {}) if isinstance(body, dict) else {}
        logger.warning(
            "payment_provider_error",
            provider=self.provider,
            op=op,
            status_code=resp.status_code,
            provider_code=error.get("code"),
        )
        raise PaymentProviderError(
            error.get("description") or f"Payment provider error ({resp.status_code})",
            provider=self.provider,
            provider_code=error.get("code"),
            status_code=resp.status_code,
        )

    async def create_remote_order(self, req: CreateRemoteOrder) -> GatewayOrderRef:
        payload = {
            "amount": req.amount,
            "currency": req.currency,
            "receipt": req.receipt,
            "notes": {k: str(v) for k, v in req.notes.items()},
        }
        # receipt is unique per local order, so a retried create is safe
        resp = await self._call(
            "create_order",
            lambda: self.client.post("/v1/orders", json=payload),
            idempotent=True,
        )
        data = self._json_or_raise("create_order", resp)
        try:
            if not data.get("id"):
                raise ValueError("missing order id")
            ref = GatewayOrderRef(
                gateway_order_id=str(data["id"]),
                amount=int(data.get("amount", req.amount)),
                currency=str(data.get("currency", req.currency)),
                receipt=data.get("receipt"),
                status=str(data.get("status", "created")),
                provider=self.provider,
            )
        except (TypeError, ValueError) as exc:
            logger.warning(
                "payment_provider_malformed_response",
                provider=self.provider,
                op="create_order",
                status_code=resp.status_code,
                error=str(exc),
            )
            raise PaymentProviderError(
                "Payment provider returned a malformed order",
                provider=self.provider,
                status_code=resp.status_code,
            ) from exc
        self._log("payment_remote_order_created", gateway_order_id=ref.gateway_order_id, receipt=req.receipt)
        return ref

    async def fetch_payment(self, payment_id: str) -> PaymentDetails:
        resp = await self._call(
            "fetch_payment",
            lambda: self.client.get(f"/v1/payments/{payment_id}"),
            idempotent=True,
        )
        data = self._json_or_raise("fetch_payment", resp)
        captured_at = None
        if data.get("captured") and data.get("created_at"):
            captured_at = datetime.fromtimestamp(int(data["created_at"]), tz=timezone.utc)
        return PaymentDetails(
            payment_id=str(data.get("id", payment_id)),
            gateway_order_id=data.get("order_id"),
            status=self._map_status(str(data.get("status", ""))),
            method=data.get("method"),
            amount=data.get("amount"),
            currency=data.get("currency"),
            error_description=data.get("error_description"),
            captured_at=captured_at,
            provider=self.provider,
        )

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        payload: dict[str, Any] = {"notes": {"reason": req.reason or "Refund for order cancellation"}}
        payload["notes"].update({k: str(v) for k, v in req.notes.items()})
        if req.amount is not None:
            payload["amount"] = req.amount
        # not retried: a duplicate refund is worse than a reported failure
        resp = await self._call(
            "create_refund",
            lambda: self.client.post(f"/v1/payments/{req.payment_id}/refund", json=payload),
            idempotent=False,
        )
        data = self._json_or_raise("create_refund", resp)
        self._log("payment_refund_created", refund_id=data.get("id"), payment_id=req.payment_id)
        return RefundResult(
            refund_id=str(data["id"]),
            payment_id=str(data.get("payment_id", req.payment_id)),
            amount=int(data.get("amount", req.amount or 0)),
            status=str(data.get("status", "processed")),
            provider=self.provider,
        )

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not signature:
            return False
        expected = hmac_sha256_hex(self._key_secret, f"{gateway_order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = hmac_sha256_hex(self._webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)
