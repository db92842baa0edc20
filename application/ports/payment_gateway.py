"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateRemoteOrder,
    GatewayOrderRef,
    PaymentDetails,
    RefundRequest,
    RefundResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the marketplace payment provider.

    Network methods raise GatewayUnavailableException (or a subclass) on
    timeouts, transport errors and provider-side failures. Signature checks
    are local and never raise.
    """

    provider: str
    key_id: Optional[str]

    async def create_remote_order(self, req: CreateRemoteOrder) -> GatewayOrderRef: ...

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool: ...

    async def fetch_payment(self, payment_id: str) -> PaymentDetails: ...

    async def create_refund(self, req: RefundRequest) -> RefundResult: ...

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool: ...

    async def aclose(self) -> None: ...
