"""
Exceptions for payment providers mapped to unified BusinessException variants.

All of them are GatewayUnavailableException subclasses so application code
handles "the gateway did not do what we asked" in one place.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import GatewayUnavailableException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(GatewayUnavailableException):
    """Provider answered with an error (4xx/5xx or an unparseable body)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        status_code: int | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider_code": provider_code, "status_code": status_code}
        if details:
            full_details.update(details)
        super().__init__(
            message,
            provider=provider,
            details=full_details,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="PaymentProviderError",
        )
        self.status_code = status_code


class PaymentTransportError(GatewayUnavailableException):
    """Timeout or connection failure talking to the provider."""

    def __init__(self, message: str, *, provider: str, timeout: bool = False):
        super().__init__(message, provider=provider, timeout=timeout)
