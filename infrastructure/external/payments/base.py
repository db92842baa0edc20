"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from infrastructure.external.payments.exceptions import PaymentTransportError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    key_id: Optional[str] = None

    def __init__(
        self,
        *,
        base_url: str = "",
        auth: Optional[httpx.Auth | tuple[str, str]] = None,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url
        self._auth = auth
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    @property
    def client(self) -> httpx.AsyncClient:
        # Created lazily and kept open for reuse; aclose() releases it.
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth,
                timeout=self.timeouts,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        """Retry transport-level failures; only for idempotent calls."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _call(self, op: str, fn: Callable[[], Awaitable[Any]], *, idempotent: bool) -> Any:
        """Run a request, translating transport failures to PaymentTransportError."""
        try:
            if idempotent:
                return await self._retry(fn)
            return await fn()
        except httpx.TimeoutException as exc:
            logger.warning("payment_gateway_timeout", provider=self.provider, op=op)
            raise PaymentTransportError(
                "Payment gateway timed out", provider=self.provider, timeout=True
            ) from exc
        except httpx.TransportError as exc:
            logger.warning("payment_gateway_transport_error", provider=self.provider, op=op, error=str(exc))
            raise PaymentTransportError("Payment gateway unavailable", provider=self.provider) from exc
        except httpx.HTTPError as exc:
            # 解码失败、重定向过多等非传输层错误
            logger.warning("payment_gateway_http_error", provider=self.provider, op=op, error=str(exc))
            raise PaymentTransportError("Payment gateway unavailable", provider=self.provider) from exc

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
