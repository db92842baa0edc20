"""
Gateway webhook endpoint.

The raw body is handed to the service untouched: the signature is computed
over the exact bytes the gateway sent.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_settlement_service
from application.services.settlement_service import SettlementApplicationService
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response
from core.settings import payment_settings


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/gateway", summary="Payment gateway webhook", response_model=ApiResponse)
async def gateway_webhook(
    request: Request,
    service: SettlementApplicationService = Depends(get_settlement_service),
):
    # Optional IP allowlist
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist:
        remote_ip = request.client.host if request.client else ""
        if not _ip_permitted(remote_ip, allowlist):
            logger.warning("webhook_ip_rejected", remote_ip=remote_ip)
            raise ForbiddenException("Webhook source not allowed")

    raw_body = await request.body()
    signature = request.headers.get(payment_settings.webhook.signature_header)
    ack = await service.handle_webhook(raw_body, signature)
    # 200 acknowledges receipt; the gateway stops retrying
    return success_response(data=ack, message="Webhook received")
