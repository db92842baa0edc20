"""
Request ID 中间件

为每个请求绑定追踪上下文（request_id、客户端IP、网关事件ID），
结算日志据此串联同一次下单/回调中的所有记录。
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)

REQUEST_ID_HEADER = "X-Request-ID"
# 网关对同一事件的重复投递使用相同的事件ID
GATEWAY_EVENT_HEADER = "X-Razorpay-Event-Id"


def resolve_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """透传或生成 request_id，写入 contextvars/structlog，并回写到响应头"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        client_ip = resolve_client_ip(request)
        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "method": request.method,
            "path": request.url.path,
        }
        gateway_event_id = request.headers.get(GATEWAY_EVENT_HEADER)
        if gateway_event_id:
            context["gateway_event_id"] = gateway_event_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
