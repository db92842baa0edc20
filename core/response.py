"""
统一响应信封

所有接口返回 {code, message, data, error}。data 中的 DTO 以 camelCase 别名输出，
时间统一为 UTC ISO8601（Z 结尾），金额保持整数最小货币单位。
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def to_utc_z(ts: datetime) -> str:
    """datetime -> '2026-10-19T09:00:00Z'（无时区按 UTC 处理）"""
    ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


def to_payload(value: Any) -> Any:
    """DTO（或 DTO 列表）转为可直接放进 data 的 JSON 结构"""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    return value


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return to_utc_z(timestamp)


class Response(BaseModel, Generic[T]):
    """统一响应模型"""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PaginatedData(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    size: int
    pages: int


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    """
    成功响应

    Args:
        data: DTO、DTO 列表或普通 JSON 结构
        message: 提示信息
        code: 业务状态码
    """
    return Response(code=code, message=message, data=to_payload(data))


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Response:
    """错误响应（HTTP 状态码由异常处理器按业务码映射）"""
    return Response(
        code=code,
        message=message,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )


def paginated_response(items: list, total: int, page: int, size: int, message: str = "Success") -> Response:
    """分页响应：pages 向上取整，size 为 0 时为 0"""
    return Response(
        code=BusinessCode.SUCCESS,
        message=message,
        data=PaginatedData(
            items=to_payload(items),
            total=total,
            page=page,
            size=size,
            pages=(total + size - 1) // size if size > 0 else 0,
        ),
    )
