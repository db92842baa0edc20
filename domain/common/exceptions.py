"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class NotFoundException(BusinessException):
    """资源不存在（订单/商品/结算单）"""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = identifier
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{resource} not found",
            error_type="NotFound",
            details=details,
        )


class OrderNotFoundException(NotFoundException):
    def __init__(self, identifier: Optional[str] = None):
        super().__init__("Order", identifier)


class ProductNotFoundException(NotFoundException):
    def __init__(self, identifier: Optional[str] = None):
        super().__init__("Product", identifier)


class PayoutNotFoundException(NotFoundException):
    def __init__(self, identifier: Optional[str] = None):
        super().__init__("Payout", identifier)


class InsufficientStockException(BusinessException):
    def __init__(self, product_id: str, product_name: Optional[str] = None, *, requested: int = 0, available: Optional[int] = None):
        details = {"product_id": product_id, "requested": requested}
        if available is not None:
            details["available"] = available
        super().__init__(
            code=BusinessCode.INSUFFICIENT_STOCK,
            message=f"Insufficient stock for {product_name or product_id}",
            error_type="InsufficientStock",
            details=details,
        )


class InvalidTransitionException(BusinessException):
    """订单当前状态不允许该操作"""

    def __init__(self, message: str, *, current_status: str, operation: str):
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=message,
            error_type="InvalidTransition",
            details={"status": current_status, "operation": operation},
        )


class OrderNotCancellableException(InvalidTransitionException):
    def __init__(self, current_status: str):
        super().__init__(
            "Order cannot be cancelled at this stage",
            current_status=current_status,
            operation="cancel",
        )


class OrderNotRefundableException(InvalidTransitionException):
    def __init__(self, current_status: str, payment_status: str):
        super().__init__(
            "Order cannot be refunded at this stage",
            current_status=current_status,
            operation="refund",
        )
        self.details["payment_status"] = payment_status


class ConcurrentUpdateException(BusinessException):
    """条件写入失败：记录已被其他请求修改"""

    def __init__(self, resource: str, identifier: str, expected_version: int):
        super().__init__(
            code=BusinessCode.CONCURRENT_UPDATE,
            message=f"{resource} {identifier} was modified concurrently",
            error_type="ConcurrentUpdate",
            details={"resource": resource, "id": identifier, "expected_version": expected_version},
        )


class ManualInterventionRequiredException(BusinessException):
    """主操作已提交，但后续动作（退款/库存扣减）失败，需要人工对账"""

    def __init__(self, reason: str, *, order_id: Optional[str] = None, details: Optional[dict] = None):
        full_details = {"reason": reason}
        if order_id is not None:
            full_details["order_id"] = order_id
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.MANUAL_INTERVENTION_REQUIRED,
            message="Operation committed but requires manual reconciliation",
            error_type="ManualInterventionRequired",
            details=full_details,
        )
        self.reason = reason


class SignatureMismatchException(BusinessException):
    """签名校验失败；对外消息保持通用，避免泄露内部状态"""

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(
            code=PaymentCode.SIGNATURE_MISMATCH,
            message=message,
            error_type="SignatureMismatch",
        )


class GatewayUnavailableException(BusinessException):
    """支付网关不可用或超时（调用方可重试）"""

    def __init__(
        self,
        message: str = "Payment gateway unavailable",
        *,
        provider: Optional[str] = None,
        timeout: bool = False,
        details: Optional[dict] = None,
        code: int = PaymentCode.GATEWAY_UNAVAILABLE,
        error_type: str = "GatewayUnavailable",
    ):
        full_details = {"provider": provider, "timeout": timeout}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.TIMEOUT if timeout else code,
            message=message,
            error_type=error_type,
            details=full_details,
        )
        self.timeout = timeout
