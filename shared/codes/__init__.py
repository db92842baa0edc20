"""
业务状态码（各层共用）

响应体中的 code 字段；HTTP 状态码由 core.exceptions 按码映射。
网关相关的码见 shared.codes.payment_codes。
"""
from enum import IntEnum

from .payment_codes import PaymentCode


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 请求参数（1xxxx -> 400）
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # 订单与结算（2xxxx）
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006
    INSUFFICIENT_STOCK = 20100
    INVALID_TRANSITION = 20101
    CONCURRENT_UPDATE = 20102            # 409，可重试
    MANUAL_INTERVENTION_REQUIRED = 20103  # 409，已提交但需人工对账

    # 认证授权（3xxxx）
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 系统与依赖（4xxxx）
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode", "PaymentCode"]
