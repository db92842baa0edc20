"""
订单结算状态迁移 - 纯函数

每个 apply_* 先检查前置条件，不满足时不做任何修改并返回 False；
满足时修改订单并返回 True。持久化层负责以 version 条件写入。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import OrderNotCancellableException
from domain.order.entity import GatewayPaymentStatus, Order, OrderStatus

_SETTLED = (GatewayPaymentStatus.CAPTURED, GatewayPaymentStatus.REFUNDED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def apply_authorized(order: Order, payment_id: Optional[str]) -> bool:
    if order.status != OrderStatus.PENDING_PAYMENT:
        return False
    if order.payment.status not in (GatewayPaymentStatus.CREATED, GatewayPaymentStatus.FAILED):
        return False
    order.payment.status = GatewayPaymentStatus.AUTHORIZED
    if payment_id:
        order.payment.payment_id = payment_id
    order.updated_at = _now()
    return True


def can_capture(order: Order) -> bool:
    return (
        order.payment.status not in _SETTLED
        and order.status in (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID)
    )


def is_late_capture(order: Order) -> bool:
    """已取消/已退款订单收到扣款事件"""
    return order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED) and order.payment.status not in _SETTLED


def apply_captured(
    order: Order,
    payment_id: Optional[str],
    *,
    method: Optional[str] = None,
    signature: Optional[str] = None,
    captured_at: Optional[datetime] = None,
) -> bool:
    """
    记录扣款；库存扣减与卖家指标由领域服务在同一事务中完成
    """
    if not can_capture(order):
        return False
    payment = order.payment
    payment.status = GatewayPaymentStatus.CAPTURED
    if payment_id:
        payment.payment_id = payment_id
    if method:
        payment.method = method
    if signature:
        payment.signature = signature
    payment.captured_at = captured_at or _now()
    if order.status == OrderStatus.PENDING_PAYMENT:
        order.change_status(OrderStatus.PAID, "Payment captured")
    else:
        order.updated_at = payment.captured_at
    return True


def apply_failed(order: Order, payment_id: Optional[str], reason: Optional[str] = None) -> bool:
    if order.status != OrderStatus.PENDING_PAYMENT:
        return False
    if order.payment.status in _SETTLED:
        return False
    order.payment.status = GatewayPaymentStatus.FAILED
    if payment_id:
        order.payment.payment_id = payment_id
    order.change_status(OrderStatus.CANCELLED, f"Payment failed: {reason}" if reason else "Payment failed")
    return True


def apply_order_paid(order: Order) -> bool:
    if order.status != OrderStatus.PENDING_PAYMENT:
        return False
    order.change_status(OrderStatus.PAID, "Gateway order paid")
    return True


def apply_refund_processed(order: Order, refund_id: str, amount: int) -> bool:
    """
    网关退款完成

    已取消订单保持 CANCELLED，只记录退款；其他订单进入 REFUNDED。
    """
    if order.payment.status != GatewayPaymentStatus.CAPTURED:
        return False
    keep_status = order.status == OrderStatus.CANCELLED
    if not keep_status and order.status not in (
        OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED
    ):
        return False
    record_refund(order, refund_id, amount)
    if not keep_status:
        order.change_status(OrderStatus.REFUNDED, f"Refund {refund_id} processed")
    return True


def record_refund(order: Order, refund_id: Optional[str], amount: int) -> None:
    payment = order.payment
    payment.status = GatewayPaymentStatus.REFUNDED
    payment.refund_id = refund_id
    payment.refund_amount = amount
    payment.refunded_at = _now()
    order.updated_at = payment.refunded_at


def cancel(order: Order, reason: Optional[str] = None) -> None:
    if not order.can_be_cancelled():
        raise OrderNotCancellableException(order.status.value)
    order.change_status(OrderStatus.CANCELLED, reason or "Cancelled by user")
