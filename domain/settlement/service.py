"""
结算领域服务 - 把结算事件应用到订单/结算单

所有写入都在调用方提供的同一个 UoW 内完成：订单条件写入、库存扣减/回补、
卖家指标、结算单撤销要么一起提交，要么一起回滚。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.order.events import (
    OrderCancelled,
    OrderPaid,
    OrderRefunded,
    PaymentAuthorized,
    PaymentFailed,
    SettlementAnomaly,
)
from domain.payout.entity import Payout
from . import transitions
from .events import (
    EventKind,
    OrderPaidPayload,
    PaymentPayload,
    RefundPayload,
    SettlementEvent,
    TransferPayload,
)

STOCK_SHORTFALL = "stock_shortfall_on_capture"
REFUND_FAILED = "refund_failed_after_cancel"


@dataclass
class ApplyResult:
    applied: bool
    order: Optional[Order] = None
    payout: Optional[Payout] = None
    anomaly: Optional[str] = None
    manual_intervention: Optional[str] = None


@dataclass(frozen=True)
class CancelEffects:
    stock_restored: bool
    payouts_reversed: int


class SettlementDomainService:
    """
    结算状态机

    apply() 按事件类型分派；前置条件不满足时返回 applied=False 且不写库。
    """

    def __init__(self, uow: AbstractUnitOfWork):
        self.uow = uow
        self.events: list = []
        self._handlers = {
            EventKind.PAYMENT_AUTHORIZED: self._on_payment_authorized,
            EventKind.PAYMENT_CAPTURED: self._on_payment_captured,
            EventKind.PAYMENT_FAILED: self._on_payment_failed,
            EventKind.ORDER_PAID: self._on_order_paid,
            EventKind.TRANSFER_PROCESSED: self._on_transfer_processed,
            EventKind.TRANSFER_FAILED: self._on_transfer_failed,
            EventKind.REFUND_PROCESSED: self._on_refund_processed,
        }

    @property
    def handled_kinds(self) -> frozenset:
        return frozenset(self._handlers)

    async def apply(self, event: SettlementEvent) -> ApplyResult:
        handler = self._handlers[event.kind]
        return await handler(event.payload)

    # ---- 查找 -----------------------------------------------------------

    async def find_order_for_payment(self, payload: PaymentPayload) -> Optional[Order]:
        order = None
        if payload.gateway_order_id:
            order = await self.uow.orders.get_by_gateway_order_id(payload.gateway_order_id)
        if order is None and payload.payment_id:
            order = await self.uow.orders.get_by_payment_id(payload.payment_id)
        return order

    def _anomaly(self, order: Optional[Order], kind: str, detail: Optional[str] = None, **kw) -> ApplyResult:
        if order is not None:
            self.events.append(SettlementAnomaly(
                order_id=order.id, order_number=order.order_number, kind=kind, detail=detail
            ))
        return ApplyResult(applied=False, order=order, anomaly=kind, **kw)

    # ---- 支付事件 -------------------------------------------------------

    async def _on_payment_authorized(self, payload: PaymentPayload) -> ApplyResult:
        order = await self.find_order_for_payment(payload)
        if order is None:
            return ApplyResult(applied=False, anomaly="order_not_found")
        return await self.authorize(order, payload)

    async def _on_payment_captured(self, payload: PaymentPayload) -> ApplyResult:
        order = await self.find_order_for_payment(payload)
        if order is None:
            return ApplyResult(applied=False, anomaly="order_not_found")
        return await self.capture(order, payload)

    async def capture(self, order: Order, payload: PaymentPayload) -> ApplyResult:
        """
        记录扣款并扣减库存（仅一次）

        库存不足时回补已扣减部分，扣款照常记录，订单附加对账记录。
        """
        if transitions.is_late_capture(order):
            return self._anomaly(order, "capture_after_terminal", order.status.value)
        if not transitions.apply_captured(
            order,
            payload.payment_id,
            method=payload.method,
            signature=payload.signature,
        ):
            return ApplyResult(applied=False, order=order)

        manual = None
        shortfall = await self._commit_stock(order)
        if shortfall is None:
            order.stock_committed = True
        else:
            order.stock_committed = False
            manual = STOCK_SHORTFALL
            order.add_reconciliation_note(STOCK_SHORTFALL, shortfall)

        for seller in order.seller_totals():
            await self.uow.sellers.increment_sales_metrics(seller.seller_id, seller.subtotal, 1)

        order = await self.uow.orders.update(order)
        self.events.append(OrderPaid(
            order_id=order.id,
            order_number=order.order_number,
            payment_id=order.payment.payment_id,
            stock_committed=order.stock_committed,
        ))
        if manual:
            self.events.append(SettlementAnomaly(
                order_id=order.id, order_number=order.order_number, kind=manual
            ))
        return ApplyResult(applied=True, order=order, manual_intervention=manual)

    async def _commit_stock(self, order: Order) -> Optional[dict]:
        """逐个商品条件扣减；任一失败则回补已扣减的部分并返回缺货详情"""
        quantities: dict[str, int] = {}
        for item in order.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        done: list[tuple[str, int]] = []
        for product_id, qty in quantities.items():
            if await self.uow.products.decrement_stock(product_id, qty):
                done.append((product_id, qty))
                continue
            for pid, q in reversed(done):
                await self.uow.products.restore_stock(pid, q)
            return {"product_id": product_id, "requested": qty}
        return None

    async def _restore_stock(self, order: Order) -> None:
        for item in order.items:
            await self.uow.products.restore_stock(item.product_id, item.quantity)

    async def _on_payment_failed(self, payload: PaymentPayload) -> ApplyResult:
        order = await self.find_order_for_payment(payload)
        if order is None:
            return ApplyResult(applied=False, anomaly="order_not_found")
        return await self.fail(order, payload)

    async def fail(self, order: Order, payload: PaymentPayload) -> ApplyResult:
        if not transitions.apply_failed(order, payload.payment_id, payload.error_description):
            return ApplyResult(applied=False, order=order)
        reversed_count = await self._reverse_pending_payouts(order, "Payment failed")
        order = await self.uow.orders.update(order)
        self.events.append(PaymentFailed(
            order_id=order.id,
            order_number=order.order_number,
            payment_id=payload.payment_id,
            reason=payload.error_description,
        ))
        if reversed_count:
            self.events.append(OrderCancelled(
                order_id=order.id, order_number=order.order_number,
                reason="payment_failed", payouts_reversed=reversed_count,
            ))
        return ApplyResult(applied=True, order=order)

    async def authorize(self, order: Order, payload: PaymentPayload) -> ApplyResult:
        if not transitions.apply_authorized(order, payload.payment_id):
            return ApplyResult(applied=False, order=order)
        order = await self.uow.orders.update(order)
        self.events.append(PaymentAuthorized(
            order_id=order.id, order_number=order.order_number, payment_id=payload.payment_id
        ))
        return ApplyResult(applied=True, order=order)

    async def _on_order_paid(self, payload: OrderPaidPayload) -> ApplyResult:
        order = await self.uow.orders.get_by_gateway_order_id(payload.gateway_order_id)
        if order is None:
            return ApplyResult(applied=False, anomaly="order_not_found")
        if not transitions.apply_order_paid(order):
            return ApplyResult(applied=False, order=order)
        order = await self.uow.orders.update(order)
        return ApplyResult(applied=True, order=order)

    # ---- 转账事件 -------------------------------------------------------

    async def _on_transfer_processed(self, payload: TransferPayload) -> ApplyResult:
        payout = await self.uow.payouts.get_by_transfer_id(payload.transfer_id)
        if payout is None:
            return ApplyResult(applied=False, anomaly="payout_not_found")
        if not payout.apply_transfer_processed():
            return ApplyResult(applied=False, payout=payout)
        payout = await self.uow.payouts.update(payout)
        return ApplyResult(applied=True, payout=payout)

    async def _on_transfer_failed(self, payload: TransferPayload) -> ApplyResult:
        payout = await self.uow.payouts.get_by_transfer_id(payload.transfer_id)
        if payout is None:
            return ApplyResult(applied=False, anomaly="payout_not_found")
        if not payout.apply_transfer_failed(payload.failure_reason):
            return ApplyResult(applied=False, payout=payout)
        payout = await self.uow.payouts.update(payout)
        return ApplyResult(applied=True, payout=payout)

    # ---- 退款/取消 ------------------------------------------------------

    async def _on_refund_processed(self, payload: RefundPayload) -> ApplyResult:
        order = await self.uow.orders.get_by_payment_id(payload.payment_id)
        if order is None:
            return ApplyResult(applied=False, anomaly="order_not_found")
        was_cancelled = order.status == OrderStatus.CANCELLED
        if not transitions.apply_refund_processed(order, payload.refund_id, payload.amount):
            return ApplyResult(applied=False, order=order)
        if not was_cancelled and payload.amount >= order.totals.grand_total:
            await self._reverse_pending_payouts(order, "Order refunded")
        order = await self.uow.orders.update(order)
        self.events.append(OrderRefunded(
            order_id=order.id,
            order_number=order.order_number,
            refund_id=payload.refund_id,
            amount=payload.amount,
        ))
        return ApplyResult(applied=True, order=order)

    async def cancel(self, order: Order, reason: Optional[str] = None) -> CancelEffects:
        """取消订单：回补已扣减库存并撤销未发起的结算单"""
        transitions.cancel(order, reason)
        stock_restored = False
        if order.stock_committed:
            await self._restore_stock(order)
            order.stock_committed = False
            stock_restored = True
        reversed_count = await self._reverse_pending_payouts(order, "Order cancelled")
        await self.uow.orders.update(order)
        self.events.append(OrderCancelled(
            order_id=order.id,
            order_number=order.order_number,
            reason=reason,
            stock_restored=stock_restored,
            payouts_reversed=reversed_count,
        ))
        return CancelEffects(stock_restored=stock_restored, payouts_reversed=reversed_count)

    async def record_refund(self, order: Order, refund_id: Optional[str], amount: int, *, set_refunded_status: bool) -> Order:
        """网关退款调用成功后落库"""
        transitions.record_refund(order, refund_id, amount)
        if set_refunded_status:
            order.change_status(OrderStatus.REFUNDED, f"Refund {refund_id} issued")
            if amount >= order.totals.grand_total:
                await self._reverse_pending_payouts(order, "Order refunded")
        order = await self.uow.orders.update(order)
        self.events.append(OrderRefunded(
            order_id=order.id, order_number=order.order_number, refund_id=refund_id, amount=amount
        ))
        return order

    async def _reverse_pending_payouts(self, order: Order, reason: str) -> int:
        count = 0
        for payout in await self.uow.payouts.list_by_order(order.id):
            if payout.reverse(reason):
                await self.uow.payouts.update(payout)
                count += 1
        return count
