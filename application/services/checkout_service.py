"""
Checkout application service: order creation, cancellation, refunds and reads.

Gateway calls are made between units of work, never inside one. Local state
written before a gateway call is reconciled afterwards: a failed remote order
cancels the local order, a failed refund leaves a reconciliation note.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.checkout import (
    AdvanceFulfillmentDTO,
    CancelOrderDTO,
    CancelOrderResultDTO,
    CreateOrderDTO,
    CreateOrderResultDTO,
    OrderDTO,
    RefundOrderDTO,
    RefundResultDTO,
)
from application.dtos.payments import CreateRemoteOrder, GatewayOrderRef, RefundRequest
from application.ports.payment_gateway import PaymentGateway
from application.services.policy import SettlementPolicy
from application.services.settlement_service import log_domain_events
from application.utils.concurrency import retry_on_conflict
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    GatewayUnavailableException,
    NotFoundException,
    OrderNotFoundException,
    OrderNotRefundableException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import GatewayPaymentStatus, Order, OrderStatus, PayoutRef, ShippingAddress
from domain.order.service import CartLine, OrderDomainService
from domain.payout.entity import derive_payouts
from domain.settlement.service import REFUND_FAILED, SettlementDomainService


logger = get_logger(__name__)


class CheckoutApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        policy: Optional[SettlementPolicy] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._policy = policy or SettlementPolicy()

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_order(self, user_id: str, req: CreateOrderDTO) -> CreateOrderResultDTO:
        coupon = self._policy.resolve_coupon(req.coupon_code)

        async with self._uow_factory() as uow:
            user = await uow.users.get_user(user_id)
            if user is None:
                raise NotFoundException("User", user_id)
            domain_service = OrderDomainService(uow.orders, uow.products, self._policy.pricing)
            items = await domain_service.build_items(
                [CartLine(product_id=i.product_id, quantity=i.quantity, variant=i.variant) for i in req.items]
            )
            order, splits = domain_service.build_order(
                user,
                items,
                ShippingAddress(**req.shipping_address.model_dump(by_alias=False)),
                coupon=coupon,
                payment_method=req.payment_method,
                currency=self._policy.currency,
            )
            if order.totals.grand_total <= 0:
                raise DomainValidationException("Order total must be positive", field="totals.grandTotal")
            order = await domain_service.persist_new_order(order, self._policy.order_number_attempts)
            events = domain_service.events
        log_domain_events(events)

        async def _attach(ref: GatewayOrderRef) -> Order:
            async with self._uow_factory() as uow:
                current = await uow.orders.get_by_id(order.id)
                current.payment.gateway_order_id = ref.gateway_order_id
                current.payment.status = GatewayPaymentStatus.CREATED
                payouts = await uow.payouts.create_many(
                    derive_payouts(current.id, splits, self._policy.fees, currency=self._policy.currency)
                )
                current.payouts = [
                    PayoutRef(
                        payout_id=p.id,
                        seller_id=p.seller_id,
                        seller_name=p.seller_name,
                        amount=p.gross_amount,
                        transfer_id=p.transfer_id,
                        status=p.status.value,
                    )
                    for p in payouts
                ]
                return await uow.orders.update(current)

        # 任一步失败都取消本地订单，不留下没有网关单号的待支付订单
        try:
            ref = await self._gateway.create_remote_order(
                CreateRemoteOrder(
                    amount=order.totals.grand_total,
                    currency=self._policy.currency,
                    receipt=order.order_number,
                    notes={"order_id": order.id, "user_id": user_id},
                )
            )
            order = await retry_on_conflict(
                lambda: _attach(ref), attempts=self._policy.max_apply_retries, op="attach_gateway_order"
            )
        except GatewayUnavailableException as exc:
            logger.error(
                "gateway_order_create_failed",
                order_id=order.id,
                order_number=order.order_number,
                timeout=exc.timeout,
                error=exc.message,
            )
            note = "Gateway order creation timed out" if exc.timeout else "Gateway order creation failed"
            await self._abandon_order(order.id, note)
            raise
        except BusinessException as exc:
            logger.error(
                "gateway_order_attach_failed",
                order_id=order.id,
                order_number=order.order_number,
                error=exc.message,
            )
            await self._abandon_order(order.id, "Gateway order creation failed")
            raise
        except Exception as exc:
            logger.error(
                "gateway_order_create_error",
                order_id=order.id,
                order_number=order.order_number,
                error_class=type(exc).__name__,
                exc_info=True,
            )
            await self._abandon_order(order.id, "Gateway order creation failed")
            raise GatewayUnavailableException("Payment gateway order could not be created") from exc

        logger.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            gateway_order_id=ref.gateway_order_id,
            grand_total=order.totals.grand_total,
            payouts=len(order.payouts),
        )
        return CreateOrderResultDTO(
            order_id=order.id,
            order_number=order.order_number,
            gateway_order_id=ref.gateway_order_id,
            amount=order.totals.grand_total,
            currency=self._policy.currency,
            key=getattr(self._gateway, "key_id", None),
        )

    async def _abandon_order(self, order_id: str, note: str) -> None:
        async def _cancel() -> None:
            async with self._uow_factory() as uow:
                order = await uow.orders.get_by_id(order_id)
                if order is None or order.status != OrderStatus.PENDING_PAYMENT:
                    return
                order.change_status(OrderStatus.CANCELLED, note)
                await uow.orders.update(order)

        await retry_on_conflict(_cancel, attempts=self._policy.max_apply_retries, op="gateway_failure_cancel")

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    async def cancel_order(
        self,
        order_id: str,
        user_id: str,
        req: Optional[CancelOrderDTO] = None,
        *,
        is_admin: bool = False,
    ) -> CancelOrderResultDTO:
        reason = (req.reason if req else None) or "Cancelled by user"
        state: dict = {}

        async def _cancel() -> Order:
            async with self._uow_factory() as uow:
                order = await self._load_owned(uow, order_id, user_id, is_admin)
                state["captured"] = order.payment.status == GatewayPaymentStatus.CAPTURED
                domain_service = SettlementDomainService(uow)
                await domain_service.cancel(order, reason)
                state["events"] = domain_service.events
                return order

        order = await retry_on_conflict(_cancel, attempts=self._policy.max_apply_retries, op="cancel")
        log_domain_events(state.get("events", []))

        if not state["captured"]:
            return CancelOrderResultDTO(
                order_id=order.id,
                status=order.status.value,
                refund_eligible=False,
                refund_amount=0,
                refund_status="not_required",
                manual_intervention_required=False,
            )

        refund_amount = order.refundable_amount()
        try:
            refund = await self._gateway.create_refund(
                RefundRequest(
                    payment_id=order.payment.payment_id,
                    amount=refund_amount,
                    reason=reason,
                    notes={"order_id": order.id, "order_number": order.order_number},
                )
            )
        except GatewayUnavailableException as exc:
            logger.error(
                "cancel_refund_failed",
                order_id=order.id,
                payment_id=order.payment.payment_id,
                error=exc.message,
            )
            await retry_on_conflict(
                lambda: self._record_manual_intervention(
                    order.id, REFUND_FAILED, {"amount": refund_amount, "error": exc.message}
                ),
                attempts=self._policy.max_apply_retries,
                op="record_manual_intervention",
            )
            return CancelOrderResultDTO(
                order_id=order.id,
                status=OrderStatus.CANCELLED.value,
                refund_eligible=True,
                refund_amount=0,
                refund_status="failed",
                manual_intervention_required=True,
            )

        await retry_on_conflict(
            lambda: self._record_refund(order.id, refund.refund_id, refund.amount, set_refunded_status=False),
            attempts=self._policy.max_apply_retries,
            op="record_refund",
        )
        return CancelOrderResultDTO(
            order_id=order.id,
            status=OrderStatus.CANCELLED.value,
            refund_eligible=True,
            refund_amount=refund.amount,
            refund_status="refunded",
            manual_intervention_required=False,
        )

    # ------------------------------------------------------------------
    # refund (admin)
    # ------------------------------------------------------------------

    async def process_refund(self, order_id: str, req: Optional[RefundOrderDTO] = None) -> RefundResultDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if not order.can_be_refunded():
            raise OrderNotRefundableException(order.status.value, order.payment.status.value)

        amount = req.amount if req and req.amount is not None else order.totals.grand_total
        if amount <= 0 or amount > order.totals.grand_total:
            raise DomainValidationException(
                f"Refund amount must be between 1 and {order.totals.grand_total}",
                field="amount",
            )
        reason = (req.reason if req else None) or "Refund requested"

        # 网关失败直接抛出，本地不做任何修改
        refund = await self._gateway.create_refund(
            RefundRequest(
                payment_id=order.payment.payment_id,
                amount=amount,
                reason=reason,
                notes={"order_id": order.id, "order_number": order.order_number},
            )
        )
        await retry_on_conflict(
            lambda: self._record_refund(order.id, refund.refund_id, refund.amount, set_refunded_status=True),
            attempts=self._policy.max_apply_retries,
            op="record_refund",
        )
        logger.info("order_refunded", order_id=order.id, refund_id=refund.refund_id, amount=refund.amount)
        return RefundResultDTO(
            order_id=order.id,
            refund_id=refund.refund_id,
            refund_amount=refund.amount,
            status=OrderStatus.REFUNDED.value,
        )

    async def _record_refund(
        self, order_id: str, refund_id: str, amount: int, *, set_refunded_status: bool
    ) -> None:
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_id(order_id)
            if order is None or order.payment.status == GatewayPaymentStatus.REFUNDED:
                # refund.processed webhook got there first
                return
            domain_service = SettlementDomainService(uow)
            await domain_service.record_refund(
                order, refund_id, amount, set_refunded_status=set_refunded_status
            )
            events = domain_service.events
        log_domain_events(events)

    async def _record_manual_intervention(self, order_id: str, reason: str, details: dict) -> None:
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_id(order_id)
            order.add_reconciliation_note(reason, details)
            await uow.orders.update(order)

    # ------------------------------------------------------------------
    # fulfillment (admin / fulfillment service)
    # ------------------------------------------------------------------

    async def advance_fulfillment(self, order_id: str, req: Optional[AdvanceFulfillmentDTO] = None) -> OrderDTO:
        """Move a paid order one step along PAID -> PROCESSING -> SHIPPED -> DELIVERED."""
        note = (req.note if req else None) or ""

        async def _advance() -> Order:
            async with self._uow_factory() as uow:
                order = await uow.orders.get_by_id(order_id)
                if order is None:
                    raise OrderNotFoundException(order_id)
                order.advance_fulfillment(note)
                return await uow.orders.update(order)

        order = await retry_on_conflict(_advance, attempts=self._policy.max_apply_retries, op="advance_fulfillment")
        logger.info("order_fulfillment_advanced", order_id=order.id, status=order.status.value)
        return OrderDTO.from_entity(order)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def _load_owned(self, uow: AbstractUnitOfWork, order_id: str, user_id: str, is_admin: bool) -> Order:
        order = await uow.orders.get_by_id(order_id)
        # 非本人订单按不存在处理，避免枚举
        if order is None or (order.user_id != user_id and not is_admin):
            raise OrderNotFoundException(order_id)
        return order

    async def get_order(self, order_id: str, user_id: str, *, is_admin: bool = False) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_owned(uow, order_id, user_id, is_admin)
        return OrderDTO.from_entity(order)

    async def list_orders(
        self,
        user_id: str,
        *,
        page: int = 1,
        size: int = 10,
        status: Optional[OrderStatus] = None,
    ) -> tuple[list[OrderDTO], int]:
        skip = (page - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_by_user(user_id, skip=skip, limit=size, status=status)
            total = await uow.orders.count_by_user(user_id, status=status)
        return [OrderDTO.from_entity(o) for o in orders], total
