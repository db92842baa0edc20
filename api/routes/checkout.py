"""
结账API路由 - 下单、支付校验、取消、退款与订单查询
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from api.dependencies import CurrentUser, get_checkout_service, get_current_user, get_settlement_service, require_admin
from application.dtos.checkout import (
    AdvanceFulfillmentDTO,
    CancelOrderDTO,
    CreateOrderDTO,
    RefundOrderDTO,
    VerifyPaymentDTO,
)
from application.services.checkout_service import CheckoutApplicationService
from application.services.settlement_service import SettlementApplicationService
from core.config import settings
from core.response import Response as ApiResponse, paginated_response, success_response
from domain.order.entity import OrderStatus


router = APIRouter(
    prefix="/checkout",
    tags=["Checkout"],
)


@router.post("/create-order", summary="Create order", response_model=ApiResponse)
async def create_order(
    payload: CreateOrderDTO,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    """
    Price the cart, persist a PENDING_PAYMENT order and open a gateway order.

    The response carries what the client needs to start checkout.
    """
    result = await service.create_order(user.id, payload)
    return success_response(data=result, message="Order created")


@router.post("/verify", summary="Verify payment", response_model=ApiResponse)
async def verify_payment(
    payload: VerifyPaymentDTO,
    user: CurrentUser = Depends(get_current_user),
    service: SettlementApplicationService = Depends(get_settlement_service),
):
    result = await service.verify_payment(payload)
    return success_response(data=result, message="Payment verified")


@router.post("/orders/{order_id}/cancel", summary="Cancel order", response_model=ApiResponse)
async def cancel_order(
    order_id: str,
    payload: Optional[CancelOrderDTO] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    """Cancel an order; a captured payment is refunded at the gateway."""
    result = await service.cancel_order(order_id, user.id, payload, is_admin=user.is_admin)
    return success_response(data=result, message="Order cancelled")


@router.post("/orders/{order_id}/refund", summary="Refund order (admin)", response_model=ApiResponse)
async def refund_order(
    order_id: str,
    payload: Optional[RefundOrderDTO] = Body(default=None),
    admin: CurrentUser = Depends(require_admin),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    result = await service.process_refund(order_id, payload)
    return success_response(data=result, message="Refund processed")


@router.post("/orders/{order_id}/fulfillment", summary="Advance fulfillment (admin)", response_model=ApiResponse)
async def advance_fulfillment(
    order_id: str,
    payload: Optional[AdvanceFulfillmentDTO] = Body(default=None),
    admin: CurrentUser = Depends(require_admin),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    """履约推进一步（由运营或履约系统调用）"""
    order = await service.advance_fulfillment(order_id, payload)
    return success_response(data=order, message="Fulfillment advanced")


@router.get("/orders", summary="List my orders", response_model=ApiResponse)
async def list_orders(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    status: Optional[OrderStatus] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    orders, total = await service.list_orders(user.id, page=page, size=size, status=status)
    return paginated_response(
        items=orders,
        total=total,
        page=page,
        size=size,
    )


@router.get("/orders/{order_id}", summary="Get order", response_model=ApiResponse)
async def get_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: CheckoutApplicationService = Depends(get_checkout_service),
):
    order = await service.get_order(order_id, user.id, is_admin=user.is_admin)
    return success_response(data=order)
