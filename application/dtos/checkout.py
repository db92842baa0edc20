"""
Checkout / order / payout DTOs exchanged with the HTTP layer.

Wire format is camelCase; amounts are integers in minor currency units.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, Field, field_validator

from application.dtos.base import DTOBase
from domain.order.entity import Order
from domain.payout.entity import Payout


class CartItemDTO(DTOBase):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    variant: Optional[str] = None


class ShippingAddressDTO(DTOBase):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., pattern=r"^[0-9+\- ]{7,15}$")
    address: str = Field(..., min_length=1, max_length=300)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    landmark: Optional[str] = None


class CreateOrderDTO(DTOBase):
    items: list[CartItemDTO] = Field(..., min_length=1)
    shipping_address: ShippingAddressDTO
    payment_method: str = "razorpay"
    coupon_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("coupon", "couponCode", "coupon_code")
    )

    @field_validator("coupon_code")
    @classmethod
    def _normalize_coupon(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class VerifyPaymentDTO(DTOBase):
    gateway_order_id: str = Field(
        ..., validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId", "gateway_order_id")
    )
    payment_id: str = Field(
        ..., validation_alias=AliasChoices("paymentId", "razorpayPaymentId", "payment_id")
    )
    signature: str = Field(
        ..., validation_alias=AliasChoices("signature", "razorpaySignature")
    )


class CancelOrderDTO(DTOBase):
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundOrderDTO(DTOBase):
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class AdvanceFulfillmentDTO(DTOBase):
    note: Optional[str] = Field(default=None, max_length=500)


class MarkPayoutProcessingDTO(DTOBase):
    transfer_id: str = Field(..., min_length=1)


class CreateOrderResultDTO(DTOBase):
    order_id: str
    order_number: str
    gateway_order_id: str
    amount: int
    currency: str
    key: Optional[str] = None


class VerifyPaymentResultDTO(DTOBase):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    applied: bool


class CancelOrderResultDTO(DTOBase):
    order_id: str
    status: str
    refund_eligible: bool
    refund_amount: int
    refund_status: str  # not_required / refunded / failed
    manual_intervention_required: bool


class RefundResultDTO(DTOBase):
    order_id: str
    refund_id: str
    refund_amount: int
    status: str


class OrderItemDTO(DTOBase):
    product_id: str
    product_name: str
    seller_id: str
    seller_name: str
    price: int
    quantity: int
    variant: Optional[str] = None
    sku: Optional[str] = None


class TotalsDTO(DTOBase):
    subtotal: int
    tax: int
    shipping: int
    discounts: int
    grand_total: int


class PaymentStateDTO(DTOBase):
    gateway_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    status: str
    method: Optional[str] = None
    amount: int
    currency: str
    captured_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: int = 0
    refund_id: Optional[str] = None


class StatusChangeDTO(DTOBase):
    status: str
    timestamp: datetime
    note: str = ""


class PayoutRefDTO(DTOBase):
    payout_id: str
    seller_id: str
    seller_name: str
    amount: int
    transfer_id: Optional[str] = None
    status: str


class OrderDTO(DTOBase):
    id: str
    order_number: Optional[str]
    user_id: str
    status: str
    items: list[OrderItemDTO]
    totals: TotalsDTO
    shipping_address: ShippingAddressDTO
    payment: PaymentStateDTO
    payouts: list[PayoutRefDTO]
    status_history: list[StatusChangeDTO]
    coupon_code: Optional[str] = None
    manual_intervention_required: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderDTO":
        p = order.payment
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status.value,
            items=[
                OrderItemDTO(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    seller_id=i.seller_id,
                    seller_name=i.seller_name,
                    price=i.price,
                    quantity=i.quantity,
                    variant=i.variant,
                    sku=i.sku,
                )
                for i in order.items
            ],
            totals=TotalsDTO(
                subtotal=order.totals.subtotal,
                tax=order.totals.tax,
                shipping=order.totals.shipping,
                discounts=order.totals.discounts,
                grand_total=order.totals.grand_total,
            ),
            shipping_address=ShippingAddressDTO.model_construct(**vars(order.shipping_address)),
            payment=PaymentStateDTO(
                gateway_order_id=p.gateway_order_id,
                payment_id=p.payment_id,
                status=p.status.value,
                method=p.method,
                amount=p.amount,
                currency=p.currency,
                captured_at=p.captured_at,
                refunded_at=p.refunded_at,
                refund_amount=p.refund_amount,
                refund_id=p.refund_id,
            ),
            payouts=[
                PayoutRefDTO(
                    payout_id=r.payout_id,
                    seller_id=r.seller_id,
                    seller_name=r.seller_name,
                    amount=r.amount,
                    transfer_id=r.transfer_id,
                    status=r.status,
                )
                for r in order.payouts
            ],
            status_history=[
                StatusChangeDTO(status=h.status.value, timestamp=h.timestamp, note=h.note)
                for h in order.status_history
            ],
            coupon_code=order.coupon.code if order.coupon else None,
            manual_intervention_required=bool(order.reconciliation_notes),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PayoutDTO(DTOBase):
    id: str
    seller_id: str
    seller_name: str
    order_ids: list[str]
    gross_amount: int
    platform_fee: int
    processing_fee: int
    net_amount: int
    status: str
    currency: str
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    settlement_start: Optional[datetime] = None
    settlement_end: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payout: Payout) -> "PayoutDTO":
        return cls(
            id=payout.id,
            seller_id=payout.seller_id,
            seller_name=payout.seller_name,
            order_ids=list(payout.order_ids),
            gross_amount=payout.gross_amount,
            platform_fee=payout.platform_fee,
            processing_fee=payout.processing_fee,
            net_amount=payout.net_amount,
            status=payout.status.value,
            currency=payout.currency,
            transfer_id=payout.transfer_id,
            failure_reason=payout.failure_reason,
            settlement_start=payout.settlement_start,
            settlement_end=payout.settlement_end,
            processed_at=payout.processed_at,
            completed_at=payout.completed_at,
        )


class WebhookAckDTO(DTOBase):
    received: bool = True
    event: str
    applied: bool = False
