"""
订单领域实体 - 订单聚合根

金额统一使用最小货币单位（整数），避免浮点误差。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from domain.common.exceptions import DomainValidationException, InvalidTransitionException


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING_PAYMENT = "PENDING_PAYMENT"  # 待支付
    PAID = "PAID"                        # 已支付
    PROCESSING = "PROCESSING"            # 处理中
    SHIPPED = "SHIPPED"                  # 已发货
    DELIVERED = "DELIVERED"              # 已送达（终态）
    CANCELLED = "CANCELLED"              # 已取消（终态）
    REFUNDED = "REFUNDED"                # 已退款（终态）


class GatewayPaymentStatus(str, Enum):
    """支付网关视角的交易状态"""
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    FAILED = "failed"


CANCELLABLE_STATUSES = frozenset({
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
})

REFUNDABLE_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
})

TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})

# 履约流程（非支付事件驱动），只允许按顺序前进一步
FULFILLMENT_FLOW = {
    OrderStatus.PAID: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class OrderItem:
    """
    订单行 - 创建后不可变

    price 为下单时复制的单价，不随商品价格变化。
    """

    product_id: str
    product_name: str
    seller_id: str
    seller_name: str
    price: int
    quantity: int
    variant: Optional[str] = None
    sku: Optional[str] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException(
                f"Quantity must be at least 1: {self.quantity}",
                field="quantity"
            )
        if self.price < 0:
            raise DomainValidationException(
                f"Price must not be negative: {self.price}",
                field="price"
            )

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


@dataclass(frozen=True)
class Totals:
    """金额汇总值对象 - 下单时计算一次，之后不再重算"""

    subtotal: int
    tax: int
    shipping: int
    discounts: int
    grand_total: int

    def __post_init__(self):
        for name in ("subtotal", "tax", "shipping", "discounts", "grand_total"):
            if getattr(self, name) < 0:
                raise DomainValidationException(f"{name} must not be negative", field=name)
        if self.subtotal + self.tax + self.shipping - self.discounts != self.grand_total:
            raise DomainValidationException(
                "grand_total must equal subtotal + tax + shipping - discounts",
                field="grand_total"
            )


@dataclass(frozen=True)
class ShippingAddress:
    name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    landmark: Optional[str] = None


@dataclass(frozen=True)
class AppliedCoupon:
    code: str
    type: str  # percentage / fixed
    value: int
    discount: int


@dataclass
class PaymentState:
    """
    支付子记录 - 仅由结算状态机修改

    记录网关侧的订单号、支付号、签名、状态与退款信息。
    """

    gateway_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    status: GatewayPaymentStatus = GatewayPaymentStatus.CREATED
    method: Optional[str] = None
    amount: int = 0
    currency: str = "INR"
    captured_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: int = 0
    refund_id: Optional[str] = None


@dataclass(frozen=True)
class PayoutRef:
    """订单上的结算单引用（只读视图，真实状态在 Payout 聚合）"""

    payout_id: str
    seller_id: str
    seller_name: str
    amount: int
    transfer_id: Optional[str]
    status: str


@dataclass(frozen=True)
class StatusChange:
    status: OrderStatus
    timestamp: datetime
    note: str = ""


@dataclass(frozen=True)
class ReconciliationNote:
    """需要人工介入的对账记录"""

    reason: str
    created_at: datetime
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SellerTotal:
    seller_id: str
    seller_name: str
    subtotal: int
    item_count: int


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 订单行创建后不可变，且至少一行
    2. sum(price * quantity) == totals.subtotal
    3. 每次状态变化都追加到 status_history（只追加）
    4. 可变部分仅限 payment / status / status_history / 对账记录
    """

    id: Optional[str]
    order_number: Optional[str]
    user_id: str
    user_email: str
    user_name: str
    items: list[OrderItem]
    totals: Totals
    shipping_address: ShippingAddress
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    payment: PaymentState = field(default_factory=PaymentState)
    payouts: list[PayoutRef] = field(default_factory=list)
    status_history: list[StatusChange] = field(default_factory=list)
    coupon: Optional[AppliedCoupon] = None
    payment_method: str = "razorpay"
    stock_committed: bool = False
    reconciliation_notes: list[ReconciliationNote] = field(default_factory=list)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.items:
            raise DomainValidationException("Order must contain at least one item", field="items")
        line_sum = sum(item.line_total for item in self.items)
        if line_sum != self.totals.subtotal:
            raise DomainValidationException(
                f"Item total {line_sum} does not match subtotal {self.totals.subtotal}",
                field="totals.subtotal"
            )
        if not self.status_history:
            self.status_history.append(
                StatusChange(status=self.status, timestamp=self.created_at or _now(), note="Order created")
            )

    # ---- 状态 -----------------------------------------------------------

    def change_status(self, new_status: OrderStatus, note: str = "") -> None:
        """变更状态并追加历史（所有状态变化必须经过这里）"""
        self.status = new_status
        now = _now()
        self.status_history.append(StatusChange(status=new_status, timestamp=now, note=note))
        self.updated_at = now

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def can_be_refunded(self) -> bool:
        return (
            self.status in REFUNDABLE_STATUSES
            and self.payment.status == GatewayPaymentStatus.CAPTURED
        )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance_fulfillment(self, note: str = "") -> OrderStatus:
        """履约推进：PAID → PROCESSING → SHIPPED → DELIVERED"""
        nxt = FULFILLMENT_FLOW.get(self.status)
        if nxt is None:
            raise InvalidTransitionException(
                f"Order in status {self.status.value} cannot advance",
                current_status=self.status.value,
                operation="advance",
            )
        self.change_status(nxt, note)
        return nxt

    def derived_status(self) -> OrderStatus:
        """由历史最后一条记录推导当前状态"""
        return self.status_history[-1].status

    # ---- 金额 -----------------------------------------------------------

    def seller_totals(self) -> list[SellerTotal]:
        """按卖家聚合小计（保持首次出现顺序）"""
        acc: dict[str, list] = {}
        for item in self.items:
            entry = acc.setdefault(item.seller_id, [item.seller_name, 0, 0])
            entry[1] += item.line_total
            entry[2] += item.quantity
        return [
            SellerTotal(seller_id=sid, seller_name=v[0], subtotal=v[1], item_count=v[2])
            for sid, v in acc.items()
        ]

    def refundable_amount(self) -> int:
        return self.totals.grand_total - self.payment.refund_amount

    def add_reconciliation_note(self, reason: str, details: Optional[dict] = None) -> ReconciliationNote:
        note = ReconciliationNote(reason=reason, created_at=_now(), details=details or {})
        self.reconciliation_notes.append(note)
        self.updated_at = note.created_at
        return note
