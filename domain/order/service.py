"""
订单领域服务 - 购物车定价、订单号生成、订单持久化
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import secrets
import string
import time
from typing import Optional, Sequence

from domain.catalog.entity import UserSnapshot
from domain.catalog.repository import ProductRepository
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientStockException,
)
from .entity import AppliedCoupon, Order, OrderItem, ShippingAddress, new_order_id
from .events import OrderPlaced
from .pricing import CouponRule, PricingConfig, SellerSplit, compute_totals, coupon_discount
from .repository import OrderNumberConflict, OrderRepository

_BASE36 = string.digits + string.ascii_uppercase


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """ORD-<毫秒时间戳后 6 位>-<4 位大写 base36 随机串>"""
    ts = str(now_ms if now_ms is not None else int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"ORD-{ts}-{suffix}"


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    variant: Optional[str] = None


class OrderDomainService:
    """
    订单领域服务

    职责：
    1. 以服务端商品数据为准重新定价（不信任客户端价格）
    2. 校验库存与上架状态（仅校验，不扣减）
    3. 生成唯一订单号并持久化
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        product_repository: ProductRepository,
        pricing: Optional[PricingConfig] = None,
    ):
        self.order_repository = order_repository
        self.product_repository = product_repository
        self.pricing = pricing or PricingConfig()
        self.events: list = []

    @staticmethod
    def merge_lines(lines: Sequence[CartLine]) -> list[CartLine]:
        """同一商品/规格的多行合并，保持首次出现顺序"""
        merged: dict[tuple[str, Optional[str]], int] = {}
        for line in lines:
            if line.quantity < 1:
                raise DomainValidationException(f"Quantity must be at least 1: {line.quantity}", field="quantity")
            key = (line.product_id, line.variant)
            merged[key] = merged.get(key, 0) + line.quantity
        return [CartLine(product_id=pid, variant=variant, quantity=qty) for (pid, variant), qty in merged.items()]

    async def build_items(self, lines: Sequence[CartLine]) -> list[OrderItem]:
        if not lines:
            raise DomainValidationException("Cart is empty", field="items")
        merged = self.merge_lines(lines)

        # 同一商品不同规格共享库存
        requested: dict[str, int] = {}
        for line in merged:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        items: list[OrderItem] = []
        for line in merged:
            product = await self.product_repository.get_by_id(line.product_id)
            if product is None or not product.is_available():
                raise DomainValidationException(
                    f"Product {line.product_id} not found or unavailable",
                    field="items"
                )
            if product.stock < requested[line.product_id]:
                raise InsufficientStockException(
                    product.id,
                    product.title,
                    requested=requested[line.product_id],
                    available=product.stock,
                )
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.title,
                    seller_id=product.seller_id,
                    seller_name=product.seller_name,
                    price=product.price,
                    quantity=line.quantity,
                    variant=line.variant,
                    sku=product.sku,
                )
            )
        return items

    def build_order(
        self,
        user: UserSnapshot,
        items: list[OrderItem],
        shipping_address: ShippingAddress,
        *,
        coupon: Optional[CouponRule] = None,
        payment_method: str = "razorpay",
        currency: str = "INR",
    ) -> tuple[Order, list[SellerSplit]]:
        subtotal = sum(item.line_total for item in items)
        discount = coupon_discount(coupon, subtotal) if coupon else 0
        totals, splits = compute_totals(items, self.pricing, discounts=discount)
        if sum(s.amount for s in splits) != totals.subtotal:
            raise DomainValidationException("Seller splits do not add up to subtotal", field="totals")

        now = datetime.now(timezone.utc)
        order = Order(
            id=new_order_id(),
            order_number=None,
            user_id=user.id,
            user_email=user.email,
            user_name=user.name,
            items=items,
            totals=totals,
            shipping_address=shipping_address,
            coupon=AppliedCoupon(code=coupon.code, type=coupon.type, value=coupon.value, discount=discount)
            if coupon else None,
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
        )
        order.payment.amount = totals.grand_total
        order.payment.currency = currency
        return order, splits

    async def persist_new_order(self, order: Order, max_attempts: int = 5) -> Order:
        """持久化新订单，订单号冲突时重新生成"""
        last: Optional[OrderNumberConflict] = None
        for _ in range(max_attempts):
            order.order_number = generate_order_number()
            try:
                created = await self.order_repository.create(order)
            except OrderNumberConflict as exc:
                last = exc
                continue
            self.events.append(OrderPlaced(
                order_id=created.id,
                order_number=created.order_number,
                grand_total=created.totals.grand_total,
                seller_count=len(created.seller_totals()),
            ))
            return created
        raise DomainValidationException(
            "Could not allocate a unique order number",
            details={"attempts": max_attempts, "last": last.order_number if last else None},
        )
