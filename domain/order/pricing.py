"""
定价引擎 - 纯函数，无 I/O

compute_totals 输入订单行与配置，输出金额汇总与按卖家拆分的小计。
四舍五入统一采用 ROUND_HALF_UP。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Protocol

from domain.common.exceptions import DomainValidationException
from .entity import Totals


class PricedLine(Protocol):
    price: int
    quantity: int
    seller_id: str
    seller_name: str


@dataclass(frozen=True)
class PricingConfig:
    """税率与运费配置（由配置层注入）"""

    tax_rate: Decimal = Decimal("0.18")
    free_shipping_threshold: int = 500
    flat_shipping_fee: int = 50


@dataclass(frozen=True)
class CouponRule:
    """优惠券规则：percentage 按百分比，fixed 为固定金额"""

    code: str
    type: str
    value: int

    def __post_init__(self):
        if self.type not in ("percentage", "fixed"):
            raise DomainValidationException(f"Unsupported coupon type: {self.type}", field="coupon")
        if self.value < 0 or (self.type == "percentage" and self.value > 100):
            raise DomainValidationException(f"Invalid coupon value: {self.value}", field="coupon")


@dataclass(frozen=True)
class SellerSplit:
    seller_id: str
    seller_name: str
    amount: int
    discount_share: int = 0

    @property
    def payable(self) -> int:
        return self.amount - self.discount_share


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def coupon_discount(rule: CouponRule, subtotal: int) -> int:
    """计算优惠金额，不超过小计"""
    if rule.type == "percentage":
        discount = round_half_up(Decimal(subtotal) * Decimal(rule.value) / Decimal(100))
    else:
        discount = rule.value
    return min(discount, subtotal)


def _validate_lines(items: Sequence[PricedLine]) -> None:
    if not items:
        raise DomainValidationException("Cart is empty", field="items")
    for item in items:
        if item.quantity < 1:
            raise DomainValidationException(f"Quantity must be at least 1: {item.quantity}", field="quantity")
        if item.price < 0:
            raise DomainValidationException(f"Price must not be negative: {item.price}", field="price")


def split_by_seller(items: Iterable[PricedLine]) -> list[SellerSplit]:
    """按卖家分组求和，保持卖家首次出现的顺序"""
    grouped: dict[str, tuple[str, int]] = {}
    for item in items:
        name, amount = grouped.get(item.seller_id, (item.seller_name, 0))
        grouped[item.seller_id] = (name, amount + item.price * item.quantity)
    return [SellerSplit(seller_id=sid, seller_name=name, amount=amount) for sid, (name, amount) in grouped.items()]


def allocate_discount(splits: list[SellerSplit], discounts: int) -> list[SellerSplit]:
    """
    按拆分金额比例分摊优惠

    整数截断产生的余数全部归第一个卖家，保证分摊总和严格等于 discounts。
    """
    total = sum(s.amount for s in splits)
    if discounts == 0 or total == 0:
        return list(splits)
    shares = [s.amount * discounts // total for s in splits]
    shares[0] += discounts - sum(shares)
    return [
        SellerSplit(seller_id=s.seller_id, seller_name=s.seller_name, amount=s.amount, discount_share=share)
        for s, share in zip(splits, shares)
    ]


def compute_totals(
    items: Sequence[PricedLine],
    config: Optional[PricingConfig] = None,
    discounts: int = 0,
) -> tuple[Totals, list[SellerSplit]]:
    """
    计算订单金额

    - tax = round(subtotal * tax_rate)
    - shipping = 0 if subtotal >= free_shipping_threshold else flat_shipping_fee
    - grand_total = subtotal + tax + shipping - discounts
    """
    config = config or PricingConfig()
    _validate_lines(items)

    subtotal = sum(item.price * item.quantity for item in items)
    if discounts < 0 or discounts > subtotal:
        raise DomainValidationException(
            f"Discounts must be between 0 and subtotal: {discounts}",
            field="discounts"
        )

    tax = round_half_up(Decimal(subtotal) * config.tax_rate)
    shipping = 0 if subtotal >= config.free_shipping_threshold else config.flat_shipping_fee
    totals = Totals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discounts=discounts,
        grand_total=subtotal + tax + shipping - discounts,
    )

    splits = allocate_discount(split_by_seller(items), discounts)
    return totals, splits
