"""
Settlement policy: pricing, fee schedule and coupon table injected into services.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from core.config import SettlementSettings, settings
from domain.common.exceptions import DomainValidationException
from domain.order.pricing import CouponRule, PricingConfig
from domain.payout.entity import FeeSchedule


@dataclass(frozen=True)
class SettlementPolicy:
    pricing: PricingConfig = field(default_factory=PricingConfig)
    fees: FeeSchedule = field(default_factory=FeeSchedule)
    currency: str = "INR"
    coupons: dict[str, CouponRule] = field(default_factory=dict)
    order_number_attempts: int = 5
    max_apply_retries: int = 3

    @classmethod
    def from_settings(cls, cfg: Optional[SettlementSettings] = None) -> "SettlementPolicy":
        cfg = cfg or settings.settlement
        return cls(
            pricing=PricingConfig(
                tax_rate=cfg.tax_rate,
                free_shipping_threshold=cfg.free_shipping_threshold,
                flat_shipping_fee=cfg.flat_shipping_fee,
            ),
            fees=FeeSchedule(
                platform_fee_percent=cfg.platform_fee_percent,
                processing_fee=cfg.processing_fee,
                settlement_window_days=cfg.settlement_window_days,
            ),
            currency=cfg.currency,
            coupons={
                code: CouponRule(code=code, type=rule.type, value=rule.value)
                for code, rule in cfg.coupons.items()
            },
            order_number_attempts=cfg.order_number_attempts,
            max_apply_retries=cfg.max_apply_retries,
        )

    def resolve_coupon(self, code: Optional[str]) -> Optional[CouponRule]:
        if not code:
            return None
        rule = self.coupons.get(code.strip().upper())
        if rule is None:
            raise DomainValidationException(f"Invalid coupon code: {code}", field="couponCode")
        return rule
