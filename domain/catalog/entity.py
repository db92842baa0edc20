"""
目录协作方的只读快照

商品、用户、卖家由外部子系统维护，结算核心只读取下单所需字段。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    title: str
    price: int
    stock: int
    seller_id: str
    seller_name: str
    is_active: bool = True
    sku: Optional[str] = None

    def is_available(self) -> bool:
        return self.is_active


@dataclass(frozen=True)
class UserSnapshot:
    id: str
    email: str
    name: str


@dataclass(frozen=True)
class SellerMetrics:
    seller_id: str
    total_sales: int = 0
    total_orders: int = 0
