"""
Payment gateway DTOs (Pydantic v2) used at the application/gateway boundary.

Amounts are integers in minor currency units, as the gateway expects.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

ISO_4217 = {"INR", "USD", "EUR", "GBP", "SGD", "AED"}


class CreateRemoteOrder(BaseModel):
    amount: int = Field(gt=0)
    currency: str = "INR"
    receipt: str
    notes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        if u not in ISO_4217:
            raise ValueError("unsupported currency")
        return u


class GatewayOrderRef(BaseModel):
    gateway_order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str = "created"
    provider: str


class PaymentDetails(BaseModel):
    """Authoritative payment record fetched from the gateway (status already mapped)."""
    payment_id: str
    gateway_order_id: Optional[str] = None
    status: str
    method: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    error_description: Optional[str] = None
    captured_at: Optional[datetime] = None
    provider: str


class RefundRequest(BaseModel):
    payment_id: str
    amount: Optional[int] = Field(default=None, gt=0)  # None => full refund
    reason: Optional[str] = None
    notes: dict[str, Any] = Field(default_factory=dict)


class RefundResult(BaseModel):
    refund_id: str
    payment_id: str
    amount: int
    status: str
    provider: str
