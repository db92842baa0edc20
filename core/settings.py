"""
Payment gateway settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings: env keys are PAYMENT__RAZORPAY__KEY_ID,
PAYMENT__TIMEOUTS__READ and so on.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    signature_header: str = "X-Signature"  # Razorpay 直连时配置为 X-Razorpay-Signature
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    base_url: str = "https://api.razorpay.com"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="razorpay")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
