"""
Payment processor settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so the processor adapter can be configured
and tested on its own (STRIPE__SECRET_KEY, PAYMENT_TIMEOUTS__TOTAL, ...).
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    # read-only calls only; money-moving calls are never retried silently
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class CheckoutSettings(BaseModel):
    success_url: str = "http://localhost:3000/success?session_id={CHECKOUT_SESSION_ID}"
    cancel_url: str = "http://localhost:3000/cancel"


class PaymentSettings(BaseSettings):
    payment_timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    payment_retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    checkout: CheckoutSettings = Field(default_factory=CheckoutSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
