"""
Payment processor DTOs (Pydantic v2) used at the application/infrastructure boundary.
"""
from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

# Settlement currencies accepted at checkout (extend as needed)
ISO_4217 = {"USD", "CAD", "EUR", "GBP", "AUD"}


def _normalize_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u.lower()


class CheckoutRequest(BaseModel):
    """Athlete checkout for one booking or booking request."""

    coach_ref: str = Field(..., min_length=1)
    athlete_ref: Optional[str] = None
    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None
    price_cents: int = Field(..., description="Session price before athlete service fees")
    currency: str = Field(default="usd")
    product_name: str = Field(default="Coaching session", max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    customer_email: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)

    @model_validator(mode="after")
    def _exactly_one_correlation(self) -> "CheckoutRequest":
        if bool(self.booking_ref) == bool(self.booking_request_ref):
            raise ValueError("exactly one of booking_ref or booking_request_ref is required")
        return self


class LineItem(BaseModel):
    name: str
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    """What the processor adapter needs to open a hosted checkout session."""

    line_items: list[LineItem]
    currency: str = "usd"
    application_fee_cents: int = Field(..., ge=0)
    destination_account: str
    success_url: str
    cancel_url: str
    metadata: dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = None
    idempotency_key: Optional[str] = None
    transfer_group: Optional[str] = None


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None
    payment_ref: Optional[str] = None
    provider: str = "stripe"


class AccountCapabilities(BaseModel):
    account_id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    transfers: Optional[str] = None  # capability state: active / inactive / pending

    @property
    def can_receive_transfers(self) -> bool:
        return self.charges_enabled and self.transfers == "active"

    def not_ready_reason(self) -> Optional[str]:
        if not self.details_submitted:
            return "onboarding not completed"
        if not self.charges_enabled:
            return "charges not enabled"
        if self.transfers != "active":
            return "transfers capability not active"
        return None


class TransferRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    currency: str = "usd"
    destination_account: str
    idempotency_key: str
    transfer_group: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class TransferResult(BaseModel):
    transfer_id: str
    amount_cents: int
    destination_account: Optional[str] = None
    provider: str = "stripe"


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    created: Optional[int] = None

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self.data.get("metadata") or {})
