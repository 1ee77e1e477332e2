"""
Payment processor port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements the adapter.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    AccountCapabilities,
    CheckoutSession,
    CheckoutSessionRequest,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)


@runtime_checkable
class PaymentProcessor(Protocol):
    """The single external payment processor.

    Every call is bounded by a timeout; a timeout surfaces as
    PaymentRecoverableError, any other failure as PaymentProviderError.
    """

    provider: str

    async def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSession: ...

    async def get_account_capabilities(self, account_id: str) -> AccountCapabilities: ...

    async def create_transfer(self, req: TransferRequest) -> TransferResult: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...
