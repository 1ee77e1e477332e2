"""
Stripe adapter (Checkout Sessions, Connect accounts, Transfers) using the
official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (`stripe.checkout.Session`, `stripe.Account`,
  `stripe.Transfer`) accept an `idempotency_key` kwarg.
- Webhook verification uses `stripe.WebhookSignature.verify_header` on the
  raw body and the `Stripe-Signature` header (HMAC-SHA256, constant-time
  compare, timestamp tolerance); the verified body is then decoded as JSON.
"""
from __future__ import annotations

import json
from typing import Any

import stripe

from application.dtos.payments import (
    AccountCapabilities,
    CheckoutSession,
    CheckoutSessionRequest,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    ConfigurationException,
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from infrastructure.external.payments.base import BaseProcessorClient


def _field(obj: Any, name: str, default: Any = None) -> Any:
    value = getattr(obj, name, default)
    return default if value is None else value


class StripeClient(BaseProcessorClient):
    provider = "stripe"

    def __init__(self, config: PaymentSettings | None = None):
        config = config or payment_settings
        super().__init__(
            timeouts=config.payment_timeouts.model_dump(),
            retry={"max": config.payment_retry.max, "base": config.payment_retry.base_backoff},
        )
        if not config.stripe.secret_key:
            raise ConfigurationException("STRIPE__SECRET_KEY not configured", setting="stripe.secret_key")
        if not config.stripe.webhook_secret:
            raise ConfigurationException("STRIPE__WEBHOOK_SECRET not configured", setting="stripe.webhook_secret")
        self._webhook_secret = config.stripe.webhook_secret
        self._tolerance = config.webhook.tolerance_seconds
        stripe.api_key = config.stripe.secret_key
        if config.stripe.api_version:
            stripe.api_version = config.stripe.api_version
        # retries of money-moving calls are explicit, never inside the SDK
        stripe.max_network_retries = 0

    def _classify(self, exc: Exception) -> PaymentProviderError:
        message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
        code = getattr(exc, "code", None)
        if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError)):
            return PaymentRecoverableError(message, provider=self.provider, provider_code=code)
        if isinstance(exc, stripe.StripeError) and (getattr(exc, "http_status", None) or 0) >= 500:
            return PaymentRecoverableError(message, provider=self.provider, provider_code=code)
        if isinstance(exc, stripe.AuthenticationError):
            raise ConfigurationException("Stripe rejected the configured API key", setting="stripe.secret_key")
        return PaymentProviderError(message, provider=self.provider, provider_code=code)

    async def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSession:
        line_items = [
            {
                "price_data": {
                    "currency": req.currency,
                    "product_data": {
                        "name": item.name,
                        **({"description": item.description} if item.description else {}),
                    },
                    "unit_amount": item.amount_cents,
                },
                "quantity": 1,
            }
            for item in req.line_items
        ]
        params: dict[str, Any] = dict(
            mode="payment",
            line_items=line_items,
            payment_intent_data={
                "application_fee_amount": req.application_fee_cents,
                "transfer_data": {"destination": req.destination_account},
                "metadata": req.metadata,
            },
            metadata=req.metadata,
            success_url=req.success_url,
            cancel_url=req.cancel_url,
        )
        if req.transfer_group:
            params["payment_intent_data"]["transfer_group"] = req.transfer_group
        if req.customer_email:
            params["customer_email"] = req.customer_email
        if req.idempotency_key:
            params["idempotency_key"] = req.idempotency_key

        session = await self._call("checkout_session_create", stripe.checkout.Session.create, **params)
        payment_ref = _field(session, "payment_intent")
        if payment_ref is not None and not isinstance(payment_ref, str):
            payment_ref = _field(payment_ref, "id")
        self._log("checkout_session_created", session_id=session.id, payment_ref=payment_ref)
        return CheckoutSession(
            session_id=str(session.id),
            url=_field(session, "url"),
            payment_ref=payment_ref,
            provider=self.provider,
        )

    async def get_account_capabilities(self, account_id: str) -> AccountCapabilities:
        account = await self._read("account_retrieve", stripe.Account.retrieve, account_id)
        capabilities = _field(account, "capabilities")
        return AccountCapabilities(
            account_id=account_id,
            charges_enabled=bool(_field(account, "charges_enabled", False)),
            payouts_enabled=bool(_field(account, "payouts_enabled", False)),
            details_submitted=bool(_field(account, "details_submitted", False)),
            transfers=_field(capabilities, "transfers") if capabilities is not None else None,
        )

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        params: dict[str, Any] = dict(
            amount=req.amount_cents,
            currency=req.currency,
            destination=req.destination_account,
            metadata=req.metadata,
            idempotency_key=req.idempotency_key,
        )
        if req.transfer_group:
            params["transfer_group"] = req.transfer_group
        transfer = await self._call("transfer_create", stripe.Transfer.create, **params)
        self._log("transfer_created", transfer_id=transfer.id, amount_cents=req.amount_cents)
        return TransferResult(
            transfer_id=str(transfer.id),
            amount_cents=int(_field(transfer, "amount", req.amount_cents)),
            destination_account=req.destination_account,
            provider=self.provider,
        )

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        sig = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, sig, self._webhook_secret, self._tolerance)
        except Exception as exc:
            raise PaymentSignatureError(str(exc) or "Invalid signature", provider=self.provider) from exc

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise PaymentSignatureError("Signed payload is not valid JSON", provider=self.provider) from exc
        data = event.get("data") or {}
        return WebhookEvent(
            id=str(event.get("id")),
            type=str(event.get("type")),
            provider=self.provider,
            data=data.get("object") or {},
            created=event.get("created"),
        )
