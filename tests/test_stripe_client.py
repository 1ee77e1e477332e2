import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from core.settings import PaymentRetry, PaymentSettings, PaymentTimeouts, StripeSettings
from domain.common.exceptions import (
    ConfigurationException,
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from application.dtos.payments import CheckoutSessionRequest, LineItem, TransferRequest
from infrastructure.external.payments.stripe_client import StripeClient

WEBHOOK_SECRET = "whsec_test_secret"


def make_client(**overrides) -> StripeClient:
    values = dict(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET))
    values.update(overrides)
    return StripeClient(PaymentSettings(**values))


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def event_body() -> str:
    return json.dumps(
        {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "created": 1700000000,
            "data": {"object": {"id": "pi_1", "amount": 10500, "metadata": {"booking_ref": "bk_1"}}},
        }
    )


def test_missing_credentials_is_a_configuration_error():
    with pytest.raises(ConfigurationException):
        StripeClient(PaymentSettings(stripe=StripeSettings(secret_key="", webhook_secret=WEBHOOK_SECRET)))
    with pytest.raises(ConfigurationException):
        StripeClient(PaymentSettings(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret="")))


def test_parse_webhook_verifies_signature():
    body = event_body()
    evt = make_client().parse_webhook({"stripe-signature": sign(body)}, body.encode())

    assert evt.id == "evt_1"
    assert evt.type == "payment_intent.succeeded"
    assert evt.provider == "stripe"
    assert evt.data["id"] == "pi_1"
    assert evt.metadata == {"booking_ref": "bk_1"}


def test_parse_webhook_rejects_tampered_body():
    body = event_body()
    header = sign(body)
    with pytest.raises(PaymentSignatureError):
        make_client().parse_webhook({"stripe-signature": header}, body.replace("10500", "1").encode())


def test_parse_webhook_rejects_wrong_secret():
    body = event_body()
    with pytest.raises(PaymentSignatureError):
        make_client().parse_webhook({"stripe-signature": sign(body, secret="whsec_other")}, body.encode())


def test_parse_webhook_rejects_stale_timestamp():
    body = event_body()
    header = sign(body, timestamp=int(time.time()) - 3600)
    with pytest.raises(PaymentSignatureError):
        make_client().parse_webhook({"stripe-signature": header}, body.encode())


def test_parse_webhook_requires_header():
    with pytest.raises(PaymentSignatureError):
        make_client().parse_webhook({}, event_body().encode())


def test_error_classification():
    client = make_client()
    assert isinstance(client._classify(stripe.RateLimitError("slow down")), PaymentRecoverableError)
    assert isinstance(client._classify(stripe.APIConnectionError("reset")), PaymentRecoverableError)

    rejected = client._classify(stripe.InvalidRequestError("No such destination", "destination"))
    assert type(rejected) is PaymentProviderError

    with pytest.raises(ConfigurationException):
        client._classify(stripe.AuthenticationError("bad key"))


@pytest.mark.asyncio
async def test_slow_call_times_out_as_recoverable():
    client = make_client(payment_timeouts=PaymentTimeouts(total=0.05))

    def slow():
        time.sleep(0.5)

    with pytest.raises(PaymentRecoverableError) as exc_info:
        await client._call("slow_op", slow)
    assert exc_info.value.details["provider_code"] == "timeout"


@pytest.mark.asyncio
async def test_read_calls_retry_transient_failures(monkeypatch):
    client = make_client(payment_retry=PaymentRetry(max=2, base_backoff=0.01))
    calls = []

    def retrieve(account_id):
        calls.append(account_id)
        if len(calls) < 3:
            raise stripe.APIConnectionError("connection reset")
        return SimpleNamespace(
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
            capabilities=SimpleNamespace(transfers="active"),
        )

    monkeypatch.setattr(stripe.Account, "retrieve", retrieve)

    capabilities = await client.get_account_capabilities("acct_1")

    assert len(calls) == 3
    assert capabilities.can_receive_transfers is True
    assert capabilities.not_ready_reason() is None


@pytest.mark.asyncio
async def test_transfers_are_not_retried(monkeypatch):
    client = make_client(payment_retry=PaymentRetry(max=2, base_backoff=0.01))
    calls = []

    def create(**params):
        calls.append(params)
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.Transfer, "create", create)

    with pytest.raises(PaymentRecoverableError):
        await client.create_transfer(
            TransferRequest(amount_cents=8500, destination_account="acct_1", idempotency_key="payout-retry:pi_1:1")
        )
    assert len(calls) == 1
    assert calls[0]["idempotency_key"] == "payout-retry:pi_1:1"


@pytest.mark.asyncio
async def test_checkout_session_carries_destination_split(monkeypatch):
    captured = {}

    def create(**params):
        captured.update(params)
        return SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1", payment_intent="pi_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)

    session = await make_client().create_checkout_session(
        CheckoutSessionRequest(
            line_items=[LineItem(name="Coaching session", amount_cents=10000)],
            application_fee_cents=1500,
            destination_account="acct_1",
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            metadata={"booking_ref": "bk_1"},
            idempotency_key="key-1",
            transfer_group="group_bk_1",
        )
    )

    assert session.payment_ref == "pi_1"
    intent_data = captured["payment_intent_data"]
    assert intent_data["application_fee_amount"] == 1500
    assert intent_data["transfer_data"] == {"destination": "acct_1"}
    assert intent_data["metadata"] == {"booking_ref": "bk_1"}
    assert intent_data["transfer_group"] == "group_bk_1"
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 10000
    assert captured["idempotency_key"] == "key-1"
