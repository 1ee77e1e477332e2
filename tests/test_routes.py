import json

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from api import dependencies
from core.settings import PaymentSettings, StripeSettings
from domain.settlement.entity import PaymentStatus, PayoutStatus, SettlementPatch
from infrastructure.external.payments.stripe_client import StripeClient
from infrastructure.repositories.webhook_event_repository import SQLAlchemyWebhookEventRepository
from main import app
from tests.test_stripe_client import WEBHOOK_SECRET, sign

ADMIN = {"X-Admin-Token": "admin-test-token", "X-Admin-Actor": "ops@example.com"}


@pytest.fixture
def overrides(uow_factory, processor, policy_resolver, notifier, audit):
    app.dependency_overrides[dependencies.get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[dependencies.get_processor] = lambda: processor
    app.dependency_overrides[dependencies.get_policy_resolver] = lambda: policy_resolver
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier
    app.dependency_overrides[dependencies.get_audit_sink] = lambda: audit
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(overrides, marketplace):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


async def seed_failed_payout(uow_factory, ref="pi_failed"):
    async with uow_factory() as uow:
        await uow.settlements.upsert_settlement(
            ref,
            SettlementPatch(
                booking_ref="bk_1",
                coach_ref="coach_1",
                total_amount_cents=10000,
                platform_fee_cents=1500,
                coach_amount_cents=8500,
                payment_status=PaymentStatus.SUCCEEDED,
                payout_status=PayoutStatus.FAILED,
                payout_failed_reason="account restricted",
                transfer_ref="tr_original",
            ),
        )


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_fee_breakdown_uses_active_commission(client):
    resp = await client.get("/api/v1/payments/fee-breakdown", params={"price_cents": 10000})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["platform_fee_cents"] == 1500
    assert data["coach_amount_cents"] == 8500


@pytest.mark.asyncio
async def test_fee_breakdown_fixed_policy(client):
    resp = await client.get("/api/v1/payments/fee-breakdown", params={"price_cents": 10000, "policy": "fixed"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["platform_fee_cents"] == 1030
    assert data["coach_amount_cents"] == 8970


@pytest.mark.asyncio
async def test_fee_breakdown_rejects_non_positive_price(client):
    resp = await client.get("/api/v1/payments/fee-breakdown", params={"price_cents": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_checkout_returns_session(client, processor):
    resp = await client.post(
        "/api/v1/payments/checkout",
        json={"coach_ref": "coach_1", "athlete_ref": "ath_1", "booking_ref": "bk_1", "price_cents": 10000},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["processor_payment_ref"] == "pi_test_1"
    assert processor.sessions[0].destination_account == "acct_coach_1"


@pytest.mark.asyncio
async def test_checkout_below_minimum_is_rejected_before_processor_call(client, processor):
    resp = await client.post(
        "/api/v1/payments/checkout",
        json={"coach_ref": "coach_1", "booking_ref": "bk_1", "price_cents": 500},
    )
    assert resp.status_code == 422
    assert processor.sessions == []


@pytest.mark.asyncio
async def test_webhook_with_valid_signature_is_acknowledged(client, overrides):
    stripe_client = StripeClient(
        PaymentSettings(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET))
    )
    overrides[dependencies.get_processor] = lambda: stripe_client
    body = json.dumps({"id": "evt_route_1", "type": "customer.created", "data": {"object": {"id": "cus_1"}}})

    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": sign(body), "Content-Type": "application/json"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": True, "event_id": "evt_route_1", "outcome": "ignored"}

    replay = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": sign(body), "Content-Type": "application/json"},
    )
    assert replay.json()["data"]["outcome"] == "duplicate"


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(client, overrides):
    stripe_client = StripeClient(
        PaymentSettings(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET))
    )
    overrides[dependencies.get_processor] = lambda: stripe_client
    body = json.dumps({"id": "evt_route_2", "type": "customer.created", "data": {"object": {}}})

    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": sign(body, secret="whsec_forged")},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_webhook_storage_failure_asks_for_redelivery(client, overrides, uow_factory, monkeypatch):
    stripe_client = StripeClient(
        PaymentSettings(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET))
    )
    overrides[dependencies.get_processor] = lambda: stripe_client
    body = json.dumps(
        {
            "id": "evt_route_db",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_1",
                    "payment_intent": "pi_route_db",
                    "payment_status": "paid",
                    "amount_subtotal": 10000,
                    "currency": "usd",
                    "metadata": {
                        "booking_ref": "bk_1",
                        "coach_ref": "coach_1",
                        "subtotal_cents": "10000",
                        "platform_fee_cents": "1500",
                    },
                }
            },
        }
    )
    headers = {"Stripe-Signature": sign(body), "Content-Type": "application/json"}

    async def lost_connection(self, event):
        raise OperationalError("INSERT INTO webhook_events", {}, Exception("server closed the connection"))

    # the settlement upsert has already run in this transaction when the event row fails
    with monkeypatch.context() as patched:
        patched.setattr(SQLAlchemyWebhookEventRepository, "record", lost_connection)
        resp = await client.post("/api/v1/payments/webhooks/stripe", content=body, headers=headers)

    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "5"
    assert resp.json()["error"]["type"] == "DatabaseError"

    async with uow_factory(readonly=True) as uow:
        assert await uow.settlements.get_by_payment_ref("pi_route_db") is None
        assert await uow.webhook_events.exists("evt_route_db") is False

    redelivered = await client.post("/api/v1/payments/webhooks/stripe", content=body, headers=headers)
    assert redelivered.status_code == 200
    assert redelivered.json()["data"]["outcome"] == "processed"


@pytest.mark.asyncio
async def test_admin_routes_require_token(client):
    missing = await client.get("/api/v1/admin/settlements")
    assert missing.status_code == 401

    wrong = await client.get("/api/v1/admin/settlements", headers={"X-Admin-Token": "nope"})
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_admin_ledger_includes_legacy_bookings(client):
    resp = await client.get("/api/v1/admin/settlements", headers=ADMIN)
    assert resp.status_code == 200
    data = resp.json()["data"]
    refs = [item["ref"] if "ref" in item else item["processor_payment_ref"] for item in data["items"]]
    assert "legacy:bk_legacy" in refs
    assert data["summary"]["legacy_count"] == 1


@pytest.mark.asyncio
async def test_admin_retry_payout(client, uow_factory, processor, audit):
    await seed_failed_payout(uow_factory)

    resp = await client.post("/api/v1/admin/settlements/pi_failed/retry-payout", headers=ADMIN)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["attempt"] == 1
    assert data["transfer_ref"] == "tr_retry_1"
    assert processor.transfers[0].idempotency_key == "payout-retry:pi_failed:1"
    assert audit.entries[-1]["actor"] == "ops@example.com"


@pytest.mark.asyncio
async def test_admin_retry_candidates(client, uow_factory):
    await seed_failed_payout(uow_factory)

    resp = await client.get("/api/v1/admin/settlements/retry-candidates", headers=ADMIN)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [c["processor_payment_ref"] for c in data["items"]] == ["pi_failed"]
    assert data["has_more"] is False


@pytest.mark.asyncio
async def test_admin_retry_refuses_legacy_and_unknown_refs(client, processor):
    legacy = await client.post("/api/v1/admin/settlements/legacy:bk_legacy/retry-payout", headers=ADMIN)
    assert legacy.status_code == 409

    missing = await client.post("/api/v1/admin/settlements/pi_nope/retry-payout", headers=ADMIN)
    assert missing.status_code == 404
    assert processor.transfers == []


@pytest.mark.asyncio
async def test_admin_commission_policy(client):
    resp = await client.get("/api/v1/admin/commission-policy", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["data"]["platform_fee_percent"] == 15.0


@pytest.mark.asyncio
async def test_admin_unresolved_events_page(client):
    resp = await client.get("/api/v1/admin/webhook-events/unresolved", params={"limit": 500}, headers=ADMIN)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["items"] == []
    assert data["limit"] == 100
