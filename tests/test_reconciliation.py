import json

import pytest

from application.services.reconciliation_service import ReconciliationService
from domain.settlement.entity import EventKind, PaymentStatus, PayoutStatus
from domain.settlement.repository import WebhookEventStatus
from tests.fakes import RecordingNotifier, event


def paid_session(event_id="evt_paid", ref="pi_1", metadata=None):
    return event(
        event_id,
        "checkout.session.completed",
        {
            "id": "cs_test_1",
            "object": "checkout.session",
            "payment_intent": ref,
            "payment_status": "paid",
            "amount_subtotal": 10500,
            "amount_total": 10500,
            "currency": "usd",
            "customer_details": {"email": "athlete@example.com"},
            "metadata": metadata
            if metadata is not None
            else {
                "booking_ref": "bk_1",
                "coach_ref": "coach_1",
                "subtotal_cents": "10000",
                "platform_fee_cents": "1500",
                "athlete_fee_cents": "500",
            },
        },
    )


@pytest.fixture
def service(uow_factory, processor, policy_resolver, notifier):
    return ReconciliationService(uow_factory, processor, policy_resolver, notifier)


async def _record(uow_factory, ref):
    async with uow_factory(readonly=True) as uow:
        return await uow.settlements.get_by_payment_ref(ref)


@pytest.mark.asyncio
async def test_paid_session_creates_settlement_from_stamped_split(service, uow_factory, marketplace, notifier):
    ack = await service.reconcile(paid_session())

    assert ack.outcome == "processed"
    record = await _record(uow_factory, "pi_1")
    assert record.booking_ref == "bk_1"
    assert record.coach_ref == "coach_1"
    assert record.athlete_ref == "ath_1"
    assert (record.total_amount_cents, record.platform_fee_cents, record.coach_amount_cents) == (10000, 1500, 8500)
    assert record.athlete_fee_cents == 500
    assert record.customer_email == "athlete@example.com"
    assert record.payment_status is PaymentStatus.SUCCEEDED
    assert record.payout_status is PayoutStatus.PENDING
    assert notifier.names() == ["PaymentStatusChanged", "PayoutStatusChanged"]


@pytest.mark.asyncio
async def test_redelivered_event_is_acknowledged_as_duplicate(service, uow_factory, marketplace, notifier):
    await service.reconcile(paid_session())
    before = await _record(uow_factory, "pi_1")

    ack = await service.reconcile(paid_session())

    assert ack.outcome == "duplicate"
    after = await _record(uow_factory, "pi_1")
    assert after.updated_at == before.updated_at
    assert len(notifier.events) == 2


@pytest.mark.asyncio
async def test_same_charge_reported_twice_converges(service, uow_factory, marketplace, notifier):
    await service.reconcile(paid_session())
    ack = await service.reconcile(
        event("evt_pi_ok", "payment_intent.succeeded", {"id": "pi_1", "amount": 10500, "metadata": {}})
    )

    assert ack.outcome == "processed"
    record = await _record(uow_factory, "pi_1")
    assert record.payment_status is PaymentStatus.SUCCEEDED
    assert len(notifier.events) == 2


@pytest.mark.asyncio
async def test_split_recomputed_from_policy_without_metadata(service, uow_factory, marketplace):
    await service.reconcile(
        event(
            "evt_pi_2",
            "payment_intent.succeeded",
            {"id": "pi_2", "amount": 8000, "currency": "usd", "metadata": {"booking_request_ref": "br_1"}},
        )
    )

    record = await _record(uow_factory, "pi_2")
    assert record.booking_request_ref == "br_1"
    assert record.booking_ref is None
    # 15% active policy
    assert (record.platform_fee_cents, record.coach_amount_cents) == (1200, 6800)


@pytest.mark.asyncio
async def test_unknown_event_type_is_ignored(service, uow_factory):
    ack = await service.reconcile(event("evt_x", "customer.created", {"id": "cus_1"}))

    assert ack.outcome == "ignored"
    async with uow_factory(readonly=True) as uow:
        assert await uow.webhook_events.exists("evt_x")


@pytest.mark.asyncio
async def test_unpaid_session_completion_is_ignored(service, uow_factory, marketplace):
    obj = paid_session().data | {"payment_status": "unpaid"}
    ack = await service.reconcile(event("evt_unpaid", "checkout.session.completed", obj))

    assert ack.outcome == "ignored"
    assert await _record(uow_factory, "pi_1") is None


@pytest.mark.asyncio
async def test_uncorrelated_event_is_stored_for_review(service, uow_factory, marketplace, notifier):
    ack = await service.reconcile(paid_session(event_id="evt_orphan", metadata={"booking_ref": "bk_missing"}))

    assert ack.outcome == "unresolved"
    assert await _record(uow_factory, "pi_1") is None
    unresolved = await service.list_unresolved()
    assert [e.processor_event_id for e in unresolved] == ["evt_orphan"]
    assert unresolved[0].status is WebhookEventStatus.UNRESOLVED
    assert unresolved[0].payload["metadata"] == {"booking_ref": "bk_missing"}
    assert notifier.names() == ["UnresolvedEventRecorded"]


@pytest.mark.asyncio
async def test_invalid_payment_transition_is_discarded(service, uow_factory, marketplace):
    await service.reconcile(paid_session())
    ack = await service.reconcile(event("evt_fail", "payment_intent.payment_failed", {"id": "pi_1"}))

    assert ack.outcome == "processed"
    assert (await _record(uow_factory, "pi_1")).payment_status is PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_refund_after_success(service, uow_factory, marketplace):
    await service.reconcile(paid_session())
    await service.reconcile(event("evt_refund", "charge.refunded", {"id": "ch_1", "payment_intent": "pi_1"}))

    assert (await _record(uow_factory, "pi_1")).payment_status is PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_transfer_lifecycle(service, uow_factory, marketplace):
    await service.reconcile(paid_session())

    # the automatic transfer of a destination charge: no settlement metadata
    await service.reconcile(
        event(
            "evt_tr_1",
            "transfer.created",
            {
                "id": "tr_1",
                "object": "transfer",
                "amount": 8500,
                "destination": "acct_coach_1",
                "source_transaction": "ch_unseen",
                "transfer_group": "group_bk_1",
                "metadata": {},
            },
        )
    )
    record = await _record(uow_factory, "pi_1")
    assert record.payout_status is PayoutStatus.IN_TRANSIT
    assert record.transfer_ref == "tr_1"

    # no settlement metadata: matched through the stored transfer id
    await service.reconcile(
        event("evt_tr_2", "transfer.failed", {"id": "tr_1", "failure_message": "account closed"})
    )
    record = await _record(uow_factory, "pi_1")
    assert record.payout_status is PayoutStatus.FAILED
    assert record.payout_failed_reason == "account closed"
    assert record.retry_eligible is True


def succeeded_intent(event_id="evt_pi_ok", ref="pi_2", charge="ch_2"):
    return event(
        event_id,
        "payment_intent.succeeded",
        {
            "id": ref,
            "object": "payment_intent",
            "amount": 10500,
            "currency": "usd",
            "latest_charge": charge,
            "metadata": {
                "booking_ref": "bk_1",
                "coach_ref": "coach_1",
                "subtotal_cents": "10000",
                "platform_fee_cents": "1500",
                "athlete_fee_cents": "500",
            },
        },
    )


@pytest.mark.asyncio
async def test_first_transfer_event_matches_on_source_charge(service, uow_factory, marketplace):
    await service.reconcile(succeeded_intent())
    assert (await _record(uow_factory, "pi_2")).charge_ref == "ch_2"

    ack = await service.reconcile(
        event(
            "evt_tr_fail",
            "transfer.failed",
            {"id": "tr_auto", "source_transaction": "ch_2", "failure_code": "account_closed", "metadata": {}},
        )
    )

    assert ack.outcome == "processed"
    record = await _record(uow_factory, "pi_2")
    assert record.payout_status is PayoutStatus.FAILED
    assert record.payout_failed_reason == "account_closed"
    assert record.transfer_ref == "tr_auto"


@pytest.mark.asyncio
async def test_expanded_charge_is_captured(service, uow_factory, marketplace):
    intent = succeeded_intent()
    intent.data["latest_charge"] = {"id": "ch_expanded", "object": "charge"}
    await service.reconcile(intent)

    assert (await _record(uow_factory, "pi_2")).charge_ref == "ch_expanded"


@pytest.mark.asyncio
async def test_transfer_id_is_kept_when_status_does_not_move(service, uow_factory, marketplace):
    await service.reconcile(paid_session())
    # transfer.paid straight from pending is not a forward step we can take
    await service.reconcile(
        event("evt_tr_paid", "transfer.paid", {"id": "tr_auto", "transfer_group": "group_bk_1", "metadata": {}})
    )
    record = await _record(uow_factory, "pi_1")
    assert record.transfer_ref == "tr_auto"

    # the next event for the same transfer matches on the stored id alone
    await service.reconcile(event("evt_tr_created", "transfer.created", {"id": "tr_auto"}))
    assert (await _record(uow_factory, "pi_1")).payout_status is PayoutStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_transfer_group_without_settlement_is_unresolved(service, marketplace):
    ack = await service.reconcile(
        event("evt_tr_lost", "transfer.created", {"id": "tr_lost", "transfer_group": "group_bk_unknown"})
    )
    assert ack.outcome == "unresolved"


@pytest.mark.asyncio
async def test_event_kind_without_target_status_is_unresolved(service, uow_factory, marketplace, monkeypatch):
    monkeypatch.setattr(service, "_kind_for", lambda evt: EventKind(event_type=evt.type))

    ack = await service.reconcile(paid_session(event_id="evt_no_target"))

    assert ack.outcome == "unresolved"
    assert await _record(uow_factory, "pi_1") is None


@pytest.mark.asyncio
async def test_out_of_order_payout_event_is_discarded(service, uow_factory, marketplace):
    await service.reconcile(paid_session())
    await service.reconcile(
        event("evt_tr_1", "transfer.created", {"id": "tr_1", "metadata": {"processor_payment_ref": "pi_1"}})
    )
    await service.reconcile(event("evt_tr_paid", "transfer.paid", {"id": "tr_1"}))
    # a late failure after the payout already landed
    await service.reconcile(event("evt_tr_fail", "transfer.failed", {"id": "tr_1"}))

    record = await _record(uow_factory, "pi_1")
    assert record.payout_status is PayoutStatus.PAID
    assert record.payout_failed_reason is None


@pytest.mark.asyncio
async def test_superseded_transfer_events_are_discarded(service, uow_factory, marketplace):
    await service.reconcile(paid_session())
    await service.reconcile(
        event("evt_tr_new", "transfer.created", {"id": "tr_new", "metadata": {"processor_payment_ref": "pi_1"}})
    )
    await service.reconcile(
        event("evt_tr_old", "transfer.failed", {"id": "tr_old", "metadata": {"processor_payment_ref": "pi_1"}})
    )

    record = await _record(uow_factory, "pi_1")
    assert record.payout_status is PayoutStatus.IN_TRANSIT
    assert record.transfer_ref == "tr_new"


@pytest.mark.asyncio
async def test_unknown_transfer_is_unresolved(service, marketplace):
    ack = await service.reconcile(event("evt_tr_x", "transfer.paid", {"id": "tr_unknown"}))
    assert ack.outcome == "unresolved"


@pytest.mark.asyncio
async def test_notifier_failure_does_not_touch_settlement(uow_factory, processor, policy_resolver, marketplace):
    service = ReconciliationService(uow_factory, processor, policy_resolver, RecordingNotifier(fail=True))

    ack = await service.reconcile(paid_session())

    assert ack.outcome == "processed"
    assert (await _record(uow_factory, "pi_1")).payment_status is PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_handle_webhook_parses_through_processor(service, uow_factory, marketplace):
    body = json.dumps(
        {"id": "evt_body", "type": "checkout.session.completed", "data": {"object": paid_session().data}}
    ).encode()

    ack = await service.handle_webhook({"stripe-signature": "t=1,v1=x"}, body)

    assert ack.event_id == "evt_body"
    assert (await _record(uow_factory, "pi_1")) is not None
