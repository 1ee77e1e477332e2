import pytest
from sqlalchemy import update

from application.services.payout_retry_service import PayoutRetryService
from domain.common.exceptions import (
    LegacyRecordNotRetryableException,
    PaymentRecoverableError,
    PayoutNotRetryableException,
    PayoutRetryLimitExceededException,
    SettlementNotFoundException,
)
from domain.settlement.entity import PaymentStatus, PayoutStatus, SettlementPatch
from infrastructure.models import SettlementModel


@pytest.fixture
def service(uow_factory, processor, notifier, audit):
    return PayoutRetryService(uow_factory, processor, notifier, audit, max_retries=3)


async def seed_settlement(uow_factory, ref="pi_1", payout_status=PayoutStatus.FAILED, coach_ref="coach_1"):
    async with uow_factory() as uow:
        return await uow.settlements.upsert_settlement(
            ref,
            SettlementPatch(
                booking_ref="bk_1",
                coach_ref=coach_ref,
                total_amount_cents=10000,
                platform_fee_cents=1500,
                coach_amount_cents=8500,
                payment_status=PaymentStatus.SUCCEEDED,
                payout_status=payout_status,
                payout_failed_reason="insufficient platform balance" if payout_status is PayoutStatus.FAILED else None,
                transfer_ref="tr_original",
            ),
        )


async def set_retry_count(session_factory, ref, count):
    async with session_factory() as session:
        await session.execute(
            update(SettlementModel)
            .where(SettlementModel.processor_payment_ref == ref)
            .values(payout_retry_count=count, payout_status=PayoutStatus.FAILED.value)
        )
        await session.commit()


@pytest.mark.asyncio
async def test_retry_issues_transfer_and_resets_payout(service, uow_factory, processor, notifier, audit, marketplace):
    await seed_settlement(uow_factory)

    result = await service.retry_payout("pi_1", actor="ops@example.com")

    assert result.attempt == 1
    assert result.transfer_ref == "tr_retry_1"
    assert result.payout_status == "pending"

    transfer = processor.transfers[0]
    assert transfer.amount_cents == 8500
    assert transfer.destination_account == "acct_coach_1"
    assert transfer.idempotency_key == "payout-retry:pi_1:1"
    assert transfer.metadata["processor_payment_ref"] == "pi_1"
    assert transfer.transfer_group == "group_bk_1"

    async with uow_factory(readonly=True) as uow:
        record = await uow.settlements.get_by_payment_ref("pi_1")
    assert record.payout_status is PayoutStatus.PENDING
    assert record.payout_retry_count == 1
    assert record.payout_failed_reason is None
    assert record.transfer_ref == "tr_retry_1"

    assert audit.entries[-1]["actor"] == "ops@example.com"
    assert audit.entries[-1]["details"]["outcome"] == "succeeded"
    assert notifier.names() == ["PayoutRetried"]


@pytest.mark.asyncio
async def test_next_attempt_uses_next_idempotency_key(service, uow_factory, session_factory, processor, marketplace):
    await seed_settlement(uow_factory)
    await service.retry_payout("pi_1", actor="ops")
    await set_retry_count(session_factory, "pi_1", 1)

    result = await service.retry_payout("pi_1", actor="ops")

    assert result.attempt == 2
    assert processor.transfers[-1].idempotency_key == "payout-retry:pi_1:2"


@pytest.mark.asyncio
async def test_retry_refuses_non_failed_payout(service, uow_factory, processor, audit, marketplace):
    await seed_settlement(uow_factory, payout_status=PayoutStatus.PAID)

    with pytest.raises(PayoutNotRetryableException):
        await service.retry_payout("pi_1", actor="ops")

    assert processor.transfers == []
    assert audit.entries[-1]["details"]["outcome"] == "refused"


@pytest.mark.asyncio
async def test_retry_refuses_missing_record(service, audit):
    with pytest.raises(SettlementNotFoundException):
        await service.retry_payout("pi_missing", actor="ops")
    assert audit.entries[-1]["target_id"] == "pi_missing"


@pytest.mark.asyncio
async def test_retry_refuses_legacy_rows(service, processor):
    with pytest.raises(LegacyRecordNotRetryableException):
        await service.retry_payout("legacy:bk_legacy", actor="ops")
    assert processor.transfers == []


@pytest.mark.asyncio
async def test_retry_cap_requires_manual_escalation(service, uow_factory, session_factory, processor, marketplace):
    await seed_settlement(uow_factory)
    await set_retry_count(session_factory, "pi_1", 3)

    with pytest.raises(PayoutRetryLimitExceededException):
        await service.retry_payout("pi_1", actor="ops")
    assert processor.transfers == []


@pytest.mark.asyncio
async def test_transfer_failure_leaves_record_untouched(service, uow_factory, processor, audit, marketplace):
    await seed_settlement(uow_factory)
    processor.transfer_error = PaymentRecoverableError("timed out", provider="fake", provider_code="timeout")

    with pytest.raises(PaymentRecoverableError):
        await service.retry_payout("pi_1", actor="ops")

    async with uow_factory(readonly=True) as uow:
        record = await uow.settlements.get_by_payment_ref("pi_1")
    assert record.payout_status is PayoutStatus.FAILED
    assert record.payout_retry_count == 0
    assert record.transfer_ref == "tr_original"
    assert audit.entries[-1]["details"]["outcome"] == "failed"


@pytest.mark.asyncio
async def test_list_retry_candidates(service, uow_factory, marketplace):
    await seed_settlement(uow_factory, ref="pi_failed")
    await seed_settlement(uow_factory, ref="pi_paid", payout_status=PayoutStatus.PAID)

    candidates = await service.list_retry_candidates()

    assert [c.processor_payment_ref for c in candidates] == ["pi_failed"]
    assert candidates[0].retry_eligible is True


@pytest.mark.asyncio
async def test_transfer_issued_after_lost_race_stays_on_record(
    service, uow_factory, session_factory, processor, audit, marketplace
):
    await seed_settlement(uow_factory)
    issue_transfer = processor.create_transfer

    async def late_webhook_then_transfer(req):
        # a transfer.paid for the original transfer lands while the retry is in flight
        async with session_factory() as session:
            await session.execute(
                update(SettlementModel)
                .where(SettlementModel.processor_payment_ref == "pi_1")
                .values(payout_status=PayoutStatus.PAID.value)
            )
            await session.commit()
        return await issue_transfer(req)

    processor.create_transfer = late_webhook_then_transfer

    with pytest.raises(PayoutNotRetryableException):
        await service.retry_payout("pi_1", actor="ops")

    async with uow_factory(readonly=True) as uow:
        record = await uow.settlements.get_by_payment_ref("pi_1")
        assert await uow.settlements.get_by_transfer_ref("tr_retry_1") == record
    assert record.payout_status is PayoutStatus.PAID
    assert record.transfer_ref == "tr_retry_1"
    assert record.payout_retry_count == 1

    details = audit.entries[-1]["details"]
    assert details["outcome"] == "conflict"
    assert details["transfer_ref"] == "tr_retry_1"
    assert details["orphaned_transfer"] is True


@pytest.mark.asyncio
async def test_record_orphaned_transfer_is_idempotent(uow_factory, marketplace):
    await seed_settlement(uow_factory, payout_status=PayoutStatus.PAID)

    async with uow_factory() as uow:
        assert await uow.settlements.record_orphaned_transfer("pi_1", "tr_late") is True
    async with uow_factory() as uow:
        assert await uow.settlements.record_orphaned_transfer("pi_1", "tr_late") is False
        record = await uow.settlements.get_by_payment_ref("pi_1")

    assert record.transfer_ref == "tr_late"
    assert record.payout_retry_count == 1
    assert record.payout_status is PayoutStatus.PAID
