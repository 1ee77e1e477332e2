"""
Admin-triggered payout retries.

A retry issues a fresh transfer for the coach's share and flips the record
from failed back to pending in one conditional update. Every attempt is
written to the audit sink, refused or not.
"""
from __future__ import annotations

from typing import Callable, List

from application.dto import RetryPayoutResultDTO, SettlementDTO
from application.dtos.payments import TransferRequest
from application.ports.notifications import AuditSink, SettlementNotifier
from application.ports.payment_gateway import PaymentProcessor
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    LegacyRecordNotRetryableException,
    PayeeAccountNotReadyException,
    PayoutNotRetryableException,
    PayoutRetryLimitExceededException,
    SettlementNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.settlement.entity import LegacyLedgerView, PayoutStatus, SettlementRecord, transfer_group_for
from domain.settlement.events import PayoutRetried


logger = get_logger(__name__)

AUDIT_ACTION = "retry_payout"


def retry_idempotency_key(ref: str, attempt: int) -> str:
    return f"payout-retry:{ref}:{attempt}"


class PayoutRetryService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        processor: PaymentProcessor,
        notifier: SettlementNotifier,
        audit: AuditSink,
        *,
        max_retries: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self.processor = processor
        self.notifier = notifier
        self.audit = audit
        self.max_retries = max_retries

    async def list_retry_candidates(self, skip: int = 0, limit: int = 100) -> List[SettlementDTO]:
        async with self._uow_factory(readonly=True) as uow:
            records = await uow.settlements.list_by_payout_status(PayoutStatus.FAILED, skip=skip, limit=limit)
        return [SettlementDTO.from_record(r) for r in records]

    async def _load(self, ref: str) -> tuple[SettlementRecord, str]:
        if LegacyLedgerView.is_legacy_ref(ref):
            raise LegacyRecordNotRetryableException(ref)

        async with self._uow_factory(readonly=True) as uow:
            record = await uow.settlements.get_by_payment_ref(ref)
            if record is None:
                raise SettlementNotFoundException(ref)
            if record.payout_status is not PayoutStatus.FAILED:
                raise PayoutNotRetryableException(ref, record.payout_status.value)
            if record.payout_retry_count >= self.max_retries:
                raise PayoutRetryLimitExceededException(ref, record.payout_retry_count, self.max_retries)
            account_id = await uow.bookings.get_payee_account(record.coach_ref)

        if not account_id:
            raise PayeeAccountNotReadyException(record.coach_ref, "no connected payout account")
        return record, account_id

    async def retry_payout(self, ref: str, actor: str) -> RetryPayoutResultDTO:
        try:
            record, account_id = await self._load(ref)
        except BusinessException as exc:
            await self._audit(actor, ref, outcome="refused", error=exc.error_type, message=exc.message)
            raise

        attempt = record.payout_retry_count + 1
        try:
            transfer = await self.processor.create_transfer(
                TransferRequest(
                    amount_cents=record.coach_amount_cents,
                    currency=record.currency,
                    destination_account=account_id,
                    idempotency_key=retry_idempotency_key(ref, attempt),
                    transfer_group=transfer_group_for(record.booking_ref or record.booking_request_ref or ref),
                    metadata={
                        "processor_payment_ref": ref,
                        "coach_ref": record.coach_ref,
                        "retry_attempt": str(attempt),
                    },
                )
            )
        except BusinessException as exc:
            logger.warning("payout_retry_failed", processor_payment_ref=ref, attempt=attempt, error=exc.message)
            await self._audit(actor, ref, outcome="failed", attempt=attempt, error=exc.error_type, message=exc.message)
            raise

        async with self._uow_factory() as uow:
            applied = await uow.settlements.mark_payout_retried(
                ref,
                expected_retry_count=record.payout_retry_count,
                transfer_ref=transfer.transfer_id,
            )
            orphaned = False
            if not applied:
                # the transfer exists at the processor; keep it traceable from the record
                orphaned = await uow.settlements.record_orphaned_transfer(ref, transfer.transfer_id)
            current = await uow.settlements.get_by_payment_ref(ref)

        if not applied:
            # another retry or a late webhook moved the record first
            status = current.payout_status.value if current else "missing"
            await self._audit(
                actor,
                ref,
                outcome="conflict",
                attempt=attempt,
                transfer_ref=transfer.transfer_id,
                payout_status=status,
                orphaned_transfer=orphaned,
            )
            raise PayoutNotRetryableException(ref, status)

        await self._audit(
            actor,
            ref,
            outcome="succeeded",
            attempt=attempt,
            transfer_ref=transfer.transfer_id,
            amount_cents=record.coach_amount_cents,
        )
        try:
            await self.notifier.publish(
                PayoutRetried(processor_payment_ref=ref, attempt=attempt, transfer_ref=transfer.transfer_id, actor=actor)
            )
        except Exception as exc:
            logger.warning("settlement_notification_failed", notification="PayoutRetried",
                           processor_payment_ref=ref, error=str(exc))

        return RetryPayoutResultDTO(
            processor_payment_ref=ref,
            transfer_ref=transfer.transfer_id,
            attempt=attempt,
            payout_status=PayoutStatus.PENDING.value,
        )

    async def _audit(self, actor: str, ref: str, **details) -> None:
        await self.audit.record(
            actor=actor,
            action=AUDIT_ACTION,
            target_type="settlement",
            target_id=ref,
            details=details,
        )
