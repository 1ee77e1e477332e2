"""
Webhook ingestion and settlement reconciliation.

Each processor event is verified, deduplicated on its event id, tied back to
the booking it was created for and applied to the settlement ledger through
the monotonic guard. The settlement write and the event log entry commit
together; notifications go out only after that commit.
"""
from __future__ import annotations

from typing import Any, Callable, List, Optional, Tuple

from application.dto import WebhookAckDTO
from application.dtos.payments import WebhookEvent
from application.ports.notifications import SettlementNotifier
from application.ports.payment_gateway import PaymentProcessor
from application.services.fee_policy_service import FeePolicyResolver
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, ReconciliationMismatch
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.fees.calculator import platform_cut_cents
from domain.settlement.entity import (
    EventKind,
    PaymentStatus,
    PayoutStatus,
    SettlementPatch,
    SettlementRecord,
    TransitionOutcome,
    check_payment_transition,
    check_payout_transition,
    correlation_from_transfer_group,
    event_kind_for,
)
from domain.settlement.events import (
    PaymentStatusChanged,
    PayoutStatusChanged,
    SettlementEvent,
    UnresolvedEventRecorded,
)
from domain.settlement.repository import (
    BookingSnapshot,
    WebhookEventRecord,
    WebhookEventStatus,
)


logger = get_logger(__name__)

# checkout.session.completed only settles once the money is actually captured
PAID_SESSION_STATES = {"paid", "no_payment_required"}


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None


def _object_id(value: Any) -> Optional[str]:
    # expandable fields arrive as an id or as the expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def payment_ref_for(event: WebhookEvent) -> Optional[str]:
    """The payment intent id an event is about."""
    obj = event.data
    if event.type.startswith("payment_intent."):
        return obj.get("id")
    return _object_id(obj.get("payment_intent"))


def charge_ref_for(event: WebhookEvent) -> Optional[str]:
    """The charge behind a payment event; automatic transfers name it as source_transaction."""
    obj = event.data
    if event.type.startswith("charge."):
        return obj.get("id")
    if event.type.startswith("payment_intent."):
        return _object_id(obj.get("latest_charge"))
    return None


def charged_subtotal(event: WebhookEvent) -> Optional[int]:
    obj = event.data
    for key in ("amount_subtotal", "amount", "amount_total"):
        value = _int_or_none(obj.get(key))
        if value is not None:
            return value
    return None


def customer_email_for(event: WebhookEvent) -> Optional[str]:
    obj = event.data
    details = obj.get("customer_details") or {}
    return obj.get("receipt_email") or details.get("email") or obj.get("customer_email")


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        processor: PaymentProcessor,
        policy_resolver: FeePolicyResolver,
        notifier: SettlementNotifier,
    ) -> None:
        self._uow_factory = uow_factory
        self.processor = processor
        self.policy_resolver = policy_resolver
        self.notifier = notifier

    async def handle_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookAckDTO:
        """Verify the signature (PaymentSignatureError on failure) and reconcile."""
        event = self.processor.parse_webhook(headers, body)
        return await self.reconcile(event)

    async def reconcile(self, event: WebhookEvent) -> WebhookAckDTO:
        log = logger.bind(event_id=event.id, event_type=event.type)
        kind = self._kind_for(event)
        published: List[SettlementEvent] = []

        async with self._uow_factory() as uow:
            if await uow.webhook_events.exists(event.id):
                log.info("webhook_duplicate")
                return WebhookAckDTO(event_id=event.id, outcome="duplicate")

            if kind is None:
                await uow.webhook_events.record(
                    WebhookEventRecord(
                        processor_event_id=event.id,
                        event_type=event.type,
                        status=WebhookEventStatus.IGNORED,
                    )
                )
                log.info("webhook_ignored")
                return WebhookAckDTO(event_id=event.id, outcome="ignored")

            try:
                ref, published = await self._apply(uow, event, kind)
            except ReconciliationMismatch as exc:
                reason = (exc.details or {}).get("reason", exc.message)
                await uow.webhook_events.record(
                    WebhookEventRecord(
                        processor_event_id=event.id,
                        event_type=event.type,
                        status=WebhookEventStatus.UNRESOLVED,
                        processor_payment_ref=payment_ref_for(event) if not kind.is_payout_event else None,
                        payload=event.data,
                        reason=reason,
                    )
                )
                log.warning("webhook_unresolved", reason=reason)
                published = [
                    UnresolvedEventRecorded(
                        processor_payment_ref=payment_ref_for(event) or "",
                        processor_event_id=event.id,
                        event_type=event.type,
                        reason=reason,
                    )
                ]
                outcome = "unresolved"
            else:
                await uow.webhook_events.record(
                    WebhookEventRecord(
                        processor_event_id=event.id,
                        event_type=event.type,
                        status=WebhookEventStatus.PROCESSED,
                        processor_payment_ref=ref,
                    )
                )
                outcome = "processed"

        await self._publish(published)
        log.info("webhook_reconciled", outcome=outcome)
        return WebhookAckDTO(event_id=event.id, outcome=outcome)

    def _kind_for(self, event: WebhookEvent) -> Optional[EventKind]:
        kind = event_kind_for(event.type)
        if kind is None:
            return None
        if event.type == "checkout.session.completed":
            if event.data.get("payment_status") not in PAID_SESSION_STATES:
                return None
        if event.type == "checkout.session.expired" and not payment_ref_for(event):
            # nothing was ever charged for this session
            return None
        return kind

    async def _apply(
        self,
        uow: AbstractUnitOfWork,
        event: WebhookEvent,
        kind: EventKind,
    ) -> Tuple[str, List[SettlementEvent]]:
        if kind.payout_status is not None:
            return await self._apply_payout(uow, event, kind.payout_status)
        if kind.payment_status is not None:
            return await self._apply_payment(uow, event, kind.payment_status)
        raise ReconciliationMismatch(event.id, event.type, "event moves no status")

    async def _creation_patch(self, event: WebhookEvent, booking: BookingSnapshot) -> SettlementPatch:
        metadata = event.metadata
        subtotal = _int_or_none(metadata.get("subtotal_cents"))
        platform_fee = _int_or_none(metadata.get("platform_fee_cents"))
        if subtotal is None or platform_fee is None:
            subtotal = charged_subtotal(event) or booking.amount_cents
            if not subtotal:
                raise ReconciliationMismatch(event.id, event.type, "charge amount unknown")
            policy = await self.policy_resolver.get_active_policy()
            platform_fee = platform_cut_cents(subtotal, policy.platform_fee_percent)
        return SettlementPatch(
            booking_ref=booking.booking_ref,
            booking_request_ref=booking.booking_request_ref,
            coach_ref=booking.coach_ref,
            athlete_ref=booking.athlete_ref or metadata.get("athlete_ref"),
            total_amount_cents=subtotal,
            platform_fee_cents=platform_fee,
            coach_amount_cents=subtotal - platform_fee,
            athlete_fee_cents=_int_or_none(metadata.get("athlete_fee_cents")) or 0,
            currency=(event.data.get("currency") or booking.currency or "usd").lower(),
            description=event.data.get("description"),
            customer_email=customer_email_for(event),
        )

    async def _apply_payment(
        self,
        uow: AbstractUnitOfWork,
        event: WebhookEvent,
        target: PaymentStatus,
    ) -> Tuple[str, List[SettlementEvent]]:
        ref = payment_ref_for(event)
        if not ref:
            raise ReconciliationMismatch(event.id, event.type, "event carries no payment reference")

        charge_ref = charge_ref_for(event)
        existing = await uow.settlements.get_by_payment_ref(ref)

        if existing is None:
            booking = await uow.bookings.resolve(event.metadata)
            if booking is None:
                raise ReconciliationMismatch(event.id, event.type, "no booking matches the correlation metadata")
            patch = await self._creation_patch(event, booking)
            patch.charge_ref = charge_ref
            patch.payment_status = target
            patch.payout_status = PayoutStatus.PENDING if target is PaymentStatus.SUCCEEDED else PayoutStatus.UNKNOWN
        else:
            patch = SettlementPatch()
            if charge_ref and existing.charge_ref is None:
                patch.charge_ref = charge_ref
            outcome = check_payment_transition(existing.payment_status, target)
            if outcome is TransitionOutcome.REJECT:
                logger.info(
                    "payment_transition_discarded",
                    processor_payment_ref=ref,
                    current=existing.payment_status.value,
                    target=target.value,
                    event_id=event.id,
                )
            elif outcome is TransitionOutcome.APPLY:
                patch.payment_status = target
                if target is PaymentStatus.SUCCEEDED and (
                    check_payout_transition(existing.payout_status, PayoutStatus.PENDING) is TransitionOutcome.APPLY
                ):
                    patch.payout_status = PayoutStatus.PENDING

        if patch.is_empty():
            return ref, []

        try:
            record = await uow.settlements.upsert_settlement(ref, patch)
        except DomainValidationException as exc:
            raise ReconciliationMismatch(event.id, event.type, f"inconsistent fee split: {exc.message}") from exc
        return ref, self._changes(existing, record)

    async def _find_transferred(self, uow: AbstractUnitOfWork, event: WebhookEvent) -> Optional[SettlementRecord]:
        """
        Tie a transfer back to its settlement.

        Retried transfers carry the payment ref in their metadata. The automatic
        transfer of a destination charge carries none: it names the charge as
        its source_transaction and inherits the payment's transfer group.
        """
        obj = event.data
        ref = event.metadata.get("processor_payment_ref")
        if ref:
            existing = await uow.settlements.get_by_payment_ref(ref)
            if existing is not None:
                return existing
        transfer_id = obj.get("id")
        if transfer_id:
            existing = await uow.settlements.get_by_transfer_ref(transfer_id)
            if existing is not None:
                return existing
        charge_ref = _object_id(obj.get("source_transaction"))
        if charge_ref:
            existing = await uow.settlements.get_by_charge_ref(charge_ref)
            if existing is not None:
                return existing
        correlation = correlation_from_transfer_group(obj.get("transfer_group"))
        if correlation:
            existing = await uow.settlements.get_by_payment_ref(correlation)
            if existing is None:
                existing = await uow.settlements.get_latest_for_booking(correlation)
            return existing
        return None

    async def _apply_payout(
        self,
        uow: AbstractUnitOfWork,
        event: WebhookEvent,
        target: PayoutStatus,
    ) -> Tuple[str, List[SettlementEvent]]:
        existing = await self._find_transferred(uow, event)
        if existing is None:
            raise ReconciliationMismatch(event.id, event.type, "no settlement matches this transfer")

        ref = existing.processor_payment_ref
        transfer_id = event.data.get("id")

        if existing.transfer_ref and transfer_id and existing.transfer_ref != transfer_id:
            # an older transfer reporting in after a retry issued a new one
            logger.info(
                "payout_transition_discarded",
                processor_payment_ref=ref,
                reason="superseded_transfer",
                transfer_ref=transfer_id,
                current_transfer_ref=existing.transfer_ref,
            )
            return ref, []

        patch = SettlementPatch()
        if transfer_id and existing.transfer_ref is None:
            # first sighting of this transfer; later events match on it directly
            patch.transfer_ref = transfer_id

        outcome = check_payout_transition(existing.payout_status, target)
        if outcome is TransitionOutcome.APPLY:
            patch.payout_status = target
            if target is PayoutStatus.FAILED:
                patch.payout_failed_reason = (
                    event.data.get("failure_message") or event.data.get("failure_code") or event.type
                )
        elif outcome is TransitionOutcome.REJECT:
            logger.info(
                "payout_transition_discarded",
                processor_payment_ref=ref,
                current=existing.payout_status.value,
                target=target.value,
                event_id=event.id,
            )

        if patch.is_empty():
            return ref, []
        record = await uow.settlements.upsert_settlement(ref, patch)
        return ref, self._changes(existing, record)

    @staticmethod
    def _changes(before: Optional[SettlementRecord], after: SettlementRecord) -> List[SettlementEvent]:
        changes: List[SettlementEvent] = []
        previous_payment = before.payment_status.value if before else None
        if after.payment_status.value != previous_payment:
            changes.append(
                PaymentStatusChanged(
                    processor_payment_ref=after.processor_payment_ref,
                    previous=previous_payment,
                    current=after.payment_status.value,
                    booking_ref=after.booking_ref,
                    booking_request_ref=after.booking_request_ref,
                )
            )
        previous_payout = before.payout_status.value if before else None
        if after.payout_status.value != previous_payout:
            changes.append(
                PayoutStatusChanged(
                    processor_payment_ref=after.processor_payment_ref,
                    previous=previous_payout,
                    current=after.payout_status.value,
                    coach_ref=after.coach_ref,
                    failed_reason=after.payout_failed_reason,
                )
            )
        return changes

    async def _publish(self, events: List[SettlementEvent]) -> None:
        for event in events:
            try:
                await self.notifier.publish(event)
            except Exception as exc:
                # settlement is already committed; delivery is best effort
                logger.warning(
                    "settlement_notification_failed",
                    notification=type(event).__name__,
                    processor_payment_ref=event.processor_payment_ref,
                    error=str(exc),
                )

    async def list_unresolved(self, skip: int = 0, limit: int = 100) -> List[WebhookEventRecord]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.webhook_events.list_by_status(WebhookEventStatus.UNRESOLVED, skip=skip, limit=limit)
