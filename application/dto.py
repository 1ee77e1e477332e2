"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, model_serializer

from domain.fees.calculator import CheckoutQuote, describe_breakdown, format_cents, FeeBreakdown
from domain.fees.policy import CommissionPolicy
from domain.settlement.entity import LegacyLedgerView, SettlementRecord
from domain.settlement.repository import LegacyTotals, SettlementTotals


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class FeeLineItemDTO(DTOBase):
    name: str
    amount_cents: int


class CheckoutQuoteDTO(DTOBase):
    """Fee preview shown before checkout."""
    subtotal_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    platform_fee_percent: float
    athlete_fee_items: List[FeeLineItemDTO]
    athlete_fee_cents: int
    total_charge_cents: int
    display: dict[str, str]

    @classmethod
    def from_quote(cls, quote: CheckoutQuote) -> "CheckoutQuoteDTO":
        display = describe_breakdown(
            FeeBreakdown(
                total_cents=quote.subtotal_cents,
                platform_fee_cents=quote.platform_fee_cents,
                coach_amount_cents=quote.coach_amount_cents,
                fee_percent=quote.platform_fee_percent,
            )
        )
        display["athlete_pays"] = format_cents(quote.total_charge_cents)
        return cls(
            subtotal_cents=quote.subtotal_cents,
            platform_fee_cents=quote.platform_fee_cents,
            coach_amount_cents=quote.coach_amount_cents,
            platform_fee_percent=quote.platform_fee_percent,
            athlete_fee_items=[FeeLineItemDTO(name=i.name, amount_cents=i.amount_cents) for i in quote.athlete_fee_items],
            athlete_fee_cents=quote.athlete_fee_cents,
            total_charge_cents=quote.total_charge_cents,
            display=display,
        )


class CheckoutResultDTO(DTOBase):
    session_id: str
    url: Optional[str] = None
    processor_payment_ref: Optional[str] = None
    quote: CheckoutQuoteDTO


class CommissionPolicyDTO(DTOBase):
    platform_fee_percent: float
    athlete_fee_type: str
    athlete_fee_percent: float
    athlete_fee_flat_cents: int

    @classmethod
    def from_policy(cls, policy: CommissionPolicy) -> "CommissionPolicyDTO":
        return cls(
            platform_fee_percent=policy.platform_fee_percent,
            athlete_fee_type=policy.athlete_fee_type.value,
            athlete_fee_percent=policy.athlete_fee_percent,
            athlete_fee_flat_cents=policy.athlete_fee_flat_cents,
        )


class SettlementDTO(DTOBase):
    source: Literal["ledger"] = "ledger"
    processor_payment_ref: str
    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None
    coach_ref: str
    athlete_ref: Optional[str] = None
    total_amount_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    processor_fee_cents: int
    athlete_fee_cents: int
    payment_status: str
    payout_status: str
    payout_failed_reason: Optional[str] = None
    payout_retry_count: int
    transfer_ref: Optional[str] = None
    currency: str
    description: Optional[str] = None
    customer_email: Optional[str] = None
    retry_eligible: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: SettlementRecord) -> "SettlementDTO":
        return cls(
            processor_payment_ref=record.processor_payment_ref,
            booking_ref=record.booking_ref,
            booking_request_ref=record.booking_request_ref,
            coach_ref=record.coach_ref,
            athlete_ref=record.athlete_ref,
            total_amount_cents=record.total_amount_cents,
            platform_fee_cents=record.platform_fee_cents,
            coach_amount_cents=record.coach_amount_cents,
            processor_fee_cents=record.processor_fee_cents,
            athlete_fee_cents=record.athlete_fee_cents,
            payment_status=record.payment_status.value,
            payout_status=record.payout_status.value,
            payout_failed_reason=record.payout_failed_reason,
            payout_retry_count=record.payout_retry_count,
            transfer_ref=record.transfer_ref,
            currency=record.currency,
            description=record.description,
            customer_email=record.customer_email,
            retry_eligible=record.retry_eligible,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class LegacyLedgerEntryDTO(DTOBase):
    source: Literal["legacy"] = "legacy"
    ref: str
    booking_ref: str
    coach_ref: Optional[str] = None
    athlete_ref: Optional[str] = None
    total_amount_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    currency: str
    payout_status: str
    retry_eligible: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: LegacyLedgerView) -> "LegacyLedgerEntryDTO":
        return cls(
            ref=view.ref,
            booking_ref=view.booking_ref,
            coach_ref=view.coach_ref,
            athlete_ref=view.athlete_ref,
            total_amount_cents=view.total_amount_cents,
            platform_fee_cents=view.platform_fee_cents,
            coach_amount_cents=view.coach_amount_cents,
            currency=view.currency,
            payout_status=view.payout_status.value,
            retry_eligible=view.retry_eligible,
            created_at=view.created_at,
        )


class LedgerSummaryDTO(DTOBase):
    record_count: int
    legacy_count: int
    gross_revenue_cents: int
    platform_fee_cents: int
    coach_paid_out_cents: int
    pending_payouts: int
    failed_payouts: int

    @classmethod
    def from_totals(cls, totals: SettlementTotals, legacy: LegacyTotals) -> "LedgerSummaryDTO":
        return cls(
            record_count=totals.record_count,
            legacy_count=legacy.count,
            gross_revenue_cents=totals.gross_revenue_cents + legacy.gross_revenue_cents,
            platform_fee_cents=totals.platform_fee_cents + legacy.platform_fee_cents,
            coach_paid_out_cents=totals.coach_paid_out_cents,
            pending_payouts=totals.pending_payouts,
            failed_payouts=totals.failed_payouts,
        )


class LedgerDTO(DTOBase):
    items: List[Union[SettlementDTO, LegacyLedgerEntryDTO]]
    summary: LedgerSummaryDTO


class RetryPayoutResultDTO(DTOBase):
    processor_payment_ref: str
    transfer_ref: str
    attempt: int
    payout_status: str


class WebhookAckDTO(DTOBase):
    received: bool = True
    event_id: str
    outcome: Literal["processed", "duplicate", "ignored", "unresolved"]


class FeeBreakdownDTO(DTOBase):
    """Split under the fixed environment-configured policy."""
    total_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    fee_percent: float
    fixed_fee_cents: int
    display: dict[str, str]

    @classmethod
    def from_breakdown(cls, breakdown: FeeBreakdown) -> "FeeBreakdownDTO":
        return cls(
            total_cents=breakdown.total_cents,
            platform_fee_cents=breakdown.platform_fee_cents,
            coach_amount_cents=breakdown.coach_amount_cents,
            fee_percent=breakdown.fee_percent,
            fixed_fee_cents=breakdown.fixed_fee_cents,
            display=describe_breakdown(breakdown),
        )


class UnresolvedEventDTO(DTOBase):
    processor_event_id: str
    event_type: str
    processor_payment_ref: Optional[str] = None
    reason: Optional[str] = None
    payload: Optional[dict] = None
    created_at: Optional[datetime] = None
