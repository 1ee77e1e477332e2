"""
Settlement ledger entities.

A settlement record tracks one processor charge: how it was split between the
platform and the coach, and where the coach's payout currently stands. Status
values are closed enums; every move between them goes through the transition
tables below so an out-of-order or replayed event can never walk a record
backwards.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from domain.common.exceptions import DomainValidationException
from shared.codes.payment_codes import STRIPE_EVENT_TARGETS


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class PayoutStatus(str, Enum):
    UNKNOWN = "unknown"          # legacy rows and charges without a destination transfer
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


class RecordSource(str, Enum):
    LEDGER = "ledger"
    LEGACY = "legacy"


class TransitionOutcome(str, Enum):
    APPLY = "apply"
    NOOP = "noop"
    REJECT = "reject"


PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Edges an inbound processor event may take. failed -> pending is absent on
# purpose: only the payout retry command may take it.
PAYOUT_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.UNKNOWN: frozenset({PayoutStatus.PENDING}),
    PayoutStatus.PENDING: frozenset({PayoutStatus.IN_TRANSIT, PayoutStatus.FAILED, PayoutStatus.CANCELED}),
    PayoutStatus.IN_TRANSIT: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED, PayoutStatus.CANCELED}),
    PayoutStatus.PAID: frozenset(),
    PayoutStatus.FAILED: frozenset({PayoutStatus.CANCELED}),
    PayoutStatus.CANCELED: frozenset(),
}

PAYOUT_RETRY_TRANSITION = (PayoutStatus.FAILED, PayoutStatus.PENDING)


def check_payment_transition(current: PaymentStatus, target: PaymentStatus) -> TransitionOutcome:
    if current == target:
        return TransitionOutcome.NOOP
    if target in PAYMENT_TRANSITIONS[current]:
        return TransitionOutcome.APPLY
    return TransitionOutcome.REJECT


def check_payout_transition(
    current: PayoutStatus,
    target: PayoutStatus,
    *,
    via_retry: bool = False,
) -> TransitionOutcome:
    if current == target:
        return TransitionOutcome.NOOP
    if target in PAYOUT_TRANSITIONS[current]:
        return TransitionOutcome.APPLY
    if via_retry and (current, target) == PAYOUT_RETRY_TRANSITION:
        return TransitionOutcome.APPLY
    return TransitionOutcome.REJECT


def payment_predecessors(target: PaymentStatus) -> FrozenSet[PaymentStatus]:
    """States from which ``target`` may be written, itself included."""
    return frozenset({s for s, nxt in PAYMENT_TRANSITIONS.items() if target in nxt} | {target})


def payout_predecessors(target: PayoutStatus) -> FrozenSet[PayoutStatus]:
    return frozenset({s for s, nxt in PAYOUT_TRANSITIONS.items() if target in nxt} | {target})


@dataclass(frozen=True)
class EventKind:
    """What a processor event means for a settlement: exactly one status family moves."""

    event_type: str
    payment_status: Optional[PaymentStatus] = None
    payout_status: Optional[PayoutStatus] = None

    @property
    def is_payout_event(self) -> bool:
        return self.payout_status is not None


def event_kind_for(event_type: str) -> Optional[EventKind]:
    """Map a processor event type onto a closed target status, or None if it is not ours."""
    target = STRIPE_EVENT_TARGETS.get(event_type)
    if target is None:
        return None
    family, status = target
    if family == "payment":
        return EventKind(event_type=event_type, payment_status=PaymentStatus(status))
    return EventKind(event_type=event_type, payout_status=PayoutStatus(status))


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class SettlementRecord:
    """
    Ledger row for one processor charge.

    Rules:
    1. processor_payment_ref is unique (enforced by the store)
    2. at most one of booking_ref / booking_request_ref is set
    3. platform_fee_cents + coach_amount_cents == total_amount_cents
    4. platform_fee_cents <= 0.5 * total_amount_cents
    """

    id: Optional[int]
    processor_payment_ref: str
    coach_ref: str
    total_amount_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None
    athlete_ref: Optional[str] = None
    processor_fee_cents: int = 0
    athlete_fee_cents: int = 0
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payout_status: PayoutStatus = PayoutStatus.UNKNOWN
    payout_failed_reason: Optional[str] = None
    payout_retry_count: int = 0
    transfer_ref: Optional[str] = None
    charge_ref: Optional[str] = None
    currency: str = "usd"
    description: Optional[str] = None
    customer_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.payment_status = PaymentStatus(self.payment_status)
        self.payout_status = PayoutStatus(self.payout_status)
        self._validate_refs()
        self._validate_split()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def _validate_refs(self) -> None:
        if not self.processor_payment_ref:
            raise DomainValidationException("processor_payment_ref is required", field="processor_payment_ref")
        if self.booking_ref and self.booking_request_ref:
            raise DomainValidationException(
                "A settlement belongs to a booking or a booking request, not both",
                field="booking_request_ref",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")

    def _validate_split(self) -> None:
        if self.total_amount_cents <= 0:
            raise DomainValidationException(
                f"Total amount must be greater than 0: {self.total_amount_cents}", field="total_amount_cents"
            )
        if self.platform_fee_cents < 0 or self.coach_amount_cents < 0:
            raise DomainValidationException("Split amounts cannot be negative", field="platform_fee_cents")
        if self.platform_fee_cents + self.coach_amount_cents != self.total_amount_cents:
            raise DomainValidationException(
                f"Split {self.platform_fee_cents} + {self.coach_amount_cents} != {self.total_amount_cents}",
                field="coach_amount_cents",
            )
        if Decimal(self.platform_fee_cents) > Decimal(self.total_amount_cents) / 2:
            raise DomainValidationException(
                f"Platform fee {self.platform_fee_cents} exceeds half of {self.total_amount_cents}",
                field="platform_fee_cents",
            )
        if self.payout_retry_count < 0:
            raise DomainValidationException("payout_retry_count cannot be negative", field="payout_retry_count")

    @property
    def source(self) -> RecordSource:
        return RecordSource.LEDGER

    @property
    def retry_eligible(self) -> bool:
        return self.payout_status is PayoutStatus.FAILED


@dataclass
class SettlementPatch:
    """
    Partial update for a settlement record. ``None`` means "leave as is".

    A patch that carries the creation fields (coach_ref and the split) can
    create the record; any other patch only updates an existing one.
    """

    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None
    coach_ref: Optional[str] = None
    athlete_ref: Optional[str] = None
    total_amount_cents: Optional[int] = None
    platform_fee_cents: Optional[int] = None
    coach_amount_cents: Optional[int] = None
    processor_fee_cents: Optional[int] = None
    athlete_fee_cents: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    payout_status: Optional[PayoutStatus] = None
    payout_failed_reason: Optional[str] = None
    transfer_ref: Optional[str] = None
    charge_ref: Optional[str] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    customer_email: Optional[str] = None

    CREATION_FIELDS = ("coach_ref", "total_amount_cents", "platform_fee_cents", "coach_amount_cents")

    def values(self) -> Dict[str, object]:
        out: Dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.name] = value.value if isinstance(value, Enum) else value
        return out

    @property
    def can_create(self) -> bool:
        return all(getattr(self, name) is not None for name in self.CREATION_FIELDS)

    def is_empty(self) -> bool:
        return not self.values()


TRANSFER_GROUP_PREFIX = "group_"


def transfer_group_for(correlation_ref: str) -> str:
    """Transfer group stamped on a payment; the processor copies it onto the transfer it creates."""
    return f"{TRANSFER_GROUP_PREFIX}{correlation_ref}"


def correlation_from_transfer_group(group: Optional[str]) -> Optional[str]:
    if not group or not group.startswith(TRANSFER_GROUP_PREFIX):
        return None
    return group[len(TRANSFER_GROUP_PREFIX):] or None


@dataclass(frozen=True)
class LegacyLedgerView:
    """Read-only split derived from a paid booking that predates the ledger."""

    ref: str
    booking_ref: str
    coach_ref: Optional[str]
    athlete_ref: Optional[str]
    total_amount_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    currency: str = "usd"
    created_at: Optional[datetime] = None
    payout_status: PayoutStatus = PayoutStatus.UNKNOWN
    source: RecordSource = RecordSource.LEGACY
    retry_eligible: bool = False

    @staticmethod
    def ref_for(booking_ref: str) -> str:
        return f"legacy:{booking_ref}"

    @staticmethod
    def is_legacy_ref(ref: str) -> bool:
        return ref.startswith("legacy:")
