"""
Settlement ledger repository interfaces.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .entity import PayoutStatus, SettlementPatch, SettlementRecord


class SettlementRepository(ABC):
    """Settlement store. Writes are single atomic statements keyed on processor_payment_ref."""

    @abstractmethod
    async def upsert_settlement(self, ref: str, patch: SettlementPatch) -> SettlementRecord:
        """
        Insert the record for ``ref`` or apply the fields present in ``patch``.

        Status columns only move along the allowed transition graph; a patch
        that would change nothing leaves the row (and updated_at) untouched.
        Raises SettlementNotFoundException when the record does not exist and
        the patch cannot create it.
        """

    @abstractmethod
    async def get_by_payment_ref(self, ref: str) -> Optional[SettlementRecord]:
        pass

    @abstractmethod
    async def get_by_transfer_ref(self, transfer_ref: str) -> Optional[SettlementRecord]:
        pass

    @abstractmethod
    async def get_by_charge_ref(self, charge_ref: str) -> Optional[SettlementRecord]:
        """The record whose charge a transfer names as its source_transaction."""

    @abstractmethod
    async def get_latest_for_booking(self, correlation_ref: str) -> Optional[SettlementRecord]:
        """Most recent record owned by a booking or booking request with this id."""

    @abstractmethod
    async def list_by_payout_status(
        self,
        status: PayoutStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[SettlementRecord]:
        pass

    @abstractmethod
    async def list_recent(self, skip: int = 0, limit: int = 100) -> List[SettlementRecord]:
        pass

    @abstractmethod
    async def summarize(self) -> "SettlementTotals":
        pass

    @abstractmethod
    async def mark_payout_retried(
        self,
        ref: str,
        *,
        expected_retry_count: int,
        transfer_ref: Optional[str],
    ) -> bool:
        """
        failed -> pending for a retried payout, bumping payout_retry_count.

        Conditional on the row still being failed with ``expected_retry_count``
        retries; returns False when another writer got there first.
        """

    @abstractmethod
    async def record_orphaned_transfer(self, ref: str, transfer_ref: str) -> bool:
        """
        Attach a transfer that was issued but lost the retry race.

        Stores ``transfer_ref`` and counts the attempt without touching either
        status; returns False when the record already carries that transfer.
        """


class WebhookEventStatus(str, Enum):
    PROCESSED = "processed"
    UNRESOLVED = "unresolved"
    IGNORED = "ignored"


@dataclass
class WebhookEventRecord:
    processor_event_id: str
    event_type: str
    status: WebhookEventStatus
    processor_payment_ref: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None


class WebhookEventRepository(ABC):
    """Processed/unresolved processor events, keyed by processor_event_id."""

    @abstractmethod
    async def exists(self, processor_event_id: str) -> bool:
        pass

    @abstractmethod
    async def record(self, event: WebhookEventRecord) -> bool:
        """Store the event; returns False if the id was already recorded."""

    @abstractmethod
    async def list_by_status(
        self,
        status: WebhookEventStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WebhookEventRecord]:
        pass


@dataclass(frozen=True)
class BookingSnapshot:
    """What the settlement ledger needs to know about a booking or booking request."""

    coach_ref: str
    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None
    athlete_ref: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: str = "usd"
    created_at: Optional[datetime] = None


class BookingDirectory(ABC):
    """Read-only view of the booking tables owned by the marketplace."""

    @abstractmethod
    async def resolve(self, metadata: Dict[str, str]) -> Optional[BookingSnapshot]:
        """Find the booking or booking request a processor object was created for."""

    @abstractmethod
    async def get_payee_account(self, coach_ref: str) -> Optional[str]:
        """The coach's connected processor account id, if onboarding has started."""

    @abstractmethod
    async def list_unsettled_paid_bookings(self, skip: int = 0, limit: int = 100) -> List[BookingSnapshot]:
        """Paid bookings that no settlement record covers, newest first."""

    @abstractmethod
    async def legacy_totals(self, platform_fee_percent: float) -> "LegacyTotals":
        """Count and sums over the same bookings, with the platform cut computed in the query."""


@dataclass(frozen=True)
class SettlementTotals:
    record_count: int = 0
    gross_revenue_cents: int = 0
    platform_fee_cents: int = 0
    coach_paid_out_cents: int = 0
    pending_payouts: int = 0
    failed_payouts: int = 0


@dataclass(frozen=True)
class LegacyTotals:
    count: int = 0
    gross_revenue_cents: int = 0
    platform_fee_cents: int = 0

