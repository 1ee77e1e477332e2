"""
Settlement domain events.

Published to the notification port after the transaction that produced them
commits. Delivery failures never touch settlement state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class SettlementEvent:
    processor_payment_ref: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentStatusChanged(SettlementEvent):
    previous: Optional[str] = None
    current: str = ""
    booking_ref: Optional[str] = None
    booking_request_ref: Optional[str] = None


@dataclass
class PayoutStatusChanged(SettlementEvent):
    previous: Optional[str] = None
    current: str = ""
    coach_ref: Optional[str] = None
    failed_reason: Optional[str] = None


@dataclass
class PayoutRetried(SettlementEvent):
    attempt: int = 0
    transfer_ref: Optional[str] = None
    actor: Optional[str] = None


@dataclass
class UnresolvedEventRecorded(SettlementEvent):
    processor_event_id: str = ""
    event_type: str = ""
    reason: str = ""
