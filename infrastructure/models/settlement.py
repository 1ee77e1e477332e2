"""
结算账本数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    CheckConstraint, Column, Integer, String, DateTime, Text, JSON, Index
)

from .base import Base, utcnow


class SettlementModel(Base):
    """
    One row per processor charge.

    All business rules live in domain.settlement.entity.SettlementRecord; the
    status columns are only ever written through the guarded upsert.
    """
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, autoincrement=True)

    processor_payment_ref = Column(String(255), nullable=False, comment="Processor charge id (payment intent)")

    booking_ref = Column(String(64), nullable=True, index=True)
    booking_request_ref = Column(String(64), nullable=True, index=True)
    coach_ref = Column(String(64), nullable=False, index=True)
    athlete_ref = Column(String(64), nullable=True)

    total_amount_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False)
    coach_amount_cents = Column(Integer, nullable=False)
    processor_fee_cents = Column(Integer, nullable=False, default=0)
    athlete_fee_cents = Column(Integer, nullable=False, default=0)

    payment_status = Column(String(32), nullable=False, default="pending",
                            comment="pending/succeeded/failed/canceled/refunded")
    payout_status = Column(String(32), nullable=False, default="unknown",
                           comment="unknown/pending/in_transit/paid/failed/canceled")
    payout_failed_reason = Column(Text, nullable=True)
    payout_retry_count = Column(Integer, nullable=False, default=0)
    transfer_ref = Column(String(255), nullable=True)
    charge_ref = Column(String(255), nullable=True, comment="charge id matched by transfer source_transaction")

    currency = Column(String(3), nullable=False, default="usd")
    description = Column(Text, nullable=True)
    customer_email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ux_settlements_processor_payment_ref", "processor_payment_ref", unique=True),
        Index("ix_settlements_payout_status", "payout_status"),
        Index("ix_settlements_transfer_ref", "transfer_ref"),
        Index("ix_settlements_charge_ref", "charge_ref"),
        CheckConstraint("platform_fee_cents + coach_amount_cents = total_amount_cents", name="ck_settlements_split"),
        CheckConstraint("payout_retry_count >= 0", name="ck_settlements_retry_count"),
        CheckConstraint(
            "booking_ref IS NULL OR booking_request_ref IS NULL",
            name="ck_settlements_single_owner",
        ),
    )

    def __repr__(self):
        return (
            f"<Settlement(ref={self.processor_payment_ref}, payment={self.payment_status}, "
            f"payout={self.payout_status})>"
        )


class WebhookEventModel(Base):
    """Processor events seen so far; also the unresolved-event review queue."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    processor_event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    status = Column(String(32), nullable=False, comment="processed/unresolved/ignored")
    processor_payment_ref = Column(String(255), nullable=True)
    reason = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ux_webhook_events_processor_event_id", "processor_event_id", unique=True),
        Index("ix_webhook_events_status", "status"),
    )
