"""
Read-only mappings of tables owned by the marketplace application.

This service never writes to them and their migrations live elsewhere; they
are mapped here so the settlement ledger can resolve bookings, payee accounts
and commission settings in the same database session.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text

from .base import Base, ExternalTable


class AdminSettingModel(ExternalTable, Base):
    __tablename__ = "admin_settings"

    setting_key = Column(String(100), primary_key=True)
    setting_value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CoachModel(ExternalTable, Base):
    __tablename__ = "coaches"

    id = Column(String(64), primary_key=True)
    stripe_account_id = Column(String(255), nullable=True)


class BookingModel(ExternalTable, Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True)
    coach_id = Column(String(64), nullable=False)
    athlete_id = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False)
    amount_paid_cents = Column(Integer, nullable=True)
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)


class BookingRequestModel(ExternalTable, Base):
    __tablename__ = "booking_requests"

    id = Column(String(64), primary_key=True)
    coach_id = Column(String(64), nullable=False)
    athlete_id = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False)
    amount_cents = Column(Integer, nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
