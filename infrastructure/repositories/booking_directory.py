"""
Read-only booking lookups against the marketplace tables.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from sqlalchemy import BigInteger, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.fees.calculator import percent_basis_points
from domain.settlement.repository import BookingDirectory, BookingSnapshot, LegacyTotals
from infrastructure.models.marketplace import BookingModel, BookingRequestModel, CoachModel
from infrastructure.models.settlement import SettlementModel

# Booking statuses that mean the athlete has been charged.
PAID_BOOKING_STATUSES = ("paid", "confirmed", "completed")


class SQLAlchemyBookingDirectory(BookingDirectory):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _from_booking(model: BookingModel) -> BookingSnapshot:
        return BookingSnapshot(
            booking_ref=model.id,
            coach_ref=model.coach_id,
            athlete_ref=model.athlete_id,
            amount_cents=model.amount_paid_cents,
            created_at=model.created_at,
        )

    async def _booking(self, **criteria) -> Optional[BookingSnapshot]:
        stmt = select(BookingModel)
        for column, value in criteria.items():
            stmt = stmt.where(getattr(BookingModel, column) == value)
        model = (await self.session.execute(stmt)).scalars().first()
        return self._from_booking(model) if model else None

    async def _booking_request(self, ref: str) -> Optional[BookingSnapshot]:
        model = await self.session.get(BookingRequestModel, ref)
        if model is None:
            return None
        return BookingSnapshot(
            booking_request_ref=model.id,
            coach_ref=model.coach_id,
            athlete_ref=model.athlete_id,
            amount_cents=model.amount_cents,
            created_at=model.created_at,
        )

    async def resolve(self, metadata: Dict[str, str]) -> Optional[BookingSnapshot]:
        request_ref = metadata.get("booking_request_ref") or metadata.get("booking_request_id")
        if request_ref:
            return await self._booking_request(request_ref)
        booking_ref = metadata.get("booking_ref") or metadata.get("booking_id")
        if booking_ref:
            return await self._booking(id=booking_ref)
        session_id = metadata.get("session_id")
        if session_id:
            return await self._booking(stripe_session_id=session_id)
        return None

    async def get_payee_account(self, coach_ref: str) -> Optional[str]:
        result = await self.session.execute(
            select(CoachModel.stripe_account_id).where(CoachModel.id == coach_ref)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _unsettled_paid():
        """Paid bookings with no settlement record, as an anti-join on booking_ref."""
        settled = select(SettlementModel.id).where(SettlementModel.booking_ref == BookingModel.id).exists()
        return (
            BookingModel.status.in_(PAID_BOOKING_STATUSES),
            BookingModel.amount_paid_cents > 0,
            ~settled,
        )

    async def list_unsettled_paid_bookings(self, skip: int = 0, limit: int = 100) -> List[BookingSnapshot]:
        result = await self.session.execute(
            select(BookingModel)
            .where(*self._unsettled_paid())
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._from_booking(m) for m in result.scalars().all()]

    async def legacy_totals(self, platform_fee_percent: float) -> LegacyTotals:
        # half-up rounding in integer arithmetic, matching percent_of for two-decimal percentages
        amount = cast(BookingModel.amount_paid_cents, BigInteger)
        fee = (amount * percent_basis_points(platform_fee_percent) + 5000) // 10000
        result = await self.session.execute(
            select(
                func.count(BookingModel.id),
                func.coalesce(func.sum(amount), 0),
                func.coalesce(func.sum(fee), 0),
            ).where(*self._unsettled_paid())
        )
        row = result.one()
        return LegacyTotals(
            count=int(row[0] or 0),
            gross_revenue_cents=int(row[1] or 0),
            platform_fee_cents=int(row[2] or 0),
        )
