"""
Admin ledger: settlement records plus derived views for bookings paid before
the ledger existed.
"""
from __future__ import annotations

from typing import Callable, List

from application.dto import LedgerDTO, LedgerSummaryDTO, LegacyLedgerEntryDTO, SettlementDTO
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.fees.calculator import commission_breakdown, percent_basis_points
from domain.settlement.entity import LegacyLedgerView
from domain.settlement.repository import BookingSnapshot, LegacyTotals


logger = get_logger(__name__)


def legacy_view(booking: BookingSnapshot, legacy_percent: float) -> LegacyLedgerView:
    """Split a pre-ledger booking with the configured legacy percentage."""
    breakdown = commission_breakdown(booking.amount_cents, legacy_percent)
    return LegacyLedgerView(
        ref=LegacyLedgerView.ref_for(booking.booking_ref),
        booking_ref=booking.booking_ref,
        coach_ref=booking.coach_ref,
        athlete_ref=booking.athlete_ref,
        total_amount_cents=breakdown.total_cents,
        platform_fee_cents=breakdown.platform_fee_cents,
        coach_amount_cents=breakdown.coach_amount_cents,
        currency=booking.currency,
        created_at=booking.created_at,
    )


class LedgerService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        legacy_platform_fee_percent: float = 10.0,
    ) -> None:
        self._uow_factory = uow_factory
        # two decimals, so each legacy row agrees with the totals computed in SQL
        self.legacy_platform_fee_percent = percent_basis_points(legacy_platform_fee_percent) / 100

    async def list_ledger(self, skip: int = 0, limit: int = 100, include_legacy: bool = True) -> LedgerDTO:
        """
        One page of ledger records followed by one page of legacy views.

        The summary always covers every record and every legacy booking,
        independent of the page requested.
        """
        async with self._uow_factory(readonly=True) as uow:
            records = await uow.settlements.list_recent(skip=skip, limit=limit)
            totals = await uow.settlements.summarize()
            legacy: List[LegacyLedgerView] = []
            legacy_totals = LegacyTotals()
            if include_legacy:
                bookings = await uow.bookings.list_unsettled_paid_bookings(skip=skip, limit=limit)
                legacy = [legacy_view(b, self.legacy_platform_fee_percent) for b in bookings]
                legacy_totals = await uow.bookings.legacy_totals(self.legacy_platform_fee_percent)

        items: List[SettlementDTO | LegacyLedgerEntryDTO] = [SettlementDTO.from_record(r) for r in records]
        items += [LegacyLedgerEntryDTO.from_view(v) for v in legacy]
        logger.debug("ledger_listed", records=len(records), legacy=len(legacy), legacy_total=legacy_totals.count)
        return LedgerDTO(items=items, summary=LedgerSummaryDTO.from_totals(totals, legacy_totals))
