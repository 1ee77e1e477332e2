"""
Fee arithmetic for checkout previews and webhook-time settlement.

Every function here is pure and works in integer cents. All rounding goes
through ``round_half_up`` so a quote shown at checkout and the split written
when the processor confirms the charge can never drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from domain.common.exceptions import FeeValidationException
from domain.fees.policy import (
    ATHLETE_FLAT_CENTS_MAX,
    ATHLETE_PERCENT_MAX,
    PLATFORM_PERCENT_MAX,
    AthleteFeeConfig,
    CommissionPolicy,
    LegacyFeePolicy,
    clamp,
)

# The processor refuses destination transfers below this amount.
MINIMUM_PAYOUT_CENTS = 50
MAX_FEE_RATIO = Decimal("0.5")


def round_half_up(value: Decimal | int | float) -> int:
    """Round to whole cents, halves away from zero."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount_cents: int, percent: float) -> int:
    return round_half_up(Decimal(amount_cents) * Decimal(str(percent)) / Decimal(100))


def percent_basis_points(percent: float) -> int:
    """Commission percentage clamped to [0, 30], in hundredths of a percent."""
    return round_half_up(Decimal(str(clamp(float(percent), 0.0, PLATFORM_PERCENT_MAX))) * 100)


def _require_positive(amount_cents: int, field_name: str) -> None:
    if amount_cents <= 0:
        raise FeeValidationException(
            f"Amount must be greater than 0: {amount_cents}",
            field=field_name,
            details={field_name: amount_cents},
        )


@dataclass(frozen=True)
class FeeBreakdown:
    total_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    fee_percent: float
    fixed_fee_cents: int = 0


@dataclass(frozen=True)
class AthleteFeeLineItem:
    name: str
    amount_cents: int


@dataclass(frozen=True)
class CheckoutQuote:
    """Everything the athlete is charged and how it is split."""

    subtotal_cents: int
    platform_fee_cents: int
    coach_amount_cents: int
    platform_fee_percent: float
    athlete_fee_items: List[AthleteFeeLineItem] = field(default_factory=list)

    @property
    def athlete_fee_cents(self) -> int:
        return sum(item.amount_cents for item in self.athlete_fee_items)

    @property
    def total_charge_cents(self) -> int:
        return self.subtotal_cents + self.athlete_fee_cents


def platform_cut_cents(subtotal_cents: int, platform_pct: float) -> int:
    """Platform commission on a subtotal, percentage clamped to [0, 30]."""
    _require_positive(subtotal_cents, "subtotal_cents")
    pct = clamp(float(platform_pct), 0.0, PLATFORM_PERCENT_MAX)
    return percent_of(subtotal_cents, pct)


def commission_breakdown(subtotal_cents: int, platform_pct: float) -> FeeBreakdown:
    platform_fee = platform_cut_cents(subtotal_cents, platform_pct)
    return FeeBreakdown(
        total_cents=subtotal_cents,
        platform_fee_cents=platform_fee,
        coach_amount_cents=subtotal_cents - platform_fee,
        fee_percent=clamp(float(platform_pct), 0.0, PLATFORM_PERCENT_MAX),
    )


def application_fee(amount_cents: int, policy: LegacyFeePolicy) -> int:
    """
    Fixed-policy application fee.

    percentage + fixed fee, floored at the minimum fee and capped at
    ``amount - 1`` so the coach always nets at least one cent.
    """
    _require_positive(amount_cents, "amount_cents")
    fee = percent_of(amount_cents, max(policy.platform_fee_percent, 0.0)) + policy.fixed_fee_cents
    fee = max(fee, policy.minimum_fee_cents)
    return min(fee, amount_cents - 1)


def fee_breakdown(amount_cents: int, policy: LegacyFeePolicy) -> FeeBreakdown:
    platform_fee = application_fee(amount_cents, policy)
    return FeeBreakdown(
        total_cents=amount_cents,
        platform_fee_cents=platform_fee,
        coach_amount_cents=amount_cents - platform_fee,
        fee_percent=policy.platform_fee_percent,
        fixed_fee_cents=policy.fixed_fee_cents,
    )


def athlete_fee_line_items(config: AthleteFeeConfig, subtotal_cents: int) -> List[AthleteFeeLineItem]:
    """
    Service fee line items charged to the athlete on top of the subtotal.

    Percent and flat amounts are clamped independently; items that come out
    to zero are omitted, so the result has zero, one or two entries.
    """
    items: List[AthleteFeeLineItem] = []
    percent = clamp(float(config.percent), 0.0, ATHLETE_PERCENT_MAX)
    flat_cents = int(clamp(int(config.flat_cents), 0, ATHLETE_FLAT_CENTS_MAX))

    percent_amount = percent_of(max(subtotal_cents, 0), percent)
    if percent_amount > 0:
        items.append(AthleteFeeLineItem(name=f"Service fee ({percent:g}%)", amount_cents=percent_amount))
    if flat_cents > 0:
        items.append(AthleteFeeLineItem(name="Service fee", amount_cents=flat_cents))
    return items


def validate_fee_amount(
    amount_cents: int,
    fee_cents: int,
    *,
    minimum_booking_amount_cents: int,
    minimum_payout_cents: int = MINIMUM_PAYOUT_CENTS,
) -> bool:
    if amount_cents < minimum_booking_amount_cents:
        return False
    if fee_cents < 0:
        return False
    if Decimal(fee_cents) > Decimal(amount_cents) * MAX_FEE_RATIO:
        return False
    if amount_cents - fee_cents < minimum_payout_cents:
        return False
    return True


def checkout_quote(subtotal_cents: int, policy: CommissionPolicy) -> CheckoutQuote:
    platform_fee = platform_cut_cents(subtotal_cents, policy.platform_fee_percent)
    return CheckoutQuote(
        subtotal_cents=subtotal_cents,
        platform_fee_cents=platform_fee,
        coach_amount_cents=subtotal_cents - platform_fee,
        platform_fee_percent=policy.platform_fee_percent,
        athlete_fee_items=athlete_fee_line_items(policy.athlete_fee_config(), subtotal_cents),
    )


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}${cents // 100}.{cents % 100:02d}"


def describe_breakdown(breakdown: FeeBreakdown) -> dict[str, str]:
    """Human-readable breakdown for receipts and admin screens."""
    description = f"{breakdown.fee_percent:.1f}% platform fee"
    if breakdown.fixed_fee_cents:
        description = f"{breakdown.fee_percent:.1f}% + {format_cents(breakdown.fixed_fee_cents)} platform fee"
    return {
        "total": format_cents(breakdown.total_cents),
        "platform_fee": format_cents(breakdown.platform_fee_cents),
        "coach_receives": format_cents(breakdown.coach_amount_cents),
        "fee_description": description,
    }
