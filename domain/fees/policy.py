"""
Fee policy value objects.

CommissionPolicy is owned by the settings collaborator and only read here.
LegacyFeePolicy is the environment-configured fixed policy.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PLATFORM_PERCENT_MAX = 30.0
ATHLETE_PERCENT_MAX = 30.0
ATHLETE_FLAT_CENTS_MAX = 2000


class AthleteFeeType(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FLAT = "flat"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class CommissionPolicy:
    """Platform commission plus the optional athlete service fee."""

    platform_fee_percent: float = 10.0
    athlete_fee_type: AthleteFeeType = AthleteFeeType.NONE
    athlete_fee_percent: float = 0.0
    athlete_fee_flat_cents: int = 0

    @classmethod
    def build(
        cls,
        *,
        platform_fee_percent: float,
        athlete_fee_type: str | AthleteFeeType = AthleteFeeType.NONE,
        athlete_fee_percent: float = 0.0,
        athlete_fee_flat_cents: int = 0,
    ) -> "CommissionPolicy":
        """Build a policy from loosely typed settings, clamping every field to its range."""
        try:
            fee_type = AthleteFeeType(athlete_fee_type)
        except ValueError:
            fee_type = AthleteFeeType.NONE
        return cls(
            platform_fee_percent=clamp(float(platform_fee_percent), 0.0, PLATFORM_PERCENT_MAX),
            athlete_fee_type=fee_type,
            athlete_fee_percent=clamp(float(athlete_fee_percent), 0.0, ATHLETE_PERCENT_MAX),
            athlete_fee_flat_cents=int(clamp(int(athlete_fee_flat_cents), 0, ATHLETE_FLAT_CENTS_MAX)),
        )

    def athlete_fee_config(self) -> "AthleteFeeConfig":
        if self.athlete_fee_type is AthleteFeeType.PERCENTAGE:
            return AthleteFeeConfig(percent=self.athlete_fee_percent, flat_cents=0)
        if self.athlete_fee_type is AthleteFeeType.FLAT:
            return AthleteFeeConfig(percent=0.0, flat_cents=self.athlete_fee_flat_cents)
        return AthleteFeeConfig()


DEFAULT_COMMISSION_POLICY = CommissionPolicy(
    platform_fee_percent=10.0,
    athlete_fee_type=AthleteFeeType.NONE,
)


@dataclass(frozen=True)
class AthleteFeeConfig:
    percent: float = 0.0
    flat_cents: int = 0


@dataclass(frozen=True)
class LegacyFeePolicy:
    """
    Fixed platform fee policy configured from the environment.

    - percentage of the amount (10 means 10%)
    - fixed fee added on top of the percentage
    - minimum fee floor
    - minimum booking amount accepted at checkout
    """

    platform_fee_percent: float = 10.0
    fixed_fee_cents: int = 30
    minimum_fee_cents: int = 50
    minimum_booking_amount_cents: int = 1000
