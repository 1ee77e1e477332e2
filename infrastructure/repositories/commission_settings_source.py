"""
Commission policy read from the admin_settings table.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.fees.policy import DEFAULT_COMMISSION_POLICY, CommissionPolicy
from infrastructure.models.marketplace import AdminSettingModel

SETTING_KEYS = (
    "platform_fee_percentage",
    "athlete_service_fee_type",
    "athlete_service_fee_percentage",
    "athlete_service_fee_flat_cents",
)


def setting_value(value: Any) -> Any:
    """
    Unwrap one admin_settings value.

    The column is jsonb in production, so a value may arrive as a JSON document
    ('"12"', '"percentage"', '12') or already decoded by the driver. Bare text
    that is not valid JSON is taken as is.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return value.strip()
    if isinstance(value, str):
        return value.strip()
    return value


def policy_from_settings(raw: Dict[str, Any]) -> CommissionPolicy:
    """Build a clamped policy from raw setting values; missing keys keep their defaults."""
    default = DEFAULT_COMMISSION_POLICY
    raw = {key: setting_value(value) for key, value in raw.items()}
    fee_type = raw.get("athlete_service_fee_type")
    percent = raw.get("athlete_service_fee_percentage")
    flat = raw.get("athlete_service_fee_flat_cents")
    if isinstance(fee_type, str):
        fee_type = fee_type.lower()
    if not fee_type:
        # older installs store only the amounts; infer the type from them
        if flat and float(flat) > 0:
            fee_type = "flat"
        elif percent and float(percent) > 0:
            fee_type = "percentage"
        else:
            fee_type = "none"
    return CommissionPolicy.build(
        platform_fee_percent=float(raw.get("platform_fee_percentage") or default.platform_fee_percent),
        athlete_fee_type=fee_type,
        athlete_fee_percent=float(percent or 0),
        athlete_fee_flat_cents=int(float(flat or 0)),
    )


class SQLAlchemyCommissionSettingsSource:
    """Opens its own short session per fetch; the resolver outlives any request."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def fetch_policy(self) -> CommissionPolicy:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AdminSettingModel.setting_key, AdminSettingModel.setting_value)
                .where(AdminSettingModel.setting_key.in_(SETTING_KEYS))
            )
            raw = {key: value for key, value in result.all()}
        return policy_from_settings(raw)
