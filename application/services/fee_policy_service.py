"""
Commission policy resolution.

The resolver reads the policy from the settings collaborator through an
explicit cache object. Callers that miss the cache at the same time may
all refetch; the TTL bounds how often that happens.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from application.ports.settings_store import CommissionSettingsSource
from core.logging_config import get_logger
from domain.fees.policy import DEFAULT_COMMISSION_POLICY, CommissionPolicy


logger = get_logger(__name__)


class PolicyCache:
    """Single-value TTL cache with an injectable monotonic clock."""

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[CommissionPolicy] = None
        self._fetched_at: Optional[float] = None

    @property
    def fetched_at(self) -> Optional[float]:
        return self._fetched_at

    def get_fresh(self) -> Optional[CommissionPolicy]:
        if self._value is None or self._fetched_at is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl_seconds:
            return None
        return self._value

    def last_known(self) -> Optional[CommissionPolicy]:
        return self._value

    def store(self, policy: CommissionPolicy) -> None:
        self._value = policy
        self._fetched_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._fetched_at = None


class FeePolicyResolver:
    def __init__(
        self,
        source: CommissionSettingsSource,
        cache: Optional[PolicyCache] = None,
        *,
        fetch_timeout: float = 2.0,
        default_policy: CommissionPolicy = DEFAULT_COMMISSION_POLICY,
    ) -> None:
        self.source = source
        self.cache = cache or PolicyCache()
        self.fetch_timeout = fetch_timeout
        self.default_policy = default_policy

    async def get_active_policy(self) -> CommissionPolicy:
        """
        Current commission policy.

        Fails open: on a fetch error or timeout the last known-good policy is
        returned, or the default when nothing was ever loaded. Checkout is
        never blocked on the settings store.
        """
        cached = self.cache.get_fresh()
        if cached is not None:
            return cached

        try:
            policy = await asyncio.wait_for(self.source.fetch_policy(), timeout=self.fetch_timeout)
        except Exception as exc:
            fallback = self.cache.last_known()
            logger.warning(
                "commission_policy_degraded",
                error=str(exc) or exc.__class__.__name__,
                using="last_known" if fallback is not None else "default",
            )
            return fallback if fallback is not None else self.default_policy

        self.cache.store(policy)
        logger.debug(
            "commission_policy_refreshed",
            platform_fee_percent=policy.platform_fee_percent,
            athlete_fee_type=policy.athlete_fee_type.value,
        )
        return policy

    def invalidate(self) -> None:
        self.cache.invalidate()
