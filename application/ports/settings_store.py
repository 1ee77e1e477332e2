"""
Commission settings port.

The settings collaborator owns the commission values; the resolver only reads them.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.fees.policy import CommissionPolicy


@runtime_checkable
class CommissionSettingsSource(Protocol):
    async def fetch_policy(self) -> CommissionPolicy:
        """Load the current policy. May raise on any storage failure."""
        ...
