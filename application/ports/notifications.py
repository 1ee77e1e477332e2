"""
Outbound notification and audit ports.

Both are fire-and-forget from the ledger's point of view: callers log delivery
failures and carry on.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from domain.settlement.events import SettlementEvent


@runtime_checkable
class SettlementNotifier(Protocol):
    async def publish(self, event: SettlementEvent) -> None: ...


@runtime_checkable
class AuditSink(Protocol):
    async def record(self, *, actor: str, action: str, target_type: str, target_id: str, details: dict[str, Any]) -> None: ...
