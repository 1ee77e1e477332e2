"""
Default notification and audit adapters.

Both write structured log lines; a deployment that delivers email or stores
audit rows swaps them out at the composition root.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from core.logging_config import get_logger
from domain.settlement.events import SettlementEvent


logger = get_logger("settlements.notifications")
audit_logger = get_logger("settlements.audit")


class LoggingSettlementNotifier:
    async def publish(self, event: SettlementEvent) -> None:
        payload = asdict(event)
        payload["occurred_at"] = event.occurred_at.isoformat()
        logger.info("settlement_event", event_name=type(event).__name__, **payload)


class LoggingAuditSink:
    async def record(
        self,
        *,
        actor: str,
        action: str,
        target_type: str,
        target_id: str,
        details: dict[str, Any],
    ) -> None:
        audit_logger.info(
            "admin_action",
            actor=actor,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
        )
