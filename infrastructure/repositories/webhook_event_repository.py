"""
Webhook event log: event-id deduplication and the unresolved-event queue.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.settlement.repository import (
    WebhookEventRecord,
    WebhookEventRepository,
    WebhookEventStatus,
)
from infrastructure.models.settlement import WebhookEventModel


logger = get_logger(__name__)


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookEventRecord:
        return WebhookEventRecord(
            id=model.id,
            processor_event_id=model.processor_event_id,
            event_type=model.event_type,
            status=WebhookEventStatus(model.status),
            processor_payment_ref=model.processor_payment_ref,
            payload=model.payload,
            reason=model.reason,
            created_at=model.created_at,
        )

    async def exists(self, processor_event_id: str) -> bool:
        result = await self.session.execute(
            select(WebhookEventModel.id).where(WebhookEventModel.processor_event_id == processor_event_id)
        )
        return result.first() is not None

    async def record(self, event: WebhookEventRecord) -> bool:
        values = dict(
            processor_event_id=event.processor_event_id,
            event_type=event.event_type,
            status=WebhookEventStatus(event.status).value,
            processor_payment_ref=event.processor_payment_ref,
            payload=event.payload,
            reason=event.reason,
            created_at=event.created_at or datetime.now(timezone.utc),
        )
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(WebhookEventModel.__table__).values(**values).on_conflict_do_nothing(
            index_elements=[WebhookEventModel.__table__.c.processor_event_id]
        )
        result = await self.session.execute(stmt)
        inserted = bool(result.rowcount)
        if not inserted:
            logger.info("webhook_event_already_recorded", processor_event_id=event.processor_event_id)
        return inserted

    async def list_by_status(
        self,
        status: WebhookEventStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WebhookEventRecord]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(WebhookEventModel.status == WebhookEventStatus(status).value)
            .order_by(WebhookEventModel.created_at.desc(), WebhookEventModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
