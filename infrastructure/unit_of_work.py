"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.booking_directory import SQLAlchemyBookingDirectory
from infrastructure.repositories.settlement_repository import SQLAlchemySettlementRepository
from infrastructure.repositories.webhook_event_repository import SQLAlchemyWebhookEventRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    One session per unit of work.

    Writers begin a transaction on entry; the settlement upsert and the
    webhook event row commit together. Read-only units never commit and end
    with a rollback so no read transaction outlives the block.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session

    def _bind(self, session: Optional[AsyncSession]) -> None:
        self.settlements = SQLAlchemySettlementRepository(session) if session else None  # type: ignore[assignment]
        self.webhook_events = SQLAlchemyWebhookEventRepository(session) if session else None  # type: ignore[assignment]
        self.bookings = SQLAlchemyBookingDirectory(session) if session else None  # type: ignore[assignment]

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._bind(self.session)
        if not self._readonly and not self.session.in_transaction():
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
            if self._readonly:
                await self.rollback()
        finally:
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None
            self._bind(None)

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
