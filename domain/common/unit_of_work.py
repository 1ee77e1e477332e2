"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.settlement.repository import (
    BookingDirectory,
    SettlementRepository,
    WebhookEventRepository,
)


class AbstractUnitOfWork(ABC):
    """Transaction boundary for the settlement ledger.

    A settlement write and the webhook event record that caused it commit
    or roll back together.
    """

    settlements: SettlementRepository
    webhook_events: WebhookEventRepository
    bookings: BookingDirectory

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.settlements = None  # type: ignore[assignment]
        self.webhook_events = None  # type: ignore[assignment]
        self.bookings = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
