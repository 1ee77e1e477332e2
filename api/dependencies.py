"""
API依赖项 - 服务装配与管理员校验

Routes depend on these factories only; tests swap them through
``app.dependency_overrides``.
"""
import hmac
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header

from application.ports.notifications import AuditSink, SettlementNotifier
from application.ports.payment_gateway import PaymentProcessor
from application.services.checkout_service import CheckoutService
from application.services.fee_policy_service import FeePolicyResolver, PolicyCache
from application.services.ledger_service import LedgerService
from application.services.payout_retry_service import PayoutRetryService
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from core.settings import payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.adapters.notifications import LoggingAuditSink, LoggingSettlementNotifier
from infrastructure.database import AsyncSessionLocal
from infrastructure.external.payments import get_payment_processor
from infrastructure.repositories.commission_settings_source import SQLAlchemyCommissionSettingsSource
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


@lru_cache
def get_processor() -> PaymentProcessor:
    # built on first use so a missing key surfaces as a ConfigurationException response
    return get_payment_processor(payment_settings)


@lru_cache
def get_policy_resolver() -> FeePolicyResolver:
    # process-wide: the policy cache has to outlive a single request
    return FeePolicyResolver(
        SQLAlchemyCommissionSettingsSource(AsyncSessionLocal),
        PolicyCache(ttl_seconds=settings.fees.policy_ttl_seconds),
        fetch_timeout=settings.fees.policy_fetch_timeout_seconds,
    )


def get_notifier() -> SettlementNotifier:
    return LoggingSettlementNotifier()


def get_audit_sink() -> AuditSink:
    return LoggingAuditSink()


async def get_checkout_service(
    uow_factory=Depends(get_uow_factory),
    processor: PaymentProcessor = Depends(get_processor),
    resolver: FeePolicyResolver = Depends(get_policy_resolver),
) -> CheckoutService:
    return CheckoutService(
        uow_factory,
        processor,
        resolver,
        fees=settings.fees,
        urls=payment_settings.checkout,
    )


async def get_reconciliation_service(
    uow_factory=Depends(get_uow_factory),
    processor: PaymentProcessor = Depends(get_processor),
    resolver: FeePolicyResolver = Depends(get_policy_resolver),
    notifier: SettlementNotifier = Depends(get_notifier),
) -> ReconciliationService:
    return ReconciliationService(uow_factory, processor, resolver, notifier)


async def get_payout_retry_service(
    uow_factory=Depends(get_uow_factory),
    processor: PaymentProcessor = Depends(get_processor),
    notifier: SettlementNotifier = Depends(get_notifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> PayoutRetryService:
    return PayoutRetryService(
        uow_factory,
        processor,
        notifier,
        audit,
        max_retries=settings.reconciliation.max_payout_retries,
    )


async def get_ledger_service(uow_factory=Depends(get_uow_factory)) -> LedgerService:
    return LedgerService(
        uow_factory,
        legacy_platform_fee_percent=settings.fees.legacy_platform_fee_percent,
    )


async def require_admin(
    x_admin_token: Optional[str] = Header(default=None),
    x_admin_actor: Optional[str] = Header(default=None),
) -> str:
    """
    校验管理员令牌，返回操作人标识

    The shared token only gates the routes; identity comes from the upstream
    auth layer through X-Admin-Actor and is recorded in the audit trail.
    """
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        raise ForbiddenException("Admin API is disabled")
    if not x_admin_token:
        raise UnauthorizedException("Missing admin token")
    if not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        raise ForbiddenException("Invalid admin token")
    return x_admin_actor or "admin"
