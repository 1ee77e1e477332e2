"""
Admin settlement routes: ledger, payout retries and the active commission policy.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_ledger_service,
    get_payout_retry_service,
    get_policy_resolver,
    get_reconciliation_service,
    require_admin,
)
from application.dto import CommissionPolicyDTO, UnresolvedEventDTO
from application.services.fee_policy_service import FeePolicyResolver
from application.services.ledger_service import LedgerService
from application.services.payout_retry_service import PayoutRetryService
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.response import page_response, success_response


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


def _page(limit: int | None) -> int:
    return min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)


@router.get("/settlements", summary="Settlement ledger")
async def list_settlements(
    skip: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    include_legacy: bool = Query(default=True),
    service: LedgerService = Depends(get_ledger_service),
):
    ledger = await service.list_ledger(skip=skip, limit=_page(limit), include_legacy=include_legacy)
    return success_response(data=ledger.model_dump())


@router.get("/settlements/retry-candidates", summary="Failed payouts")
async def list_retry_candidates(
    skip: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    service: PayoutRetryService = Depends(get_payout_retry_service),
):
    page = _page(limit)
    items = await service.list_retry_candidates(skip=skip, limit=page)
    return page_response([i.model_dump() for i in items], skip=skip, limit=page)


@router.post("/settlements/{ref}/retry-payout", summary="Retry a failed payout")
async def retry_payout(
    ref: str,
    actor: str = Depends(require_admin),
    service: PayoutRetryService = Depends(get_payout_retry_service),
):
    result = await service.retry_payout(ref, actor)
    return success_response(data=result.model_dump(), message="Payout retry issued")


@router.get("/commission-policy", summary="Active commission policy")
async def get_commission_policy(resolver: FeePolicyResolver = Depends(get_policy_resolver)):
    policy = await resolver.get_active_policy()
    return success_response(data=CommissionPolicyDTO.from_policy(policy).model_dump())


@router.get("/webhook-events/unresolved", summary="Unresolved webhook events")
async def list_unresolved_events(
    skip: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    page = _page(limit)
    records = await service.list_unresolved(skip=skip, limit=page)
    return page_response(
        [
            UnresolvedEventDTO(
                processor_event_id=r.processor_event_id,
                event_type=r.event_type,
                processor_payment_ref=r.processor_payment_ref,
                reason=r.reason,
                payload=r.payload,
                created_at=r.created_at,
            ).model_dump()
            for r in records
        ],
        skip=skip,
        limit=page,
    )
