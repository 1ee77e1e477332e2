"""
Payments API routes.

Stripe webhook ingestion, checkout session creation and the fee preview.
Keep this thin: no SDK details here.
"""
from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_checkout_service, get_reconciliation_service
from application.dto import CheckoutQuoteDTO, FeeBreakdownDTO
from application.dtos.payments import CheckoutRequest
from application.services.checkout_service import CheckoutService
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from core.response import success_response


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/webhooks/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    # the signature covers the exact bytes, so read the body raw
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    ack = await service.handle_webhook(headers, raw_body)
    return success_response(data=ack.model_dump(), message=f"Webhook {ack.outcome}")


@router.post("/checkout", summary="Create checkout session")
async def create_checkout(
    payload: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.create_checkout(payload)
    return success_response(data=result.model_dump(), message="Checkout session created")


@router.get("/fee-breakdown", summary="Fee preview")
async def fee_breakdown(
    price_cents: int = Query(..., gt=0),
    policy: Literal["commission", "fixed"] = Query(default="commission"),
    service: CheckoutService = Depends(get_checkout_service),
):
    if policy == "fixed":
        data = FeeBreakdownDTO.from_breakdown(service.fixed_breakdown(price_cents))
    else:
        data = CheckoutQuoteDTO.from_quote(await service.quote(price_cents))
    return success_response(data=data.model_dump())
