"""
Checkout orchestration.

Quotes the fee split from the active commission policy, refuses amounts the
processor could not settle, confirms the coach can receive transfers, then
opens a hosted checkout session that carries the split as a destination
transfer plus the correlation metadata reconciliation relies on.
"""
from __future__ import annotations

import hashlib
from typing import Callable

from application.dto import CheckoutQuoteDTO, CheckoutResultDTO
from application.dtos.payments import CheckoutRequest, CheckoutSessionRequest, LineItem
from application.ports.payment_gateway import PaymentProcessor
from application.services.fee_policy_service import FeePolicyResolver
from core.config import FeeSettings
from core.logging_config import get_logger
from core.settings import CheckoutSettings
from domain.common.exceptions import FeeValidationException, PayeeAccountNotReadyException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.fees.calculator import CheckoutQuote, FeeBreakdown, checkout_quote, fee_breakdown, validate_fee_amount
from domain.settlement.entity import PaymentStatus, PayoutStatus, SettlementPatch, transfer_group_for


logger = get_logger(__name__)


def checkout_idempotency_key(req: CheckoutRequest, quote: CheckoutQuote) -> str:
    # Stable, reproducible key derived from business identifiers (no timestamp)
    correlation = req.booking_ref or req.booking_request_ref
    base = (
        f"checkout|{correlation}|{req.coach_ref}|{quote.subtotal_cents}|{quote.platform_fee_cents}"
        f"|{quote.athlete_fee_cents}|{req.currency}"
    )
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def settlement_metadata(req: CheckoutRequest, quote: CheckoutQuote) -> dict[str, str]:
    """Correlation and fee split stamped on the session and its payment intent."""
    metadata = {
        "coach_ref": req.coach_ref,
        "subtotal_cents": str(quote.subtotal_cents),
        "platform_fee_cents": str(quote.platform_fee_cents),
        "athlete_fee_cents": str(quote.athlete_fee_cents),
    }
    if req.booking_ref:
        metadata["booking_ref"] = req.booking_ref
    if req.booking_request_ref:
        metadata["booking_request_ref"] = req.booking_request_ref
    if req.athlete_ref:
        metadata["athlete_ref"] = req.athlete_ref
    return metadata


class CheckoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        processor: PaymentProcessor,
        policy_resolver: FeePolicyResolver,
        *,
        fees: FeeSettings,
        urls: CheckoutSettings,
    ) -> None:
        self._uow_factory = uow_factory
        self.processor = processor
        self.policy_resolver = policy_resolver
        self.fees = fees
        self.urls = urls

    async def quote(self, price_cents: int) -> CheckoutQuote:
        policy = await self.policy_resolver.get_active_policy()
        return checkout_quote(price_cents, policy)

    def fixed_breakdown(self, amount_cents: int) -> FeeBreakdown:
        """Split under the fixed policy from FEES__* settings."""
        return fee_breakdown(amount_cents, self.fees.legacy_policy())

    def _validate(self, quote: CheckoutQuote) -> None:
        ok = validate_fee_amount(
            quote.subtotal_cents,
            quote.platform_fee_cents,
            minimum_booking_amount_cents=self.fees.minimum_booking_amount_cents,
            minimum_payout_cents=self.fees.minimum_payout_cents,
        )
        if not ok:
            raise FeeValidationException(
                "Amount or fee outside the accepted range",
                field="price_cents",
                details={
                    "price_cents": quote.subtotal_cents,
                    "platform_fee_cents": quote.platform_fee_cents,
                    "minimum_booking_amount_cents": self.fees.minimum_booking_amount_cents,
                },
            )

    async def _payee_account(self, coach_ref: str) -> str:
        async with self._uow_factory(readonly=True) as uow:
            account_id = await uow.bookings.get_payee_account(coach_ref)
        if not account_id:
            raise PayeeAccountNotReadyException(coach_ref, "no connected payout account")
        capabilities = await self.processor.get_account_capabilities(account_id)
        reason = capabilities.not_ready_reason()
        if reason:
            raise PayeeAccountNotReadyException(coach_ref, reason)
        return account_id

    async def create_checkout(self, req: CheckoutRequest) -> CheckoutResultDTO:
        quote = await self.quote(req.price_cents)
        self._validate(quote)
        account_id = await self._payee_account(req.coach_ref)

        metadata = settlement_metadata(req, quote)
        correlation_ref = req.booking_ref or req.booking_request_ref
        line_items = [LineItem(name=req.product_name, amount_cents=quote.subtotal_cents, description=req.description)]
        line_items += [LineItem(name=item.name, amount_cents=item.amount_cents) for item in quote.athlete_fee_items]

        session = await self.processor.create_checkout_session(
            CheckoutSessionRequest(
                line_items=line_items,
                currency=req.currency,
                # the platform keeps its commission plus the athlete service fees
                application_fee_cents=quote.platform_fee_cents + quote.athlete_fee_cents,
                destination_account=account_id,
                success_url=self.urls.success_url,
                cancel_url=self.urls.cancel_url,
                metadata=metadata,
                customer_email=req.customer_email,
                idempotency_key=checkout_idempotency_key(req, quote),
                transfer_group=transfer_group_for(correlation_ref) if correlation_ref else None,
            )
        )
        logger.info(
            "checkout_session_opened",
            session_id=session.session_id,
            processor_payment_ref=session.payment_ref,
            booking_ref=req.booking_ref,
            booking_request_ref=req.booking_request_ref,
            subtotal_cents=quote.subtotal_cents,
            platform_fee_cents=quote.platform_fee_cents,
        )

        if session.payment_ref:
            async with self._uow_factory() as uow:
                await uow.settlements.upsert_settlement(
                    session.payment_ref,
                    SettlementPatch(
                        booking_ref=req.booking_ref,
                        booking_request_ref=req.booking_request_ref,
                        coach_ref=req.coach_ref,
                        athlete_ref=req.athlete_ref,
                        total_amount_cents=quote.subtotal_cents,
                        platform_fee_cents=quote.platform_fee_cents,
                        coach_amount_cents=quote.coach_amount_cents,
                        athlete_fee_cents=quote.athlete_fee_cents,
                        payment_status=PaymentStatus.PENDING,
                        payout_status=PayoutStatus.UNKNOWN,
                        currency=req.currency,
                        description=req.description,
                        customer_email=req.customer_email,
                    ),
                )

        return CheckoutResultDTO(
            session_id=session.session_id,
            url=session.url,
            processor_payment_ref=session.payment_ref,
            quote=CheckoutQuoteDTO.from_quote(quote),
        )
