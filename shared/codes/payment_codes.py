"""
Payment specific codes and processor event mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004

    # Fee / checkout (601xx)
    FEE_VALIDATION_ERROR = 60100
    PAYEE_ACCOUNT_NOT_READY = 60101

    # Settlement ledger (602xx)
    SETTLEMENT_NOT_FOUND = 60200
    PAYOUT_NOT_RETRYABLE = 60201
    PAYOUT_RETRY_LIMIT_EXCEEDED = 60202
    LEGACY_RECORD_NOT_RETRYABLE = 60203
    RECONCILIATION_MISMATCH = 60204


# Stripe event type -> (status family, internal target status).
# Anything not listed here is acknowledged and ignored.
STRIPE_EVENT_TARGETS = {
    "checkout.session.completed": ("payment", "succeeded"),
    "checkout.session.expired": ("payment", "canceled"),
    "payment_intent.succeeded": ("payment", "succeeded"),
    "payment_intent.payment_failed": ("payment", "failed"),
    "payment_intent.canceled": ("payment", "canceled"),
    "charge.refunded": ("payment", "refunded"),
    "transfer.created": ("payout", "in_transit"),
    "transfer.paid": ("payout", "paid"),
    "transfer.failed": ("payout", "failed"),
    "transfer.reversed": ("payout", "canceled"),
}
