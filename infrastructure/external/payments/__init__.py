"""
Factory for the payment processor client.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentProcessor
from core.settings import PaymentSettings


def get_payment_processor(config: Optional[PaymentSettings] = None) -> PaymentProcessor:
    from .stripe_client import StripeClient
    return StripeClient(config)
