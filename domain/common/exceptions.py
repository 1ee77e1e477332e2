"""Business exceptions shared by the domain, application and infrastructure layers.

The core layer only maps these to HTTP responses; nothing here may depend on core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class FeeValidationException(BusinessException):
    """Amount or fee rejected before any outbound payment call."""

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=PaymentCode.FEE_VALIDATION_ERROR,
            message=message,
            error_type="FeeValidationError",
            details=details,
            field=field,
        )


class ConfigurationException(BusinessException):
    def __init__(self, message: str, *, setting: str | None = None):
        super().__init__(
            code=BusinessCode.CONFIGURATION_ERROR,
            message=message,
            error_type="ConfigurationError",
            details={"setting": setting} if setting else None,
        )


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(PaymentProviderError):
    """Timeouts, rate limits and connection failures: safe to redeliver or retry later."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(message, provider=provider, provider_code=provider_code, details=details)
        self.code = PaymentCode.PROVIDER_RECOVERABLE
        self.error_type = "PaymentRecoverableError"


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )


class PayeeAccountNotReadyException(BusinessException):
    def __init__(self, coach_ref: str, reason: str):
        super().__init__(
            code=PaymentCode.PAYEE_ACCOUNT_NOT_READY,
            message=f"Coach payment setup incomplete: {reason}",
            error_type="PayeeAccountNotReady",
            details={"coach_ref": coach_ref, "reason": reason},
        )


class SettlementNotFoundException(BusinessException):
    def __init__(self, ref: str):
        super().__init__(
            code=PaymentCode.SETTLEMENT_NOT_FOUND,
            message=f"Settlement record not found: {ref}",
            error_type="SettlementNotFound",
            details={"processor_payment_ref": ref},
        )


class PayoutNotRetryableException(BusinessException):
    def __init__(self, ref: str, payout_status: str):
        super().__init__(
            code=PaymentCode.PAYOUT_NOT_RETRYABLE,
            message=f"Payout for {ref} is {payout_status}; only failed payouts can be retried",
            error_type="PayoutNotRetryable",
            details={"processor_payment_ref": ref, "payout_status": payout_status},
        )


class PayoutRetryLimitExceededException(BusinessException):
    def __init__(self, ref: str, retry_count: int, limit: int):
        super().__init__(
            code=PaymentCode.PAYOUT_RETRY_LIMIT_EXCEEDED,
            message=f"Payout for {ref} already retried {retry_count} times; escalate manually",
            error_type="PayoutRetryLimitExceeded",
            details={"processor_payment_ref": ref, "retry_count": retry_count, "limit": limit},
        )


class LegacyRecordNotRetryableException(BusinessException):
    def __init__(self, ref: str):
        super().__init__(
            code=PaymentCode.LEGACY_RECORD_NOT_RETRYABLE,
            message=f"{ref} is a legacy ledger view and cannot be retried",
            error_type="LegacyRecordNotRetryable",
            details={"ref": ref},
        )


class ReconciliationMismatch(BusinessException):
    """A processor event that cannot be tied to any booking or settlement."""

    def __init__(self, event_id: str, event_type: str, reason: str):
        super().__init__(
            code=PaymentCode.RECONCILIATION_MISMATCH,
            message=f"Unable to reconcile {event_type} {event_id}: {reason}",
            error_type="ReconciliationMismatch",
            details={"event_id": event_id, "event_type": event_type, "reason": reason},
        )
