"""
Base processor client implementing shared concerns: timeouts, retry, logging.

The processor SDK is synchronous; every call runs in a worker thread under a
total timeout so a slow processor can never hold a request open. Only
read-only calls are retried, money-moving calls go out exactly once per
idempotency key.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from domain.common.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)


logger = get_logger(__name__)


class BaseProcessorClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def total_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    def _classify(self, exc: Exception) -> PaymentProviderError:
        """Map an SDK exception to the recoverable / non-recoverable split."""
        return PaymentProviderError(str(exc) or exc.__class__.__name__, provider=self.provider)

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self.total_timeout)
        except asyncio.TimeoutError as exc:
            self._log("processor_call_timeout", operation=operation, timeout=self.total_timeout)
            raise PaymentRecoverableError(
                f"{operation} timed out after {self.total_timeout}s",
                provider=self.provider,
                provider_code="timeout",
            ) from exc
        except PaymentProviderError:
            raise
        except Exception as exc:
            error = self._classify(exc)
            self._log(
                "processor_call_failed",
                operation=operation,
                error_type=error.error_type,
                error=error.message,
            )
            raise error from exc

    async def _read(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Read-only call: transient failures are retried with backoff."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                return await self._call(operation, fn, *args, **kwargs)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
