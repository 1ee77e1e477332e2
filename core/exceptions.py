"""
全局异常处理器

Every error leaves the service in the unified envelope. The status code is
derived from the business code, so services raise domain exceptions and never
pick HTTP statuses themselves. Processor-side failures that Stripe should
redeliver (recoverable errors, storage outages) answer 503 with Retry-After.
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette import status as http_status

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode

from .response import Response, error_response


# seconds a client (or the processor) should wait before redelivering
RETRY_AFTER_SECONDS = 5


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(code=BusinessCode.UNAUTHORIZED, message=message, error_type="Unauthorized")


class ForbiddenException(BusinessException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(code=BusinessCode.FORBIDDEN, message=message, error_type="Forbidden")


_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.CONFIGURATION_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
    # processor
    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PROVIDER_RECOVERABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.TIMEOUT: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.RATE_LIMITED: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.SIGNATURE_ERROR: http_status.HTTP_401_UNAUTHORIZED,
    # checkout
    PaymentCode.FEE_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.PAYEE_ACCOUNT_NOT_READY: http_status.HTTP_409_CONFLICT,
    # ledger
    PaymentCode.SETTLEMENT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.PAYOUT_NOT_RETRYABLE: http_status.HTTP_409_CONFLICT,
    PaymentCode.PAYOUT_RETRY_LIMIT_EXCEEDED: http_status.HTTP_409_CONFLICT,
    PaymentCode.LEGACY_RECORD_NOT_RETRYABLE: http_status.HTTP_409_CONFLICT,
}

_CODE_BY_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    405: BusinessCode.PARAM_ERROR,
    409: BusinessCode.CONFLICT,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。"""
    return _STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def _render(status_code: int, body: Response, headers: Optional[dict] = None) -> JSONResponse:
    if status_code == http_status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {**(headers or {}), "Retry-After": str(RETRY_AFTER_SECONDS)}
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        log = logger.error if status_code >= 500 and status_code != 503 else logger.info
        log(
            "business_exception",
            request_id=request_id,
            path=request.url.path,
            code=int(exc.code),
            error_type=exc.error_type,
            status_code=status_code,
            error=exc.message,
        )
        return _render(
            status_code,
            error_response(
                code=exc.code,
                message=exc.message,
                error_type=exc.error_type,
                details=exc.details,
                field=exc.field,
                request_id=request_id,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """参数校验失败：报告第一个出错字段，完整列表放在 details"""
        errors = exc.errors()
        first = errors[0] if errors else {}
        return _render(
            http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_response(
                code=BusinessCode.PARAM_VALIDATION_ERROR,
                message=f"Validation failed: {first.get('msg', 'unknown')}",
                error_type="ValidationError",
                details={"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in errors]},
                field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
                request_id=_request_id(request),
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _render(
            exc.status_code,
            error_response(
                code=_CODE_BY_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
                message=str(exc.detail),
                error_type="HTTPError",
                details={"status_code": exc.status_code},
                request_id=_request_id(request),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        """数据库异常：返回 503，让支付渠道重投 webhook"""
        request_id = _request_id(request)
        logger.error("database_error", request_id=request_id, path=request.url.path, error=str(exc), exc_info=True)
        return _render(
            http_status.HTTP_503_SERVICE_UNAVAILABLE,
            error_response(
                code=BusinessCode.DATABASE_ERROR,
                message="Storage temporarily unavailable",
                error_type="DatabaseError",
                request_id=request_id,
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, path=request.url.path, error=str(exc), exc_info=True)
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        return _render(
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_response(
                code=BusinessCode.SYSTEM_ERROR,
                message="Internal server error",
                error_type="SystemError",
                details=details,
                request_id=request_id,
            ),
        )
