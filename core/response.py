"""
统一响应格式定义

``{"code", "message", "data", "error"}`` for every endpoint, including the
webhook acknowledgement Stripe reads back.
"""
from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def _utc_iso(self, ts: datetime) -> str:
        # always UTC with a Z suffix
        ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    """统一响应模型"""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PageData(BaseModel, Generic[T]):
    """分页数据：admin list endpoints page with skip/limit, no total count."""
    items: List[T]
    skip: int
    limit: int
    has_more: bool


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data)


def page_response(items: Sequence[Any], *, skip: int, limit: int, message: str = "Success") -> Response:
    """
    分页响应

    ``has_more`` is a hint only: a full page may be followed by an empty one.
    """
    return success_response(
        data=PageData[Any](items=list(items), skip=skip, limit=limit, has_more=len(items) >= limit),
        message=message,
    )


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Response:
    """
    创建错误响应

    ``details`` carries machine-readable context such as the processor name
    and code for processor failures, or the refused settlement reference.
    """
    return Response(
        code=code,
        message=message,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
