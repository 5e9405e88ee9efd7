from __future__ import annotations

from typing import Any, Dict, Generic, Optional, TypeVar

from flask import g, has_request_context
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ApiError(BaseModel):
    """Standard error payload for API responses."""

    code: str = Field(default="error")
    message: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")


class ApiMeta(BaseModel):
    """Metadata attached to responses; `request_id` echoes ``X-Request-ID``."""

    request_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ApiResponse(BaseModel, Generic[T]):
    """Standard envelope for all API responses."""

    ok: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)

    model_config = ConfigDict(extra="ignore")


def _request_meta() -> ApiMeta:
    if has_request_context():
        return ApiMeta(request_id=g.get("request_id"))
    return ApiMeta()


def ok(data: T = None, *, meta: Optional[ApiMeta] = None) -> Dict[str, Any]:
    """Create a success envelope as a JSON-serializable dict."""

    payload = ApiResponse[T](ok=True, data=data, error=None, meta=meta or _request_meta())
    return payload.model_dump(mode="json")


def fail(
    message: str,
    *,
    code: str = "error",
    details: Optional[Dict[str, Any]] = None,
    meta: Optional[ApiMeta] = None,
) -> Dict[str, Any]:
    """Create an error envelope as a JSON-serializable dict."""

    payload = ApiResponse[None](
        ok=False,
        data=None,
        error=ApiError(code=code, message=message, details=details),
        meta=meta or _request_meta(),
    )
    return payload.model_dump(mode="json")
