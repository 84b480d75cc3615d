"""
JSON error bodies of the proxy.

Errors leave the service as FastAPI's `{"detail": ErrorResponse}`, e.g.
{"detail": {"error": "bad_gateway", "message": "...", "code": 502, "details": {...}}}
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

from .upstream import UpstreamStreamError, UpstreamTimeoutError


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable reason")
    code: int = Field(..., description="HTTP status of the response")
    details: Optional[Dict[str, Any]] = None


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    body = ErrorResponse(error=error, message=message, code=status_code, details=details)
    return HTTPException(status_code=status_code, detail=body.model_dump())


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, details=details
    )


def bad_gateway(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_502_BAD_GATEWAY, error="bad_gateway", message=message, details=details
    )


def upstream_failure(exc: UpstreamStreamError) -> HTTPException:
    """
    Map a failed Yuanbao stream to an HTTP error.

    An idle timeout is a 504; every other failure (cannot open, HTTP error
    status, broken stream) is a 502 carrying the upstream status if known.
    """
    if isinstance(exc, UpstreamTimeoutError):
        return http_error(
            status.HTTP_504_GATEWAY_TIMEOUT,
            error="gateway_timeout",
            message=exc.message,
        )
    details = None
    if exc.status_code is not None:
        details = {"upstream_status": exc.status_code}
    return bad_gateway(exc.message, details=details)


__all__ = [
    "ErrorResponse",
    "bad_gateway",
    "bad_request",
    "http_error",
    "upstream_failure",
]
