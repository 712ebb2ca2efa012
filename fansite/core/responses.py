"""
Response envelope shared by every endpoint.

Success: {"success": true, "data": ..., "code"?, "message"?, "timestamp"}
Error:   {"success": false, "error": ..., "code": ..., "timestamp", ...context}

A response never carries both "data" and "error".
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fansite.core.config import settings
from fansite.core.database import isoformat_utc, utcnow
from fansite.core.result import Ok, Result

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class ApiError(HTTPException):
    """
    HTTPException carrying an envelope error code.

    Raised from FastAPI dependencies (body parsing, authentication) where a
    return value cannot short-circuit the request.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.details = details or {}


def timestamp() -> str:
    return isoformat_utc(utcnow())


def success_response(
    data: Any = None,
    status_code: int = status.HTTP_200_OK,
    code: Optional[str] = None,
    message: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": True, "data": data}
    if code:
        body["code"] = code
    if message:
        body["message"] = message
    body["timestamp"] = timestamp()
    return JSONResponse(status_code=status_code, content=body, headers=dict(headers or {}))


def error_response(
    code: str,
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    headers: Optional[Mapping[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": message, "code": code}
    for key, value in (details or {}).items():
        # Context fields may not shadow the envelope
        if key not in ("success", "error", "code", "data", "timestamp"):
            body[key] = value
    body["timestamp"] = timestamp()

    response_headers = {"X-Error-Code": code}
    response_headers.update(headers or {})
    return JSONResponse(status_code=status_code, content=body, headers=response_headers)


def render_result(result: Result, headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
    """Serialize an Ok/Err into the response envelope"""
    if isinstance(result, Ok):
        return success_response(
            data=result.value,
            status_code=result.status_code,
            code=result.code,
            message=result.message,
            headers=headers,
        )
    return error_response(
        code=result.code,
        message=result.message,
        status_code=result.status_code,
        headers=headers,
        details=result.details,
    )


def method_not_allowed(allowed: str) -> JSONResponse:
    return error_response(
        code="METHOD_NOT_ALLOWED",
        message="Method not allowed",
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        headers={"Allow": allowed},
    )


# ---------------------------------------------------------------------------
# Exception handlers (registered in main.py)
# ---------------------------------------------------------------------------

_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "validation_error",
    status.HTTP_401_UNAUTHORIZED: "security_unauthorized",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_429_TOO_MANY_REQUESTS: "rate_limit_exceeded",
}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        code=exc.code,
        message=str(exc.detail),
        status_code=exc.status_code,
        headers=exc.headers,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "server_internal" if exc.status_code >= 500 else "request_error")
    return error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def validation_details(errors: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic errors into [{"field", "message"}]"""
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query")),
            "message": err.get("msg", ""),
        }
        for err in errors
    ]


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        code="validation_schema",
        message="Invalid request",
        status_code=status.HTTP_400_BAD_REQUEST,
        details={"details": validation_details(exc.errors())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    details = {"detail": str(exc)} if settings.expose_error_details else None
    return error_response(
        code="server_internal",
        message="Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        details=details,
    )
