from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keywarden.apps.api.response import error_response, get_request_id, rate_limit_response
from keywarden.core.errors import Internal, Locked, RateLimited, VaultError


logger = logging.getLogger(__name__)

_DEFAULT_MESSAGES: dict[int, str] = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    429: "Too many requests",
    500: "Internal server error",
}


def _message_from_detail(detail: Any, status_code: int) -> str:
    # Accept both plain-string and {"message": ...} HTTPException details.
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    if isinstance(detail, str) and detail:
        return detail
    return _DEFAULT_MESSAGES.get(status_code, "Request failed")


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimited):
        # Throttled API calls keep the short body clients already parse.
        headers["Retry-After"] = str(exc.retry_after_seconds)
        headers["X-RateLimit-Remaining"] = "0"
        return JSONResponse(
            content=rate_limit_response(exc.retry_after_seconds),
            status_code=exc.status_code,
            headers=headers,
        )
    if isinstance(exc, Locked):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    if isinstance(exc, Internal):
        logger.error(
            "request_failed request_id=%s path=%s error=%s",
            get_request_id(request),
            request.url.path,
            exc.message,
        )
    payload = error_response(exc.message, error=exc.error_code)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers or None)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = _message_from_detail(exc.detail, exc.status_code)
    return JSONResponse(
        content=error_response(message),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Unknown routes and wrong methods get the same envelope as handler errors.
    message = _message_from_detail(exc.detail, exc.status_code)
    if exc.status_code == 404:
        message = "Not found"
    return JSONResponse(
        content=error_response(message),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Clients expect 400 for malformed bodies; report the first offending field.
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        reason = errors[0].get("msg", "invalid value")
        message = f"Invalid request: {location} {reason}".strip() if location else f"Invalid request: {reason}"
    return JSONResponse(content=error_response(message), status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces to clients; keep them in the server log.
    logger.exception(
        "request_unhandled_error request_id=%s path=%s",
        get_request_id(request),
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(content=error_response("Internal server error"), status_code=500)
