from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field

from keywarden.core.config import get_settings


class ErrorBody(BaseModel):
    # Nested error model parsed by the official clients.
    Message: str
    Object: str = Field(default="error")


class ErrorEnvelope(BaseModel):
    error: str
    error_description: str
    ErrorModel: ErrorBody


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(message: str, *, error: str | None = None) -> dict[str, Any]:
    # ``error`` defaults to the message itself, as the clients display either field.
    envelope = ErrorEnvelope(
        error=error or message,
        error_description=message,
        ErrorModel=ErrorBody(Message=message),
    )
    return envelope.model_dump()


def rate_limit_response(retry_after_seconds: int) -> dict[str, Any]:
    return {
        "error": "Too many requests",
        "error_description": f"Rate limit exceeded. Try again in {retry_after_seconds} seconds.",
    }


def public_base_url(request: Request) -> str:
    # Prefer the configured public URL so links survive reverse proxies.
    configured = get_settings().public_base_url
    if configured:
        return configured.rstrip("/")
    return str(request.base_url).rstrip("/")
