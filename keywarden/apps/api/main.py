from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from keywarden.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
    vault_error_handler,
)
from keywarden.apps.api.routes.accounts import router as accounts_router
from keywarden.apps.api.routes.attachments import router as attachments_router
from keywarden.apps.api.routes.ciphers import router as ciphers_router
from keywarden.apps.api.routes.folders import router as folders_router
from keywarden.apps.api.routes.health import router as health_router
from keywarden.apps.api.routes.identity import router as identity_router
from keywarden.apps.api.routes.meta import router as meta_router
from keywarden.apps.api.routes.sync import router as sync_router
from keywarden.core.config import get_settings
from keywarden.core.errors import VaultError
from keywarden.core.logging import configure_logging
from keywarden.persistence.kv import close_backend
from keywarden.services.auth.tokens import require_signing_secret


logger = logging.getLogger(__name__)

_CORS_HEADERS = [
    "Content-Type",
    "Authorization",
    "Accept",
    "Device-Type",
    "Bitwarden-Client-Name",
    "Bitwarden-Client-Version",
]


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Release the shared Redis pool on shutdown.
    await close_backend()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    # Refuse to start without a signing secret rather than failing on first login.
    require_signing_secret(settings.jwt_secret)
    app = FastAPI(title="keywarden", version=settings.server_version, lifespan=_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=_CORS_HEADERS,
        max_age=86400,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed request_id=%s method=%s path=%s status=%s latency_ms=%.1f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(VaultError)
    async def _vault_error_handler(request: Request, exc: VaultError):
        return await vault_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    # Public bootstrap and identity endpoints.
    app.include_router(health_router)
    app.include_router(meta_router)
    app.include_router(identity_router)
    # Authenticated vault endpoints.
    app.include_router(accounts_router)
    app.include_router(sync_router)
    app.include_router(attachments_router)
    app.include_router(ciphers_router)
    app.include_router(folders_router)

    logger.info("app_created backend=%s", settings.kv_backend)
    return app
