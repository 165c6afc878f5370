from __future__ import annotations

import logging

from fastapi import Request

from keywarden.core.config import get_settings
from keywarden.core.errors import Internal, RateLimited
from keywarden.services.lockout import LockoutGuard


logger = logging.getLogger(__name__)


def client_identifier(request: Request) -> str:
    # Proxy headers are client-controlled unless a trusted proxy overwrites them.
    if get_settings().trust_proxy_headers:
        return _proxied_client(request) or _peer_address(request)
    return _peer_address(request)


def _peer_address(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _proxied_client(request: Request) -> str | None:
    # The first X-Forwarded-For hop is the original client.
    connecting_ip = request.headers.get("CF-Connecting-IP")
    if connecting_ip:
        return connecting_ip.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return None


async def enforce_api_rate_limit(*, request: Request, guard: LockoutGuard, user_id: str) -> None:
    # Enforce the per (user, client) window after auth resolution.
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return

    identity = f"{user_id}:{client_identifier(request)}"
    try:
        decision = await guard.consume_api_request(identity)
    except Exception as exc:  # noqa: BLE001 - guard against backend connectivity failures
        if settings.rl_fail_mode.lower() == "open":
            logger.warning("rate_limit_degraded path=%s error=%s", request.url.path, type(exc).__name__)
            return
        raise Internal("Rate limiter unavailable") from exc

    if decision.allowed:
        return
    logger.info(
        "security.rate_limited user_id=%s path=%s retry_after=%s",
        user_id,
        request.url.path,
        decision.retry_after_seconds,
    )
    raise RateLimited(
        "Rate limit exceeded",
        retry_after_seconds=decision.retry_after_seconds or guard.window_seconds,
    )
