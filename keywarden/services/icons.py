from __future__ import annotations

from dataclasses import dataclass
import logging
import re

import httpx

from keywarden.core.config import get_settings


logger = logging.getLogger(__name__)

# Plain DNS hostnames only; no ports, paths, userinfo or IP literals with brackets.
_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)(\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)+$",
    re.IGNORECASE,
)
_USER_AGENT = "keywarden-icons/1.0"


@dataclass(frozen=True)
class IconResult:
    content: bytes
    content_type: str


def is_valid_hostname(hostname: str) -> bool:
    return bool(_HOSTNAME_RE.match(hostname))


async def fetch_icon(hostname: str, *, client: httpx.AsyncClient | None = None) -> IconResult | None:
    """Fetch ``hostname``'s icon from the upstream icon service.

    Returns None for invalid hostnames and for any upstream failure; the caller answers
    with an empty response so clients fall back to their default icon.
    """
    if not is_valid_hostname(hostname):
        return None
    settings = get_settings()
    url = f"{settings.icon_service_url.rstrip('/')}/{hostname.lower()}/icon.png"
    timeout = settings.ext_call_timeout_ms / 1000.0
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
                response = await owned.get(url, headers={"User-Agent": _USER_AGENT})
        else:
            response = await client.get(url, headers={"User-Agent": _USER_AGENT})
    except httpx.HTTPError as exc:
        logger.warning("icon_fetch_failed host=%s error=%s", hostname, type(exc).__name__)
        return None
    if response.status_code != 200:
        logger.debug("icon_fetch_miss host=%s status=%s", hostname, response.status_code)
        return None
    return IconResult(
        content=response.content,
        content_type=response.headers.get("Content-Type", "image/png"),
    )
