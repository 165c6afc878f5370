from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from keywarden.apps.api.deps import Principal, get_current_principal, get_store
from keywarden.apps.api.response import public_base_url
from keywarden.core.config import get_settings
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.icons import fetch_icon
from keywarden.services.views import domains_response, list_response


router = APIRouter(tags=["meta"])

_ICON_CACHE_CONTROL = "public, max-age=604800"


@router.get("/config")
@router.get("/api/config")
async def server_config(request: Request) -> dict[str, Any]:
    # Clients read service URLs from here when pointed at a self-hosted base URL.
    settings = get_settings()
    origin = public_base_url(request)
    return {
        "version": settings.server_version,
        "gitHash": settings.app_name,
        "server": None,
        "environment": {
            "vault": origin,
            "api": f"{origin}/api",
            "identity": f"{origin}/identity",
            "notifications": f"{origin}/notifications",
            "sso": "",
        },
        "featureStates": {"duo-redirect": True},
        "object": "config",
    }


@router.get("/api/version")
async def version() -> str:
    return get_settings().server_version


@router.get("/setup/status")
async def setup_status(store: RecordStore = Depends(get_store)) -> dict[str, Any]:
    return {"registered": await users_repo.is_registered(store)}


@router.get("/api/devices/knowndevice")
@router.get("/api/devices/knowndevice/{rest:path}")
async def known_device() -> Response:
    # Plain-text boolean; clients skip new-device verification on "true".
    return Response(content="true", media_type="text/plain")


@router.api_route("/notifications/{rest:path}", methods=["GET", "POST"])
async def notifications_hub() -> Response:
    return Response(status_code=200)


@router.get("/favicon.ico")
async def favicon() -> Response:
    return Response(status_code=204)


@router.get("/icons/{hostname}/icon.png")
async def icon(hostname: str) -> Response:
    result = await fetch_icon(hostname)
    if result is None:
        return Response(status_code=204)
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={"Cache-Control": _ICON_CACHE_CONTROL},
    )


@router.api_route("/api/auth-requests", methods=["GET", "POST"])
@router.api_route("/api/auth-requests/{rest:path}", methods=["GET", "POST"])
@router.get("/api/collections")
@router.get("/api/collections/{rest:path}")
@router.get("/api/organizations")
@router.get("/api/organizations/{rest:path}")
@router.get("/api/sends")
@router.get("/api/sends/{rest:path}")
@router.get("/api/policies")
@router.get("/api/policies/{rest:path}")
@router.get("/api/devices")
async def empty_list(principal: Principal = Depends(get_current_principal)) -> dict[str, Any]:
    # Organizations, sends and passwordless login are not supported; report nothing.
    return list_response([])


@router.api_route("/api/settings/domains", methods=["GET", "PUT", "POST"])
async def settings_domains(principal: Principal = Depends(get_current_principal)) -> dict[str, Any]:
    return domains_response()
