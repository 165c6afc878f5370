from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Form
from pydantic import BaseModel

from keywarden.apps.api.deps import get_lockout_guard, get_store, get_token_service
from keywarden.core.errors import BadRequest
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.login import password_grant, prelogin, refresh_grant
from keywarden.services.auth.tokens import TokenService
from keywarden.services.lockout import LockoutGuard


router = APIRouter(tags=["identity"])


class PreloginRequest(BaseModel):
    email: str | None = None


@router.post("/identity/connect/token")
async def token(
    grant_type: str = Form(...),
    username: str | None = Form(default=None),
    password: str | None = Form(default=None),
    refresh_token: str | None = Form(default=None),
    store: RecordStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
    guard: LockoutGuard = Depends(get_lockout_guard),
) -> dict[str, Any]:
    # Client metadata fields (scope, client_id, device*) are accepted and ignored.
    if grant_type == "password":
        return await password_grant(
            store=store,
            tokens=tokens,
            guard=guard,
            username=username,
            password_hash=password,
        )
    if grant_type == "refresh_token":
        return await refresh_grant(store=store, tokens=tokens, refresh_token=refresh_token)
    raise BadRequest(f"Unsupported grant type: {grant_type}", error_code="unsupported_grant_type")


@router.post("/identity/accounts/prelogin")
@router.post("/api/accounts/prelogin")
async def accounts_prelogin(
    payload: PreloginRequest,
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    return await prelogin(store, payload.email)
