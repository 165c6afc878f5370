from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from keywarden.apps.api.deps import Principal, get_current_principal, get_store, get_token_service
from keywarden.persistence.store import RecordStore, to_epoch_ms
from keywarden.services import accounts
from keywarden.services.auth.tokens import TokenService
from keywarden.services.views import profile_response


router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.post("/register")
async def register(
    payload: accounts.RegisterRequest,
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    await accounts.register(store, payload)
    return {"success": True}


@router.get("/profile")
async def get_profile(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    user = await accounts.get_user(store, principal.user_id)
    return profile_response(user)


@router.put("/profile")
@router.post("/profile", include_in_schema=False)
async def update_profile(
    payload: accounts.ProfileUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    user = await accounts.update_profile(store, principal.user_id, payload)
    return profile_response(user)


@router.post("/keys")
async def set_keys(
    payload: accounts.KeysRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    user = await accounts.set_keys(store, principal.user_id, payload)
    return profile_response(user)


@router.get("/revision-date")
async def revision_date(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> JSONResponse:
    # Bare epoch-millisecond number, not an object.
    stamp = await store.get_revision_date(principal.user_id)
    return JSONResponse(content=to_epoch_ms(stamp))


@router.post("/verify-password")
async def verify_password(
    payload: accounts.PasswordRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    await accounts.verify_password(store, principal.user_id, payload)
    return Response(status_code=200)


@router.post("/password")
async def change_password(
    payload: accounts.PasswordChangeRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
) -> Response:
    await accounts.change_password(store, tokens, principal.user_id, payload)
    return Response(status_code=200)


@router.post("/security-stamp")
async def security_stamp(
    payload: accounts.PasswordRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
) -> Response:
    await accounts.rotate_security_stamp(store, tokens, principal.user_id, payload)
    return Response(status_code=200)
