from __future__ import annotations

from fastapi import Depends, Header, Request
from pydantic import BaseModel

from keywarden.apps.api.rate_limit import enforce_api_rate_limit
from keywarden.persistence.kv import get_backend
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.tokens import TokenService
from keywarden.services.lockout import LockoutGuard


class Principal(BaseModel):
    # Identity resolved from a verified access token.
    user_id: str
    email: str
    name: str


async def get_store() -> RecordStore:
    # One store wrapper per request over the shared backend connection.
    backend = await get_backend()
    return RecordStore(backend)


async def get_lockout_guard(store: RecordStore = Depends(get_store)) -> LockoutGuard:
    return LockoutGuard(store.backend, prefix=store.prefix)


async def get_token_service(store: RecordStore = Depends(get_store)) -> TokenService:
    return TokenService(store)


async def get_current_principal(
    request: Request,
    authorization: str | None = Header(default=None),
    tokens: TokenService = Depends(get_token_service),
    guard: LockoutGuard = Depends(get_lockout_guard),
) -> Principal:
    # Token verification first, then API throttling, then the handler.
    claims = await tokens.verify_access_token(authorization)
    await enforce_api_rate_limit(request=request, guard=guard, user_id=claims.sub)
    request.state.user_id = claims.sub
    return Principal(user_id=claims.sub, email=claims.email, name=claims.name)
