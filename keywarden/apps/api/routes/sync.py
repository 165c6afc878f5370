from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from keywarden.apps.api.deps import Principal, get_current_principal, get_store
from keywarden.persistence.store import RecordStore
from keywarden.services.sync import build_sync_payload


router = APIRouter(tags=["sync"])


@router.get("/api/sync")
async def sync(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    return await build_sync_payload(store, principal.user_id)
