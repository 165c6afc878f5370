from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from keywarden.apps.api.deps import get_store
from keywarden.persistence.store import RecordStore


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    backend: str


@router.get("/health", response_model=HealthResponse)
async def health(store: RecordStore = Depends(get_store)) -> JSONResponse:
    # Report degraded instead of failing so load balancers can tell the two apart.
    try:
        reachable = await store.backend.ping()
    except Exception as exc:  # noqa: BLE001 - health must answer even when the backend is down
        logger.warning("health_backend_unreachable error=%s", type(exc).__name__)
        reachable = False
    payload = HealthResponse(status="ok" if reachable else "degraded", backend="up" if reachable else "down")
    return JSONResponse(content=payload.model_dump(), status_code=200 if reachable else 503)
