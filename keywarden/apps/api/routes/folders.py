from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from keywarden.apps.api.deps import Principal, get_current_principal, get_store
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.store import RecordStore
from keywarden.services import folders
from keywarden.services.views import folder_response, list_response


router = APIRouter(prefix="/api/folders", tags=["folders"])


class FolderRequest(BaseModel):
    name: str | None = None


@router.get("")
async def list_folders(
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    items = await folders_repo.list_by_user(store, principal.user_id)
    return list_response(folder_response(folder) for folder in items)


@router.post("")
async def create_folder(
    payload: FolderRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    folder = await folders.create_folder(store, principal.user_id, payload.name)
    return folder_response(folder)


@router.get("/{folder_id}")
async def get_folder(
    folder_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    folder = await folders.get_owned_folder(store, principal.user_id, folder_id)
    return folder_response(folder)


@router.put("/{folder_id}")
@router.post("/{folder_id}", include_in_schema=False)
async def update_folder(
    folder_id: str,
    payload: FolderRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    folder = await folders.rename_folder(store, principal.user_id, folder_id, payload.name)
    return folder_response(folder)


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    await folders.delete_folder(store, principal.user_id, folder_id)
    return Response(status_code=204)
