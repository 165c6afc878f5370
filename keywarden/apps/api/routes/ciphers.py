from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from keywarden.apps.api.deps import Principal, get_current_principal, get_store
from keywarden.core.errors import BadRequest
from keywarden.persistence.repos import attachments as attachments_repo
from keywarden.persistence.store import RecordStore
from keywarden.services import ciphers
from keywarden.services.imports import import_vault, parse_import_request
from keywarden.services.views import cipher_response, list_response


router = APIRouter(prefix="/api/ciphers", tags=["ciphers"])


class MoveRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ids: list[str] | None = None
    folder_id: str | None = None


async def _cipher_with_attachments(store: RecordStore, cipher) -> dict[str, Any]:
    attachments = await attachments_repo.list_by_cipher(store, cipher.id)
    return cipher_response(cipher, attachments)


@router.get("")
async def list_ciphers(
    deleted: bool = Query(default=False),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    # Trashed ciphers are hidden unless ?deleted=true.
    entries = await ciphers.list_ciphers(store, principal.user_id, include_deleted=deleted)
    return list_response(cipher_response(cipher, attachments) for cipher, attachments in entries)


@router.post("")
@router.post("/create")
async def create_cipher(
    body: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    payload = ciphers.parse_cipher_payload(body)
    cipher = await ciphers.create_cipher(store, principal.user_id, payload)
    return cipher_response(cipher)


@router.post("/import")
async def import_ciphers(
    body: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    request = parse_import_request(body)
    await import_vault(store, principal.user_id, request)
    return Response(status_code=200)


@router.post("/move")
@router.put("/move")
async def move_ciphers(
    payload: MoveRequest,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    if payload.ids is None:
        raise BadRequest("ids array is required")
    await ciphers.move_ciphers(store, principal.user_id, payload.ids, payload.folder_id)
    return Response(status_code=204)


@router.get("/{cipher_id}")
@router.get("/{cipher_id}/details")
async def get_cipher(
    cipher_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher = await ciphers.get_owned_cipher(store, principal.user_id, cipher_id)
    return await _cipher_with_attachments(store, cipher)


@router.post("/{cipher_id}/share")
async def share_cipher(
    cipher_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    # Single-user vault: sharing is a no-op that echoes the cipher.
    cipher = await ciphers.get_owned_cipher(store, principal.user_id, cipher_id)
    return await _cipher_with_attachments(store, cipher)


@router.put("/{cipher_id}")
@router.post("/{cipher_id}")
async def update_cipher(
    cipher_id: str,
    body: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    payload = ciphers.parse_cipher_payload(body)
    cipher = await ciphers.update_cipher(store, principal.user_id, cipher_id, payload)
    return await _cipher_with_attachments(store, cipher)


@router.delete("/{cipher_id}")
@router.put("/{cipher_id}/delete")
async def soft_delete_cipher(
    cipher_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher = await ciphers.soft_delete_cipher(store, principal.user_id, cipher_id)
    return await _cipher_with_attachments(store, cipher)


@router.delete("/{cipher_id}/delete")
async def delete_cipher_permanently(
    cipher_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    await ciphers.delete_cipher_permanently(store, principal.user_id, cipher_id)
    return Response(status_code=204)


@router.put("/{cipher_id}/restore")
async def restore_cipher(
    cipher_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher = await ciphers.restore_cipher(store, principal.user_id, cipher_id)
    return await _cipher_with_attachments(store, cipher)


@router.put("/{cipher_id}/partial")
@router.post("/{cipher_id}/partial")
async def partial_update_cipher(
    cipher_id: str,
    payload: ciphers.PartialCipherPayload,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher = await ciphers.partial_update_cipher(store, principal.user_id, cipher_id, payload)
    return await _cipher_with_attachments(store, cipher)
