from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from keywarden.apps.api.deps import Principal, get_current_principal, get_store, get_token_service
from keywarden.apps.api.response import public_base_url
from keywarden.core.config import get_settings
from keywarden.core.errors import BadRequest
from keywarden.persistence.repos import attachments as attachments_repo
from keywarden.persistence.store import RecordStore
from keywarden.services import attachments
from keywarden.services.auth.tokens import TokenService
from keywarden.services.views import attachment_response, cipher_response


router = APIRouter(tags=["attachments"])

# Direct upload to this server, as opposed to a presigned cloud URL.
_FILE_UPLOAD_TYPE_DIRECT = 0
_UPLOAD_CHUNK_BYTES = 1024 * 1024


class AttachmentCreateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    key: str | None = None
    file_name: str | None = None
    file_size: int | None = None


async def _read_limited(upload: UploadFile, limit: int) -> bytes:
    # Stop reading as soon as the upload passes the size cap.
    if upload.size is not None and upload.size > limit:
        raise BadRequest("Attachment exceeds the maximum size")
    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await upload.read(_UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        received += len(chunk)
        if received > limit:
            raise BadRequest("Attachment exceeds the maximum size")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/api/ciphers/{cipher_id}/attachment/v2")
@router.post("/api/ciphers/{cipher_id}/attachment")
async def create_attachment(
    cipher_id: str,
    payload: AttachmentCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher, attachment = await attachments.create_attachment(
        store,
        principal.user_id,
        cipher_id,
        file_name=payload.file_name,
        key=payload.key,
        file_size=payload.file_size,
    )
    upload_url = f"{public_base_url(request)}/api/ciphers/{cipher.id}/attachment/{attachment.id}"
    cipher_attachments = await attachments_repo.list_by_cipher(store, cipher.id)
    return {
        "attachmentId": attachment.id,
        "url": upload_url,
        "fileUploadType": _FILE_UPLOAD_TYPE_DIRECT,
        "cipherResponse": cipher_response(cipher, cipher_attachments),
        "object": "attachment-fileUpload",
    }


@router.post("/api/ciphers/{cipher_id}/attachment/{attachment_id}")
async def upload_attachment(
    cipher_id: str,
    attachment_id: str,
    data: UploadFile = File(...),
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> Response:
    content = await _read_limited(data, get_settings().attachment_max_bytes)
    await attachments.upload_attachment(store, principal.user_id, cipher_id, attachment_id, content)
    return Response(status_code=200)


@router.get("/api/ciphers/{cipher_id}/attachment/{attachment_id}")
async def get_attachment(
    cipher_id: str,
    attachment_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
) -> dict[str, Any]:
    attachment = await attachments.get_owned_attachment(
        store, principal.user_id, cipher_id, attachment_id
    )
    url = attachments.download_url(
        tokens,
        base_url=public_base_url(request),
        user_id=principal.user_id,
        attachment=attachment,
    )
    return attachment_response(attachment, url=url)


@router.delete("/api/ciphers/{cipher_id}/attachment/{attachment_id}")
@router.post("/api/ciphers/{cipher_id}/attachment/{attachment_id}/delete")
async def delete_attachment(
    cipher_id: str,
    attachment_id: str,
    principal: Principal = Depends(get_current_principal),
    store: RecordStore = Depends(get_store),
) -> dict[str, Any]:
    cipher = await attachments.delete_attachment(store, principal.user_id, cipher_id, attachment_id)
    remaining = await attachments_repo.list_by_cipher(store, cipher.id)
    return {"cipher": cipher_response(cipher, remaining)}


@router.get("/api/attachments/{cipher_id}/{attachment_id}")
async def download_attachment(
    cipher_id: str,
    attachment_id: str,
    token: str | None = Query(default=None),
    store: RecordStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
) -> Response:
    # Authenticated by the signed query token, not the Authorization header.
    _attachment, content = await attachments.read_public_download(
        store,
        tokens,
        cipher_id=cipher_id,
        attachment_id=attachment_id,
        token=token,
    )
    return Response(content=content, media_type="application/octet-stream")
