from __future__ import annotations

import logging
from pathlib import Path
import shutil

from keywarden.core.config import get_settings
from keywarden.core.errors import BadRequest, NotFound
from keywarden.domain.models import Attachment, Cipher, utc_now
from keywarden.persistence.repos import attachments as attachments_repo
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.tokens import DownloadGrant, TokenService


logger = logging.getLogger(__name__)

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def size_name(size: int) -> str:
    # Human-readable size shown by clients next to the file name.
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(_SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    value = round(value, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[exponent]}"


def _attachments_root() -> Path:
    return Path(get_settings().attachments_dir)


def blob_path(cipher_id: str, attachment_id: str) -> Path:
    # Ids come from path parameters; reject anything that could escape the root.
    for part in (cipher_id, attachment_id):
        if not part or "/" in part or "\\" in part or part in {".", ".."}:
            raise NotFound("Attachment not found")
    return _attachments_root() / cipher_id / attachment_id


def write_blob(cipher_id: str, attachment_id: str, data: bytes) -> Path:
    path = blob_path(cipher_id, attachment_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def read_blob(cipher_id: str, attachment_id: str) -> bytes:
    path = blob_path(cipher_id, attachment_id)
    if not path.is_file():
        raise NotFound("Attachment file not found")
    return path.read_bytes()


def delete_blob(cipher_id: str, attachment_id: str) -> None:
    path = blob_path(cipher_id, attachment_id)
    path.unlink(missing_ok=True)


def download_url(
    tokens: TokenService,
    *,
    base_url: str,
    user_id: str,
    attachment: Attachment,
) -> str:
    settings = get_settings()
    token = tokens.issue_download_token(
        DownloadGrant(user_id=user_id, cipher_id=attachment.cipher_id, attachment_id=attachment.id),
        ttl_seconds=settings.attachment_url_ttl_seconds,
    )
    return f"{base_url.rstrip('/')}/api/attachments/{attachment.cipher_id}/{attachment.id}?token={token}"


async def _owned_cipher(store: RecordStore, user_id: str, cipher_id: str) -> Cipher:
    cipher = await ciphers_repo.get_by_user_and_id(store, user_id, cipher_id)
    if cipher is None:
        raise NotFound("Cipher not found")
    return cipher


async def get_owned_attachment(
    store: RecordStore, user_id: str, cipher_id: str, attachment_id: str
) -> Attachment:
    await _owned_cipher(store, user_id, cipher_id)
    attachment = await attachments_repo.get_by_cipher_and_id(store, cipher_id, attachment_id)
    if attachment is None:
        raise NotFound("Attachment not found")
    return attachment


async def create_attachment(
    store: RecordStore,
    user_id: str,
    cipher_id: str,
    *,
    file_name: str | None,
    key: str | None,
    file_size: int | None,
) -> tuple[Cipher, Attachment]:
    """Register attachment metadata ahead of the blob upload."""
    cipher = await _owned_cipher(store, user_id, cipher_id)
    if not file_name:
        raise BadRequest("fileName is required")
    size = int(file_size or 0)
    if size < 0 or size > get_settings().attachment_max_bytes:
        raise BadRequest("Attachment size is out of range")
    attachment = Attachment(
        cipher_id=cipher.id,
        file_name=file_name,
        size=size,
        size_name=size_name(size),
        key=key,
    )
    await attachments_repo.save(store, attachment)
    cipher.updated_at = utc_now()
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    logger.info(
        "vault.attachment.created user_id=%s cipher_id=%s attachment_id=%s size=%d",
        user_id,
        cipher.id,
        attachment.id,
        size,
    )
    return cipher, attachment


async def upload_attachment(
    store: RecordStore,
    user_id: str,
    cipher_id: str,
    attachment_id: str,
    data: bytes,
) -> Attachment:
    attachment = await get_owned_attachment(store, user_id, cipher_id, attachment_id)
    if len(data) > get_settings().attachment_max_bytes:
        raise BadRequest("Attachment exceeds the maximum size")
    write_blob(cipher_id, attachment_id, data)
    # The uploaded size wins over the size announced at creation.
    if attachment.size != len(data):
        attachment.size = len(data)
        attachment.size_name = size_name(len(data))
        await attachments_repo.save(store, attachment)
    await store.touch_revision_date(user_id)
    return attachment


async def delete_attachment(
    store: RecordStore, user_id: str, cipher_id: str, attachment_id: str
) -> Cipher:
    attachment = await get_owned_attachment(store, user_id, cipher_id, attachment_id)
    await attachments_repo.delete(store, attachment)
    delete_blob(cipher_id, attachment_id)
    cipher = await _owned_cipher(store, user_id, cipher_id)
    cipher.updated_at = utc_now()
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    logger.info(
        "vault.attachment.deleted user_id=%s cipher_id=%s attachment_id=%s",
        user_id,
        cipher_id,
        attachment_id,
    )
    return cipher


async def delete_all_for_cipher(store: RecordStore, cipher_id: str) -> int:
    attachments = await attachments_repo.list_by_cipher(store, cipher_id)
    for attachment in attachments:
        await attachments_repo.delete(store, attachment)
    cipher_dir = _attachments_root() / cipher_id
    if cipher_dir.is_dir():
        shutil.rmtree(cipher_dir)
    return len(attachments)


async def read_public_download(
    store: RecordStore,
    tokens: TokenService,
    *,
    cipher_id: str,
    attachment_id: str,
    token: str | None,
) -> tuple[Attachment, bytes]:
    # The signed token stands in for the bearer header and must match the path.
    grant = tokens.verify_download_token(token)
    if grant.cipher_id != cipher_id or grant.attachment_id != attachment_id:
        raise NotFound("Attachment not found")
    attachment = await get_owned_attachment(store, grant.user_id, cipher_id, attachment_id)
    return attachment, read_blob(cipher_id, attachment_id)
