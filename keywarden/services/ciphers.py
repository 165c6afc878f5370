from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from keywarden.core.errors import BadRequest, NotFound
from keywarden.domain.models import Attachment, Cipher, CipherType, utc_now
from keywarden.persistence.repos import attachments as attachments_repo
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.store import RecordStore
from keywarden.services import attachments as attachments_service


logger = logging.getLogger(__name__)


class CipherPayload(BaseModel):
    # Unknown client fields are ignored; absent fields keep their stored value on update.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    type: int | None = None
    folder_id: str | None = None
    name: str | None = None
    notes: str | None = None
    favorite: bool | None = None
    login: dict[str, Any] | None = None
    card: dict[str, Any] | None = None
    identity: dict[str, Any] | None = None
    secure_note: dict[str, Any] | None = None
    fields: list[dict[str, Any]] | None = None
    password_history: list[dict[str, Any]] | None = None
    reprompt: int | None = None
    key: str | None = None


class PartialCipherPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    folder_id: str | None = None
    favorite: bool | None = None


# Fields copied verbatim from a payload onto the stored cipher.
_NULLABLE_FIELDS = (
    "folder_id",
    "notes",
    "login",
    "card",
    "identity",
    "secure_note",
    "fields",
    "password_history",
    "key",
)


def parse_cipher_payload(body: Any) -> CipherPayload:
    # Some clients wrap the cipher in a {"cipher": {...}} envelope.
    if isinstance(body, dict) and isinstance(body.get("cipher"), dict):
        body = body["cipher"]
    if not isinstance(body, dict):
        raise BadRequest("Invalid JSON")
    try:
        return CipherPayload.model_validate(body)
    except ValidationError as exc:
        raise BadRequest("Invalid cipher payload") from exc


async def _validate_folder(store: RecordStore, user_id: str, folder_id: str | None) -> str | None:
    # A folder reference must point at one of the caller's folders.
    if not folder_id:
        return None
    folder = await folders_repo.get_by_user_and_id(store, user_id, folder_id)
    if folder is None:
        raise BadRequest("Folder not found")
    return folder_id


async def get_owned_cipher(store: RecordStore, user_id: str, cipher_id: str) -> Cipher:
    cipher = await ciphers_repo.get_by_user_and_id(store, user_id, cipher_id)
    if cipher is None:
        raise NotFound("Cipher not found")
    return cipher


async def create_cipher(store: RecordStore, user_id: str, payload: CipherPayload) -> Cipher:
    if not payload.name:
        raise BadRequest("Name is required")
    folder_id = await _validate_folder(store, user_id, payload.folder_id)
    now = utc_now()
    cipher = Cipher(
        user_id=user_id,
        type=payload.type if payload.type is not None else CipherType.LOGIN,
        folder_id=folder_id,
        name=payload.name,
        notes=payload.notes or None,
        favorite=bool(payload.favorite),
        login=payload.login,
        card=payload.card,
        identity=payload.identity,
        secure_note=payload.secure_note,
        fields=payload.fields,
        password_history=payload.password_history,
        reprompt=payload.reprompt or 0,
        key=payload.key,
        created_at=now,
        updated_at=now,
    )
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    logger.info("vault.cipher.created user_id=%s cipher_id=%s", user_id, cipher.id)
    return cipher


async def update_cipher(
    store: RecordStore, user_id: str, cipher_id: str, payload: CipherPayload
) -> Cipher:
    cipher = await get_owned_cipher(store, user_id, cipher_id)
    provided = payload.model_fields_set
    if "folder_id" in provided:
        payload.folder_id = await _validate_folder(store, user_id, payload.folder_id)
    for field in _NULLABLE_FIELDS:
        if field in provided:
            setattr(cipher, field, getattr(payload, field))
    # Null for these means "unchanged" rather than "clear".
    if payload.type is not None:
        cipher.type = payload.type
    if payload.name is not None:
        cipher.name = payload.name
    if payload.favorite is not None:
        cipher.favorite = payload.favorite
    if payload.reprompt is not None:
        cipher.reprompt = payload.reprompt
    cipher.updated_at = utc_now()
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    return cipher


async def partial_update_cipher(
    store: RecordStore, user_id: str, cipher_id: str, payload: PartialCipherPayload
) -> Cipher:
    cipher = await get_owned_cipher(store, user_id, cipher_id)
    if "folder_id" in payload.model_fields_set:
        cipher.folder_id = await _validate_folder(store, user_id, payload.folder_id)
    if payload.favorite is not None:
        cipher.favorite = payload.favorite
    cipher.updated_at = utc_now()
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    return cipher


async def soft_delete_cipher(store: RecordStore, user_id: str, cipher_id: str) -> Cipher:
    cipher = await get_owned_cipher(store, user_id, cipher_id)
    now = utc_now()
    cipher.deleted_at = now
    cipher.updated_at = now
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    logger.info("vault.cipher.trashed user_id=%s cipher_id=%s", user_id, cipher_id)
    return cipher


async def restore_cipher(store: RecordStore, user_id: str, cipher_id: str) -> Cipher:
    cipher = await get_owned_cipher(store, user_id, cipher_id)
    cipher.deleted_at = None
    cipher.updated_at = utc_now()
    await ciphers_repo.save(store, cipher)
    await store.touch_revision_date(user_id)
    return cipher


async def list_ciphers(
    store: RecordStore, user_id: str, *, include_deleted: bool = False
) -> list[tuple[Cipher, list[Attachment]]]:
    ciphers = await ciphers_repo.list_by_user(store, user_id)
    results = []
    for cipher in ciphers:
        if cipher.deleted_at is not None and not include_deleted:
            continue
        results.append((cipher, await attachments_repo.list_by_cipher(store, cipher.id)))
    return results


async def delete_cipher_permanently(store: RecordStore, user_id: str, cipher_id: str) -> None:
    cipher = await get_owned_cipher(store, user_id, cipher_id)
    # Attachments go first so no metadata or blob outlives its cipher.
    removed = await attachments_service.delete_all_for_cipher(store, cipher.id)
    await ciphers_repo.delete(store, cipher)
    await store.touch_revision_date(user_id)
    logger.info(
        "vault.cipher.deleted user_id=%s cipher_id=%s attachments=%d",
        user_id,
        cipher_id,
        removed,
    )


async def move_ciphers(
    store: RecordStore, user_id: str, ids: list[str], folder_id: str | None
) -> int:
    folder_id = await _validate_folder(store, user_id, folder_id)
    return await store.bulk_move(ids, folder_id, user_id)
