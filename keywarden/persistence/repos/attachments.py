from __future__ import annotations

from keywarden.domain.models import Attachment
from keywarden.persistence.store import KIND_ATTACHMENT, RecordStore


# Attachments are indexed per owning cipher rather than per user.


async def get_by_cipher_and_id(
    store: RecordStore, cipher_id: str, attachment_id: str
) -> Attachment | None:
    raw = await store.get(KIND_ATTACHMENT, attachment_id)
    if raw is None:
        return None
    attachment = Attachment.model_validate(raw)
    if attachment.cipher_id != cipher_id:
        return None
    return attachment


async def list_by_cipher(store: RecordStore, cipher_id: str) -> list[Attachment]:
    records = await store.get_all(KIND_ATTACHMENT, cipher_id)
    return [Attachment.model_validate(record) for record in records]


async def save(store: RecordStore, attachment: Attachment) -> None:
    await store.save_entity(KIND_ATTACHMENT, attachment.cipher_id, attachment.id, attachment.to_json())


async def delete(store: RecordStore, attachment: Attachment) -> None:
    await store.delete_entity(KIND_ATTACHMENT, attachment.cipher_id, attachment.id)
