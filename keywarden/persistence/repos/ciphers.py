from __future__ import annotations

from keywarden.domain.models import Cipher
from keywarden.persistence.store import KIND_CIPHER, RecordStore


async def get_by_user_and_id(store: RecordStore, user_id: str, cipher_id: str) -> Cipher | None:
    # Treat ciphers owned by someone else exactly like missing ones.
    raw = await store.get(KIND_CIPHER, cipher_id)
    if raw is None:
        return None
    cipher = Cipher.model_validate(raw)
    if cipher.user_id != user_id:
        return None
    return cipher


async def list_by_user(store: RecordStore, user_id: str) -> list[Cipher]:
    records = await store.get_all(KIND_CIPHER, user_id)
    return [Cipher.model_validate(record) for record in records]


async def save(store: RecordStore, cipher: Cipher) -> None:
    await store.save_entity(KIND_CIPHER, cipher.user_id, cipher.id, cipher.to_json())


async def delete(store: RecordStore, cipher: Cipher) -> None:
    await store.delete_entity(KIND_CIPHER, cipher.user_id, cipher.id)
