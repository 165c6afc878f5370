from __future__ import annotations

from keywarden.domain.models import Folder
from keywarden.persistence.store import KIND_FOLDER, RecordStore


async def get_by_user_and_id(store: RecordStore, user_id: str, folder_id: str) -> Folder | None:
    raw = await store.get(KIND_FOLDER, folder_id)
    if raw is None:
        return None
    folder = Folder.model_validate(raw)
    if folder.user_id != user_id:
        return None
    return folder


async def list_by_user(store: RecordStore, user_id: str) -> list[Folder]:
    records = await store.get_all(KIND_FOLDER, user_id)
    return [Folder.model_validate(record) for record in records]


async def save(store: RecordStore, folder: Folder) -> None:
    await store.save_entity(KIND_FOLDER, folder.user_id, folder.id, folder.to_json())


async def delete(store: RecordStore, folder: Folder) -> None:
    await store.delete_entity(KIND_FOLDER, folder.user_id, folder.id)
