from __future__ import annotations

import logging

from keywarden.core.errors import BadRequest, NotFound
from keywarden.domain.models import Folder, utc_now
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.store import RecordStore


logger = logging.getLogger(__name__)


async def get_owned_folder(store: RecordStore, user_id: str, folder_id: str) -> Folder:
    folder = await folders_repo.get_by_user_and_id(store, user_id, folder_id)
    if folder is None:
        raise NotFound("Folder not found")
    return folder


async def create_folder(store: RecordStore, user_id: str, name: str | None) -> Folder:
    if not name:
        raise BadRequest("Name is required")
    now = utc_now()
    folder = Folder(user_id=user_id, name=name, created_at=now, updated_at=now)
    await folders_repo.save(store, folder)
    await store.touch_revision_date(user_id)
    return folder


async def rename_folder(store: RecordStore, user_id: str, folder_id: str, name: str | None) -> Folder:
    folder = await get_owned_folder(store, user_id, folder_id)
    if name:
        folder.name = name
    folder.updated_at = utc_now()
    await folders_repo.save(store, folder)
    await store.touch_revision_date(user_id)
    return folder


async def delete_folder(store: RecordStore, user_id: str, folder_id: str) -> int:
    """Delete the folder and detach the caller's ciphers that referenced it.

    Returns the number of ciphers moved back to "no folder".
    """
    folder = await get_owned_folder(store, user_id, folder_id)
    detached = 0
    now = utc_now()
    for cipher in await ciphers_repo.list_by_user(store, user_id):
        if cipher.folder_id != folder.id:
            continue
        cipher.folder_id = None
        cipher.updated_at = now
        await ciphers_repo.save(store, cipher)
        detached += 1
    await folders_repo.delete(store, folder)
    await store.touch_revision_date(user_id)
    logger.info(
        "vault.folder.deleted user_id=%s folder_id=%s detached_ciphers=%d",
        user_id,
        folder_id,
        detached,
    )
    return detached
