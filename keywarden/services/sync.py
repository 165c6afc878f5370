from __future__ import annotations

import logging
from typing import Any

from keywarden.core.errors import NotFound
from keywarden.persistence.repos import attachments as attachments_repo
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.views import (
    cipher_response,
    domains_response,
    folder_response,
    profile_response,
)


logger = logging.getLogger(__name__)


async def build_sync_payload(store: RecordStore, user_id: str) -> dict[str, Any]:
    """Compose the full vault for ``user_id`` into one sync response.

    Reads are sequential and unsynchronized; a write landing mid-sync may or may not
    be reflected. Soft-deleted ciphers are included so clients can show the trash.
    """
    user = await users_repo.find_by_id(store, user_id)
    if user is None:
        raise NotFound("User not found")

    folders = await folders_repo.list_by_user(store, user_id)
    ciphers = await ciphers_repo.list_by_user(store, user_id)
    cipher_payloads = []
    for cipher in ciphers:
        attachments = await attachments_repo.list_by_cipher(store, cipher.id)
        cipher_payloads.append(cipher_response(cipher, attachments))

    logger.debug(
        "vault.sync user_id=%s ciphers=%d folders=%d",
        user_id,
        len(cipher_payloads),
        len(folders),
    )
    return {
        "profile": profile_response(user),
        "folders": [folder_response(folder) for folder in folders],
        "collections": [],
        "ciphers": cipher_payloads,
        "domains": domains_response(),
        "policies": [],
        "sends": [],
        "object": "sync",
    }
