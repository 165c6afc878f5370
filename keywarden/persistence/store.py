"""Record store: opaque JSON records, per-owner id indexes and per-user revision stamps.

Entity writes go through :meth:`RecordStore.save_entity` / :meth:`RecordStore.delete_entity`,
which put the record and its index membership in one transactional batch. The index
remains a derived structure, so :meth:`RecordStore.reconcile_index` can rebuild it from
the records themselves if a backend ever loses one side.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import time
from typing import Any, Callable, Iterable

from keywarden.core.config import get_settings
from keywarden.domain.models import Cipher, utc_now
from keywarden.persistence.kv import KeyValueBackend, WriteBatch


logger = logging.getLogger(__name__)

KIND_USER = "user"
KIND_CIPHER = "cipher"
KIND_FOLDER = "folder"
KIND_ATTACHMENT = "attachment"
KIND_REFRESH_TOKEN = "refresh"

# Field on each indexed record naming the index owner.
OWNER_FIELDS: dict[str, str] = {
    KIND_CIPHER: "userId",
    KIND_FOLDER: "userId",
    KIND_ATTACHMENT: "cipherId",
}


@dataclass(frozen=True)
class ReconcileReport:
    kind: str
    owner_id: str
    added: frozenset[str]
    removed: frozenset[str]

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class RecordStore:
    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        prefix: str | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self.backend = backend
        self.prefix = prefix or get_settings().kv_prefix
        # Allow injecting time for deterministic revision-stamp tests.
        self._time_provider = time_provider or time.time

    def key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    def record_key(self, kind: str, record_id: str) -> str:
        return self.key(kind, record_id)

    def index_key(self, kind: str, owner_id: str) -> str:
        return self.key("index", kind, owner_id)

    def _revision_key(self, user_id: str) -> str:
        return self.key("revision", user_id)

    async def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        raw = await self.backend.get(self.record_key(kind, record_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(
        self,
        kind: str,
        record_id: str,
        record: dict[str, Any] | str,
        *,
        ttl_seconds: int | None = None,
    ) -> None:
        payload = record if isinstance(record, str) else json.dumps(record)
        await self.backend.set(self.record_key(kind, record_id), payload, ttl_seconds=ttl_seconds)

    async def delete(self, kind: str, record_id: str) -> None:
        await self.backend.delete(self.record_key(kind, record_id))

    async def add_to_index(self, kind: str, owner_id: str, record_id: str) -> None:
        await self.backend.add_member(self.index_key(kind, owner_id), record_id)

    async def remove_from_index(self, kind: str, owner_id: str, record_id: str) -> None:
        await self.backend.remove_member(self.index_key(kind, owner_id), record_id)

    async def get_index(self, kind: str, owner_id: str) -> set[str]:
        return await self.backend.members(self.index_key(kind, owner_id))

    async def save_entity(
        self,
        kind: str,
        owner_id: str,
        record_id: str,
        record: dict[str, Any] | str,
    ) -> None:
        # Record first, then membership; both land in the same transaction.
        payload = record if isinstance(record, str) else json.dumps(record)
        batch = WriteBatch()
        batch.set(self.record_key(kind, record_id), payload)
        batch.add_member(self.index_key(kind, owner_id), record_id)
        await self.backend.execute(batch)

    async def delete_entity(self, kind: str, owner_id: str, record_id: str) -> None:
        batch = WriteBatch()
        batch.delete(self.record_key(kind, record_id))
        batch.remove_member(self.index_key(kind, owner_id), record_id)
        await self.backend.execute(batch)

    async def get_all(self, kind: str, owner_id: str) -> list[dict[str, Any]]:
        # Ids whose record is gone are skipped; the index itself is left untouched.
        ids = sorted(await self.get_index(kind, owner_id))
        if not ids:
            return []
        raws = await self.backend.get_many([self.record_key(kind, record_id) for record_id in ids])
        records: list[dict[str, Any]] = []
        for record_id, raw in zip(ids, raws):
            if raw is None:
                logger.debug("index_dangling_member kind=%s owner=%s id=%s", kind, owner_id, record_id)
                continue
            records.append(json.loads(raw))
        return records

    async def bulk_move(self, ids: Iterable[str], folder_id: str | None, user_id: str) -> int:
        # Only ciphers owned by the caller move; the revision stamp advances exactly once.
        moved = 0
        now = utc_now()
        for cipher_id in ids:
            raw = await self.get(KIND_CIPHER, cipher_id)
            if raw is None:
                continue
            cipher = Cipher.model_validate(raw)
            if cipher.user_id != user_id:
                continue
            cipher.folder_id = folder_id
            cipher.updated_at = now
            await self.save_entity(KIND_CIPHER, user_id, cipher.id, cipher.to_json())
            moved += 1
        await self.touch_revision_date(user_id)
        return moved

    async def get_revision_date(self, user_id: str) -> datetime:
        raw = await self.backend.get(self._revision_key(user_id))
        if raw is None:
            # Never-touched users report the current time rather than an epoch sentinel.
            return from_epoch_ms(int(self._time_provider() * 1000))
        return from_epoch_ms(int(raw))

    async def touch_revision_date(self, user_id: str) -> datetime:
        now_ms = int(self._time_provider() * 1000)
        previous = await self.backend.get(self._revision_key(user_id))
        if previous is not None and int(previous) >= now_ms:
            # Keep the stamp strictly advancing even within one millisecond or on clock skew.
            now_ms = int(previous) + 1
        await self.backend.set(self._revision_key(user_id), str(now_ms))
        return from_epoch_ms(now_ms)

    async def reconcile_index(self, kind: str, owner_id: str) -> ReconcileReport:
        """Rebuild the owner's index for ``kind`` from the records that actually exist.

        Idempotent: a second run on an unchanged store reports no changes.
        """
        owner_field = OWNER_FIELDS[kind]
        indexed = await self.get_index(kind, owner_id)
        record_prefix = self.record_key(kind, "")
        keys = await self.backend.scan(record_prefix)
        raws = await self.backend.get_many(keys)
        owned: set[str] = set()
        for key, raw in zip(keys, raws):
            if raw is None:
                continue
            record = json.loads(raw)
            if record.get(owner_field) == owner_id:
                owned.add(key[len(record_prefix):])
        added = owned - indexed
        removed = indexed - owned
        if added or removed:
            batch = WriteBatch()
            for record_id in added:
                batch.add_member(self.index_key(kind, owner_id), record_id)
            for record_id in removed:
                batch.remove_member(self.index_key(kind, owner_id), record_id)
            await self.backend.execute(batch)
            logger.warning(
                "index_reconciled kind=%s owner=%s added=%d removed=%d",
                kind,
                owner_id,
                len(added),
                len(removed),
            )
        return ReconcileReport(
            kind=kind,
            owner_id=owner_id,
            added=frozenset(added),
            removed=frozenset(removed),
        )
