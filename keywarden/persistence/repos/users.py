from __future__ import annotations

from keywarden.domain.models import User, normalize_email
from keywarden.persistence.kv import WriteBatch
from keywarden.persistence.store import KIND_USER, RecordStore


def _email_key(store: RecordStore, email: str) -> str:
    return store.key("user_email", normalize_email(email))


def _registered_key(store: RecordStore) -> str:
    return store.key("config", "registered")


async def find_by_id(store: RecordStore, user_id: str) -> User | None:
    raw = await store.get(KIND_USER, user_id)
    if raw is None:
        return None
    return User.model_validate(raw)


async def find_by_email(store: RecordStore, email: str) -> User | None:
    # Resolve through the email mapping so lookups stay case-insensitive.
    user_id = await store.backend.get(_email_key(store, email))
    if user_id is None:
        return None
    user = await find_by_id(store, user_id)
    if user is None or normalize_email(user.email) != normalize_email(email):
        return None
    return user


async def save_user(store: RecordStore, user: User) -> None:
    # Write the record and both directions of the email mapping together.
    user.email = normalize_email(user.email)
    batch = WriteBatch()
    batch.set(store.record_key(KIND_USER, user.id), user.to_json())
    batch.set(_email_key(store, user.email), user.id)
    await store.backend.execute(batch)


async def list_user_ids(store: RecordStore) -> list[str]:
    prefix = store.record_key(KIND_USER, "")
    return sorted(key[len(prefix):] for key in await store.backend.scan(prefix))


async def is_registered(store: RecordStore) -> bool:
    return await store.backend.get(_registered_key(store)) == "true"


async def mark_registered(store: RecordStore) -> None:
    await store.backend.set(_registered_key(store), "true")
