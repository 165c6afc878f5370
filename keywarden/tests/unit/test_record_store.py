from __future__ import annotations

import pytest

from keywarden.domain.models import Cipher, Folder
from keywarden.persistence.kv import MemoryBackend
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.store import (
    KIND_CIPHER,
    KIND_FOLDER,
    RecordStore,
    from_epoch_ms,
    to_epoch_ms,
)
from keywarden.tests.utils.clock import FakeClock


def _store(clock: FakeClock | None = None) -> RecordStore:
    clock = clock or FakeClock()
    return RecordStore(MemoryBackend(time_provider=clock), prefix="test", time_provider=clock)


def _cipher(user_id: str, name: str = "Login", folder_id: str | None = None) -> Cipher:
    return Cipher(user_id=user_id, name=name, folder_id=folder_id, login={"username": "u"})


@pytest.mark.asyncio
async def test_save_entity_writes_record_and_index() -> None:
    store = _store()
    cipher = _cipher("user-1")
    await ciphers_repo.save(store, cipher)

    assert await store.get_index(KIND_CIPHER, "user-1") == {cipher.id}
    loaded = await ciphers_repo.get_by_user_and_id(store, "user-1", cipher.id)
    assert loaded is not None
    assert loaded.login == {"username": "u"}


@pytest.mark.asyncio
async def test_lookup_hides_records_owned_by_someone_else() -> None:
    store = _store()
    cipher = _cipher("user-1")
    await ciphers_repo.save(store, cipher)
    assert await ciphers_repo.get_by_user_and_id(store, "user-2", cipher.id) is None


@pytest.mark.asyncio
async def test_get_all_skips_dangling_ids_without_repairing() -> None:
    store = _store()
    kept = _cipher("user-1", "kept")
    await ciphers_repo.save(store, kept)
    await store.add_to_index(KIND_CIPHER, "user-1", "missing-id")

    records = await store.get_all(KIND_CIPHER, "user-1")
    assert [record["id"] for record in records] == [kept.id]
    assert await store.get_index(KIND_CIPHER, "user-1") == {kept.id, "missing-id"}


@pytest.mark.asyncio
async def test_delete_entity_removes_record_and_membership() -> None:
    store = _store()
    folder = Folder(user_id="user-1", name="Work")
    await folders_repo.save(store, folder)
    await folders_repo.delete(store, folder)

    assert await store.get(KIND_FOLDER, folder.id) is None
    assert await store.get_index(KIND_FOLDER, "user-1") == set()


@pytest.mark.asyncio
async def test_revision_date_defaults_to_now_and_reads_do_not_advance() -> None:
    clock = FakeClock()
    store = _store(clock)
    first = await store.get_revision_date("user-1")
    assert to_epoch_ms(first) == int(clock.now * 1000)

    touched = await store.touch_revision_date("user-1")
    clock.advance(5)
    assert await store.get_revision_date("user-1") == touched


@pytest.mark.asyncio
async def test_touch_revision_date_strictly_advances_within_one_millisecond() -> None:
    clock = FakeClock()
    store = _store(clock)
    first = await store.touch_revision_date("user-1")
    second = await store.touch_revision_date("user-1")
    third = await store.touch_revision_date("user-1")
    assert to_epoch_ms(first) < to_epoch_ms(second) < to_epoch_ms(third)


@pytest.mark.asyncio
async def test_touch_revision_date_survives_clock_going_backwards() -> None:
    clock = FakeClock()
    store = _store(clock)
    first = await store.touch_revision_date("user-1")
    clock.advance(-60)
    second = await store.touch_revision_date("user-1")
    assert to_epoch_ms(second) == to_epoch_ms(first) + 1


@pytest.mark.asyncio
async def test_bulk_move_only_moves_owned_ciphers_and_touches_once() -> None:
    clock = FakeClock()
    store = _store(clock)
    mine = _cipher("user-1")
    theirs = _cipher("user-2")
    await ciphers_repo.save(store, mine)
    await ciphers_repo.save(store, theirs)

    moved = await store.bulk_move([mine.id, theirs.id, "unknown"], "folder-1", "user-1")

    assert moved == 1
    assert (await ciphers_repo.get_by_user_and_id(store, "user-1", mine.id)).folder_id == "folder-1"
    assert (await ciphers_repo.get_by_user_and_id(store, "user-2", theirs.id)).folder_id is None
    # A single touch on a fresh user lands exactly on the current millisecond.
    assert await store.get_revision_date("user-1") == from_epoch_ms(int(clock.now * 1000))


@pytest.mark.asyncio
async def test_bulk_move_with_no_matches_still_touches_revision() -> None:
    clock = FakeClock()
    store = _store(clock)
    before = await store.touch_revision_date("user-1")
    assert await store.bulk_move(["nothing"], None, "user-1") == 0
    assert await store.get_revision_date("user-1") > before


@pytest.mark.asyncio
async def test_reconcile_index_repairs_both_directions_and_is_idempotent() -> None:
    store = _store()
    indexed = _cipher("user-1", "indexed")
    orphan = _cipher("user-1", "orphan")
    await ciphers_repo.save(store, indexed)
    # Record without membership, and membership without record.
    await store.put(KIND_CIPHER, orphan.id, orphan.to_json())
    await store.add_to_index(KIND_CIPHER, "user-1", "ghost")

    report = await store.reconcile_index(KIND_CIPHER, "user-1")
    assert report.added == frozenset({orphan.id})
    assert report.removed == frozenset({"ghost"})
    assert await store.get_index(KIND_CIPHER, "user-1") == {indexed.id, orphan.id}

    again = await store.reconcile_index(KIND_CIPHER, "user-1")
    assert not again.changed
