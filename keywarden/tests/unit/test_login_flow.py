from __future__ import annotations

import pytest

from keywarden.core.errors import InvalidGrant, Locked
from keywarden.domain.models import User
from keywarden.persistence.kv import MemoryBackend
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.login import password_grant, prelogin, refresh_grant
from keywarden.services.auth.tokens import TokenService
from keywarden.services.lockout import LockoutGuard
from keywarden.tests.utils.clock import FakeClock


async def _setup(clock: FakeClock):
    backend = MemoryBackend(time_provider=clock)
    store = RecordStore(backend, prefix="test", time_provider=clock)
    user = User(
        email="owner@example.com",
        name="Owner",
        master_password_hash="right",
        key="2.key",
        private_key="2.private",
        kdf_type=1,
        kdf_iterations=3,
        kdf_memory=64,
        kdf_parallelism=4,
    )
    await users_repo.save_user(store, user)
    tokens = TokenService(store, secret="login-flow-secret-0123456789abcdef", time_provider=clock)
    guard = LockoutGuard(backend, prefix="test", time_provider=clock)
    return store, tokens, guard, user


@pytest.mark.asyncio
async def test_password_grant_returns_client_token_shape() -> None:
    clock = FakeClock()
    store, tokens, guard, user = await _setup(clock)
    body = await password_grant(
        store=store, tokens=tokens, guard=guard, username="Owner@Example.com", password_hash="right"
    )
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 3600
    assert body["Key"] == "2.key"
    assert body["PrivateKey"] == "2.private"
    assert body["Kdf"] == 1
    assert body["KdfMemory"] == 64
    assert body["UserDecryptionOptions"]["HasMasterPassword"] is True
    assert body["refresh_token"]


@pytest.mark.asyncio
async def test_successful_login_clears_failed_attempts() -> None:
    clock = FakeClock()
    store, tokens, guard, _user = await _setup(clock)
    for _ in range(3):
        with pytest.raises(InvalidGrant):
            await password_grant(
                store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="bad"
            )
    await password_grant(
        store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="right"
    )
    decision = await guard.check_login_attempt("owner@example.com")
    assert decision.remaining_attempts == guard.max_attempts


@pytest.mark.asyncio
async def test_locked_account_rejects_even_correct_password() -> None:
    clock = FakeClock()
    store, tokens, guard, _user = await _setup(clock)
    for _ in range(5):
        with pytest.raises(InvalidGrant):
            await password_grant(
                store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="bad"
            )
    with pytest.raises(Locked) as excinfo:
        await password_grant(
            store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="right"
        )
    assert excinfo.value.retry_after_seconds == 900

    clock.advance(900)
    body = await password_grant(
        store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="right"
    )
    assert body["access_token"]


@pytest.mark.asyncio
async def test_unknown_email_failures_still_count_towards_lockout() -> None:
    clock = FakeClock()
    store, tokens, guard, _user = await _setup(clock)
    for _ in range(5):
        with pytest.raises(InvalidGrant):
            await password_grant(
                store=store, tokens=tokens, guard=guard, username="ghost@example.com", password_hash="x"
            )
    assert not (await guard.check_login_attempt("ghost@example.com")).allowed


@pytest.mark.asyncio
async def test_refresh_grant_reuses_refresh_token() -> None:
    clock = FakeClock()
    store, tokens, guard, _user = await _setup(clock)
    body = await password_grant(
        store=store, tokens=tokens, guard=guard, username="owner@example.com", password_hash="right"
    )
    refreshed = await refresh_grant(store=store, tokens=tokens, refresh_token=body["refresh_token"])
    assert refreshed["refresh_token"] == body["refresh_token"]
    assert refreshed["Key"] == "2.key"


@pytest.mark.asyncio
async def test_prelogin_reports_user_and_default_kdf() -> None:
    clock = FakeClock()
    store, _tokens, _guard, _user = await _setup(clock)
    known = await prelogin(store, "OWNER@example.com")
    assert known == {"kdf": 1, "kdfIterations": 3, "kdfMemory": 64, "kdfParallelism": 4}

    unknown = await prelogin(store, "nobody@example.com")
    assert unknown == {"kdf": 0, "kdfIterations": 600000, "kdfMemory": None, "kdfParallelism": None}
