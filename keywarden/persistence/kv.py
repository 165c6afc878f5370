from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis

from keywarden.core.config import get_settings
from keywarden.core.errors import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOp:
    op: str
    key: str
    value: str | None = None
    ttl_seconds: int | None = None


@dataclass
class WriteBatch:
    # Collect writes that must land together; backends apply them in one transaction.
    ops: list[BatchOp] = field(default_factory=list)

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> "WriteBatch":
        self.ops.append(BatchOp("set", key, value, ttl_seconds))
        return self

    def delete(self, key: str) -> "WriteBatch":
        self.ops.append(BatchOp("delete", key))
        return self

    def add_member(self, key: str, member: str) -> "WriteBatch":
        self.ops.append(BatchOp("sadd", key, member))
        return self

    def remove_member(self, key: str, member: str) -> "WriteBatch":
        self.ops.append(BatchOp("srem", key, member))
        return self


class KeyValueBackend(Protocol):
    # Minimal storage surface the record store and guards need.
    async def get(self, key: str) -> str | None: ...

    async def get_many(self, keys: list[str]) -> list[str | None]: ...

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def incr(self, key: str, *, ttl_seconds: int) -> int: ...

    async def members(self, key: str) -> set[str]: ...

    async def add_member(self, key: str, member: str) -> None: ...

    async def remove_member(self, key: str, member: str) -> None: ...

    async def execute(self, batch: WriteBatch) -> None: ...

    async def scan(self, prefix: str) -> list[str]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


# Increment and arm the expiry in one step so a window counter can never live forever.
_INCR_WITH_TTL_LUA = r"""
local count = redis.call("INCR", KEYS[1])
if count == 1 then
  redis.call("EXPIRE", KEYS[1], ARGV[1])
end
return count
"""


class RedisBackend:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def get_many(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        return list(await self._redis.mget(keys))

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._redis.delete(*keys)

    async def incr(self, key: str, *, ttl_seconds: int) -> int:
        result = await self._redis.eval(_INCR_WITH_TTL_LUA, 1, key, ttl_seconds)
        return int(result)

    async def members(self, key: str) -> set[str]:
        return set(await self._redis.smembers(key))

    async def add_member(self, key: str, member: str) -> None:
        await self._redis.sadd(key, member)

    async def remove_member(self, key: str, member: str) -> None:
        await self._redis.srem(key, member)

    async def execute(self, batch: WriteBatch) -> None:
        # MULTI/EXEC keeps record and index writes from being observed half-applied.
        async with self._redis.pipeline(transaction=True) as pipe:
            for op in batch.ops:
                if op.op == "set":
                    pipe.set(op.key, op.value, ex=op.ttl_seconds)
                elif op.op == "delete":
                    pipe.delete(op.key)
                elif op.op == "sadd":
                    pipe.sadd(op.key, op.value)
                elif op.op == "srem":
                    pipe.srem(op.key, op.value)
                else:
                    raise ValueError(f"Unsupported batch op: {op.op}")
            await pipe.execute()

    async def scan(self, prefix: str) -> list[str]:
        return [key async for key in self._redis.scan_iter(match=f"{prefix}*", count=500)]

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryBackend:
    """In-process backend with TTL support for development and tests.

    Methods never await internally, so each call runs atomically on the event loop.
    """

    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic expiry tests.
        self._time_provider = time_provider or time.time
        self._values: dict[str, tuple[str, float | None]] = {}
        self._sets: dict[str, set[str]] = {}

    def _live_value(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._time_provider():
            self._values.pop(key, None)
            return None
        return value

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._time_provider() + ttl_seconds

    def _apply(self, op: BatchOp) -> None:
        if op.op == "set":
            self._values[op.key] = (op.value or "", self._expiry(op.ttl_seconds))
        elif op.op == "delete":
            self._values.pop(op.key, None)
            self._sets.pop(op.key, None)
        elif op.op == "sadd":
            self._sets.setdefault(op.key, set()).add(op.value or "")
        elif op.op == "srem":
            members = self._sets.get(op.key)
            if members is not None:
                members.discard(op.value or "")
                if not members:
                    self._sets.pop(op.key, None)
        else:
            raise ValueError(f"Unsupported batch op: {op.op}")

    async def get(self, key: str) -> str | None:
        return self._live_value(key)

    async def get_many(self, keys: list[str]) -> list[str | None]:
        return [self._live_value(key) for key in keys]

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._apply(BatchOp("set", key, value, ttl_seconds))

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._apply(BatchOp("delete", key))

    async def incr(self, key: str, *, ttl_seconds: int) -> int:
        current = self._live_value(key)
        if current is None:
            self._values[key] = ("1", self._expiry(ttl_seconds))
            return 1
        count = int(current) + 1
        _value, expires_at = self._values[key]
        self._values[key] = (str(count), expires_at)
        return count

    async def members(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))

    async def add_member(self, key: str, member: str) -> None:
        self._apply(BatchOp("sadd", key, member))

    async def remove_member(self, key: str, member: str) -> None:
        self._apply(BatchOp("srem", key, member))

    async def execute(self, batch: WriteBatch) -> None:
        for op in batch.ops:
            self._apply(op)

    async def scan(self, prefix: str) -> list[str]:
        keys = [key for key in list(self._values) if key.startswith(prefix) and self._live_value(key) is not None]
        keys.extend(key for key in self._sets if key.startswith(prefix))
        return keys

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


_backend: KeyValueBackend | None = None
_backend_loop: asyncio.AbstractEventLoop | None = None
_backend_lock = asyncio.Lock()


async def get_backend() -> KeyValueBackend:
    # Cache the backend so requests share one Redis connection pool per event loop.
    global _backend, _backend_loop
    settings = get_settings()
    mode = settings.kv_backend.lower()
    if mode == "memory":
        if _backend is None:
            _backend = MemoryBackend()
        return _backend
    if mode != "redis":
        raise ConfigurationError(f"Unsupported KV_BACKEND: {settings.kv_backend}")
    current_loop = asyncio.get_running_loop()
    if _backend is not None and _backend_loop == current_loop:
        return _backend
    if _backend is not None and _backend_loop != current_loop:
        _backend = None
    async with _backend_lock:
        if _backend is None:
            redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            _backend = RedisBackend(redis)
            _backend_loop = current_loop
            logger.info("kv_backend_connected backend=redis")
    return _backend


async def close_backend() -> None:
    global _backend, _backend_loop
    if _backend is not None:
        await _backend.close()
    _backend = None
    _backend_loop = None


def reset_backend_state() -> None:
    # Drop cached connections and in-memory data for deterministic test setup.
    global _backend, _backend_loop
    _backend = None
    _backend_loop = None
