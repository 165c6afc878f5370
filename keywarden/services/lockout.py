from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Callable

from keywarden.core.config import get_settings
from keywarden.domain.models import LoginAttemptRecord, normalize_email
from keywarden.persistence.kv import KeyValueBackend


logger = logging.getLogger(__name__)

# Locked records outlive the lock slightly so the lock is always observed before expiry.
_LOCK_TTL_BUFFER_SECONDS = 60
# Window counters linger a little past the window end.
_WINDOW_TTL_BUFFER_SECONDS = 10


@dataclass(frozen=True)
class LoginAttemptDecision:
    allowed: bool
    remaining_attempts: int
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class LoginFailureResult:
    locked: bool
    attempts: int
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class ApiRateDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int | None = None


class LockoutGuard:
    """Brute-force login lockout and fixed-window API throttling.

    The two state machines share a backend but nothing else: login lockout is keyed by
    normalized email, API throttling by a caller-supplied identity (``user:client``).
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        max_attempts: int | None = None,
        lockout_minutes: int | None = None,
        requests_per_window: int | None = None,
        window_seconds: int | None = None,
        prefix: str | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        settings = get_settings()
        self._backend = backend
        self.max_attempts = max_attempts or settings.login_max_attempts
        self.lockout_seconds = (lockout_minutes or settings.login_lockout_minutes) * 60
        self.requests_per_window = requests_per_window or settings.api_requests_per_minute
        self.window_seconds = window_seconds or settings.api_window_seconds
        self._prefix = prefix or settings.kv_prefix
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time

    def _login_key(self, email: str) -> str:
        return f"{self._prefix}:ratelimit:login:{normalize_email(email)}"

    def _api_key(self, identity: str, window_start: int) -> str:
        return f"{self._prefix}:ratelimit:api:{identity}:{window_start}"

    def _now_ms(self) -> int:
        return int(self._time_provider() * 1000)

    def _window(self) -> tuple[int, int]:
        # Fixed windows aligned to multiples of the window length.
        now = int(self._time_provider())
        offset = now % self.window_seconds
        return now - offset, self.window_seconds - offset

    async def _load_record(self, email: str) -> LoginAttemptRecord | None:
        raw = await self._backend.get(self._login_key(email))
        if raw is None:
            return None
        return LoginAttemptRecord.model_validate_json(raw)

    async def check_login_attempt(self, email: str) -> LoginAttemptDecision:
        # Pure read: an expired lock is treated as reset without touching storage.
        record = await self._load_record(email)
        if record is None:
            return LoginAttemptDecision(allowed=True, remaining_attempts=self.max_attempts)
        now_ms = self._now_ms()
        if record.locked_until is not None:
            if record.locked_until > now_ms:
                retry_after = math.ceil((record.locked_until - now_ms) / 1000)
                return LoginAttemptDecision(
                    allowed=False,
                    remaining_attempts=0,
                    retry_after_seconds=retry_after,
                )
            return LoginAttemptDecision(allowed=True, remaining_attempts=self.max_attempts)
        return LoginAttemptDecision(
            allowed=True,
            remaining_attempts=max(self.max_attempts - record.attempts, 0),
        )

    async def record_failed_login(self, email: str) -> LoginFailureResult:
        record = await self._load_record(email)
        now_ms = self._now_ms()
        if record is None or (record.locked_until is not None and record.locked_until <= now_ms):
            # A lapsed lock starts a fresh cycle.
            record = LoginAttemptRecord()
        record.attempts += 1

        if record.attempts >= self.max_attempts:
            record.locked_until = now_ms + self.lockout_seconds * 1000
            await self._backend.set(
                self._login_key(email),
                record.model_dump_json(),
                ttl_seconds=self.lockout_seconds + _LOCK_TTL_BUFFER_SECONDS,
            )
            logger.warning(
                "auth.login.locked email=%s attempts=%d lock_seconds=%d",
                normalize_email(email),
                record.attempts,
                self.lockout_seconds,
            )
            return LoginFailureResult(
                locked=True,
                attempts=record.attempts,
                retry_after_seconds=self.lockout_seconds,
            )

        # Partial counts expire on their own after one lockout window of inactivity.
        await self._backend.set(
            self._login_key(email),
            record.model_dump_json(),
            ttl_seconds=self.lockout_seconds,
        )
        return LoginFailureResult(locked=False, attempts=record.attempts)

    async def clear_login_attempts(self, email: str) -> None:
        await self._backend.delete(self._login_key(email))

    async def check_api_rate_limit(self, identity: str) -> ApiRateDecision:
        window_start, retry_after = self._window()
        raw = await self._backend.get(self._api_key(identity, window_start))
        count = int(raw) if raw is not None else 0
        if count >= self.requests_per_window:
            return ApiRateDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)
        return ApiRateDecision(allowed=True, remaining=self.requests_per_window - count)

    async def increment_api_count(self, identity: str) -> int:
        # Separate from the check; callers increment only after a request is allowed.
        window_start, _retry_after = self._window()
        return await self._backend.incr(
            self._api_key(identity, window_start),
            ttl_seconds=self.window_seconds + _WINDOW_TTL_BUFFER_SECONDS,
        )

    async def consume_api_request(self, identity: str) -> ApiRateDecision:
        """Count this request and decide in one atomic backend step.

        Concurrent requests can no longer both observe "allowed" before either increments.
        Rejected requests are counted too, which only matters inside an already-full window.
        """
        window_start, retry_after = self._window()
        count = await self._backend.incr(
            self._api_key(identity, window_start),
            ttl_seconds=self.window_seconds + _WINDOW_TTL_BUFFER_SECONDS,
        )
        if count > self.requests_per_window:
            return ApiRateDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)
        return ApiRateDecision(allowed=True, remaining=self.requests_per_window - count)
