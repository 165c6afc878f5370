from __future__ import annotations

import logging
from typing import Any

from keywarden.core.config import get_settings
from keywarden.core.errors import InvalidGrant, Locked
from keywarden.domain.models import User, normalize_email
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.tokens import TokenPair, TokenService
from keywarden.services.lockout import LockoutGuard


logger = logging.getLogger(__name__)

_SCOPE = "api offline_access"


def token_response(pair: TokenPair, user: User) -> dict[str, Any]:
    # Key names and casing are what the vault clients parse.
    return {
        "access_token": pair.access_token,
        "expires_in": pair.expires_in,
        "token_type": pair.token_type,
        "refresh_token": pair.refresh_token,
        "Key": user.key,
        "PrivateKey": user.private_key,
        "Kdf": user.kdf_type,
        "KdfIterations": user.kdf_iterations,
        "KdfMemory": user.kdf_memory,
        "KdfParallelism": user.kdf_parallelism,
        "ForcePasswordReset": False,
        "ResetMasterPassword": False,
        "scope": _SCOPE,
        "unofficialServer": True,
        "UserDecryptionOptions": {
            "HasMasterPassword": True,
            "Object": "userDecryptionOptions",
        },
    }


async def password_grant(
    *,
    store: RecordStore,
    tokens: TokenService,
    guard: LockoutGuard,
    username: str | None,
    password_hash: str | None,
) -> dict[str, Any]:
    """Run the password grant: lockout check, verification, then session issue.

    Failures are counted against the normalized email whether or not the account exists,
    so lockout behavior does not reveal which emails are registered.
    """
    if not username or not password_hash:
        raise InvalidGrant("Username and password are required")
    email = normalize_email(username)

    decision = await guard.check_login_attempt(email)
    if not decision.allowed:
        logger.info(
            "auth.login.rejected_locked email=%s retry_after=%s",
            email,
            decision.retry_after_seconds,
        )
        raise Locked(
            f"Too many failed login attempts. Try again in {decision.retry_after_seconds} seconds.",
            retry_after_seconds=decision.retry_after_seconds or 0,
        )

    try:
        user = await tokens.verify_password_grant(email, password_hash)
    except InvalidGrant:
        result = await guard.record_failed_login(email)
        logger.info("auth.login.failure email=%s attempts=%d", email, result.attempts)
        if result.locked:
            raise InvalidGrant(
                "Username or password is incorrect. Account is now locked for "
                f"{result.retry_after_seconds} seconds."
            ) from None
        remaining = max(guard.max_attempts - result.attempts, 0)
        raise InvalidGrant(
            f"Username or password is incorrect. Try again. {remaining} attempts remaining."
        ) from None

    await guard.clear_login_attempts(email)
    pair = await tokens.issue_session(user)
    logger.info("auth.login.success user_id=%s", user.id)
    return token_response(pair, user)


async def refresh_grant(
    *,
    store: RecordStore,
    tokens: TokenService,
    refresh_token: str | None,
) -> dict[str, Any]:
    pair = await tokens.redeem_refresh_token(refresh_token)
    user = await users_repo.find_by_id(store, pair.user_id)
    if user is None:
        raise InvalidGrant("Refresh token is invalid or expired")
    logger.info("auth.refresh.success user_id=%s", user.id)
    return token_response(pair, user)


async def prelogin(store: RecordStore, email: str | None) -> dict[str, Any]:
    # Unknown emails get the configured defaults so the response does not reveal accounts.
    user = await users_repo.find_by_email(store, email) if email else None
    if user is not None:
        return {
            "kdf": user.kdf_type,
            "kdfIterations": user.kdf_iterations,
            "kdfMemory": user.kdf_memory,
            "kdfParallelism": user.kdf_parallelism,
        }
    settings = get_settings()
    return {
        "kdf": settings.default_kdf_type,
        "kdfIterations": settings.default_kdf_iterations,
        "kdfMemory": settings.default_kdf_memory,
        "kdfParallelism": settings.default_kdf_parallelism,
    }
