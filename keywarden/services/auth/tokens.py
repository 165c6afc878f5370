from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Callable

import jwt
from pydantic import ValidationError

from keywarden.core.config import MIN_JWT_SECRET_LENGTH, get_settings
from keywarden.core.errors import ConfigurationError, InvalidGrant, Unauthorized
from keywarden.domain.models import AccessTokenClaims, User, new_id, utc_now
from keywarden.persistence.kv import WriteBatch
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import KIND_REFRESH_TOKEN, RecordStore


logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"
_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["sub", "sstamp", "iat", "exp", "iss"]
_DOWNLOAD_PURPOSE = "attachment_download"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    token_type: str = TOKEN_TYPE


@dataclass(frozen=True)
class DownloadGrant:
    user_id: str
    cipher_id: str
    attachment_id: str


def require_signing_secret(secret: str | None) -> str:
    # Fail fast on a missing secret; a short one is only a startup warning.
    if not secret:
        raise ConfigurationError("JWT_SECRET must be set before the server can start")
    if len(secret) < MIN_JWT_SECRET_LENGTH:
        logger.warning(
            "jwt_secret_weak length=%d minimum=%d",
            len(secret),
            MIN_JWT_SECRET_LENGTH,
        )
    return secret


def hash_refresh_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(64)


def _parse_bearer_token(header_value: str | None) -> str:
    if not header_value:
        raise Unauthorized("Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("Missing or invalid bearer token")
    return parts[1]


class TokenService:
    """Issue and verify access tokens, and manage refresh tokens in the record store."""

    def __init__(
        self,
        store: RecordStore,
        *,
        secret: str | None = None,
        issuer: str | None = None,
        access_ttl_seconds: int | None = None,
        refresh_ttl_days: int | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        settings = get_settings()
        resolved_secret = secret if secret is not None else settings.jwt_secret
        if not resolved_secret:
            raise ConfigurationError("JWT_SECRET must be set before tokens can be issued")
        self._store = store
        self._secret = resolved_secret
        self.issuer = issuer or settings.jwt_issuer
        self.access_ttl_seconds = access_ttl_seconds or settings.access_token_ttl_seconds
        self.refresh_ttl_seconds = (refresh_ttl_days or settings.refresh_token_ttl_days) * 24 * 60 * 60
        # Allow injecting time for deterministic expiry tests.
        self._time_provider = time_provider or time.time

    def _now(self) -> int:
        return int(self._time_provider())

    def _refresh_key(self, token_hash: str) -> str:
        return self._store.record_key(KIND_REFRESH_TOKEN, token_hash)

    def mint_access_token(self, user: User) -> str:
        now = self._now()
        claims = AccessTokenClaims(
            sub=user.id,
            email=user.email,
            name=user.name,
            sstamp=user.security_stamp,
            iat=now,
            exp=now + self.access_ttl_seconds,
            iss=self.issuer,
        )
        return jwt.encode(claims.model_dump(), self._secret, algorithm=_ALGORITHM)

    async def _store_refresh_token(self, raw_token: str, user_id: str) -> None:
        token_hash = hash_refresh_token(raw_token)
        index_key = self._store.index_key(KIND_REFRESH_TOKEN, user_id)
        batch = WriteBatch()
        # Expired tokens leave their hash behind in the index; prune those here.
        indexed = sorted(await self._store.backend.members(index_key))
        live = await self._store.backend.get_many([self._refresh_key(item) for item in indexed])
        for stale_hash, value in zip(indexed, live):
            if value is None:
                batch.remove_member(index_key, stale_hash)
        batch.set(self._refresh_key(token_hash), user_id, ttl_seconds=self.refresh_ttl_seconds)
        batch.add_member(index_key, token_hash)
        await self._store.backend.execute(batch)

    async def issue_session(self, user: User) -> TokenPair:
        access_token = self.mint_access_token(user)
        refresh_token = generate_refresh_token()
        await self._store_refresh_token(refresh_token, user.id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl_seconds,
            user_id=user.id,
        )

    def _decode(self, token: str) -> dict[str, Any]:
        # Expiry is checked against the injected clock, not PyJWT's wall clock.
        return jwt.decode(
            token,
            self._secret,
            algorithms=[_ALGORITHM],
            issuer=self.issuer,
            options={"require": _REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
        )

    async def verify_access_token(self, header_value: str | None) -> AccessTokenClaims:
        token = _parse_bearer_token(header_value)
        try:
            payload = self._decode(token)
            claims = AccessTokenClaims.model_validate(payload)
        except (jwt.InvalidTokenError, ValidationError) as exc:
            raise Unauthorized("Invalid access token") from exc
        if claims.exp <= self._now():
            raise Unauthorized("Access token expired")
        user = await users_repo.find_by_id(self._store, claims.sub)
        if user is None:
            raise Unauthorized("Unknown user")
        # Tokens minted before a credential change carry the old stamp and are rejected.
        if not hmac.compare_digest(claims.sstamp, user.security_stamp):
            raise Unauthorized("Security stamp changed")
        return claims

    async def redeem_refresh_token(self, raw_token: str | None) -> TokenPair:
        if not raw_token:
            raise InvalidGrant("Refresh token is required")
        token_hash = hash_refresh_token(raw_token)
        user_id = await self._store.backend.get(self._refresh_key(token_hash))
        if user_id is None:
            raise InvalidGrant("Refresh token is invalid or expired")
        user = await users_repo.find_by_id(self._store, user_id)
        if user is None:
            await self.revoke_refresh_token(raw_token)
            raise InvalidGrant("Refresh token is invalid or expired")
        # Non-rotating: the same refresh token stays valid and its TTL restarts.
        await self._store.backend.set(
            self._refresh_key(token_hash),
            user_id,
            ttl_seconds=self.refresh_ttl_seconds,
        )
        return TokenPair(
            access_token=self.mint_access_token(user),
            refresh_token=raw_token,
            expires_in=self.access_ttl_seconds,
            user_id=user.id,
        )

    async def verify_password_grant(self, email: str | None, password_hash: str | None) -> User:
        if not email or not password_hash:
            raise InvalidGrant()
        user = await users_repo.find_by_email(self._store, email)
        if user is None:
            raise InvalidGrant()
        if not hmac.compare_digest(
            user.master_password_hash.encode("utf-8"),
            password_hash.encode("utf-8"),
        ):
            raise InvalidGrant()
        return user

    async def revoke_refresh_token(self, raw_token: str) -> None:
        token_hash = hash_refresh_token(raw_token)
        user_id = await self._store.backend.get(self._refresh_key(token_hash))
        batch = WriteBatch()
        batch.delete(self._refresh_key(token_hash))
        if user_id is not None:
            batch.remove_member(self._store.index_key(KIND_REFRESH_TOKEN, user_id), token_hash)
        await self._store.backend.execute(batch)

    async def revoke_user_sessions(self, user: User) -> User:
        """Rotate the security stamp and drop every refresh token of ``user``.

        Outstanding access tokens fail verification from the next request on because
        they carry the old stamp. The updated user is persisted and returned.
        """
        user.security_stamp = new_id()
        user.updated_at = utc_now()
        await users_repo.save_user(self._store, user)
        index_key = self._store.index_key(KIND_REFRESH_TOKEN, user.id)
        token_hashes = await self._store.backend.members(index_key)
        batch = WriteBatch()
        for token_hash in token_hashes:
            batch.delete(self._refresh_key(token_hash))
        batch.delete(index_key)
        await self._store.backend.execute(batch)
        logger.info("auth.sessions.revoked user_id=%s refresh_tokens=%d", user.id, len(token_hashes))
        return user

    def issue_download_token(self, grant: DownloadGrant, *, ttl_seconds: int) -> str:
        now = self._now()
        payload = {
            "sub": grant.user_id,
            "cipher_id": grant.cipher_id,
            "attachment_id": grant.attachment_id,
            "purpose": _DOWNLOAD_PURPOSE,
            "iat": now,
            "exp": now + ttl_seconds,
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify_download_token(self, token: str | None) -> DownloadGrant:
        if not token:
            raise Unauthorized("Missing download token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["sub", "exp", "iss"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            raise Unauthorized("Invalid download token") from exc
        if payload.get("purpose") != _DOWNLOAD_PURPOSE or int(payload["exp"]) <= self._now():
            raise Unauthorized("Invalid download token")
        return DownloadGrant(
            user_id=str(payload["sub"]),
            cipher_id=str(payload.get("cipher_id", "")),
            attachment_id=str(payload.get("attachment_id", "")),
        )
