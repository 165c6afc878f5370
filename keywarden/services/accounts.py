from __future__ import annotations

import hmac
import logging

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from keywarden.core.config import get_settings
from keywarden.core.errors import BadRequest, Forbidden, NotFound
from keywarden.domain.models import User, normalize_email, utc_now
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.tokens import TokenService


logger = logging.getLogger(__name__)


class _AccountModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RegisterKeys(_AccountModel):
    public_key: str | None = None
    encrypted_private_key: str | None = None


class RegisterRequest(_AccountModel):
    email: str | None = None
    name: str | None = None
    master_password_hash: str | None = None
    master_password_hint: str | None = None
    key: str | None = None
    kdf: int | None = None
    kdf_iterations: int | None = None
    kdf_memory: int | None = None
    kdf_parallelism: int | None = None
    keys: RegisterKeys | None = None


class ProfileUpdateRequest(_AccountModel):
    name: str | None = None
    master_password_hint: str | None = None


class KeysRequest(_AccountModel):
    key: str | None = None
    encrypted_private_key: str | None = None
    public_key: str | None = None


class PasswordRequest(_AccountModel):
    master_password_hash: str | None = None


class PasswordChangeRequest(_AccountModel):
    master_password_hash: str | None = None
    new_master_password_hash: str | None = None
    master_password_hint: str | None = None
    key: str | None = None


async def get_user(store: RecordStore, user_id: str) -> User:
    user = await users_repo.find_by_id(store, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _password_matches(user: User, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return hmac.compare_digest(
        user.master_password_hash.encode("utf-8"),
        password_hash.encode("utf-8"),
    )


async def register(store: RecordStore, request: RegisterRequest) -> User:
    """Create the single account of this deployment; later calls are refused."""
    if await users_repo.is_registered(store):
        raise Forbidden("Registration is closed")
    if not request.email or not request.master_password_hash or not request.key:
        raise BadRequest("Email, masterPasswordHash, and key are required")
    keys = request.keys or RegisterKeys()
    if not keys.encrypted_private_key or not keys.public_key:
        raise BadRequest("Private key and public key are required")

    settings = get_settings()
    email = normalize_email(request.email)
    now = utc_now()
    user = User(
        email=email,
        name=request.name or email,
        master_password_hash=request.master_password_hash,
        master_password_hint=request.master_password_hint,
        key=request.key,
        private_key=keys.encrypted_private_key,
        public_key=keys.public_key,
        kdf_type=request.kdf if request.kdf is not None else settings.default_kdf_type,
        kdf_iterations=request.kdf_iterations or settings.default_kdf_iterations,
        kdf_memory=request.kdf_memory if request.kdf_memory is not None else settings.default_kdf_memory,
        kdf_parallelism=(
            request.kdf_parallelism
            if request.kdf_parallelism is not None
            else settings.default_kdf_parallelism
        ),
        created_at=now,
        updated_at=now,
    )
    await users_repo.save_user(store, user)
    await users_repo.mark_registered(store)
    logger.info("account.registered user_id=%s", user.id)
    return user


async def update_profile(store: RecordStore, user_id: str, request: ProfileUpdateRequest) -> User:
    user = await get_user(store, user_id)
    if request.name:
        user.name = request.name
    if "master_password_hint" in request.model_fields_set:
        user.master_password_hint = request.master_password_hint
    user.updated_at = utc_now()
    await users_repo.save_user(store, user)
    await store.touch_revision_date(user_id)
    return user


async def set_keys(store: RecordStore, user_id: str, request: KeysRequest) -> User:
    user = await get_user(store, user_id)
    if request.key:
        user.key = request.key
    if request.encrypted_private_key:
        user.private_key = request.encrypted_private_key
    if request.public_key:
        user.public_key = request.public_key
    user.updated_at = utc_now()
    await users_repo.save_user(store, user)
    await store.touch_revision_date(user_id)
    return user


async def verify_password(store: RecordStore, user_id: str, request: PasswordRequest) -> None:
    user = await get_user(store, user_id)
    if not request.master_password_hash:
        raise BadRequest("masterPasswordHash is required")
    if not _password_matches(user, request.master_password_hash):
        raise BadRequest("Invalid password")


async def change_password(
    store: RecordStore,
    tokens: TokenService,
    user_id: str,
    request: PasswordChangeRequest,
) -> User:
    """Replace the password verifier and re-wrapped key, then revoke every session."""
    user = await get_user(store, user_id)
    if not _password_matches(user, request.master_password_hash):
        raise BadRequest("Invalid password")
    if not request.new_master_password_hash or not request.key:
        raise BadRequest("newMasterPasswordHash and key are required")
    user.master_password_hash = request.new_master_password_hash
    user.key = request.key
    if "master_password_hint" in request.model_fields_set:
        user.master_password_hint = request.master_password_hint
    user = await tokens.revoke_user_sessions(user)
    await store.touch_revision_date(user_id)
    logger.info("account.password_changed user_id=%s", user_id)
    return user


async def rotate_security_stamp(
    store: RecordStore,
    tokens: TokenService,
    user_id: str,
    request: PasswordRequest,
) -> User:
    user = await get_user(store, user_id)
    if not _password_matches(user, request.master_password_hash):
        raise BadRequest("Invalid password")
    return await tokens.revoke_user_sessions(user)
