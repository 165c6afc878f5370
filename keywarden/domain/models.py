from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    # Keep every stored timestamp timezone-aware in UTC.
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def normalize_email(email: str) -> str:
    # Emails are matched case-insensitively everywhere.
    return email.strip().lower()


class Record(BaseModel):
    # Stored records use the client's camelCase field names on the wire and in storage.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class CipherType(IntEnum):
    LOGIN = 1
    SECURE_NOTE = 2
    CARD = 3
    IDENTITY = 4


class User(Record):
    id: str = Field(default_factory=new_id)
    email: str
    name: str
    master_password_hash: str
    master_password_hint: str | None = None
    key: str
    private_key: str | None = None
    public_key: str | None = None
    kdf_type: int = 0
    kdf_iterations: int = 600000
    kdf_memory: int | None = None
    kdf_parallelism: int | None = None
    security_stamp: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Folder(Record):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Cipher(Record):
    id: str = Field(default_factory=new_id)
    user_id: str
    type: int = CipherType.LOGIN
    folder_id: str | None = None
    name: str
    notes: str | None = None
    favorite: bool = False
    login: dict[str, Any] | None = None
    card: dict[str, Any] | None = None
    identity: dict[str, Any] | None = None
    secure_note: dict[str, Any] | None = None
    fields: list[dict[str, Any]] | None = None
    password_history: list[dict[str, Any]] | None = None
    reprompt: int = 0
    key: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: datetime | None = None


class Attachment(Record):
    id: str = Field(default_factory=new_id)
    cipher_id: str
    file_name: str
    size: int = 0
    size_name: str = "0 Bytes"
    key: str | None = None


class AccessTokenClaims(BaseModel):
    # Claim names are fixed by the clients that decode them.
    model_config = ConfigDict(frozen=True)

    sub: str
    email: str
    name: str
    email_verified: bool = True
    amr: list[str] = Field(default_factory=lambda: ["Application"])
    sstamp: str
    iat: int
    exp: int
    iss: str
    premium: bool = True


class LoginAttemptRecord(BaseModel):
    attempts: int = 0
    # Epoch milliseconds; absent until the threshold is reached.
    locked_until: int | None = None
