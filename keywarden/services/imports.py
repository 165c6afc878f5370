from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from keywarden.core.errors import BadRequest
from keywarden.domain.models import Cipher, CipherType, Folder, utc_now
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import folders as folders_repo
from keywarden.persistence.store import RecordStore


logger = logging.getLogger(__name__)

_CARD_FIELDS = ("cardholderName", "brand", "number", "expMonth", "expYear", "code")
_IDENTITY_FIELDS = (
    "title",
    "firstName",
    "middleName",
    "lastName",
    "address1",
    "address2",
    "address3",
    "city",
    "state",
    "postalCode",
    "country",
    "company",
    "email",
    "phone",
    "ssn",
    "username",
    "passportNumber",
    "licenseNumber",
)


class _ImportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ImportedFolder(_ImportModel):
    name: str | None = None


class FolderRelationship(_ImportModel):
    # key is the cipher position, value the folder position in the same request.
    key: int
    value: int


class ImportedCipher(_ImportModel):
    type: int = CipherType.LOGIN
    name: str | None = None
    notes: str | None = None
    favorite: bool | None = None
    reprompt: int | None = None
    login: dict[str, Any] | None = None
    card: dict[str, Any] | None = None
    identity: dict[str, Any] | None = None
    secure_note: dict[str, Any] | None = None
    fields: list[dict[str, Any]] | None = None
    password_history: list[dict[str, Any]] | None = None
    key: str | None = None


class ImportRequest(_ImportModel):
    ciphers: list[ImportedCipher] = Field(default_factory=list)
    folders: list[ImportedFolder] = Field(default_factory=list)
    folder_relationships: list[FolderRelationship] = Field(default_factory=list)


@dataclass(frozen=True)
class ImportResult:
    folders: int
    ciphers: int


def parse_import_request(body: Any) -> ImportRequest:
    if not isinstance(body, dict):
        raise BadRequest("Invalid JSON")
    try:
        return ImportRequest.model_validate(body)
    except ValidationError as exc:
        raise BadRequest("Invalid import payload") from exc


def _blank_to_none(value: Any) -> Any:
    return value if value not in ("", None) else None


def _normalize_login(login: dict[str, Any] | None) -> dict[str, Any] | None:
    if not login:
        return None
    uris = login.get("uris")
    return {
        "username": _blank_to_none(login.get("username")),
        "password": _blank_to_none(login.get("password")),
        "uris": [
            {
                "uri": _blank_to_none(uri.get("uri")),
                "uriChecksum": None,
                "match": uri.get("match"),
            }
            for uri in uris
            if isinstance(uri, dict)
        ]
        if uris
        else None,
        "totp": _blank_to_none(login.get("totp")),
        "autofillOnPageLoad": None,
        "fido2Credentials": None,
    }


def _normalize_flat(value: dict[str, Any] | None, field_names: tuple[str, ...]) -> dict[str, Any] | None:
    if not value:
        return None
    return {name: _blank_to_none(value.get(name)) for name in field_names}


def _normalize_fields(fields: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if not fields:
        return None
    return [
        {
            "name": _blank_to_none(field.get("name")),
            "value": _blank_to_none(field.get("value")),
            "type": field.get("type", 0),
            "linkedId": field.get("linkedId"),
        }
        for field in fields
    ]


async def import_vault(store: RecordStore, user_id: str, request: ImportRequest) -> ImportResult:
    """Create folders and ciphers from a client export in one pass.

    Relationships reference positions in the request lists; entries pointing at a
    folder position that does not exist leave the cipher without a folder. The
    revision stamp advances once after everything is written.
    """
    now = utc_now()
    folder_ids: dict[int, str] = {}
    for position, imported in enumerate(request.folders):
        folder = Folder(
            user_id=user_id,
            name=imported.name or "Untitled",
            created_at=now,
            updated_at=now,
        )
        await folders_repo.save(store, folder)
        folder_ids[position] = folder.id

    cipher_folders: dict[int, str] = {}
    for relationship in request.folder_relationships:
        folder_id = folder_ids.get(relationship.value)
        if folder_id is not None:
            cipher_folders[relationship.key] = folder_id

    for position, imported in enumerate(request.ciphers):
        cipher = Cipher(
            user_id=user_id,
            type=imported.type,
            folder_id=cipher_folders.get(position),
            name=imported.name or "Untitled",
            notes=_blank_to_none(imported.notes),
            favorite=bool(imported.favorite),
            login=_normalize_login(imported.login),
            card=_normalize_flat(imported.card, _CARD_FIELDS),
            identity=_normalize_flat(imported.identity, _IDENTITY_FIELDS),
            secure_note=imported.secure_note or None,
            fields=_normalize_fields(imported.fields),
            password_history=imported.password_history or None,
            reprompt=imported.reprompt or 0,
            key=imported.key,
            created_at=now,
            updated_at=now,
        )
        await ciphers_repo.save(store, cipher)

    await store.touch_revision_date(user_id)
    logger.info(
        "vault.import.completed user_id=%s folders=%d ciphers=%d",
        user_id,
        len(request.folders),
        len(request.ciphers),
    )
    return ImportResult(folders=len(request.folders), ciphers=len(request.ciphers))
