from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from keywarden.domain.models import Attachment, Cipher, Folder, User


def iso_timestamp(value: datetime | None) -> str | None:
    # Clients expect millisecond precision with a trailing Z.
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def list_response(items: Iterable[Any]) -> dict[str, Any]:
    return {"data": list(items), "object": "list", "continuationToken": None}


def domains_response() -> dict[str, Any]:
    return {
        "equivalentDomains": [],
        "globalEquivalentDomains": [],
        "object": "domains",
    }


def profile_response(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "emailVerified": True,
        "premium": True,
        "premiumFromOrganization": False,
        "usesKeyConnector": False,
        "masterPasswordHint": None,
        "culture": "en-US",
        "twoFactorEnabled": False,
        "key": user.key,
        "privateKey": user.private_key,
        "securityStamp": user.security_stamp,
        "organizations": [],
        "providers": [],
        "providerOrganizations": [],
        "forcePasswordReset": False,
        "avatarColor": None,
        "creationDate": iso_timestamp(user.created_at),
        "object": "profile",
    }


def folder_response(folder: Folder) -> dict[str, Any]:
    return {
        "id": folder.id,
        "name": folder.name,
        "revisionDate": iso_timestamp(folder.updated_at),
        "object": "folder",
    }


def attachment_response(attachment: Attachment, *, url: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": attachment.id,
        "fileName": attachment.file_name,
        # Sizes travel as strings on the wire.
        "size": str(attachment.size),
        "sizeName": attachment.size_name,
        "key": attachment.key,
        "object": "attachment",
    }
    if url is not None:
        payload["url"] = url
    return payload


def cipher_response(cipher: Cipher, attachments: list[Attachment] | None = None) -> dict[str, Any]:
    return {
        "id": cipher.id,
        "organizationId": None,
        "folderId": cipher.folder_id,
        "type": cipher.type,
        "name": cipher.name,
        "notes": cipher.notes,
        "favorite": cipher.favorite,
        "login": cipher.login,
        "card": cipher.card,
        "identity": cipher.identity,
        "secureNote": cipher.secure_note,
        "fields": cipher.fields,
        "passwordHistory": cipher.password_history,
        "reprompt": cipher.reprompt,
        "key": cipher.key,
        "organizationUseTotp": False,
        "creationDate": iso_timestamp(cipher.created_at),
        "revisionDate": iso_timestamp(cipher.updated_at),
        "deletedDate": iso_timestamp(cipher.deleted_at),
        "edit": True,
        "viewPassword": True,
        "permissions": {"delete": True, "restore": True, "edit": True},
        "object": "cipher",
        "collectionIds": [],
        # An empty attachment list is reported as null.
        "attachments": [attachment_response(item) for item in attachments] if attachments else None,
    }
