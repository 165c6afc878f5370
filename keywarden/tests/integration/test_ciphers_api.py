from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

import pytest
from httpx import ASGITransport, AsyncClient

from keywarden.apps.api.main import create_app
from keywarden.core.config import get_settings
from keywarden.tests.utils.auth import register_and_login


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


def _login_cipher(name: str = "2.encrypted-name", **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": 1,
        "name": name,
        "notes": None,
        "favorite": False,
        "login": {"username": "2.user", "password": "2.pass", "uris": [{"uri": "2.uri"}]},
        "reprompt": 0,
    }
    payload.update(extra)
    return payload


async def _create(client: AsyncClient, headers: dict[str, str], **extra: Any) -> dict[str, Any]:
    response = await client.post("/api/ciphers", json=_login_cipher(**extra), headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_and_fetch_cipher() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        created = await _create(client, headers)
        fetched = await client.get(f"/api/ciphers/{created['id']}", headers=headers)
        details = await client.get(f"/api/ciphers/{created['id']}/details", headers=headers)

    assert created["object"] == "cipher"
    assert created["type"] == 1
    assert created["login"]["username"] == "2.user"
    assert created["attachments"] is None
    assert created["deletedDate"] is None
    assert created["revisionDate"].endswith("Z")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]
    assert details.json()["name"] == "2.encrypted-name"


@pytest.mark.asyncio
async def test_create_accepts_wrapped_payload_and_requires_name() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        wrapped = await client.post(
            "/api/ciphers/create",
            json={"cipher": _login_cipher(name="2.wrapped"), "collectionIds": []},
            headers=headers,
        )
        nameless = await client.post(
            "/api/ciphers", json=_login_cipher(name=""), headers=headers
        )
    assert wrapped.status_code == 200
    assert wrapped.json()["name"] == "2.wrapped"
    assert nameless.status_code == 400


@pytest.mark.asyncio
async def test_update_replaces_provided_fields_only() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        created = await _create(client, headers, notes="2.notes")
        response = await client.put(
            f"/api/ciphers/{created['id']}",
            json={"type": 1, "name": "2.renamed", "favorite": True, "login": None},
            headers=headers,
        )
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "2.renamed"
    assert body["favorite"] is True
    assert body["login"] is None
    assert body["notes"] == "2.notes"
    assert body["creationDate"] == created["creationDate"]


@pytest.mark.asyncio
async def test_unknown_folder_reference_is_rejected() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        response = await client.post(
            "/api/ciphers", json=_login_cipher(folderId="missing-folder"), headers=headers
        )
    assert response.status_code == 400
    assert response.json()["error_description"] == "Folder not found"


@pytest.mark.asyncio
async def test_soft_delete_restore_and_permanent_delete() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        created = await _create(client, headers)
        cipher_id = created["id"]

        trashed = await client.put(f"/api/ciphers/{cipher_id}/delete", headers=headers)
        assert trashed.status_code == 200
        assert trashed.json()["deletedDate"] is not None

        active = (await client.get("/api/ciphers", headers=headers)).json()["data"]
        everything = (await client.get("/api/ciphers?deleted=true", headers=headers)).json()["data"]
        assert active == []
        assert [item["id"] for item in everything] == [cipher_id]

        restored = await client.put(f"/api/ciphers/{cipher_id}/restore", headers=headers)
        assert restored.json()["deletedDate"] is None

        removed = await client.delete(f"/api/ciphers/{cipher_id}/delete", headers=headers)
        assert removed.status_code == 204
        missing = await client.get(f"/api/ciphers/{cipher_id}", headers=headers)

    assert missing.status_code == 404
    assert missing.json()["error_description"] == "Cipher not found"


@pytest.mark.asyncio
async def test_partial_update_sets_favorite_and_folder() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        folder = (await client.post("/api/folders", json={"name": "2.work"}, headers=headers)).json()
        created = await _create(client, headers)
        response = await client.put(
            f"/api/ciphers/{created['id']}/partial",
            json={"folderId": folder["id"], "favorite": True},
            headers=headers,
        )
    assert response.status_code == 200
    assert response.json()["folderId"] == folder["id"]
    assert response.json()["favorite"] is True


@pytest.mark.asyncio
async def test_move_ciphers_into_folder_skips_unknown_ids() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        folder = (await client.post("/api/folders", json={"name": "2.bulk"}, headers=headers)).json()
        first = await _create(client, headers, name="2.one")
        second = await _create(client, headers, name="2.two")
        moved = await client.post(
            "/api/ciphers/move",
            json={"ids": [first["id"], second["id"], "not-mine"], "folderId": folder["id"]},
            headers=headers,
        )
        listed = (await client.get("/api/ciphers", headers=headers)).json()["data"]

    assert moved.status_code == 204
    assert {item["folderId"] for item in listed} == {folder["id"]}


@pytest.mark.asyncio
async def test_import_creates_folders_and_ciphers() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        response = await client.post(
            "/api/ciphers/import",
            json={
                "folders": [{"name": "2.imported"}],
                "ciphers": [
                    _login_cipher(name="2.a"),
                    {"type": 2, "name": "2.note", "secureNote": {"type": 0}},
                ],
                "folderRelationships": [{"key": 0, "value": 0}],
            },
            headers=headers,
        )
        sync = (await client.get("/api/sync", headers=headers)).json()

    assert response.status_code == 200
    assert [folder["name"] for folder in sync["folders"]] == ["2.imported"]
    by_name = {cipher["name"]: cipher for cipher in sync["ciphers"]}
    assert by_name["2.a"]["folderId"] == sync["folders"][0]["id"]
    assert by_name["2.note"]["folderId"] is None


@pytest.mark.asyncio
async def test_sync_returns_whole_vault() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        await client.post("/api/folders", json={"name": "2.folder"}, headers=headers)
        created = await _create(client, headers)
        await client.delete(f"/api/ciphers/{created['id']}", headers=headers)
        response = await client.get("/api/sync", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "sync"
    assert body["profile"]["email"] == "owner@example.com"
    assert len(body["folders"]) == 1
    # Trashed ciphers still sync so clients can show them in the trash.
    assert body["ciphers"][0]["deletedDate"] is not None
    assert body["domains"]["object"] == "domains"
    assert body["collections"] == [] and body["sends"] == [] and body["policies"] == []


@pytest.mark.asyncio
async def test_attachment_upload_download_and_delete() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        cipher = await _create(client, headers)
        created = await client.post(
            f"/api/ciphers/{cipher['id']}/attachment/v2",
            json={"key": "2.attachment-key", "fileName": "2.file-name", "fileSize": 11},
            headers=headers,
        )
        assert created.status_code == 200
        upload = created.json()
        assert upload["object"] == "attachment-fileUpload"
        assert upload["fileUploadType"] == 0
        attachment_id = upload["attachmentId"]

        uploaded = await client.post(
            urlsplit(upload["url"]).path,
            files={"data": ("blob.bin", b"hello vault", "application/octet-stream")},
            headers=headers,
        )
        assert uploaded.status_code == 200

        meta = await client.get(
            f"/api/ciphers/{cipher['id']}/attachment/{attachment_id}", headers=headers
        )
        assert meta.status_code == 200
        assert meta.json()["size"] == "11"
        assert meta.json()["sizeName"] == "11 Bytes"
        download_url = urlsplit(meta.json()["url"])

        downloaded = await client.get(f"{download_url.path}?{download_url.query}")
        assert downloaded.status_code == 200
        assert downloaded.content == b"hello vault"

        forged = await client.get(f"{download_url.path}?token=forged")
        assert forged.status_code == 401

        deleted = await client.delete(
            f"/api/ciphers/{cipher['id']}/attachment/{attachment_id}", headers=headers
        )
        assert deleted.status_code == 200
        assert deleted.json()["cipher"]["attachments"] is None
        gone = await client.get(f"{download_url.path}?{download_url.query}")

    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_cipher_listing_includes_attachment_metadata() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        cipher = await _create(client, headers)
        await client.post(
            f"/api/ciphers/{cipher['id']}/attachment/v2",
            json={"key": "2.k", "fileName": "2.f", "fileSize": 2048},
            headers=headers,
        )
        listed = (await client.get("/api/ciphers", headers=headers)).json()["data"]

    attachments = listed[0]["attachments"]
    assert len(attachments) == 1
    assert attachments[0]["size"] == "2048"
    assert attachments[0]["sizeName"] == "2 KB"


@pytest.mark.asyncio
async def test_other_users_cipher_ids_are_not_found() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        response = await client.get("/api/ciphers/does-not-exist", headers=headers)
        deleted = await client.delete("/api/ciphers/does-not-exist/delete", headers=headers)
    assert response.status_code == 404
    assert deleted.status_code == 404


@pytest.mark.asyncio
async def test_move_without_ids_is_rejected() -> None:
    async with _client() as client:
        headers = await register_and_login(client)
        await _create(client, headers)
        before = (await client.get("/api/accounts/revision-date", headers=headers)).json()
        response = await client.post("/api/ciphers/move", json={"folderId": None}, headers=headers)
        after = (await client.get("/api/accounts/revision-date", headers=headers)).json()
    assert response.status_code == 400
    assert response.json()["error_description"] == "ids array is required"
    assert after == before


@pytest.mark.asyncio
async def test_cipher_mutations_advance_revision_and_reads_do_not() -> None:
    async with _client() as client:
        headers = await register_and_login(client)

        async def revision() -> int:
            return (await client.get("/api/accounts/revision-date", headers=headers)).json()

        cipher = await _create(client, headers)
        cipher_id = cipher["id"]
        stamp = await revision()

        for path in ("/api/ciphers", f"/api/ciphers/{cipher_id}", "/api/folders", "/api/sync"):
            assert (await client.get(path, headers=headers)).status_code == 200
        assert await revision() == stamp

        upload = (
            await client.post(
                f"/api/ciphers/{cipher_id}/attachment/v2",
                json={"key": "2.k", "fileName": "2.f", "fileSize": 3},
                headers=headers,
            )
        ).json()
        assert await revision() > stamp
        attachment_path = f"/api/ciphers/{cipher_id}/attachment/{upload['attachmentId']}"
        mutations = [
            ("PUT", f"/api/ciphers/{cipher_id}", {"name": "2.renamed"}),
            ("PUT", f"/api/ciphers/{cipher_id}/partial", {"favorite": True}),
            ("PUT", f"/api/ciphers/{cipher_id}/delete", None),
            ("PUT", f"/api/ciphers/{cipher_id}/restore", None),
            ("DELETE", f"/api/ciphers/{cipher_id}", None),
            ("PUT", f"/api/ciphers/{cipher_id}/restore", None),
            ("POST", "/api/ciphers/move", {"ids": [cipher_id], "folderId": None}),
            ("DELETE", attachment_path, None),
            ("DELETE", f"/api/ciphers/{cipher_id}/delete", None),
        ]
        for method, path, body in mutations:
            stamp = await revision()
            response = await client.request(method, path, json=body, headers=headers)
            assert response.status_code in (200, 204), (method, path, response.text)
            assert await revision() > stamp, (method, path)


@pytest.mark.asyncio
async def test_upload_over_size_limit_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("ATTACHMENT_MAX_BYTES", "8")
    get_settings.cache_clear()
    async with _client() as client:
        headers = await register_and_login(client)
        cipher = await _create(client, headers)
        upload = (
            await client.post(
                f"/api/ciphers/{cipher['id']}/attachment/v2",
                json={"key": "2.k", "fileName": "2.f", "fileSize": 4},
                headers=headers,
            )
        ).json()
        response = await client.post(
            urlsplit(upload["url"]).path,
            files={"data": ("blob.bin", b"more than eight bytes", "application/octet-stream")},
            headers=headers,
        )
        meta = await client.get(
            f"/api/ciphers/{cipher['id']}/attachment/{upload['attachmentId']}", headers=headers
        )
    assert response.status_code == 400
    assert response.json()["error_description"] == "Attachment exceeds the maximum size"
    assert meta.json()["size"] == "4"
