from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from keywarden.apps.api.deps import get_store
from keywarden.apps.api.main import create_app
from keywarden.core.config import get_settings
from keywarden.core.errors import ConfigurationError
from keywarden.persistence.store import RecordStore
from keywarden.tests.utils.auth import register_and_login


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


@pytest.mark.asyncio
async def test_config_advertises_service_urls() -> None:
    async with _client() as client:
        response = await client.get("/api/config")
    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "config"
    assert body["environment"]["api"] == "http://test/api"
    assert body["environment"]["identity"] == "http://test/identity"


@pytest.mark.asyncio
async def test_config_prefers_public_base_url(monkeypatch) -> None:
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://vault.example.com/")
    get_settings.cache_clear()
    async with _client() as client:
        response = await client.get("/config")
    assert response.json()["environment"]["vault"] == "https://vault.example.com"


@pytest.mark.asyncio
async def test_version_and_known_device() -> None:
    async with _client() as client:
        version = await client.get("/api/version")
        known = await client.get("/api/devices/knowndevice")
        favicon = await client.get("/favicon.ico")
    assert version.json() == get_settings().server_version
    assert known.status_code == 200
    assert known.text == "true"
    assert known.headers["content-type"].startswith("text/plain")
    assert favicon.status_code == 204


@pytest.mark.asyncio
async def test_unsupported_feature_lists_are_empty_but_authenticated() -> None:
    async with _client() as client:
        anonymous = await client.get("/api/sends")
        headers = await register_and_login(client)
        sends = await client.get("/api/sends", headers=headers)
        organizations = await client.get("/api/organizations/some-org", headers=headers)
        domains = await client.get("/api/settings/domains", headers=headers)
    assert anonymous.status_code == 401
    assert sends.json() == {"data": [], "object": "list", "continuationToken": None}
    assert organizations.json()["data"] == []
    assert domains.json()["object"] == "domains"


@pytest.mark.asyncio
async def test_invalid_icon_hostname_returns_no_content() -> None:
    async with _client() as client:
        response = await client.get("/icons/localhost/icon.png")
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_health_reports_backend_status() -> None:
    async with _client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "backend": "up"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope() -> None:
    async with _client() as client:
        response = await client.get("/api/does-not-exist", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 404
    assert response.json() == {
        "error": "Not found",
        "error_description": "Not found",
        "ErrorModel": {"Message": "Not found", "Object": "error"},
    }
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_unexpected_errors_return_generic_500() -> None:
    async def _boom() -> RecordStore:
        raise RuntimeError("disk on fire")

    app = create_app()
    app.dependency_overrides[get_store] = _boom
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/setup/status")
    assert response.status_code == 500
    assert response.json()["error_description"] == "Internal server error"
    assert "disk on fire" not in response.text


@pytest.mark.asyncio
async def test_cors_preflight_allows_client_headers() -> None:
    async with _client() as client:
        response = await client.options(
            "/api/sync",
            headers={
                "Origin": "chrome-extension://vault",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization, Bitwarden-Client-Name",
            },
        )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-max-age"] == "86400"


def test_create_app_requires_signing_secret(monkeypatch) -> None:
    monkeypatch.setenv("JWT_SECRET", "")
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        create_app()


@pytest.mark.asyncio
async def test_validation_errors_map_to_400() -> None:
    async with _client() as client:
        response = await client.post(
            "/api/accounts/prelogin",
            content="not json",
            headers={"Content-Type": "application/json"},
        )
    assert response.status_code == 400
    assert response.json()["ErrorModel"]["Object"] == "error"
