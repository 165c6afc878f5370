from __future__ import annotations

import os

import pytest

from keywarden.core.config import get_settings
from keywarden.persistence.kv import reset_backend_state


TEST_JWT_SECRET = "test-signing-secret-0123456789abcdef"

# Settings are read at app creation; set safe defaults before anything imports them.
os.environ.setdefault("JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("KV_BACKEND", "memory")


@pytest.fixture(autouse=True)
def isolated_vault(monkeypatch, tmp_path) -> None:
    # Give every test a fresh in-memory store and its own attachment directory.
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("KV_BACKEND", "memory")
    monkeypatch.setenv("ATTACHMENTS_DIR", str(tmp_path / "attachments"))
    get_settings.cache_clear()
    reset_backend_state()
    yield
    get_settings.cache_clear()
    reset_backend_state()
