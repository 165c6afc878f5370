from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


# HS256 secrets shorter than this are accepted but logged as weak at startup.
MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "keywarden"
    log_level: str = "INFO"

    # Select the key-value backend: redis for deployments, memory for dev/tests.
    kv_backend: str = "redis"
    redis_url: str = "redis://localhost:6379/0"
    # Prefix every key so the vault can share a Redis database.
    kv_prefix: str = "keywarden"

    # Signing secret for access tokens; the app refuses to start without it.
    jwt_secret: str | None = None
    jwt_issuer: str = "keywarden"
    # Access tokens are short-lived; clients refresh them with the refresh token.
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_days: int = 30

    # Consecutive failed logins before the account is locked.
    login_max_attempts: int = 5
    login_lockout_minutes: int = 15
    # Fixed-window API throttling per user and client address.
    rate_limit_enabled: bool = True
    api_requests_per_minute: int = 60
    api_window_seconds: int = 60
    # Choose fail-open or fail-closed behavior when the backend is unavailable.
    rl_fail_mode: str = "closed"
    # Honor CF-Connecting-IP and X-Forwarded-For only when a trusted proxy sets them.
    trust_proxy_headers: bool = False

    # KDF parameters reported by prelogin for unknown emails and used at registration.
    default_kdf_type: int = 0
    default_kdf_iterations: int = 600000
    default_kdf_memory: int | None = None
    default_kdf_parallelism: int | None = None

    # Local filesystem target for attachment blobs.
    attachments_dir: str = "./var/attachments"
    attachment_max_bytes: int = 100 * 1024 * 1024
    # Signed download URLs stay valid for a short window only.
    attachment_url_ttl_seconds: int = 300

    icon_service_url: str = "https://icons.bitwarden.net"
    # Keep icon fetches short so the proxy never stalls a client.
    ext_call_timeout_ms: int = 8000

    server_version: str = "2025.12.0"
    # Base URL advertised to clients; falls back to the request origin when unset.
    public_base_url: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
