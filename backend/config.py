"""
Runtime configuration from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _default_storage_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "data" / "store"


def _r2_endpoint() -> str | None:
    explicit = _env("R2_ENDPOINT_URL")
    if explicit:
        return explicit
    account_id = _env("CLOUDFLARE_ACCOUNT_ID")
    return f"https://{account_id}.r2.cloudflarestorage.com" if account_id else None


def _cors_origins() -> list[str]:
    raw = _env("CORS_ORIGINS")
    if not raw:
        return ["*"]
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


@dataclass(frozen=True)
class Settings:
    jwt_secret: str
    access_token_expire_minutes: int
    storage_backend: str  # "memory" | "local" | "s3"
    local_storage_dir: Path
    s3_endpoint_url: str | None
    s3_access_key: str | None
    s3_secret_key: str | None
    data_bucket: str | None
    media_bucket: str
    presigned_url_ttl_seconds: int
    multipart_url_ttl_seconds: int
    download_token_ttl_seconds: int
    log_level: str
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            jwt_secret=_env("JWT_SECRET_KEY", "dev-secret-change-in-production"),
            access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60),
            storage_backend=(_env("STORAGE_BACKEND", "local") or "local").lower(),
            local_storage_dir=Path(_env("LOCAL_STORAGE_DIR") or _default_storage_dir()),
            s3_endpoint_url=_r2_endpoint(),
            s3_access_key=_env("R2_ACCESS_KEY"),
            s3_secret_key=_env("R2_SECRET_KEY"),
            data_bucket=_env("R2_DATA_BUCKET_NAME"),
            media_bucket=_env("R2_BUCKET_NAME", "videos"),
            presigned_url_ttl_seconds=_env_int("PRESIGNED_URL_TTL_SECONDS", 300),
            multipart_url_ttl_seconds=_env_int("MULTIPART_URL_TTL_SECONDS", 900),
            download_token_ttl_seconds=_env_int("DOWNLOAD_TOKEN_TTL_SECONDS", 300),
            log_level=_env("LOG_LEVEL", "INFO"),
            cors_origins=_cors_origins(),
        )


def get_settings() -> Settings:
    """Fresh read of the environment on every call."""
    return Settings.from_env()
