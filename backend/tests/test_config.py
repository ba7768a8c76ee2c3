"""
Tests for environment configuration, store wiring and log helpers.
"""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from backend.config import get_settings
from backend.observability import log_event, mask_email
from backend.persistence import LocalFileStore, MemoryObjectStore, get_store, set_store
from backend.persistence.store import build_store


@pytest.fixture(autouse=True)
def reset_store():
    yield
    set_store(None)


def test_defaults(monkeypatch):
    for name in ["STORAGE_BACKEND", "R2_BUCKET_NAME", "ACCESS_TOKEN_EXPIRE_MINUTES", "CORS_ORIGINS"]:
        monkeypatch.delenv(name, raising=False)
    settings = get_settings()
    assert settings.storage_backend == "local"
    assert settings.media_bucket == "videos"
    assert settings.access_token_expire_minutes == 60
    assert settings.cors_origins == ["*"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "MEMORY")
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    settings = get_settings()
    assert settings.storage_backend == "memory"
    assert settings.access_token_expire_minutes == 15
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_bad_integer_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("DOWNLOAD_TOKEN_TTL_SECONDS", "soon")
    assert get_settings().download_token_ttl_seconds == 300


def test_r2_endpoint_from_account_id(monkeypatch):
    monkeypatch.delenv("R2_ENDPOINT_URL", raising=False)
    monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "acct")
    assert get_settings().s3_endpoint_url == "https://acct.r2.cloudflarestorage.com"


def test_build_store_backends(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    assert isinstance(build_store(get_settings()), MemoryObjectStore)

    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "store"))
    assert isinstance(build_store(get_settings()), LocalFileStore)

    monkeypatch.setenv("STORAGE_BACKEND", "s3")
    monkeypatch.delenv("R2_DATA_BUCKET_NAME", raising=False)
    with pytest.raises(RuntimeError):
        build_store(get_settings())

    monkeypatch.setenv("STORAGE_BACKEND", "ftp")
    with pytest.raises(RuntimeError):
        build_store(get_settings())


def test_get_store_builds_once(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    set_store(None)
    first = get_store()
    assert get_store() is first


def test_log_event_formats_fields(caplog):
    logger = logging.getLogger("backend.tests.events")
    with caplog.at_level(logging.INFO, logger="backend.tests.events"):
        log_event(logger, "match_report.created", match_id="m1", signature=None, owner_id="  ")
    assert caplog.records[-1].getMessage() == "match_report.created match_id=m1"


def test_mask_email():
    assert mask_email("Joana@Example.com") == "jo***@example.com"
    assert mask_email("a@example.com") == "a***@example.com"
    assert mask_email("broken") == "<invalid-email>"
