"""
Data store wiring: which ObjectStore backs the JSON documents.
"""
from __future__ import annotations

import logging

from backend.config import Settings, get_settings

from .json_store import JsonDocumentStore
from .object_store import LocalFileStore, MemoryObjectStore, ObjectStore, S3ObjectStore

logger = logging.getLogger(__name__)

_store: ObjectStore | None = None


def set_store(store: ObjectStore | None) -> None:
    """Install the data store. Call before first get_store if not using the configured one."""
    global _store
    _store = store


def build_store(settings: Settings) -> ObjectStore:
    backend = settings.storage_backend
    if backend == "memory":
        return MemoryObjectStore()
    if backend == "local":
        return LocalFileStore(settings.local_storage_dir)
    if backend == "s3":
        if not settings.data_bucket:
            raise RuntimeError("R2_DATA_BUCKET_NAME must be defined for the s3 storage backend")
        return S3ObjectStore.from_credentials(
            settings.data_bucket,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
        )
    raise RuntimeError(f"Unknown STORAGE_BACKEND: {backend}")


def get_store() -> ObjectStore:
    """Return the installed data store, building it from settings on first use."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = build_store(settings)
        logger.info("Data store initialized backend=%s", settings.storage_backend)
    return _store


def get_documents() -> JsonDocumentStore:
    return JsonDocumentStore(get_store())
