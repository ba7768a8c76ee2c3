"""
Persistence layer on a flat object store.
No business logic; only read/write interfaces.
"""
from .object_store import (
    LocalFileStore,
    MemoryObjectStore,
    ObjectInfo,
    ObjectStore,
    PreconditionFailedError,
    S3ObjectStore,
    StoreError,
)
from .json_store import JsonDocumentStore
from .match_reports import DuplicateMatchReportError, MatchReportRepository
from .repositories import DownloadTokenRepository, EmailAlreadyRegisteredError, UserRepository
from .store import get_documents, get_store, set_store

__all__ = [
    "LocalFileStore",
    "MemoryObjectStore",
    "ObjectInfo",
    "ObjectStore",
    "PreconditionFailedError",
    "S3ObjectStore",
    "StoreError",
    "JsonDocumentStore",
    "DuplicateMatchReportError",
    "MatchReportRepository",
    "DownloadTokenRepository",
    "EmailAlreadyRegisteredError",
    "UserRepository",
    "get_documents",
    "get_store",
    "set_store",
]
