"""
Service layer: media bucket orchestration (presigned uploads and downloads).
"""
from .media import (
    CHUNK_SIZE_BYTES,
    MediaStorage,
    build_user_scoped_key,
    get_media,
    part_count_for,
    set_media,
)

__all__ = [
    "CHUNK_SIZE_BYTES",
    "MediaStorage",
    "build_user_scoped_key",
    "get_media",
    "part_count_for",
    "set_media",
]
