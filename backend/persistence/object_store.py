"""
Object store adapters.
Flat bucket of UTF-8 keys -> opaque byte blobs. The only concurrency primitive
is the conditional put (write-if-absent).
"""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol


class StoreError(Exception):
    """Object store call failed (network, permission, backend error)."""


class PreconditionFailedError(StoreError):
    """Conditional write rejected: the key already holds a value."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object already exists: {key}")
        self.key = key


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int


class ObjectStore(Protocol):
    """Key/value blob store. Listing is in lexicographic key order."""

    def get(self, key: str) -> bytes | None:
        """Return object content, or None when the key is absent."""

    def put(self, key: str, data: bytes, content_type: str, if_absent: bool = False) -> None:
        """Write data at key. With if_absent, raise PreconditionFailedError if key exists."""

    def delete(self, key: str) -> None:
        """Delete key. Missing keys are not an error."""

    def list(self, prefix: str, limit: int | None = None) -> list[ObjectInfo]:
        """Return up to limit objects whose key starts with prefix, sorted by key."""


# ---------- MemoryObjectStore ----------


class MemoryObjectStore:
    """In-process store. Conditional put is atomic under the store lock."""

    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._objects.get(key)
        return entry[0] if entry else None

    def content_type(self, key: str) -> str | None:
        with self._lock:
            entry = self._objects.get(key)
        return entry[1] if entry else None

    def put(self, key: str, data: bytes, content_type: str, if_absent: bool = False) -> None:
        with self._lock:
            if if_absent and key in self._objects:
                raise PreconditionFailedError(key)
            self._objects[key] = (bytes(data), content_type)

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def list(self, prefix: str, limit: int | None = None) -> list[ObjectInfo]:
        with self._lock:
            keys = sorted(k for k in self._objects if k.startswith(prefix))
            if limit is not None:
                keys = keys[:limit]
            return [ObjectInfo(key=k, size=len(self._objects[k][0])) for k in keys]

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


# ---------- LocalFileStore ----------

_TMP_SUFFIX = ".tmp"


def _is_temp_file(name: str) -> bool:
    """In-flight write: ".{name}.{pid}.{thread}.tmp"."""
    return name.startswith(".") and name.endswith(_TMP_SUFFIX) and name.count(".") >= 4


class LocalFileStore:
    """
    Filesystem store: key "a/b.json" lives at root_dir / "a" / "b.json".
    Conditional put hard-links a fully written temp file into place, so it
    holds across processes and readers never see a partial object.
    Content type is not persisted.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/"):
            raise ValueError(f"Invalid key: {key!r}")
        path = (self.root_dir / key).resolve()
        try:
            path.relative_to(self.root_dir)
        except ValueError as exc:
            raise ValueError(f"Key escapes root_dir: {key}") from exc
        return path

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Failed to read {key}") from exc

    def put(self, key: str, data: bytes, content_type: str, if_absent: bool = False) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}{_TMP_SUFFIX}")
            tmp.write_bytes(data)
            if if_absent:
                # link publishes the complete file, or fails when the key exists
                try:
                    os.link(tmp, path)
                finally:
                    tmp.unlink(missing_ok=True)
                return
            tmp.replace(path)
        except FileExistsError as exc:
            raise PreconditionFailedError(key) from exc
        except OSError as exc:
            raise StoreError(f"Failed to write {key}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Failed to delete {key}") from exc

    def list(self, prefix: str, limit: int | None = None) -> list[ObjectInfo]:
        # only the directory holding the prefix can contain matching keys
        dir_part = prefix.rpartition("/")[0]
        base = self._path(dir_part) if dir_part else self.root_dir
        if not base.is_dir():
            return []
        keys: list[tuple[str, int]] = []
        for file_path in base.rglob("*"):
            if not file_path.is_file() or _is_temp_file(file_path.name):
                continue
            rel = file_path.relative_to(self.root_dir).as_posix()
            if rel.startswith(prefix):
                keys.append((rel, file_path.stat().st_size))
        keys.sort()
        if limit is not None:
            keys = keys[:limit]
        return [ObjectInfo(key=k, size=size) for k, size in keys]


# ---------- S3ObjectStore ----------

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    error = response.get("Error") or {}
    return str(error.get("Code") or "")


class S3ObjectStore:
    """S3-compatible bucket (Cloudflare R2, AWS S3, MinIO) via a boto3 client."""

    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self.bucket = bucket

    @classmethod
    def from_credentials(
        cls,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "auto",
    ) -> S3ObjectStore:
        import boto3
        from botocore.config import Config

        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(s3={"addressing_style": "path"}),
        )
        return cls(client, bucket)

    def get(self, key: str) -> bytes | None:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise StoreError(f"Failed to read {key}") from exc
        return response["Body"].read()

    def put(self, key: str, data: bytes, content_type: str, if_absent: bool = False) -> None:
        kwargs: dict[str, Any] = dict(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        if if_absent:
            kwargs["IfNoneMatch"] = "*"
        try:
            self._client.put_object(**kwargs)
        except Exception as exc:  # noqa: BLE001
            if if_absent and _error_code(exc) in _PRECONDITION_CODES:
                raise PreconditionFailedError(key) from exc
            raise StoreError(f"Failed to write {key}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            if _error_code(exc) in _NOT_FOUND_CODES:
                return
            raise StoreError(f"Failed to delete {key}") from exc

    def list(self, prefix: str, limit: int | None = None) -> list[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if limit is not None:
            params["PaginationConfig"] = {"MaxItems": limit}
        objects: list[ObjectInfo] = []
        try:
            for page in paginator.paginate(**params):
                for obj in page.get("Contents", []) or []:
                    key = obj.get("Key")
                    if key:
                        objects.append(ObjectInfo(key=key, size=int(obj.get("Size") or 0)))
        except Exception as exc:  # noqa: BLE001
            raise StoreError(f"Failed to list {prefix}") from exc
        objects.sort(key=lambda o: o.key)
        if limit is not None:
            objects = objects[:limit]
        return objects
