"""
Media bucket access: presigned multipart uploads and presigned downloads.
Pass-through calls to the S3 API; keys are always scoped to "{userId}/".
"""
from __future__ import annotations

import logging
import math
from typing import Any

from backend.config import Settings, get_settings
from backend.persistence.object_store import StoreError

logger = logging.getLogger(__name__)

CHUNK_SIZE_BYTES = 100 * 1024 * 1024
DEFAULT_LIST_LIMIT = 50

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def build_user_scoped_key(user_id: str, raw_file_name: str | None) -> str:
    if not user_id:
        raise ValueError("User id is required to scope uploads")
    sanitized = (raw_file_name or "").strip().lstrip("/")
    if not sanitized:
        raise ValueError("fileName is required")
    prefix = f"{user_id}/"
    return sanitized if sanitized.startswith(prefix) else f"{prefix}{sanitized}"


def part_count_for(parts: int | None, file_size_bytes: int | float | None) -> int:
    """Explicit parts win; otherwise one part per CHUNK_SIZE_BYTES; default 1."""
    if parts is not None:
        count = int(parts)
    elif file_size_bytes is not None:
        if file_size_bytes <= 0:
            raise ValueError("fileSizeBytes must be a positive number")
        count = max(1, math.ceil(file_size_bytes / CHUNK_SIZE_BYTES))
    else:
        count = 1
    if count < 1:
        raise ValueError("Calculated part count must be a positive integer")
    return count


def _positive_or_default(value: int | None, default: int = DEFAULT_LIST_LIMIT) -> int:
    if value is None or value <= 0:
        return default
    return value


class MediaStorage:
    def __init__(
        self,
        client: Any,
        bucket: str,
        presigned_ttl_seconds: int = 300,
        multipart_ttl_seconds: int = 900,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.presigned_ttl_seconds = presigned_ttl_seconds
        self.multipart_ttl_seconds = multipart_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> MediaStorage:
        import boto3
        from botocore.config import Config

        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name="auto",
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        return cls(
            client,
            settings.media_bucket,
            presigned_ttl_seconds=settings.presigned_url_ttl_seconds,
            multipart_ttl_seconds=settings.multipart_url_ttl_seconds,
        )

    def object_exists(self, key: str) -> bool:
        if not key:
            return False
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            response = getattr(exc, "response", None) or {}
            code = str((response.get("Error") or {}).get("Code") or "")
            if code in _NOT_FOUND_CODES:
                return False
            raise StoreError(f"Failed to check {key}") from exc
        return True

    def presigned_download(self, key: str, expires_in: int | None = None) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in or self.presigned_ttl_seconds,
        )

    def start_multipart(self, key: str, content_type: str | None, parts: int, user_id: str | None) -> dict[str, Any]:
        """Create the upload and sign one PUT URL per part."""
        if parts < 1:
            raise ValueError("parts must be at least 1")
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if content_type:
            kwargs["ContentType"] = content_type
        if user_id:
            kwargs["Metadata"] = {"user-id": user_id}
        upload_id = self._client.create_multipart_upload(**kwargs)["UploadId"]
        urls = [
            {
                "partNumber": part_number,
                "url": self._client.generate_presigned_url(
                    "upload_part",
                    Params={
                        "Bucket": self.bucket,
                        "Key": key,
                        "UploadId": upload_id,
                        "PartNumber": part_number,
                    },
                    ExpiresIn=self.multipart_ttl_seconds,
                ),
            }
            for part_number in range(1, parts + 1)
        ]
        logger.info("Multipart upload started key=%s parts=%d", key, parts)
        return {"uploadId": upload_id, "bucket": self.bucket, "urls": urls}

    def complete_multipart(self, key: str, upload_id: str, parts: list[dict[str, Any]]) -> dict[str, Any]:
        if not parts:
            raise ValueError("parts are required to complete upload")
        response = self._client.complete_multipart_upload(
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"ETag": p["ETag"], "PartNumber": int(p["partNumber"])} for p in parts]
            },
        )
        logger.info("Multipart upload completed key=%s", key)
        return {
            "bucket": response.get("Bucket") or self.bucket,
            "location": response.get("Location"),
            "key": response.get("Key") or key,
            "etag": response.get("ETag"),
        }

    def abort_multipart(self, key: str, upload_id: str) -> None:
        self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)

    def list_incomplete(self, user_id: str, max_uploads: int | None = None) -> list[dict[str, Any]]:
        response = self._client.list_multipart_uploads(
            Bucket=self.bucket,
            Prefix=f"{user_id}/",
            MaxUploads=_positive_or_default(max_uploads),
        )
        return [
            {
                "key": upload.get("Key"),
                "uploadId": upload.get("UploadId"),
                "initiatedAt": upload["Initiated"].isoformat() if upload.get("Initiated") else None,
            }
            for upload in response.get("Uploads") or []
        ]

    def list_completed(
        self,
        user_id: str,
        max_keys: int | None = None,
        continuation_token: str | None = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": f"{user_id}/",
            "MaxKeys": _positive_or_default(max_keys),
        }
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        response = self._client.list_objects_v2(**kwargs)
        return {
            "objects": [
                {
                    "key": obj.get("Key"),
                    "size": obj.get("Size"),
                    "lastModified": obj["LastModified"].isoformat() if obj.get("LastModified") else None,
                    "etag": obj.get("ETag"),
                }
                for obj in response.get("Contents") or []
            ],
            "isTruncated": bool(response.get("IsTruncated")),
            "nextContinuationToken": response.get("NextContinuationToken"),
        }


_media: MediaStorage | None = None


def set_media(media: MediaStorage | None) -> None:
    global _media
    _media = media


def get_media() -> MediaStorage:
    global _media
    if _media is None:
        _media = MediaStorage.from_settings(get_settings())
    return _media
