"""
Blob storage for document files.

Two backends implement the same async ``Storage`` protocol:

  - ``LocalStorage`` keeps files under a directory and hands out signed,
    short-lived download tokens served by the ``/files`` router.
  - ``S3Storage`` talks to S3 or an S3-compatible store (Cloudflare R2,
    MinIO) through boto3 and hands out presigned GET URLs.

Keys are opaque to callers; ``generate_file_key`` builds tenant-scoped
keys so that one tenant's blobs never share a prefix with another's.
"""

from __future__ import annotations

import asyncio
import re
import secrets
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Protocol

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from hmsnova.config.settings import Settings, StorageBackend
from hmsnova.core.errors import ErrorCode, StorageError, ValidationError
from hmsnova.core.security import create_download_token

_log = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


class Storage(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def get_url(self, key: str, ttl_seconds: int) -> str: ...

    async def get(self, key: str) -> bytes: ...


def generate_file_key(tenant_id: str, folder: str, filename: str) -> str:
    """
    Build ``{tenant}/{folder}/{timestamp}-{random}-{base}{ext}``.

    The base name is reduced to a safe character set; the extension is
    lower-cased.
    """
    path = PurePosixPath(filename.replace("\\", "/")).name or "file"
    suffix = PurePosixPath(path).suffix.lower()
    base = _UNSAFE_CHARS.sub("-", path[: len(path) - len(suffix)] if suffix else path)
    base = base.strip("-")[:80] or "file"
    timestamp = int(datetime.now(UTC).timestamp() * 1000)
    return f"{tenant_id}/{folder}/{timestamp}-{secrets.token_hex(4)}-{base}{suffix}"


class LocalStorage:
    """Filesystem-backed storage rooted at one directory."""

    def __init__(self, root: Path, url_prefix: str = "/api/v1/files") -> None:
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._url_prefix = url_prefix.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise ValidationError(
                "Storage key escapes the storage root",
                detail={"key": key},
                code=ErrorCode.STORAGE_KEY_INVALID,
            )
        return path

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            _log.error("blob_upload_failed", key=key, error=str(exc))
            raise StorageError(key=key) from exc
        _log.debug("blob_uploaded", key=key, size_bytes=len(data), content_type=content_type)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError("Could not delete file", key=key) from exc

    async def get_url(self, key: str, ttl_seconds: int) -> str:
        self._path_for(key)
        return f"{self._url_prefix}/{create_download_token(key, ttl_seconds)}"

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError("File not found in storage", key=key) from exc
        except OSError as exc:
            raise StorageError(key=key) from exc


class S3Storage:
    """
    S3 / R2 storage. boto3 is synchronous, so every call is pushed to a
    worker thread.
    """

    def __init__(self, client, bucket: str) -> None:  # type: ignore[no-untyped-def]
        self._client = client
        self._bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> S3Storage:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key_id.get_secret_value()
            if settings.s3_access_key_id
            else None,
            aws_secret_access_key=settings.s3_secret_access_key.get_secret_value()
            if settings.s3_secret_access_key
            else None,
            region_name=settings.s3_region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if settings.s3_use_path_style else "virtual"},
            ),
        )
        return cls(client, settings.s3_bucket)

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            _log.error("blob_upload_failed", key=key, error=str(exc))
            raise StorageError(key=key) from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Could not delete file", key=key) from exc

    async def get_url(self, key: str, ttl_seconds: int) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Could not sign download URL", key=key) from exc

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=key
            )
            return await asyncio.to_thread(response["Body"].read)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(key=key) from exc


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == StorageBackend.S3:
        return S3Storage.from_settings(settings)
    return LocalStorage(settings.storage_local_path)
