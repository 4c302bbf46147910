"""Object storage for playlist records and generated media.

Two backends share one small interface:
- R2Storage: Cloudflare R2 through boto3 (production)
- MemoryStore: process-local dicts (tests and throwaway local runs)

Both are synchronous; async callers go through ``asyncio.to_thread``.
"""

import asyncio
import base64
import json
import logging
import mimetypes
import secrets
import threading
import time
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hyde.config import Settings, get_settings
from hyde.errors import StorageError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


class ObjectStore(Protocol):
    """Key/value object store holding JSON documents and binary media."""

    def read_json(self, key: str) -> dict | None:
        """Return the JSON document at ``key``, or None if it does not exist."""
        ...

    def write_json(self, key: str, data: dict) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def list_keys(self, prefix: str = "") -> list[str]:
        ...

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...


class R2Storage:
    """Thin wrapper around boto3 for Cloudflare R2 operations."""

    def __init__(self, settings: Settings | None = None, client=None) -> None:
        s = settings or get_settings()
        if client is None:
            if not (s.r2_access_key_id and s.r2_secret_access_key and s.r2_endpoint_url):
                raise StorageError(
                    "R2 storage requires R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY "
                    "and R2_ENDPOINT_URL"
                )
            client = boto3.client(
                "s3",
                endpoint_url=s.r2_endpoint_url,
                aws_access_key_id=s.r2_access_key_id,
                aws_secret_access_key=s.r2_secret_access_key,
            )
        self._client = client
        self._bucket = s.r2_bucket_name
        self._public_base_url = (s.r2_public_base_url or "").rstrip("/")

    @property
    def bucket(self) -> str:
        """Return the configured R2 bucket name."""
        return self._bucket

    def read_json(self, key: str) -> dict | None:
        """Read a JSON object directly from R2.

        Returns:
            Dictionary containing the JSON data, or None if the key is missing.

        Raises:
            ClientError: If the read fails for any other reason.
        """
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return None
            logger.error(f"Failed to read JSON from {key}: {e}")
            raise
        content = response["Body"].read().decode("utf-8")
        return json.loads(content)

    def write_json(self, key: str, data: dict) -> None:
        """Upload a JSON object to R2.

        Raises:
            ClientError: If upload fails.
        """
        try:
            body = json.dumps(data, indent=2, default=str)
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
            logger.debug(f"Uploaded JSON -> r2://{self._bucket}/{key}")
        except ClientError as e:
            logger.error(f"Failed to upload JSON to {key}: {e}")
            raise

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            logger.error(f"Failed to delete {key}: {e}")
            raise

    def list_keys(self, prefix: str = "") -> list[str]:
        """List every key under ``prefix`` (paginated, scans the whole bucket)."""
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    keys.append(obj["Key"])
        except ClientError as e:
            logger.error(f"Failed to list objects with prefix '{prefix}': {e}")
            raise
        return keys

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=3600",
            )
            logger.info(f"Uploaded {len(data)} bytes -> r2://{self._bucket}/{key}")
        except ClientError as e:
            logger.error(f"Failed to upload {key}: {e}")
            raise

    def public_url(self, key: str) -> str:
        if not self._public_base_url:
            raise StorageError("R2_PUBLIC_BASE_URL is not configured")
        return f"{self._public_base_url}/{key}"


class MemoryStore:
    """In-process object store. Contents are lost when the process exits."""

    def __init__(self) -> None:
        self._docs: dict[str, str] = {}
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def read_json(self, key: str) -> dict | None:
        with self._lock:
            raw = self._docs.get(key)
        return json.loads(raw) if raw is not None else None

    def write_json(self, key: str, data: dict) -> None:
        # Stored serialized so callers can never mutate a stored document.
        raw = json.dumps(data, default=str)
        with self._lock:
            self._docs[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._docs.pop(key, None)
            self._blobs.pop(key, None)

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            keys = list(self._docs) + list(self._blobs)
        return sorted(k for k in keys if k.startswith(prefix))

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self._blobs[key] = (data, content_type)

    def get_bytes(self, key: str) -> tuple[bytes, str] | None:
        with self._lock:
            return self._blobs.get(key)

    def public_url(self, key: str) -> str:
        return f"memory://{key}"


def to_data_url(data: bytes, content_type: str) -> str:
    """Encode bytes as an inline ``data:`` URL."""
    return f"data:{content_type};base64,{base64.b64encode(data).decode('utf-8')}"


def media_key(folder: str, content_type: str) -> str:
    """Generate a unique object key like ``audio/1718000000000-a1b2c3.mp3``."""
    ext = _EXTENSIONS.get(content_type) or (mimetypes.guess_extension(content_type) or ".bin").lstrip(".")
    return f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(3)}.{ext}"


async def upload_media(
    store: ObjectStore,
    data: bytes,
    content_type: str,
    folder: str,
) -> str:
    """Store media bytes and return a URL the client can play or display.

    Falls back to an inline data URL when the upload fails, so callers always
    get something usable (at the cost of a much larger payload).
    """
    key = media_key(folder, content_type)
    try:
        await asyncio.to_thread(store.put_bytes, key, data, content_type)
        return store.public_url(key)
    except (BotoCoreError, ClientError, StorageError, OSError) as e:
        logger.warning(
            f"Media upload to '{folder}' failed ({e}); "
            f"falling back to inline data URL ({len(data)} bytes)"
        )
        return to_data_url(data, content_type)
