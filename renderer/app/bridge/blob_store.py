"""
Transient blob store for remote job I/O.

The remote runtime cannot receive bytes inline; it downloads inputs from
signed GET URLs and uploads its output to a signed PUT URL. The bridge
owns the keys it writes under ``<prefix>/<job id>/`` and deletes them
once the job is over.

Implementations:
- S3BlobStore: boto3, blocking calls moved to worker threads
- InMemoryBlobStore: process-local, for tests and embedded use
"""

from __future__ import annotations

import functools
import logging
import threading
from typing import Dict, Optional, Protocol
from urllib.parse import quote

import anyio
import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("renderer.bridge")


class BlobStoreError(RuntimeError):
    """Raised when a blob store operation fails."""


class BlobNotFoundError(BlobStoreError):
    """Raised when a key does not exist (yet)."""


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    async def get(self, key: str) -> bytes:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        ...

    async def signed_put_url(
        self, key: str, content_type: str, ttl_seconds: int
    ) -> str:
        ...


# ----------------------------------------------------------------------
# S3
# ----------------------------------------------------------------------


_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class S3BlobStore:
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        client=None,
    ) -> None:
        if not bucket:
            raise ValueError("S3BlobStore requires a bucket")
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    async def _call(self, fn, **kwargs):
        try:
            return await anyio.to_thread.run_sync(functools.partial(fn, **kwargs))
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise BlobNotFoundError(f"No object at '{kwargs.get('Key')}'") from exc
            raise BlobStoreError(f"S3 request failed: {code or exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"S3 request failed: {exc}") from exc

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        await self._call(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    async def get(self, key: str) -> bytes:
        def _read(**kwargs) -> bytes:
            response = self.client.get_object(**kwargs)
            return response["Body"].read()

        return await self._call(_read, Bucket=self.bucket, Key=key)

    async def delete(self, key: str) -> None:
        await self._call(self.client.delete_object, Bucket=self.bucket, Key=key)

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        return await self._call(
            self.client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )

    async def signed_put_url(
        self, key: str, content_type: str, ttl_seconds: int
    ) -> str:
        return await self._call(
            self.client.generate_presigned_url,
            ClientMethod="put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=ttl_seconds,
        )


# ----------------------------------------------------------------------
# In-memory
# ----------------------------------------------------------------------


class InMemoryBlobStore:
    """
    Dict-backed store. Signed URLs are opaque ``memory://`` strings
    that name the key and the permitted method.
    """

    def __init__(self, base_url: str = "memory://blobs") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self._lock = threading.Lock()

    def url_for(self, key: str, method: str) -> str:
        return f"{self.base_url}/{quote(key)}?method={method}"

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self.objects[key] = bytes(data)
            self.content_types[key] = content_type

    async def get(self, key: str) -> bytes:
        with self._lock:
            data: Optional[bytes] = self.objects.get(key)
        if data is None:
            raise BlobNotFoundError(f"No object at '{key}'")
        return data

    async def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
            self.content_types.pop(key, None)

    async def signed_get_url(self, key: str, ttl_seconds: int) -> str:
        return self.url_for(key, "GET")

    async def signed_put_url(
        self, key: str, content_type: str, ttl_seconds: int
    ) -> str:
        return self.url_for(key, "PUT")
