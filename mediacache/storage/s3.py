"""
S3-compatible bucket store (AWS, MinIO, GCS interoperability endpoint).

boto3 is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, AsyncIterator, Callable, Optional

from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..core.errors import NotFound, StoreUnavailable
from .base import STREAM_CHUNK_SIZE, BlobStore, StoredObject, StoredStream

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await asyncio.to_thread(func, *args, **kwargs)


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _MISSING_CODES or status == 404


class S3BlobStore(BlobStore):
    name = "s3"

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        read_only: bool = False,
        client: Any = None,
    ):
        super().__init__()
        if not bucket:
            raise ValueError("S3 store requires a bucket name")
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.read_only = read_only
        self._client = client
        self._owns_client = client is None

    def describe(self) -> str:
        return f"s3://{self.bucket}"

    async def _connect(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = await _run_sync(self._build_client)
        except BotoCoreError as exc:
            raise StoreUnavailable(f"cannot build S3 client: {exc}") from exc
        logger.info("[s3_store] client ready for %s", self.describe())

    def _build_client(self):
        config = BotoConfig(
            retries={"max_attempts": 3, "mode": "standard"},
            connect_timeout=5,
            read_timeout=30,
        )
        return Session().client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region,
            config=config,
        )

    async def _client_ready(self):
        await self.connect()
        return self._client

    async def exists(self, key: str) -> bool:
        client = await self._client_ready()
        try:
            await _run_sync(partial(client.head_object, Bucket=self.bucket, Key=key))
        except ClientError as error:
            if _is_missing(error):
                return False
            raise StoreUnavailable(f"head {self.describe()}/{key}: {error}") from error
        except BotoCoreError as exc:
            raise StoreUnavailable(f"head {self.describe()}/{key}: {exc}") from exc
        return True

    async def _get(self, key: str) -> dict:
        client = await self._client_ready()
        try:
            return await _run_sync(partial(client.get_object, Bucket=self.bucket, Key=key))
        except ClientError as error:
            if _is_missing(error):
                raise NotFound(f"{self.describe()}/{key} missing") from error
            raise StoreUnavailable(f"get {self.describe()}/{key}: {error}") from error
        except BotoCoreError as exc:
            raise StoreUnavailable(f"get {self.describe()}/{key}: {exc}") from exc

    def _content_type(self, key: str, result: dict) -> str:
        return result.get("ContentType") or self.default_content_type(key)

    async def read(self, key: str) -> StoredObject:
        result = await self._get(key)
        body = result["Body"]
        try:
            data = await _run_sync(body.read)
        except BotoCoreError as exc:
            raise StoreUnavailable(f"read {self.describe()}/{key}: {exc}") from exc
        finally:
            await _run_sync(body.close)
        return StoredObject(
            data=data,
            content_type=self._content_type(key, result),
            cache_control=result.get("CacheControl"),
        )

    async def open_stream(self, key: str) -> StoredStream:
        result = await self._get(key)
        body = result["Body"]

        async def chunks() -> AsyncIterator[bytes]:
            try:
                while True:
                    chunk = await _run_sync(body.read, STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                await _run_sync(body.close)

        return StoredStream(
            chunks=chunks(),
            content_type=self._content_type(key, result),
            content_length=result.get("ContentLength"),
            cache_control=result.get("CacheControl"),
        )

    async def write(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> None:
        if self.read_only:
            raise StoreUnavailable(f"{self.describe()} is read-only")
        client = await self._client_ready()
        put_kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            put_kwargs["CacheControl"] = cache_control
        try:
            await _run_sync(partial(client.put_object, **put_kwargs))
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"put {self.describe()}/{key}: {exc}") from exc

    async def close(self) -> None:
        client = self._client
        if self._owns_client and client is not None:
            await _run_sync(client.close)
            self._client = None
        await super().close()
