"""
Read-only origin served over HTTP (a public bucket, CDN origin or another
static file server).
"""

import logging
from typing import AsyncIterator, Optional
from urllib.parse import quote

import httpx

from ..core.errors import NotFound, StoreUnavailable
from .base import STREAM_CHUNK_SIZE, BlobStore, StoredObject, StoredStream

logger = logging.getLogger(__name__)

_MISSING_STATUSES = {404, 410}

# Pass-through bodies are forwarded byte for byte
_IDENTITY_HEADERS = {"accept-encoding": "identity"}


class HttpOriginStore(BlobStore):
    name = "http"
    read_only = True

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        if not base_url:
            raise ValueError("HTTP origin requires a base URL")
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def describe(self) -> str:
        return self.base_url

    async def _connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await super().close()

    async def _client_ready(self) -> httpx.AsyncClient:
        await self.connect()
        return self._client

    @staticmethod
    def _url(key: str) -> str:
        return quote(key, safe="/")

    async def exists(self, key: str) -> bool:
        client = await self._client_ready()
        try:
            resp = await client.head(self._url(key))
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"HEAD {key}: {exc!r}") from exc
        if resp.status_code in _MISSING_STATUSES:
            return False
        if resp.is_success:
            return True
        raise StoreUnavailable(f"HEAD {key}: HTTP {resp.status_code}")

    def _check(self, key: str, resp: httpx.Response) -> None:
        if resp.status_code in _MISSING_STATUSES:
            raise NotFound(f"{key}: HTTP {resp.status_code}")
        if not resp.is_success:
            raise StoreUnavailable(f"GET {key}: HTTP {resp.status_code}")

    def _content_type(self, key: str, resp: httpx.Response) -> str:
        return resp.headers.get("content-type") or self.default_content_type(key)

    async def read(self, key: str) -> StoredObject:
        client = await self._client_ready()
        try:
            resp = await client.get(self._url(key))
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"GET {key}: {exc!r}") from exc
        self._check(key, resp)
        return StoredObject(
            data=resp.content,
            content_type=self._content_type(key, resp),
            cache_control=resp.headers.get("cache-control"),
        )

    async def open_stream(self, key: str) -> StoredStream:
        client = await self._client_ready()
        request = client.build_request("GET", self._url(key), headers=_IDENTITY_HEADERS)
        try:
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"GET {key}: {exc!r}") from exc
        try:
            self._check(key, resp)
        except Exception:
            await resp.aclose()
            raise

        async def chunks() -> AsyncIterator[bytes]:
            try:
                async for chunk in resp.aiter_bytes(STREAM_CHUNK_SIZE):
                    yield chunk
            finally:
                await resp.aclose()

        length = resp.headers.get("content-length")
        if resp.headers.get("content-encoding", "identity").lower() != "identity":
            # decoded chunks no longer match the encoded length
            length = None
        return StoredStream(
            chunks=chunks(),
            content_type=self._content_type(key, resp),
            content_length=int(length) if length and length.isdigit() else None,
            cache_control=resp.headers.get("cache-control"),
        )

    async def write(self, key, data, content_type, cache_control=None) -> None:
        raise StoreUnavailable(f"{self.describe()} is a read-only origin")
