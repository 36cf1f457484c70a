"""
Blob store contract shared by the origin and cache stores.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from ..core.classifier import guess_content_type

STREAM_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class StoredObject:
    data: bytes
    content_type: str
    cache_control: Optional[str] = None


@dataclass
class StoredStream:
    """An opened object whose body is consumed chunk by chunk."""

    chunks: AsyncIterator[bytes]
    content_type: str
    content_length: Optional[int] = None
    cache_control: Optional[str] = None


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


class BlobStore(ABC):
    """Opaque object store: exists / read / write keyed by string.

    ``connect`` is explicit and memoized: the first call builds clients,
    later calls return immediately.
    """

    name = "store"
    read_only = False

    def __init__(self) -> None:
        self._connected = False
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._connected:
            return
        async with self._connect_lock:
            if self._connected:
                return
            await self._connect()
            self._connected = True

    async def _connect(self) -> None:
        return None

    async def close(self) -> None:
        self._connected = False

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def read(self, key: str) -> StoredObject:
        ...

    async def open_stream(self, key: str) -> StoredStream:
        obj = await self.read(key)
        return StoredStream(
            chunks=_single_chunk(obj.data),
            content_type=obj.content_type,
            content_length=len(obj.data),
            cache_control=obj.cache_control,
        )

    @abstractmethod
    async def write(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> None:
        ...

    def describe(self) -> str:
        return self.name

    @staticmethod
    def default_content_type(key: str) -> str:
        return guess_content_type(key)
