"""
Filesystem store rooted at a directory.

Object bodies live at ``<root>/<key>``; content type and cache directive
for written objects live in a JSON sidecar under ``<root>/.meta/``.
Writes go to a temp file in the target directory and are renamed into
place, so readers never observe a partial object.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

from ..core.errors import NotFound, StoreUnavailable
from .base import STREAM_CHUNK_SIZE, BlobStore, StoredObject, StoredStream

logger = logging.getLogger(__name__)

META_DIR = ".meta"


class LocalBlobStore(BlobStore):
    name = "local"

    def __init__(self, root: str | Path, read_only: bool = False):
        super().__init__()
        self.root = Path(root).resolve()
        self.read_only = read_only

    async def _connect(self) -> None:
        if self.read_only:
            if not await aiofiles.os.path.isdir(self.root):
                raise StoreUnavailable(f"origin directory {self.root} does not exist")
            return
        try:
            await aiofiles.os.makedirs(self.root, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"cannot create {self.root}: {exc}") from exc

    def describe(self) -> str:
        return f"local:{self.root}"

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise NotFound(f"{key} escapes store root")
        if META_DIR in path.relative_to(self.root).parts[:1]:
            raise NotFound(f"{key} is reserved")
        return path

    def _meta_path(self, key: str) -> Path:
        return self.root / META_DIR / f"{key}.json"

    async def exists(self, key: str) -> bool:
        try:
            return await aiofiles.os.path.isfile(self._path(key))
        except NotFound:
            return False
        except OSError as exc:
            raise StoreUnavailable(f"stat {key} failed: {exc}") from exc

    async def _read_meta(self, key: str) -> dict:
        meta_path = self._meta_path(key)
        try:
            async with aiofiles.open(meta_path, "r", encoding="utf-8") as f:
                payload = json.loads(await f.read())
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("[local_store] unreadable metadata for %s: %s", key, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    async def read(self, key: str) -> StoredObject:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFound(f"{key} not found under {self.root}") from None
        except OSError as exc:
            raise StoreUnavailable(f"read {key} failed: {exc}") from exc
        meta = await self._read_meta(key)
        return StoredObject(
            data=data,
            content_type=meta.get("content_type") or self.default_content_type(key),
            cache_control=meta.get("cache_control"),
        )

    async def open_stream(self, key: str) -> StoredStream:
        path = self._path(key)
        try:
            handle = await aiofiles.open(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFound(f"{key} not found under {self.root}") from None
        except OSError as exc:
            raise StoreUnavailable(f"open {key} failed: {exc}") from exc
        try:
            size = (await aiofiles.os.stat(path)).st_size
            meta = await self._read_meta(key)
        except OSError as exc:
            await handle.close()
            raise StoreUnavailable(f"stat {key} failed: {exc}") from exc

        async def chunks() -> AsyncIterator[bytes]:
            try:
                while True:
                    chunk = await handle.read(STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                await handle.close()

        return StoredStream(
            chunks=chunks(),
            content_type=meta.get("content_type") or self.default_content_type(key),
            content_length=size,
            cache_control=meta.get("cache_control"),
        )

    async def _atomic_write(self, target: Path, payload: bytes) -> None:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        # fixed-length name: the target name alone may already be near NAME_MAX
        tmp = target.with_name(f".{uuid.uuid4().hex[:12]}.tmp")
        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp, target)
        except OSError:
            try:
                await aiofiles.os.remove(tmp)
            except OSError:
                pass
            raise

    async def write(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> None:
        if self.read_only:
            raise StoreUnavailable(f"{self.describe()} is read-only")
        path = self._path(key)
        meta = json.dumps({"content_type": content_type, "cache_control": cache_control})
        try:
            # metadata first: a visible body always has its sidecar
            await self._atomic_write(self._meta_path(key), meta.encode("utf-8"))
            await self._atomic_write(path, data)
        except OSError as exc:
            raise StoreUnavailable(f"write {key} failed: {exc}") from exc
