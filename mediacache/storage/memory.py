"""
Process-local store, used for development and tests.
"""

from typing import Dict, Optional

from ..core.errors import NotFound, StoreUnavailable
from .base import BlobStore, StoredObject


class MemoryBlobStore(BlobStore):
    name = "memory"

    def __init__(self, objects: Optional[Dict[str, StoredObject]] = None, read_only: bool = False):
        super().__init__()
        self.objects: Dict[str, StoredObject] = dict(objects or {})
        self.read_only = read_only

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Seed an object synchronously."""
        self.objects[key] = StoredObject(data, content_type or self.default_content_type(key))

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def read(self, key: str) -> StoredObject:
        try:
            return self.objects[key]
        except KeyError:
            raise NotFound(f"{key} not in memory store") from None

    async def write(self, key, data, content_type, cache_control=None) -> None:
        if self.read_only:
            raise StoreUnavailable(f"{self.name} store is read-only")
        # whole-object replace, concurrent identical writes are harmless
        self.objects[key] = StoredObject(bytes(data), content_type, cache_control)
