"""
Store adapters and the factory that builds them from settings.
"""

from ..core.config import Settings
from .base import BlobStore, StoredObject, StoredStream
from .http_origin import HttpOriginStore
from .local import LocalBlobStore
from .memory import MemoryBlobStore
from .s3 import S3BlobStore

__all__ = [
    "BlobStore",
    "StoredObject",
    "StoredStream",
    "HttpOriginStore",
    "LocalBlobStore",
    "MemoryBlobStore",
    "S3BlobStore",
    "build_origin_store",
    "build_cache_store",
]


def build_origin_store(settings: Settings) -> BlobStore:
    backend = settings.ORIGIN_BACKEND
    if backend == "local":
        return LocalBlobStore(settings.ORIGIN_ROOT, read_only=True)
    if backend == "memory":
        return MemoryBlobStore(read_only=True)
    if backend == "s3":
        if not settings.ORIGIN_BUCKET:
            raise ValueError("ORIGIN_BUCKET must be set when ORIGIN_BACKEND=s3")
        return S3BlobStore(
            settings.ORIGIN_BUCKET,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            read_only=True,
        )
    if backend == "http":
        if not settings.ORIGIN_BASE_URL:
            raise ValueError("ORIGIN_BASE_URL must be set when ORIGIN_BACKEND=http")
        return HttpOriginStore(settings.ORIGIN_BASE_URL, timeout=settings.STORE_TIMEOUT_SECONDS)
    raise ValueError(f"unknown origin backend {backend!r}")


def build_cache_store(settings: Settings) -> BlobStore:
    backend = settings.CACHE_BACKEND
    if backend == "local":
        return LocalBlobStore(settings.CACHE_ROOT)
    if backend == "memory":
        return MemoryBlobStore()
    if backend == "s3":
        if not settings.CACHE_BUCKET:
            raise ValueError("CACHE_BUCKET must be set when CACHE_BACKEND=s3")
        return S3BlobStore(
            settings.CACHE_BUCKET,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
        )
    raise ValueError(f"unknown cache backend {backend!r}")
