"""
Fill/serve orchestration.

Per request: classify the path, then either pass the original through or
validate transform parameters, derive the cache key and serve a cached
artifact, filling it from origin on a miss.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Mapping, Optional, TypeVar

from ..core.cache_key import derive_key
from ..core.cache_metrics import record_outcome
from ..core.classifier import (
    DEFAULT_CONTENT_TYPE,
    AssetKind,
    classify,
    guess_content_type,
    normalize_path,
)
from ..core.config import Settings
from ..core.errors import (
    MediaCacheError,
    NotFound,
    StoreUnavailable,
    TransformFailed,
    ValidationError,
)
from ..core.params import (
    DEFAULT_FORMAT,
    DEFAULT_QUALITY,
    MAX_DIMENSION,
    TransformParams,
    has_transform_query,
    parse_transform_params,
)
from ..core.transform import ImageTransformer
from ..storage.base import BlobStore
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
NO_STORE_CACHE_CONTROL = "no-store"

SIZELESS_POLICIES = ("transform", "original")


@dataclass
class MediaResponse:
    """Transport-neutral description of what to send back."""

    status_code: int
    content_type: str
    cache_control: str
    body: bytes = b""
    stream: Optional[AsyncIterator[bytes]] = None
    content_length: Optional[int] = None
    outcome: str = ""

    @property
    def cacheable(self) -> bool:
        return self.cache_control == IMMUTABLE_CACHE_CONTROL


def _served_type(stored: Optional[str], params: TransformParams) -> str:
    # cache keys end in a hash; an extension guess on them is the default type
    if not stored or stored == DEFAULT_CONTENT_TYPE:
        return params.content_type
    return stored


def error_response(exc: MediaCacheError, outcome: str) -> MediaResponse:
    return MediaResponse(
        status_code=exc.status_code,
        content_type="text/plain; charset=utf-8",
        cache_control=NO_STORE_CACHE_CONTROL,
        body=exc.public_message.encode("utf-8"),
        outcome=outcome,
    )


class FillOrchestrator:
    def __init__(
        self,
        origin: BlobStore,
        cache: BlobStore,
        transformer: Optional[ImageTransformer] = None,
        *,
        cache_prefix: str = "cache",
        max_dimension: int = MAX_DIMENSION,
        default_format: str = DEFAULT_FORMAT,
        default_quality: int = DEFAULT_QUALITY,
        sizeless_policy: str = "transform",
        single_flight: bool = False,
        store_timeout: float = 10.0,
        transform_timeout: float = 30.0,
    ):
        if sizeless_policy not in SIZELESS_POLICIES:
            raise ValueError(f"unknown sizeless policy {sizeless_policy!r}")
        self.origin = origin
        self.cache = cache
        self.transformer = transformer or ImageTransformer()
        self.cache_prefix = cache_prefix
        self.max_dimension = max_dimension
        self.default_format = default_format
        self.default_quality = default_quality
        self.sizeless_policy = sizeless_policy
        self.store_timeout = store_timeout
        self.transform_timeout = transform_timeout
        self._flights = SingleFlight() if single_flight else None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        origin: BlobStore,
        cache: BlobStore,
        transformer: Optional[ImageTransformer] = None,
    ) -> "FillOrchestrator":
        return cls(
            origin,
            cache,
            transformer,
            cache_prefix=settings.CACHE_PREFIX,
            max_dimension=settings.MAX_DIMENSION,
            default_format=settings.DEFAULT_FORMAT,
            default_quality=settings.DEFAULT_QUALITY,
            sizeless_policy=settings.SIZELESS_POLICY,
            single_flight=settings.SINGLE_FLIGHT,
            store_timeout=settings.STORE_TIMEOUT_SECONDS,
            transform_timeout=settings.TRANSFORM_TIMEOUT_SECONDS,
        )

    async def startup(self) -> None:
        await self.origin.connect()
        await self.cache.connect()
        logger.info(
            "[fill] ready origin=%s cache=%s single_flight=%s",
            self.origin.describe(),
            self.cache.describe(),
            self._flights is not None,
        )

    async def shutdown(self) -> None:
        await self.origin.close()
        await self.cache.close()

    async def _store_call(self, what: str, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self.store_timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailable(f"{what} timed out after {self.store_timeout}s") from None

    def parse_params(self, query: Mapping[str, str]) -> TransformParams:
        return parse_transform_params(
            query,
            max_dimension=self.max_dimension,
            default_format=self.default_format,
            default_quality=self.default_quality,
        )

    def cache_key(self, path: str, params: TransformParams) -> str:
        return derive_key(path, params, self.cache_prefix)

    async def handle(self, raw_path: str, query: Mapping[str, str]) -> MediaResponse:
        """Serve one request. Never raises; failures become error responses."""
        try:
            path = normalize_path(raw_path)
            kind = classify(path)
            if kind is AssetKind.PASS_THROUGH:
                return await self.serve_original(path)
            if self.sizeless_policy == "original" and not has_transform_query(query):
                return await self.serve_original(path)
            params = self.parse_params(query)
            return await self.serve_transformed(path, params)
        except ValidationError as exc:
            logger.info(
                "[fill] rejected %s: %s", raw_path, exc.detail,
                extra={"outcome": "invalid", "asset": raw_path},
            )
            record_outcome("invalid")
            return error_response(exc, "invalid")
        except NotFound as exc:
            logger.info(
                "[fill] not found %s: %s", raw_path, exc.detail,
                extra={"outcome": "not_found", "asset": raw_path},
            )
            record_outcome("not_found")
            return error_response(exc, "not_found")
        except (StoreUnavailable, TransformFailed) as exc:
            logger.error(
                "[fill] %s failed for %s: %s", type(exc).__name__, raw_path, exc.detail,
                extra={"outcome": "error", "asset": raw_path},
            )
            record_outcome("error")
            return error_response(exc, "error")
        except Exception as exc:
            logger.exception(
                "[fill] unexpected error for %s", raw_path,
                extra={"outcome": "error", "asset": raw_path},
            )
            record_outcome("error")
            return error_response(MediaCacheError(repr(exc)), "error")

    async def serve_original(self, path: str) -> MediaResponse:
        """Pass-through: stream the origin object untouched. Never touches the cache."""
        if not await self._store_call(f"origin exists {path}", self.origin.exists(path)):
            raise NotFound(f"{path} not in origin")
        opened = await self._store_call(f"origin open {path}", self.origin.open_stream(path))
        content_type = guess_content_type(path)
        if content_type == DEFAULT_CONTENT_TYPE and opened.content_type:
            content_type = opened.content_type
        record_outcome("passthrough")
        return MediaResponse(
            status_code=200,
            content_type=content_type,
            cache_control=IMMUTABLE_CACHE_CONTROL,
            stream=opened.chunks,
            content_length=opened.content_length,
            outcome="passthrough",
        )

    async def serve_transformed(self, path: str, params: TransformParams) -> MediaResponse:
        key = self.cache_key(path, params)

        if await self._store_call(f"cache exists {key}", self.cache.exists(key)):
            try:
                cached = await self._store_call(f"cache read {key}", self.cache.read(key))
            except NotFound:
                # removed between exists and read (lifecycle policy); refill
                logger.warning(
                    "[fill] cache entry vanished %s, refilling", key,
                    extra={"asset": path, "cache_key": key},
                )
            else:
                logger.debug(
                    "[fill] hit %s", key,
                    extra={"outcome": "hit", "asset": path, "cache_key": key},
                )
                record_outcome("hit")
                return MediaResponse(
                    status_code=200,
                    content_type=_served_type(cached.content_type, params),
                    cache_control=IMMUTABLE_CACHE_CONTROL,
                    body=cached.data,
                    outcome="hit",
                )

        if self._flights is not None:
            data, shared = await self._flights.do(key, lambda: self._fill(path, params, key))
        else:
            data, shared = await self._fill(path, params, key), False
        outcome = "coalesced" if shared else "miss"
        record_outcome(outcome)
        return MediaResponse(
            status_code=200,
            content_type=params.content_type,
            cache_control=IMMUTABLE_CACHE_CONTROL,
            body=data,
            outcome=outcome,
        )

    async def _fill(self, path: str, params: TransformParams, key: str) -> bytes:
        if not await self._store_call(f"origin exists {path}", self.origin.exists(path)):
            raise NotFound(f"{path} not in origin")
        original = await self._store_call(f"origin read {path}", self.origin.read(path))

        try:
            output = await asyncio.wait_for(
                self.transformer.transform(original.data, params),
                timeout=self.transform_timeout,
            )
        except asyncio.TimeoutError:
            raise TransformFailed(
                f"transform of {path} timed out after {self.transform_timeout}s"
            ) from None

        await self._store_call(
            f"cache write {key}",
            self.cache.write(key, output, params.content_type, IMMUTABLE_CACHE_CONTROL),
        )
        logger.info(
            "[fill] stored %s (%d -> %d bytes, %s)",
            key,
            len(original.data),
            len(output),
            params.content_type,
            extra={"outcome": "miss", "asset": path, "cache_key": key},
        )
        return output
