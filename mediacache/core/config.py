from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Load env from .env file
    model_config = {"env_file": ".env", "extra": "ignore"}

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # Origin store (untransformed assets)
    ORIGIN_BACKEND: Literal["local", "memory", "s3", "http"] = "local"
    ORIGIN_ROOT: str = "storage/originals"
    ORIGIN_BUCKET: Optional[str] = None
    ORIGIN_BASE_URL: Optional[str] = None

    # Cache store (derived artifacts)
    CACHE_BACKEND: Literal["local", "memory", "s3"] = "local"
    CACHE_ROOT: str = "storage/cache"
    CACHE_BUCKET: Optional[str] = None
    CACHE_PREFIX: str = "cache"

    # S3-compatible endpoint shared by both stores when backend is "s3"
    S3_ENDPOINT_URL: Optional[str] = None
    S3_REGION: Optional[str] = None

    # Transform policy
    MAX_DIMENSION: int = Field(default=2000, ge=1)
    DEFAULT_FORMAT: Literal["webp", "jpeg", "png", "avif"] = "webp"
    DEFAULT_QUALITY: int = Field(default=80, ge=1, le=100)
    # "transform": re-encode requests without w/h/format/q at native size
    # "original": serve those requests untransformed from origin
    SIZELESS_POLICY: Literal["transform", "original"] = "transform"
    SINGLE_FLIGHT: bool = False

    # Timeouts (seconds)
    STORE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    TRANSFORM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # /_ops endpoints (logs, metrics, store status)
    OPS_ENDPOINTS: bool = True


# Instantiate settings
settings = Settings()
