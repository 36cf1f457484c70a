"""
Cache key derivation for transformed artifacts.

Keys look like ``cache/<asset path>.<md5>`` so a listing of the cache store
groups variants under their source asset.
"""

import hashlib
import json

from .params import TransformParams

DEFAULT_PREFIX = "cache"


def canonical_params(params: TransformParams) -> str:
    """Stable JSON encoding of the full parameter set (sorted keys, no spaces)."""
    return json.dumps(params.as_dict(), sort_keys=True, separators=(",", ":"))


def param_hash(path: str, params: TransformParams) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    digest.update(path.encode("utf-8"))
    digest.update(b"\n")
    digest.update(canonical_params(params).encode("utf-8"))
    return digest.hexdigest()


def derive_key(path: str, params: TransformParams, prefix: str = DEFAULT_PREFIX) -> str:
    prefix = prefix.strip("/")
    name = f"{path}.{param_hash(path, params)}"
    return f"{prefix}/{name}" if prefix else name
