"""
Typed transform parameters parsed from the request query string.

Every field is either defaulted or validated here; nothing downstream ever
compares an unparsed value against a bound.
"""

import re
from dataclasses import asdict, dataclass
from typing import Mapping, Optional

from .errors import ValidationError

MAX_DIMENSION = 2000
DEFAULT_FORMAT = "webp"
DEFAULT_QUALITY = 80

SUPPORTED_FORMATS = ("webp", "jpeg", "png", "avif")
FORMAT_ALIASES = {"jpg": "jpeg"}

# Query parameter names understood by the service
TRANSFORM_QUERY_KEYS = ("w", "h", "format", "q")

_INT_RE = re.compile(r"^\+?\d{1,9}$")


@dataclass(frozen=True)
class TransformParams:
    width: Optional[int] = None
    height: Optional[int] = None
    format: str = DEFAULT_FORMAT
    quality: int = DEFAULT_QUALITY

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"

    def as_dict(self) -> dict:
        return asdict(self)


def has_transform_query(query: Mapping[str, str]) -> bool:
    """True when the request names at least one transform parameter."""
    return any((query.get(key) or "").strip() for key in TRANSFORM_QUERY_KEYS)


def _parse_int(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    if not _INT_RE.match(value):
        raise ValidationError(f"{name}={raw!r} is not a positive integer")
    return int(value)


def _parse_dimension(name: str, raw: Optional[str], max_dimension: int) -> Optional[int]:
    value = _parse_int(name, raw)
    if value is None:
        return None
    if value < 1:
        raise ValidationError(f"{name}={value} must be positive")
    if value > max_dimension:
        raise ValidationError(
            f"{name}={value} exceeds {max_dimension}",
            public_message="Image too large",
        )
    return value


def _parse_format(raw: Optional[str], default_format: str) -> str:
    value = (raw or "").strip().lower()
    if not value:
        return default_format
    value = FORMAT_ALIASES.get(value, value)
    if value not in SUPPORTED_FORMATS:
        raise ValidationError(f"unsupported format {raw!r}")
    return value


def _parse_quality(raw: Optional[str], default_quality: int) -> int:
    value = _parse_int("q", raw)
    if value is None:
        return default_quality
    if not 1 <= value <= 100:
        raise ValidationError(f"q={value} outside 1..100")
    return value


def parse_transform_params(
    query: Mapping[str, str],
    *,
    max_dimension: int = MAX_DIMENSION,
    default_format: str = DEFAULT_FORMAT,
    default_quality: int = DEFAULT_QUALITY,
) -> TransformParams:
    """Build TransformParams from ``w``, ``h``, ``format`` and ``q``.

    Missing or blank values fall back to defaults (no resize for the
    dimensions). Anything present but malformed raises ValidationError;
    so does a dimension above ``max_dimension``.
    """
    return TransformParams(
        width=_parse_dimension("w", query.get("w"), max_dimension),
        height=_parse_dimension("h", query.get("h"), max_dimension),
        format=_parse_format(query.get("format"), default_format),
        quality=_parse_quality(query.get("q"), default_quality),
    )
