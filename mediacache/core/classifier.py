"""
Asset classification and MIME inference.

Both are plain lookups keyed by lowercase file extension so they can be
tested independently of any request handling.
"""

from enum import Enum
from posixpath import splitext

from .errors import NotFound


class AssetKind(str, Enum):
    TRANSFORMABLE = "transformable"
    PASS_THROUGH = "pass_through"


TRANSFORMABLE_EXTENSIONS = {
    "jpg": AssetKind.TRANSFORMABLE,
    "jpeg": AssetKind.TRANSFORMABLE,
    "png": AssetKind.TRANSFORMABLE,
    "webp": AssetKind.TRANSFORMABLE,
    "avif": AssetKind.TRANSFORMABLE,
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    # images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    # video
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "m3u8": "application/vnd.apple.mpegurl",
    "ts": "video/mp2t",
    # audio
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    # documents
    "pdf": "application/pdf",
    "json": "application/json",
    "txt": "text/plain; charset=utf-8",
    "csv": "text/csv; charset=utf-8",
    "html": "text/html; charset=utf-8",
    "css": "text/css; charset=utf-8",
    "js": "text/javascript; charset=utf-8",
    "xml": "application/xml",
    # archives and fonts
    "zip": "application/zip",
    "gz": "application/gzip",
    "tar": "application/x-tar",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
}


def extension_of(path: str) -> str:
    """Lowercase extension without the dot, or "" when there is none."""
    return splitext(path)[1][1:].lower()


def classify(path: str) -> AssetKind:
    return TRANSFORMABLE_EXTENSIONS.get(extension_of(path), AssetKind.PASS_THROUGH)


def guess_content_type(path: str) -> str:
    return CONTENT_TYPES.get(extension_of(path), DEFAULT_CONTENT_TYPE)


def normalize_path(raw_path: str) -> str:
    """Strip leading slashes and refuse paths that cannot name an object.

    Raises NotFound for empty paths, NUL bytes and ``..`` segments.
    """
    path = (raw_path or "").lstrip("/")
    if not path or "\x00" in path:
        raise NotFound(f"unusable asset path {raw_path!r}")
    if any(segment == ".." for segment in path.split("/")):
        raise NotFound(f"path traversal in {raw_path!r}")
    return path
