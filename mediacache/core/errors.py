"""
Error taxonomy for the fill/serve path.

Every error carries the HTTP status it maps to and a short public message;
the detail passed to the constructor is for logs only.
"""


class MediaCacheError(Exception):
    status_code = 500
    public_message = "Processing failed"

    def __init__(self, detail: str = "", *, public_message: str | None = None):
        super().__init__(detail or self.public_message)
        self.detail = detail
        if public_message is not None:
            self.public_message = public_message


class ValidationError(MediaCacheError):
    """Malformed or out-of-bounds transform parameters."""

    status_code = 400
    public_message = "Invalid parameters"


class NotFound(MediaCacheError):
    """Object absent from a store."""

    status_code = 404
    public_message = "Not found"


class StoreUnavailable(MediaCacheError):
    """Transport, auth or timeout failure talking to a store."""


class TransformFailed(MediaCacheError):
    """The transform engine rejected the input or timed out."""
