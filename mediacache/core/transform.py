"""
Pillow-backed image transform: resize inside a box without enlargement,
then encode to the requested format and quality.
"""

import asyncio
import logging
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import TransformFailed
from .params import TransformParams

logger = logging.getLogger(__name__)

PIL_FORMATS = {
    "webp": "WEBP",
    "jpeg": "JPEG",
    "png": "PNG",
    "avif": "AVIF",
}


def target_size(
    source: Tuple[int, int],
    width: Optional[int],
    height: Optional[int],
) -> Tuple[int, int]:
    """Size after an "inside" fit that never upscales or distorts.

    With both bounds the image fits inside the box; with one bound the
    other side scales proportionally; with none the source size is kept.
    """
    src_w, src_h = source
    scales = []
    if width:
        scales.append(width / src_w)
    if height:
        scales.append(height / src_h)
    scale = min(scales + [1.0])
    if scale >= 1.0:
        return src_w, src_h
    return max(1, round(src_w * scale)), max(1, round(src_h * scale))


def _prepare_mode(im: Image.Image, fmt: str) -> Image.Image:
    if fmt == "jpeg":
        if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
            rgba = im.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        if im.mode != "RGB":
            return im.convert("RGB")
        return im
    if im.mode not in ("RGB", "RGBA", "L", "LA"):
        has_alpha = "transparency" in im.info or im.mode.endswith("A")
        return im.convert("RGBA" if has_alpha else "RGB")
    return im


def transform_image(data: bytes, params: TransformParams) -> bytes:
    """Resize and re-encode ``data``. Raises TransformFailed on any codec error."""
    pil_format = PIL_FORMATS.get(params.format)
    if pil_format is None:
        raise TransformFailed(f"no encoder mapping for {params.format!r}")
    try:
        with Image.open(BytesIO(data)) as im:
            im.load()
            size = target_size(im.size, params.width, params.height)
            # palette and bilevel images only resample with NEAREST
            out = _prepare_mode(im, params.format)
            if size != out.size:
                out = out.resize(size, Image.LANCZOS)
            buffer = BytesIO()
            save_kwargs = {"quality": params.quality}
            if params.format == "png":
                save_kwargs = {"optimize": True}
            elif params.format == "webp":
                save_kwargs["method"] = 6
            out.save(buffer, format=pil_format, **save_kwargs)
            return buffer.getvalue()
    except TransformFailed:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise TransformFailed(f"cannot decode source image: {exc}") from exc
    except (OSError, KeyError, ValueError) as exc:
        # KeyError: Pillow has no encoder registered for the format
        raise TransformFailed(f"encoding to {params.format} failed: {exc!r}") from exc


class ImageTransformer:
    """Runs transform_image in a worker thread so the event loop stays free."""

    async def transform(self, data: bytes, params: TransformParams) -> bytes:
        return await asyncio.to_thread(transform_image, data, params)
