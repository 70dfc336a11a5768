"""Media preparation for vision analysis.

Inspection photos arrive as base64 strings or data URLs straight from the
capture UI.  Before they are sent to a provider they are decoded, auto-oriented
from EXIF, flattened to RGB and downscaled so that the longest side fits
``AI_IMAGE_MAX_DIMENSION``.  The result is always a JPEG.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------

DEFAULT_MAX_DIMENSION = 1600
JPEG_QUALITY = 85

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)(?:;[\w=.-]+)*;base64,", re.IGNORECASE)


class MediaDecodeError(ValueError):
    """The payload is not decodable media."""


@dataclass
class PreparedMedia:
    """Bytes ready for a provider plus what was done to them."""

    content: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None
    resized: bool = False


def decode_base64_media(payload: str) -> tuple[bytes, str | None]:
    """Decode a base64 string or ``data:`` URL.

    Returns ``(bytes, mime_type)``; ``mime_type`` is ``None`` when the input
    carried no data-URL prefix.
    """
    if not payload or not payload.strip():
        raise MediaDecodeError("empty media payload")

    text = payload.strip()
    mime_type = None
    match = _DATA_URL_RE.match(text)
    if match:
        mime_type = match.group("mime").lower()
        text = text[match.end():]

    try:
        content = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MediaDecodeError(f"invalid base64 media: {exc}") from exc
    if not content:
        raise MediaDecodeError("empty media payload")
    return content, mime_type


def prepare_image(content: bytes, max_dimension: int = DEFAULT_MAX_DIMENSION) -> PreparedMedia:
    """Normalise an uploaded photo into a provider-friendly JPEG.

    Raises ``MediaDecodeError`` when Pillow cannot read the bytes or the image
    exceeds its decompression-bomb pixel limit.
    """
    if not content:
        raise MediaDecodeError("empty image payload")

    try:
        img = Image.open(io.BytesIO(content))
        img = ImageOps.exif_transpose(img)  # auto-orient
    except Image.DecompressionBombError as exc:
        raise MediaDecodeError(f"image too large: {exc}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise MediaDecodeError(f"unreadable image: {exc}") from exc

    if img.mode != "RGB":
        img = img.convert("RGB")

    resized = False
    if max(img.width, img.height) > max_dimension:
        original = (img.width, img.height)
        img.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
        resized = True
        logger.info("Downscaled image %sx%s -> %sx%s", original[0], original[1], img.width, img.height)

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return PreparedMedia(
        content=buf.getvalue(),
        mime_type="image/jpeg",
        width=img.width,
        height=img.height,
        resized=resized,
    )


def normalize_video_mime(mime_type: str | None) -> str:
    """Strip codec parameters (``video/webm;codecs=vp9`` -> ``video/webm``)."""
    if mime_type and mime_type.lower().startswith("video/"):
        return mime_type.split(";", 1)[0].strip().lower()
    return "video/webm"
