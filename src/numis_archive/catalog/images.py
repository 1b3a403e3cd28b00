from __future__ import annotations

import base64
import binascii
import io
import mimetypes
import os
import re
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..logging import get_logger
from .constants import ROTATION_CHOICES


LOG = get_logger("catalog-images")

DEFAULT_MIME = "image/png"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^;,]*)*),(?P<payload>.*)$", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


class ImageDataError(ValueError):
    pass


def strip_data_url(data_url: str) -> str:
    """Return the base64 payload after the comma (the whole string if there is none)."""
    if "," in data_url:
        return data_url.split(",", 1)[1]
    return data_url


def data_url_mime(data_url: str) -> str:
    match = re.match(r"data:(.*?);", data_url or "")
    if match and match.group(1):
        return match.group(1)
    return DEFAULT_MIME


def to_data_url(data: bytes, mime: str = DEFAULT_MIME) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime or DEFAULT_MIME};base64,{b64}"


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """Decode a data URL (or bare base64) into (mime, bytes)."""
    if not isinstance(data_url, str) or not data_url.strip():
        raise ImageDataError("empty image data")
    text = data_url.strip()
    match = _DATA_URL_RE.match(text)
    if match:
        mime = match.group("mime") or DEFAULT_MIME
        payload = match.group("payload")
        if ";base64" not in match.group("params"):
            raise ImageDataError("only base64 data URLs are supported")
    else:
        mime = DEFAULT_MIME
        payload = text
    try:
        raw = base64.b64decode(_WHITESPACE_RE.sub("", payload), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDataError(f"invalid base64 image payload: {exc}") from exc
    if not raw:
        raise ImageDataError("image payload decoded to zero bytes")
    return mime, raw


def load_image_file(path: str) -> str:
    """Read an image file from disk and return it as a data URL."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        ext = os.path.splitext(path)[1].lower()
        if ext in {".jpg", ".jpeg", ".jpe", ".jfif"}:
            mime = "image/jpeg"
        elif ext == ".webp":
            mime = "image/webp"
        else:
            mime = DEFAULT_MIME
    if not mime.startswith("image/"):
        raise ImageDataError(f"Unsupported MIME type for an image slot: {mime}")
    with open(path, "rb") as f:
        data = f.read()
    LOG.debug("Loaded %s (%s, %d bytes)", os.path.basename(path), mime, len(data))
    return to_data_url(data, mime)


def write_image(data_url: str, path: str) -> str:
    """Write a slot image to path; returns the absolute path written."""
    _, raw = parse_data_url(data_url)
    target = os.path.abspath(path)
    os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
    with open(target, "wb") as f:
        f.write(raw)
    return target


def _open(raw: bytes) -> Image.Image:
    try:
        im = Image.open(io.BytesIO(raw))
        im.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDataError(f"not a readable image: {exc}") from exc
    return ImageOps.exif_transpose(im)


def image_size(data_url: str) -> Tuple[int, int]:
    _, raw = parse_data_url(data_url)
    return _open(raw).size


def rotate_data_url(data_url: str, degrees: int) -> str:
    """Rotate by a quarter/half turn (positive = clockwise); result is PNG."""
    if degrees not in ROTATION_CHOICES:
        raise ValueError(f"rotation must be one of {ROTATION_CHOICES}, got {degrees}")
    _, raw = parse_data_url(data_url)
    im = _open(raw)
    # PIL rotates counter-clockwise for positive angles.
    rotated = im.rotate(-degrees, expand=True)
    buf = io.BytesIO()
    if rotated.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        rotated = rotated.convert("RGBA")
    rotated.save(buf, format="PNG")
    LOG.debug("Rotated image %s deg: %s -> %s", degrees, im.size, rotated.size)
    return to_data_url(buf.getvalue(), "image/png")


def image_to_data_url(im: Image.Image, fmt: str = "PNG") -> str:
    buf = io.BytesIO()
    im.save(buf, format=fmt)
    mime = Image.MIME.get(fmt.upper(), DEFAULT_MIME)
    return to_data_url(buf.getvalue(), mime)


__all__ = [
    "ImageDataError",
    "strip_data_url",
    "data_url_mime",
    "to_data_url",
    "parse_data_url",
    "load_image_file",
    "write_image",
    "image_size",
    "rotate_data_url",
    "image_to_data_url",
    "DEFAULT_MIME",
]
