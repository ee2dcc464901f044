from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

DEFAULT_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE


def encode_data_uri(data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{b64}"


def decode_data_uri(uri: str) -> ImagePayload:
    """Split a data URI into raw bytes and its mime type.

    Bare base64 (no ``data:`` header) is accepted and assumed to be JPEG,
    as is a header that does not name a mime type.
    """
    raw = uri.strip()
    mime_type = DEFAULT_MIME_TYPE
    if raw.startswith("data:"):
        if "," not in raw:
            raise ValueError("Data URI has no payload")
        header, raw = raw.split(",", 1)
        if ";" in header:
            mime_type = header[5:].split(";", 1)[0] or mime_type
        elif len(header) > 5:
            mime_type = header[5:]

    raw = raw.replace("\n", "").replace("\r", "")
    try:
        data = base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 image payload: {e}") from e
    return ImagePayload(data=data, mime_type=mime_type)


def sniff_mime_type(data: bytes, default: str = DEFAULT_MIME_TYPE) -> str:
    # Some SDK responses omit the mime type on inline image parts.
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return default
    if not fmt:
        return default
    return Image.MIME.get(fmt, default)
