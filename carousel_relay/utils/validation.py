"""Image validation helpers."""

import base64
import binascii
import re
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel

from carousel_relay.utils.errors import InvalidRequestError

DATA_URI_PATTERN = re.compile(r"^data:([A-Za-z+/-]+);base64,(.+)$", re.DOTALL)

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class ImageValidation(BaseModel):
    """Result of validating a single image input."""

    valid: bool
    error: Optional[str] = None
    mime_type: Optional[str] = None


def detect_image_mime_type(data: bytes) -> Optional[str]:
    """Sniff JPEG, PNG or WebP from the leading magic bytes."""
    if data[:2] == b"\xff\xd8":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _split_base64_image(data: str) -> tuple[Optional[str], str]:
    match = DATA_URI_PATTERN.match(data)
    if match:
        return match.group(1), match.group(2)
    return None, data


def parse_base64_image(data: str) -> tuple[str, bytes]:
    """
    Decode a base64 image, with or without a ``data:`` URI prefix.

    Returns:
        Tuple of (mime_type, raw bytes)

    Raises:
        InvalidRequestError: If the data is not valid base64 or the
            format cannot be determined
    """
    mime_type, payload = _split_base64_image(data.strip())
    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError):
        raise InvalidRequestError("Invalid base64 data")

    if mime_type is None:
        mime_type = detect_image_mime_type(raw)
        if mime_type is None:
            raise InvalidRequestError("Unable to detect image format from base64 data")

    return mime_type, raw


def validate_base64_image(
    data: str, allowed_mime_types: list[str], max_size_bytes: int
) -> ImageValidation:
    """Validate format, type and estimated size of a base64 image."""
    mime_type, payload = _split_base64_image(data.strip())

    if mime_type is None:
        try:
            head = base64.b64decode(payload[:32], validate=False)
        except (binascii.Error, ValueError):
            return ImageValidation(valid=False, error="Invalid base64 data")
        mime_type = detect_image_mime_type(head)
        if mime_type is None:
            return ImageValidation(
                valid=False, error="Unable to detect image format from base64 data"
            )

    if mime_type not in allowed_mime_types:
        return ImageValidation(
            valid=False,
            error=f"Invalid image type. Allowed types: {', '.join(allowed_mime_types)}",
        )

    size_bytes = len(payload) * 3 / 4
    if size_bytes > max_size_bytes:
        return ImageValidation(
            valid=False,
            error=f"Image size exceeds {max_size_bytes // (1024 * 1024)}MB limit",
        )

    return ImageValidation(valid=True, mime_type=mime_type)


def validate_image_url(url: str) -> ImageValidation:
    """Check that a string is an absolute http(s) URL."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ImageValidation(valid=False, error="Invalid URL format")
    return ImageValidation(valid=True)


def validate_image_file(
    size: int, mime_type: str, allowed_mime_types: list[str], max_size_bytes: int
) -> ImageValidation:
    """Check a received file's size and declared mime type."""
    if size > max_size_bytes:
        return ImageValidation(
            valid=False,
            error=f"File size exceeds {max_size_bytes // (1024 * 1024)}MB limit",
        )
    if mime_type not in allowed_mime_types:
        return ImageValidation(
            valid=False,
            error=f"Invalid file type. Allowed types: {', '.join(allowed_mime_types)}",
        )
    return ImageValidation(valid=True, mime_type=mime_type)


def extension_for_mime_type(mime_type: str) -> str:
    return MIME_EXTENSIONS.get(mime_type, ".jpg")
