"""Receipt of multipart image uploads onto local disk."""

import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO

from fastapi import UploadFile

from carousel_relay.models.post import LocalImage
from carousel_relay.services.media_upload import remove_files
from carousel_relay.utils.errors import InvalidRequestError
from carousel_relay.utils.validation import extension_for_mime_type, validate_image_file

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024
JPEG_EXTENSIONS = {".jpg", ".jpeg"}


def _extension_allowed(filename: str, mime_type: str) -> bool:
    extension = Path(filename).suffix.lower()
    if not extension:
        return True
    if mime_type in ("image/jpeg", "image/jpg"):
        return extension in JPEG_EXTENSIONS
    return extension == extension_for_mime_type(mime_type)


def save_stream_to_path(stream: BinaryIO, dest_path: Path, max_size_bytes: int) -> int:
    """
    Copy a stream to disk in chunks.

    Stops as soon as more than ``max_size_bytes`` were written and returns
    the number of bytes written so far.
    """
    written = 0
    with open(dest_path, "wb") as f:
        while True:
            chunk = stream.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            f.write(chunk)
            written += len(chunk)
            if written > max_size_bytes:
                break
    return written


def save_uploaded_images(
    files: list[UploadFile],
    upload_dir: str,
    allowed_mime_types: list[str],
    max_file_size_bytes: int,
    max_files: int,
) -> list[LocalImage]:
    """
    Write uploaded images to ``upload_dir`` under random names.

    If any file is rejected, files already written for this request are
    deleted before the error is raised.

    Raises:
        InvalidRequestError: On too many files or a file failing validation
    """
    if len(files) > max_files:
        raise InvalidRequestError(f"Too many files. Maximum {max_files} files allowed")

    target_dir = Path(upload_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    saved: list[LocalImage] = []
    try:
        for upload in files:
            original_name = os.path.basename(upload.filename or "")
            mime_type = upload.content_type or ""

            check = validate_image_file(0, mime_type, allowed_mime_types, max_file_size_bytes)
            if check.valid and not _extension_allowed(original_name, mime_type):
                check.valid = False
                check.error = f"Invalid file extension for mime type {mime_type}"
            if not check.valid:
                raise InvalidRequestError(f"File validation failed for: {original_name}: {check.error}")

            dest_path = target_dir / f"{uuid.uuid4()}{extension_for_mime_type(mime_type)}"
            saved.append(LocalImage(path=str(dest_path), original_name=original_name, mime_type=mime_type))
            size = save_stream_to_path(upload.file, dest_path, max_file_size_bytes)
            saved[-1].size = size

            check = validate_image_file(size, mime_type, allowed_mime_types, max_file_size_bytes)
            if not check.valid:
                raise InvalidRequestError(f"File validation failed for: {original_name}: {check.error}")
    except Exception:
        remove_files([image.path for image in saved])
        raise

    logger.info(
        f"Files uploaded successfully: {len(saved)} files, "
        f"{sum(image.size for image in saved)} bytes in {upload_dir}"
    )
    return saved
