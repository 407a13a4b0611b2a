"""Media upload pipeline: local image → TikTok media id."""

import asyncio
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from carousel_relay.models.post import UploadSession
from carousel_relay.services.credentials import CredentialStore
from carousel_relay.services.tiktok_api import TikTokAPIClient
from carousel_relay.utils.errors import MediaUploadError, RetryError, TikTokAPIError
from carousel_relay.utils.retry import is_transient_error, retry_with_backoff
from carousel_relay.utils.validation import (
    detect_image_mime_type,
    extension_for_mime_type,
    parse_base64_image,
)

logger = logging.getLogger(__name__)

INIT_ENDPOINT = "v2/post/publish/content/init/"
COMMIT_ENDPOINT = "v2/post/publish/content/commit/"
COMMIT_OK_STATUSES = frozenset({"PROCESSING_UPLOAD", "UPLOAD_COMPLETE"})
UPLOAD_CHUNK_SIZE = 10 * 1024 * 1024


def remove_files(paths: list[str]) -> None:
    """Delete files that still exist, logging instead of raising on failure."""
    for path in paths:
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            logger.warning(f"Failed to clean up file {path}: {e}")


@contextmanager
def decoded_base64_images(
    base64_images: list[str], temp_dir: Optional[str] = None
) -> Iterator[list[str]]:
    """
    Decode base64 images into temporary files that are removed on exit.

    Files are deleted whether the body succeeds, fails, or decoding of a
    later image raises.
    """
    temp_paths: list[str] = []
    try:
        if temp_dir:
            os.makedirs(temp_dir, exist_ok=True)
        for data in base64_images:
            mime_type, raw = parse_base64_image(data)
            fd, path = tempfile.mkstemp(
                prefix="tiktok-base64-",
                suffix=extension_for_mime_type(mime_type),
                dir=temp_dir,
            )
            temp_paths.append(path)
            with os.fdopen(fd, "wb") as f:
                f.write(raw)
        yield temp_paths
    finally:
        remove_files(temp_paths)


class MediaUploadPipeline:
    """Uploads images to TikTok through the init → transfer → commit flow."""

    def __init__(
        self,
        api: TikTokAPIClient,
        credentials: CredentialStore,
        max_retries: int = 3,
        base_delay: float = 1.0,
        temp_dir: Optional[str] = None,
    ) -> None:
        """
        Initialize the MediaUploadPipeline.

        Args:
            api: TikTok API client
            credentials: Credential store used for bearer tokens
            max_retries: Retries after the first attempt for transient failures
            base_delay: Base backoff delay in seconds (doubles per retry)
            temp_dir: Directory for decoded base64 images
        """
        self.api = api
        self.credentials = credentials
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.temp_dir = temp_dir

    async def upload_image(self, image_path: str, account_id: str = "default") -> str:
        """
        Upload one image, retrying the full three-phase sequence on
        transient failures.

        Args:
            image_path: Local path of the image
            account_id: TikTok account to upload as

        Returns:
            The TikTok media id

        Raises:
            MediaUploadError: When the upload fails for good
        """
        logger.info(f"Starting image upload to TikTok: {image_path} (account {account_id})")
        try:
            media_id = await retry_with_backoff(
                self._upload_once,
                image_path,
                account_id,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                should_retry=is_transient_error,
            )
        except RetryError as e:
            logger.error(
                f"Image upload failed for {image_path} after {e.attempts} attempts: {e.last_error}"
            )
            raise MediaUploadError(
                f"Failed to upload image after {e.attempts} attempts: {e.last_error}",
                attempts=e.attempts,
            ) from e.last_error

        logger.info(f"Image uploaded to TikTok: {image_path} → {media_id}")
        return media_id

    async def upload_images(self, image_paths: list[str], account_id: str = "default") -> list[str]:
        """
        Upload images one after another.

        If any image fails, the whole batch fails with every per-image error,
        and media ids of images that did upload are not returned.

        Raises:
            MediaUploadError: If any image failed or the list was empty
        """
        media_ids: list[str] = []
        errors: list[str] = []

        for idx, path in enumerate(image_paths):
            logger.info(f"Uploading image {idx + 1}/{len(image_paths)}: {path}")
            try:
                media_ids.append(await self.upload_image(path, account_id))
            except MediaUploadError as e:
                errors.append(f"Image {idx + 1}: {e}")
                logger.error(f"Failed to upload image {idx + 1} in batch: {e}")

        if errors:
            raise MediaUploadError(
                f"Failed to upload {len(errors)} images: {'; '.join(errors)}", errors=errors
            )
        if not media_ids:
            raise MediaUploadError("No images were successfully uploaded")

        logger.info(f"Batch image upload completed: {len(media_ids)} images (account {account_id})")
        return media_ids

    async def upload_base64_images(
        self, base64_images: list[str], account_id: str = "default"
    ) -> list[str]:
        """Decode base64 images to temporary files and upload them as a batch."""
        with decoded_base64_images(base64_images, self.temp_dir) as paths:
            return await self.upload_images(paths, account_id)

    # ==================== PROTOCOL PHASES ====================

    async def _upload_once(self, image_path: str, account_id: str) -> str:
        session = await self._initialize_upload_session(image_path, account_id)
        await self._transfer_file(session)
        await self._commit_upload(session.media_id, account_id)
        return session.media_id

    async def _initialize_upload_session(self, image_path: str, account_id: str) -> UploadSession:
        access_token = await self.credentials.get_valid_access_token(account_id)
        data = await self.api.request_json(
            "POST",
            INIT_ENDPOINT,
            context="Failed to initialize upload session",
            access_token=access_token,
            json={
                "post_info": {
                    "title": "Carousel Upload Session",
                    "description": "Media upload session for carousel",
                    "privacy_level": "FOLLOWER_OF_CREATOR",
                },
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": 0,
                    "chunk_size": UPLOAD_CHUNK_SIZE,
                    "total_chunk_count": 1,
                },
            },
        )

        upload_url = data.get("upload_url")
        media_id = data.get("publish_id")
        if not upload_url or not media_id:
            raise TikTokAPIError(
                200, "Failed to initialize upload session: response missing upload_url or publish_id"
            )
        return UploadSession(file_path=image_path, upload_url=upload_url, media_id=media_id)

    async def _transfer_file(self, session: UploadSession) -> None:
        content = await asyncio.to_thread(Path(session.file_path).read_bytes)
        content_type = detect_image_mime_type(content) or "application/octet-stream"

        response = await self.api.send(
            "PUT",
            session.upload_url,
            content=content,
            headers={
                "Content-Type": content_type,
                "Content-Length": str(len(content)),
            },
        )
        if not response.is_success:
            raise TikTokAPIError(
                response.status_code,
                f"Failed to upload file to TikTok: {response.status_code} "
                f"{response.reason_phrase} - {response.text[:200]}",
            )

    async def _commit_upload(self, media_id: str, account_id: str) -> None:
        access_token = await self.credentials.get_valid_access_token(account_id)
        data = await self.api.request_json(
            "POST",
            COMMIT_ENDPOINT,
            context="Failed to commit upload",
            access_token=access_token,
            json={"publish_id": media_id},
        )

        status = data.get("status")
        if status not in COMMIT_OK_STATUSES:
            raise TikTokAPIError(200, f"Upload commit returned unexpected status: {status}")
