"""Carousel orchestration: uploads, publishing and job reporting."""

import asyncio
import logging
from contextlib import nullcontext
from typing import Literal, Optional, Union

from pydantic import BaseModel

from carousel_relay.models.post import (
    CarouselJobResponse,
    CarouselPostResponse,
    CreateCarouselRequest,
    LocalImage,
)
from carousel_relay.services.job_registry import JobRegistry
from carousel_relay.services.media_upload import (
    MediaUploadPipeline,
    decoded_base64_images,
    remove_files,
)
from carousel_relay.services.post_publisher import MAX_CAROUSEL_IMAGES, PostPublisher
from carousel_relay.utils.errors import InvalidRequestError, UnsupportedImageSourceError
from carousel_relay.utils.validation import validate_base64_image, validate_image_url

logger = logging.getLogger(__name__)

ImageSourceKind = Literal["files", "base64", "urls"]


class ImageSource(BaseModel):
    """The single image source chosen for a request."""

    kind: ImageSourceKind
    items: list[str]


class CarouselOrchestrator:
    """
    Turns a create-carousel request into a published TikTok post.

    Synchronous requests upload every image, publish and return the post.
    Asynchronous requests get a job id straight away while a background
    task uploads images one at a time and reports progress to the job
    registry.
    """

    def __init__(
        self,
        jobs: JobRegistry,
        media: MediaUploadPipeline,
        publisher: PostPublisher,
        allowed_mime_types: list[str],
        max_file_size_bytes: int,
        max_images: int = MAX_CAROUSEL_IMAGES,
        temp_dir: Optional[str] = None,
    ) -> None:
        self.jobs = jobs
        self.media = media
        self.publisher = publisher
        self.allowed_mime_types = allowed_mime_types
        self.max_file_size_bytes = max_file_size_bytes
        self.max_images = max_images
        self.temp_dir = temp_dir
        self._tasks: set[asyncio.Task] = set()

    # ==================== INPUT RESOLUTION ====================

    def resolve_image_source(
        self, request: CreateCarouselRequest, files: list[LocalImage]
    ) -> ImageSource:
        """
        Pick the one image source present in the request.

        Raises:
            InvalidRequestError: If no source or more than one source is given
        """
        candidates = [
            ImageSource(kind=kind, items=items)
            for kind, items in (
                ("files", [f.path for f in files]),
                ("base64", request.image_base64 or []),
                ("urls", request.image_urls or []),
            )
            if items
        ]

        if not candidates:
            raise InvalidRequestError("No images provided")
        if len(candidates) > 1:
            raise InvalidRequestError("Only one image source type is allowed per request")
        return candidates[0]

    def validate_request(self, request: CreateCarouselRequest, source: ImageSource) -> None:
        """
        Reject bad input before any upload work starts.

        Raises:
            InvalidRequestError: On count, content or image format problems
            UnsupportedImageSourceError: For URL images
        """
        if len(source.items) > self.max_images:
            raise InvalidRequestError(
                f"TikTok supports a maximum of {self.max_images} images per carousel"
            )

        content = self.publisher.validate_post_content(request.caption, request.tags)
        if not content.valid:
            raise InvalidRequestError(f"Invalid post content: {content.error}")

        if source.kind == "urls":
            for url in source.items:
                check = validate_image_url(url)
                if not check.valid:
                    raise InvalidRequestError(f"Invalid image URL: {check.error}")
            raise UnsupportedImageSourceError("URL-based image upload not yet implemented")

        if source.kind == "base64":
            for idx, data in enumerate(source.items):
                check = validate_base64_image(data, self.allowed_mime_types, self.max_file_size_bytes)
                if not check.valid:
                    raise InvalidRequestError(f"Invalid base64 image {idx + 1}: {check.error}")

    # ==================== ENTRY POINT ====================

    async def create_carousel(
        self,
        request: CreateCarouselRequest,
        files: Optional[list[LocalImage]] = None,
    ) -> Union[CarouselPostResponse, CarouselJobResponse]:
        """
        Create a carousel post, synchronously or as a background job.

        Local files are deleted once they are no longer needed, including
        on every failure path.

        Args:
            request: Caption, options and the image source
            files: Images already written to local disk by the HTTP layer

        Returns:
            CarouselPostResponse in sync mode, CarouselJobResponse otherwise
        """
        files = files or []
        file_paths = [f.path for f in files]
        logger.info(
            f"Creating carousel post: {len(files)} files, "
            f"{len(request.image_base64 or [])} base64, {len(request.image_urls or [])} urls, "
            f"sync={request.sync}, account {request.tiktok_account_id}"
        )

        try:
            source = self.resolve_image_source(request, files)
            self.validate_request(request, source)

            if request.sync:
                return await self._create_sync(request, source)
            return self._create_async(request, source)
        except Exception as e:
            logger.error(f"Carousel creation failed (sync={request.sync}): {e}")
            remove_files(file_paths)
            raise

    # ==================== SYNC MODE ====================

    async def _create_sync(
        self, request: CreateCarouselRequest, source: ImageSource
    ) -> CarouselPostResponse:
        account_id = request.tiktok_account_id
        logger.info(f"Processing carousel synchronously: {len(source.items)} images")

        if source.kind == "files":
            media_ids = await self.media.upload_images(source.items, account_id)
            remove_files(source.items)
        else:
            media_ids = await self.media.upload_base64_images(source.items, account_id)

        post = await self.publisher.create_post(media_ids, request.to_options(), account_id)
        logger.info(f"Carousel created (sync): post {post.post_id}, {len(media_ids)} images")

        return CarouselPostResponse(
            post_id=post.post_id,
            share_url=post.share_url,
            media_count=len(media_ids),
            draft=request.post_as_draft,
        )

    # ==================== ASYNC MODE ====================

    def _create_async(
        self, request: CreateCarouselRequest, source: ImageSource
    ) -> CarouselJobResponse:
        job = self.jobs.create_job(len(source.items))
        logger.info(f"Processing carousel asynchronously: job {job.id}, {len(source.items)} images")

        task = asyncio.create_task(
            self._process_carousel_job(job.id, request, source), name=f"carousel-{job.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

        return CarouselJobResponse(job_id=job.id, media_count=len(source.items))

    async def _process_carousel_job(
        self, job_id: str, request: CreateCarouselRequest, source: ImageSource
    ) -> None:
        """Background body of an async job. Always completes or fails the job."""
        account_id = request.tiktok_account_id
        local_files = source.items if source.kind == "files" else []

        try:
            if source.kind == "base64":
                images = decoded_base64_images(source.items, self.temp_dir)
            else:
                images = nullcontext(source.items)

            media_ids: list[str] = []
            with images as paths:
                for path in paths:
                    media_id = await self.media.upload_image(path, account_id)
                    media_ids.append(media_id)
                    self.jobs.update_job_progress(job_id, len(media_ids), media_id)
                    if local_files:
                        remove_files([path])

            post = await self.publisher.create_post(media_ids, request.to_options(), account_id)
            self.jobs.complete_job(
                job_id,
                post.post_id,
                {
                    "post_url": post.share_url,
                    "media_count": len(media_ids),
                    "draft": request.post_as_draft,
                },
            )
            logger.info(f"Async carousel job {job_id} completed: post {post.post_id}")
        except asyncio.CancelledError:
            logger.warning(f"Async carousel job {job_id} cancelled before finishing")
            self.jobs.fail_job(job_id, "Job cancelled at shutdown")
            remove_files(local_files)
            raise
        except Exception as e:
            logger.error(f"Async carousel job {job_id} failed: {e}")
            self.jobs.fail_job(job_id, str(e))
            remove_files(local_files)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task {task.get_name()} raised: {task.exception()}")

    @property
    def background_tasks(self) -> set[asyncio.Task]:
        return set(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for running background jobs, up to ``timeout`` seconds."""
        tasks = self.background_tasks
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} background carousel jobs still running at shutdown")
