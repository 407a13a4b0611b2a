"""Tests for carousel orchestration in sync and async mode."""

import asyncio
import os

import pytest

from carousel_relay.models.post import (
    CarouselJobResponse,
    CarouselPostResponse,
    CreateCarouselRequest,
    LocalImage,
)
from carousel_relay.services import Services
from carousel_relay.utils.errors import (
    InvalidRequestError,
    MediaUploadError,
    UnsupportedImageSourceError,
)

from conftest import JPEG_BASE64, PNG_BASE64, FakeTikTok


@pytest.fixture
def local_images(image_file):
    """Factory returning LocalImage records for freshly written PNG files."""

    def _make(count: int) -> list[LocalImage]:
        images = []
        for i in range(count):
            path = image_file(f"upload-{i}.png")
            images.append(LocalImage(path=path, original_name=f"photo{i}.png", size=40, mime_type="image/png"))
        return images

    return _make


def assert_deleted(images: list[LocalImage]) -> None:
    assert not any(os.path.exists(image.path) for image in images)


# ==================== Input Resolution ====================


class TestImageSourceResolution:
    """Exactly one image source, validated before any upload work."""

    @pytest.mark.asyncio
    async def test_no_source(self, services: Services) -> None:
        with pytest.raises(InvalidRequestError, match="No images provided"):
            await services.carousel.create_carousel(CreateCarouselRequest(caption="x"))

    @pytest.mark.asyncio
    async def test_multiple_sources_rejected_and_files_removed(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        files = local_images(1)
        request = CreateCarouselRequest(image_base64=[PNG_BASE64])

        with pytest.raises(InvalidRequestError, match="Only one image source type is allowed"):
            await services.carousel.create_carousel(request, files)

        assert_deleted(files)
        assert fake_tiktok.requests == []

    @pytest.mark.asyncio
    async def test_url_source_is_not_implemented(self, services: Services, fake_tiktok: FakeTikTok) -> None:
        request = CreateCarouselRequest(image_urls=["https://cdn.example.com/a.jpg"], sync=False)

        with pytest.raises(UnsupportedImageSourceError, match="URL-based image upload not yet implemented"):
            await services.carousel.create_carousel(request)

        assert services.jobs.list_jobs() == []
        assert fake_tiktok.requests == []

    @pytest.mark.asyncio
    async def test_malformed_url_rejected(self, services: Services) -> None:
        request = CreateCarouselRequest(image_urls=["ftp://example.com/a.jpg"])

        with pytest.raises(InvalidRequestError, match="Invalid image URL"):
            await services.carousel.create_carousel(request)

    @pytest.mark.asyncio
    async def test_more_than_ten_images(self, services: Services, local_images) -> None:
        files = local_images(11)

        with pytest.raises(InvalidRequestError, match="maximum of 10 images"):
            await services.carousel.create_carousel(CreateCarouselRequest(), files)

        assert_deleted(files)

    @pytest.mark.asyncio
    async def test_invalid_content_before_upload(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        files = local_images(1)
        request = CreateCarouselRequest(tags=["t"] * 31)

        with pytest.raises(InvalidRequestError, match="Invalid post content: Too many tags"):
            await services.carousel.create_carousel(request, files)

        assert fake_tiktok.requests == []
        assert_deleted(files)

    @pytest.mark.asyncio
    async def test_invalid_base64_rejected(self, services: Services, fake_tiktok: FakeTikTok) -> None:
        request = CreateCarouselRequest(image_base64=[PNG_BASE64, "data:image/gif;base64,R0lGODlh"])

        with pytest.raises(InvalidRequestError, match="Invalid base64 image 2: Invalid image type"):
            await services.carousel.create_carousel(request)

        assert fake_tiktok.requests == []


# ==================== Sync Mode ====================


class TestSyncCarousel:
    """Upload everything, publish, and return the post."""

    @pytest.mark.asyncio
    async def test_files_published_and_removed(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        files = local_images(2)
        request = CreateCarouselRequest(caption="Trip", tags=["travel"], post_as_draft=True)

        response = await services.carousel.create_carousel(request, files)

        assert isinstance(response, CarouselPostResponse)
        assert response.success
        assert response.post_id == "post_123"
        assert response.share_url == "https://www.tiktok.com/@creator/photo/123"
        assert response.media_count == 2
        assert response.draft is True
        assert_deleted(files)

        [payload] = fake_tiktok.json_bodies("/v2/post/publish/")
        assert payload["source_info"]["photo_images"] == [{"media_id": "media_1"}, {"media_id": "media_2"}]
        assert payload["post_info"]["privacy_level"] == "SELF_ONLY"

    @pytest.mark.asyncio
    async def test_base64_images(self, services: Services, test_settings) -> None:
        request = CreateCarouselRequest(image_base64=[PNG_BASE64, JPEG_BASE64])

        response = await services.carousel.create_carousel(request)

        assert response.media_count == 2
        assert os.listdir(test_settings.upload_dir) == []

    @pytest.mark.asyncio
    async def test_upload_failure_propagates_and_removes_files(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        fake_tiktok.commit_status = "FAILED"
        files = local_images(2)

        with pytest.raises(MediaUploadError, match="Failed to upload 2 images"):
            await services.carousel.create_carousel(CreateCarouselRequest(), files)

        assert_deleted(files)
        assert "/v2/post/publish/" not in fake_tiktok.paths()


# ==================== Async Mode ====================


class TestAsyncCarousel:
    """Job id returned at once, work reported through the job registry."""

    @pytest.mark.asyncio
    async def test_job_returned_before_any_upload(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        response = await services.carousel.create_carousel(
            CreateCarouselRequest(sync=False), local_images(3)
        )

        assert isinstance(response, CarouselJobResponse)
        assert response.media_count == 3
        job = services.jobs.get_job(response.job_id)
        assert job.status == "pending"
        assert job.details.total_images == 3
        assert fake_tiktok.requests == []
        assert len(services.carousel.background_tasks) == 1

        await services.carousel.drain()

    @pytest.mark.asyncio
    async def test_job_completes_with_monotonic_progress(self, services: Services, local_images) -> None:
        snapshots: list[float] = []
        update_progress = services.jobs.update_job_progress

        def recording_update(*args, **kwargs):
            job = update_progress(*args, **kwargs)
            snapshots.append(job.progress)
            return job

        services.jobs.update_job_progress = recording_update
        files = local_images(3)

        response = await services.carousel.create_carousel(
            CreateCarouselRequest(sync=False, caption="Async", post_as_draft=True), files
        )
        await services.carousel.drain()

        assert snapshots == [33, 67, 100]
        job = services.jobs.get_job(response.job_id)
        assert job.status == "completed"
        assert job.progress == 100
        assert job.details.media_ids == ["media_1", "media_2", "media_3"]
        assert job.details.tiktok_post_id == "post_123"
        extra = job.details.model_dump()
        assert extra["post_url"] == "https://www.tiktok.com/@creator/photo/123"
        assert extra["media_count"] == 3
        assert extra["draft"] is True
        assert_deleted(files)
        assert services.carousel.background_tasks == set()

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        fake_tiktok.commit_status = "FAILED"
        files = local_images(2)

        response = await services.carousel.create_carousel(CreateCarouselRequest(sync=False), files)
        await services.carousel.drain()

        job = services.jobs.get_job(response.job_id)
        assert job.status == "failed"
        assert "unexpected status: FAILED" in job.details.error
        assert job.details.processed_images == 0
        assert_deleted(files)
        assert services.carousel.background_tasks == set()

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_uploaded_media(
        self, services: Services, fake_tiktok: FakeTikTok, local_images
    ) -> None:
        fake_tiktok.publish_response = (200, {"error": {"code": "spam_risk", "message": "Posting too often"}})

        response = await services.carousel.create_carousel(
            CreateCarouselRequest(sync=False), local_images(2)
        )
        await services.carousel.drain()

        job = services.jobs.get_job(response.job_id)
        assert job.status == "failed"
        assert job.details.error == "Failed to create carousel post: Posting too often"
        assert job.details.media_ids == ["media_1", "media_2"]
        assert job.progress == 100

    @pytest.mark.asyncio
    async def test_base64_job_cleans_temp_files(self, services: Services, test_settings) -> None:
        response = await services.carousel.create_carousel(
            CreateCarouselRequest(sync=False, image_base64=[PNG_BASE64])
        )
        await services.carousel.drain()

        assert services.jobs.get_job(response.job_id).status == "completed"
        assert os.listdir(test_settings.upload_dir) == []

    @pytest.mark.asyncio
    async def test_unauthorized_account_fails_job(self, services: Services, local_images) -> None:
        files = local_images(1)

        response = await services.carousel.create_carousel(
            CreateCarouselRequest(sync=False, tiktok_account_id="unknown"), files
        )
        await services.carousel.drain()

        job = services.jobs.get_job(response.job_id)
        assert job.status == "failed"
        assert "No credentials found for account: unknown" in job.details.error
        assert_deleted(files)

    @pytest.mark.asyncio
    async def test_cancelled_task_fails_job_and_removes_files(
        self, services: Services, local_images
    ) -> None:
        started = asyncio.Event()

        async def stalled_upload(image_path: str, account_id: str = "default") -> str:
            started.set()
            await asyncio.Event().wait()
            return "never"

        services.media.upload_image = stalled_upload
        files = local_images(2)

        response = await services.carousel.create_carousel(CreateCarouselRequest(sync=False), files)
        await started.wait()
        [task] = services.carousel.background_tasks
        task.cancel()
        await services.carousel.drain()

        assert task.cancelled()
        job = services.jobs.get_job(response.job_id)
        assert job.status == "failed"
        assert job.details.error == "Job cancelled at shutdown"
        assert_deleted(files)
        assert services.carousel.background_tasks == set()
