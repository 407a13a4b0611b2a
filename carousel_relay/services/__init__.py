"""Service layer for Carousel Relay."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from carousel_relay.config import Settings, get_settings
from carousel_relay.services.carousel import CarouselOrchestrator, ImageSource
from carousel_relay.services.credentials import CredentialStore
from carousel_relay.services.job_registry import InMemoryJobStore, JobRegistry, JobStore
from carousel_relay.services.media_upload import MediaUploadPipeline
from carousel_relay.services.post_publisher import PostPublisher
from carousel_relay.services.tiktok_api import TikTokAPIClient
from carousel_relay.utils.encryption import TokenCipher

logger = logging.getLogger(__name__)


class Services:
    """The wired-up service instances shared by one application."""

    def __init__(
        self,
        settings: Settings,
        api: TikTokAPIClient,
        credentials: CredentialStore,
        jobs: JobRegistry,
        media: MediaUploadPipeline,
        publisher: PostPublisher,
        carousel: CarouselOrchestrator,
    ) -> None:
        self.settings = settings
        self.api = api
        self.credentials = credentials
        self.jobs = jobs
        self.media = media
        self.publisher = publisher
        self.carousel = carousel


def create_services(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    job_store: Optional[JobStore] = None,
) -> Services:
    """
    Factory function to build every service from settings.

    If settings hold an access token for the default account, it is
    encrypted and stored so the service works without an OAuth round trip.

    Args:
        settings: Application settings (defaults to get_settings())
        transport: Optional httpx transport for the TikTok client
        job_store: Optional job store (defaults to in-memory)

    Returns:
        Configured Services bundle

    Raises:
        ValueError: If the encryption key is missing or malformed
    """
    settings = settings or get_settings()
    if not settings.encryption_key:
        raise ValueError("ENCRYPTION_KEY must be set (64 hex characters)")

    api = TikTokAPIClient(
        settings.tiktok_api_base_url,
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    credentials = CredentialStore(
        api,
        TokenCipher(settings.encryption_key),
        client_id=settings.tiktok_client_id,
        client_secret=settings.tiktok_client_secret,
        redirect_uri=settings.tiktok_redirect_uri,
        app_id=settings.tiktok_app_id,
        auth_url=settings.tiktok_auth_url,
    )
    jobs = JobRegistry(
        store=job_store or InMemoryJobStore(),
        timeout_seconds=settings.job_timeout_seconds,
        retention_hours=settings.cleanup_jobs_after_hours,
        sweep_interval_seconds=settings.job_sweep_interval_seconds,
    )
    media = MediaUploadPipeline(
        api,
        credentials,
        max_retries=settings.max_retry_attempts,
        base_delay=settings.base_delay_seconds,
        temp_dir=settings.upload_dir,
    )
    publisher = PostPublisher(api, credentials)
    carousel = CarouselOrchestrator(
        jobs,
        media,
        publisher,
        allowed_mime_types=settings.allowed_mime_type_list,
        max_file_size_bytes=settings.max_file_size_bytes,
        temp_dir=settings.upload_dir,
    )

    if settings.tiktok_access_token:
        credentials.store_tokens(
            "default",
            settings.tiktok_access_token,
            settings.tiktok_refresh_token or None,
            datetime.now(timezone.utc) + timedelta(seconds=settings.tiktok_token_expires_in),
        )
        logger.info("Loaded TikTok tokens for the default account from settings")

    return Services(
        settings=settings,
        api=api,
        credentials=credentials,
        jobs=jobs,
        media=media,
        publisher=publisher,
        carousel=carousel,
    )


__all__ = [
    "CarouselOrchestrator",
    "CredentialStore",
    "ImageSource",
    "InMemoryJobStore",
    "JobRegistry",
    "JobStore",
    "MediaUploadPipeline",
    "PostPublisher",
    "Services",
    "TikTokAPIClient",
    "create_services",
]
