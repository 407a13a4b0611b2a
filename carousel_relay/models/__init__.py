"""Pydantic data models for Carousel Relay."""

from carousel_relay.models.credentials import TikTokCredentials, TokenResponse
from carousel_relay.models.job import Job, JobDetails, JobState
from carousel_relay.models.post import (
    CarouselJobResponse,
    CarouselOptions,
    CarouselPostResponse,
    ContentValidation,
    CreateCarouselRequest,
    LocalImage,
    PostResult,
    UploadSession,
)

__all__ = [
    "TikTokCredentials",
    "TokenResponse",
    "Job",
    "JobDetails",
    "JobState",
    "CarouselJobResponse",
    "CarouselOptions",
    "CarouselPostResponse",
    "ContentValidation",
    "CreateCarouselRequest",
    "LocalImage",
    "PostResult",
    "UploadSession",
]
