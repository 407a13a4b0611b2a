"""Carousel and post related Pydantic models."""

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

PrivacyLevel = Literal[
    "PUBLIC_TO_EVERYONE",
    "MUTUAL_FOLLOW_FRIENDS",
    "FOLLOWER_OF_CREATOR",
    "SELF_ONLY",
]


class LocalImage(BaseModel):
    """An image received by the HTTP layer and written to local disk."""

    path: str
    original_name: str = ""
    size: int = 0
    mime_type: str = "image/jpeg"


class UploadSession(BaseModel):
    """Correlates a local file with its TikTok upload URL for one attempt."""

    file_path: str
    upload_url: str
    media_id: str


class CarouselOptions(BaseModel):
    """Caption and visibility options for a carousel post."""

    caption: Optional[str] = None
    tags: Optional[list[str]] = None
    post_as_draft: bool = False
    privacy_level: Optional[PrivacyLevel] = None


class PostResult(BaseModel):
    """Result of publishing a carousel post."""

    post_id: str
    share_url: Optional[str] = None
    status: Optional[str] = None


class ContentValidation(BaseModel):
    """Outcome of validating caption and tags."""

    valid: bool
    error: Optional[str] = None


class CreateCarouselRequest(BaseModel):
    """Request to create a carousel post from exactly one image source."""

    caption: Optional[str] = None
    tags: Optional[list[str]] = None
    post_as_draft: bool = False
    privacy_level: Optional[PrivacyLevel] = None
    tiktok_account_id: str = Field(default="default", min_length=1)
    sync: bool = True
    image_urls: Optional[list[str]] = None
    image_base64: Optional[list[str]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def split_tag_string(cls, v: Any) -> Any:
        """Accept a JSON array or comma separated string, as sent by forms."""
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [t.strip() for t in stripped.split(",") if t.strip()]
        return v

    def to_options(self) -> CarouselOptions:
        return CarouselOptions(
            caption=self.caption,
            tags=self.tags,
            post_as_draft=self.post_as_draft,
            privacy_level=self.privacy_level,
        )


class CarouselPostResponse(BaseModel):
    """Response for a carousel published synchronously."""

    success: bool = True
    post_id: str
    share_url: Optional[str] = None
    media_count: int
    draft: bool = False


class CarouselJobResponse(BaseModel):
    """Response for a carousel queued as a background job."""

    success: bool = True
    job_id: str
    media_count: int
