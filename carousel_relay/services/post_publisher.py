"""Carousel post publishing."""

import logging
from typing import Any, Optional

from carousel_relay.models.post import CarouselOptions, ContentValidation, PostResult
from carousel_relay.services.credentials import CredentialStore
from carousel_relay.services.tiktok_api import TikTokAPIClient
from carousel_relay.utils.errors import InvalidRequestError, PostPublishError, TikTokAPIError

logger = logging.getLogger(__name__)

PUBLISH_ENDPOINT = "v2/post/publish/"
STATUS_ENDPOINT = "v2/post/publish/status/get/"

MAX_CAROUSEL_IMAGES = 10
MAX_CAPTION_LENGTH = 2200
MAX_TITLE_LENGTH = 150
MAX_TAGS = 30
MAX_TAG_LENGTH = 100
TRUNCATION_MARKER = "..."
DEFAULT_PRIVACY_LEVEL = "FOLLOWER_OF_CREATOR"
DRAFT_PRIVACY_LEVEL = "SELF_ONLY"


def build_caption(caption: Optional[str], tags: Optional[list[str]]) -> str:
    """Append hashtags to the caption and truncate it to TikTok's limit."""
    final_caption = caption or ""
    if tags:
        hashtags = " ".join(tag if tag.startswith("#") else f"#{tag}" for tag in tags)
        final_caption = f"{final_caption}\n\n{hashtags}" if final_caption else hashtags

    if len(final_caption) > MAX_CAPTION_LENGTH:
        keep = MAX_CAPTION_LENGTH - len(TRUNCATION_MARKER)
        final_caption = final_caption[:keep] + TRUNCATION_MARKER
    return final_caption


def validate_post_content(
    caption: Optional[str] = None, tags: Optional[list[str]] = None
) -> ContentValidation:
    """Check caption and tag limits without raising."""
    if caption and len(caption) > MAX_CAPTION_LENGTH:
        return ContentValidation(
            valid=False, error=f"Caption exceeds {MAX_CAPTION_LENGTH} character limit"
        )

    if tags and len(tags) > MAX_TAGS:
        return ContentValidation(valid=False, error=f"Too many tags (maximum {MAX_TAGS} allowed)")

    for tag in tags or []:
        if len(tag) > MAX_TAG_LENGTH:
            return ContentValidation(
                valid=False,
                error=f"Tag too long (maximum {MAX_TAG_LENGTH} characters): {tag}",
            )

    return ContentValidation(valid=True)


class PostPublisher:
    """Creates carousel posts from already uploaded media."""

    def __init__(self, api: TikTokAPIClient, credentials: CredentialStore) -> None:
        self.api = api
        self.credentials = credentials

    def _build_publish_payload(
        self, media_ids: list[str], options: CarouselOptions
    ) -> dict[str, Any]:
        caption = build_caption(options.caption, options.tags)
        privacy_level = options.privacy_level or DEFAULT_PRIVACY_LEVEL
        if options.post_as_draft:
            privacy_level = DRAFT_PRIVACY_LEVEL

        return {
            "post_info": {
                "title": caption[:MAX_TITLE_LENGTH],
                "text": caption,
                "privacy_level": privacy_level,
                "disable_duet": False,
                "disable_comment": False,
                "disable_stitch": False,
                "video_cover_timestamp_ms": 0,
            },
            "source_info": {
                "source": "FILE_UPLOAD",
                "photo_cover_index": 0,
                "photo_images": [{"media_id": media_id} for media_id in media_ids],
            },
        }

    async def create_post(
        self,
        media_ids: list[str],
        options: Optional[CarouselOptions] = None,
        account_id: str = "default",
    ) -> PostResult:
        """
        Publish a carousel post.

        Args:
            media_ids: Between 1 and 10 TikTok media ids, in display order
            options: Caption, tags, draft flag and privacy level
            account_id: TikTok account to post as

        Returns:
            PostResult with the TikTok post id and share URL

        Raises:
            InvalidRequestError: If the number of media ids is out of range
            PostPublishError: If TikTok rejects the post
        """
        if not media_ids:
            raise InvalidRequestError("At least one media ID is required to create a carousel post")
        if len(media_ids) > MAX_CAROUSEL_IMAGES:
            raise InvalidRequestError(
                f"TikTok carousel posts support a maximum of {MAX_CAROUSEL_IMAGES} images"
            )

        options = options or CarouselOptions()
        payload = self._build_publish_payload(media_ids, options)
        if len(payload["post_info"]["text"]) == MAX_CAPTION_LENGTH and payload["post_info"][
            "text"
        ].endswith(TRUNCATION_MARKER):
            logger.warning(
                f"Caption truncated to fit TikTok limit (original caption length "
                f"{len(options.caption or '')})"
            )

        access_token = await self.credentials.get_valid_access_token(account_id)
        logger.info(
            f"Creating TikTok carousel post: {len(media_ids)} images, "
            f"caption length {len(payload['post_info']['text'])}, "
            f"draft={options.post_as_draft} (account {account_id})"
        )

        try:
            data = await self.api.request_json(
                "POST",
                PUBLISH_ENDPOINT,
                context="Failed to create carousel post",
                access_token=access_token,
                json=payload,
            )
        except TikTokAPIError as e:
            logger.error(
                f"Failed to create carousel post (status {e.status_code}, account {account_id}): {e}"
            )
            raise PostPublishError(str(e)) from e

        post_id = data.get("publish_id")
        if not post_id:
            raise PostPublishError("Failed to create carousel post: response missing publish_id")

        result = PostResult(post_id=post_id, share_url=data.get("share_url"), status=data.get("status"))
        logger.info(
            f"Carousel post created: {result.post_id} ({len(media_ids)} images, "
            f"status {result.status}, account {account_id})"
        )
        return result

    async def get_post_status(self, post_id: str, account_id: str = "default") -> dict[str, Any]:
        """Fetch TikTok's processing status for a published post."""
        access_token = await self.credentials.get_valid_access_token(account_id)
        return await self.api.request_json(
            "POST",
            STATUS_ENDPOINT,
            context="Failed to get post status",
            access_token=access_token,
            json={"publish_id": post_id},
        )

    def validate_post_content(
        self, caption: Optional[str] = None, tags: Optional[list[str]] = None
    ) -> ContentValidation:
        return validate_post_content(caption, tags)
