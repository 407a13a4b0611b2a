"""Utility modules for Carousel Relay."""

from carousel_relay.utils.errors import (
    CarouselRelayError,
    CredentialError,
    InvalidRequestError,
    MediaUploadError,
    PostPublishError,
    RetryError,
    TikTokAPIError,
    UnsupportedImageSourceError,
)
from carousel_relay.utils.retry import is_transient_error, retry_with_backoff

__all__ = [
    "CarouselRelayError",
    "CredentialError",
    "InvalidRequestError",
    "MediaUploadError",
    "PostPublishError",
    "RetryError",
    "TikTokAPIError",
    "UnsupportedImageSourceError",
    "is_transient_error",
    "retry_with_backoff",
]
