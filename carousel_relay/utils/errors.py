"""Custom exception classes for Carousel Relay."""

from typing import Optional


class CarouselRelayError(Exception):
    """Base exception for all application errors."""

    pass


class InvalidRequestError(CarouselRelayError):
    """Request rejected before any upstream call was made."""

    pass


class UnsupportedImageSourceError(CarouselRelayError):
    """The requested image source exists in the API but is not implemented."""

    pass


class CredentialError(CarouselRelayError):
    """No usable credentials for an account, or the token refresh failed."""

    def __init__(self, account_id: str, message: str) -> None:
        self.account_id = account_id
        super().__init__(message)


class TikTokAPIError(CarouselRelayError):
    """TikTok API returned an error."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: Optional[str] = None,
        log_id: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        self.log_id = log_id
        super().__init__(message)


class MediaUploadError(CarouselRelayError):
    """One or more images could not be uploaded."""

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        attempts: Optional[int] = None,
    ) -> None:
        self.errors = errors or []
        self.attempts = attempts
        super().__init__(message)


class PostPublishError(CarouselRelayError):
    """The carousel post could not be created."""

    pass


class RetryError(CarouselRelayError):
    """An operation failed and will not be retried again."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
