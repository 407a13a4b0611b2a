"""FastAPI dependencies for Carousel Relay API."""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

from carousel_relay.config import Settings
from carousel_relay.services import (
    CredentialStore,
    JobRegistry,
    PostPublisher,
    Services,
)

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    """Dependency for the services built at startup."""
    return request.app.state.services


def get_settings_dep(request: Request) -> Settings:
    """Dependency for application settings."""
    return get_services(request).settings


def get_job_registry(request: Request) -> JobRegistry:
    return get_services(request).jobs


def get_credential_store(request: Request) -> CredentialStore:
    return get_services(request).credentials


def get_post_publisher(request: Request) -> PostPublisher:
    return get_services(request).publisher


def require_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(default=None),
) -> None:
    """
    Guard admin routes with the ``X-Admin-Key`` header.

    Raises:
        HTTPException: 401 if the header is missing, 403 if it is wrong,
            503 if no admin key is configured
    """
    expected = get_settings_dep(request).admin_api_key
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="Admin API key required in X-Admin-Key header")
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API key is not configured")
    if not secrets.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            f"Invalid admin API key attempt on {request.url.path} "
            f"from {request.client.host if request.client else 'unknown'}"
        )
        raise HTTPException(status_code=403, detail="Invalid admin API key")
