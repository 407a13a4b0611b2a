"""FastAPI routes for Carousel Relay API."""

import asyncio
import json
import logging
import math
import platform
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.datastructures import FormData
from starlette.datastructures import UploadFile as StarletteUploadFile

from carousel_relay import __version__
from carousel_relay.api.deps import (
    get_credential_store,
    get_job_registry,
    get_post_publisher,
    get_services,
    require_admin,
)
from carousel_relay.api.uploads import save_uploaded_images
from carousel_relay.models.job import Job, JobState
from carousel_relay.models.post import (
    CarouselJobResponse,
    CarouselPostResponse,
    CreateCarouselRequest,
    LocalImage,
)
from carousel_relay.services import CredentialStore, JobRegistry, PostPublisher, Services
from carousel_relay.utils.errors import (
    CarouselRelayError,
    CredentialError,
    InvalidRequestError,
    MediaUploadError,
    PostPublishError,
    TikTokAPIError,
    UnsupportedImageSourceError,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()

FORM_SCALAR_FIELDS = ("caption", "tags", "post_as_draft", "privacy_level", "tiktok_account_id", "sync")
FORM_LIST_FIELDS = ("image_base64", "image_urls")


# ==================== Exception Handlers ====================


def status_code_for(exc: CarouselRelayError) -> int:
    """HTTP status code for an application error."""
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, CredentialError):
        return 401
    if isinstance(exc, UnsupportedImageSourceError):
        return 501
    if isinstance(exc, (TikTokAPIError, MediaUploadError, PostPublishError)):
        return 502  # Bad Gateway for TikTok failures
    return 500


async def validation_exception_handler(
    request: Request, exc: Union[ValidationError, RequestValidationError]
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    if isinstance(exc, ValidationError):
        errors = exc.errors(include_url=False, include_context=False)
    else:
        errors = exc.errors()
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "error_type": "ValidationError",
            "errors": jsonable_encoder(errors),
        },
    )


async def carousel_relay_exception_handler(
    request: Request, exc: CarouselRelayError
) -> JSONResponse:
    """Handle application-specific errors."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error_type": type(exc).__name__,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_type": "HTTPException",
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": "InternalError",
        },
    )


# ==================== Request/Response Models ====================


class JobStatusResponse(BaseModel):
    """Response model for job status. Progress is null when not a finite number."""

    job_id: str
    status: JobState
    progress: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    details: Dict[str, Any]

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            progress=job.progress if math.isfinite(job.progress) else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
            details=job.details.model_dump(),
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class JobListResponse(BaseModel):
    """Response model for job listing."""

    jobs: List[JobStatusResponse]
    pagination: Pagination


class CancelJobResponse(BaseModel):
    success: bool = True
    message: str
    job_id: str
    status: JobState


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""

    status: Literal["healthy"] = "healthy"
    timestamp: datetime
    version: str
    uptime: int
    tiktok_api_status: Literal["connected", "disconnected", "error"]


class AuthUrlResponse(BaseModel):
    auth_url: str
    account_id: str


class AuthCallbackResponse(BaseModel):
    success: bool = True
    account_id: str
    expires_at: Optional[datetime] = None


class PostStatusResponse(BaseModel):
    post_id: str
    status: Dict[str, Any]


# ==================== Helpers ====================


def _uptime_seconds(request: Request) -> float:
    started_at = getattr(request.app.state, "started_at", None)
    return time.monotonic() - started_at if started_at is not None else 0.0


def _form_to_request_data(form: FormData) -> dict[str, Any]:
    """Collect non-file form fields into a dict for CreateCarouselRequest."""
    data: dict[str, Any] = {}
    for key in FORM_SCALAR_FIELDS:
        value = form.get(key)
        if isinstance(value, str) and value != "":
            data[key] = value

    for key in FORM_LIST_FIELDS:
        values = [v for v in form.getlist(key) if isinstance(v, str) and v]
        if len(values) == 1 and values[0].lstrip().startswith("["):
            try:
                values = json.loads(values[0])
            except ValueError:
                raise InvalidRequestError(f"Field {key} is not a valid JSON array")
        if values:
            data[key] = values
    return data


# ==================== Carousel Endpoints ====================


@router.post("/create-carousel", response_model=None)
async def create_carousel(
    request: Request,
    services: Services = Depends(get_services),
) -> Union[CarouselPostResponse, CarouselJobResponse]:
    """
    Create a TikTok carousel post.

    Accepts a JSON body or multipart form data with image files under
    ``images``. With ``sync`` false, returns a job id to poll instead of
    waiting for the post.
    """
    files: list[LocalImage] = []
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        carousel_request = CreateCarouselRequest.model_validate(_form_to_request_data(form))
        uploads = [f for f in form.getlist("images") if isinstance(f, StarletteUploadFile)]
        if uploads:
            settings = services.settings
            files = await asyncio.to_thread(
                save_uploaded_images,
                uploads,
                upload_dir=settings.upload_dir,
                allowed_mime_types=settings.allowed_mime_type_list,
                max_file_size_bytes=settings.max_file_size_bytes,
                max_files=settings.max_files_per_request,
            )
    else:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError("Request body must be valid JSON")
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        carousel_request = CreateCarouselRequest.model_validate(body)

    return await services.carousel.create_carousel(carousel_request, files)


@router.get("/posts/{post_id}/status", response_model=PostStatusResponse)
async def get_post_status(
    post_id: str,
    account_id: str = Query("default", min_length=1),
    publisher: PostPublisher = Depends(get_post_publisher),
) -> PostStatusResponse:
    """Get TikTok's processing status for a published post."""
    try:
        status = await publisher.get_post_status(post_id, account_id)
    except TikTokAPIError as e:
        raise PostPublishError(str(e)) from e
    return PostStatusResponse(post_id=post_id, status=status)


# ==================== Job Endpoints ====================


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    jobs: JobRegistry = Depends(get_job_registry),
) -> JobStatusResponse:
    """Get the status of an asynchronous carousel job."""
    job = jobs.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    logger.debug(f"Job status retrieved: {job.id} {job.status} {job.progress}")
    return JobStatusResponse.from_job(job)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[JobState] = None,
    jobs: JobRegistry = Depends(get_job_registry),
) -> JobListResponse:
    """List held jobs, newest first."""
    matching = jobs.list_jobs(status)
    start = (page - 1) * limit

    return JobListResponse(
        jobs=[JobStatusResponse.from_job(job) for job in matching[start : start + limit]],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=len(matching),
            pages=math.ceil(len(matching) / limit),
        ),
    )


@router.delete(
    "/jobs/{job_id}",
    response_model=CancelJobResponse,
    dependencies=[Depends(require_admin)],
)
async def cancel_job(
    job_id: str,
    jobs: JobRegistry = Depends(get_job_registry),
) -> CancelJobResponse:
    """
    Cancel a pending or processing job.

    The job is marked failed. Work already running in the background is
    not interrupted.
    """
    job = jobs.cancel_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    return CancelJobResponse(
        message="Job cancelled successfully",
        job_id=job.id,
        status=job.status,
    )


# ==================== Health Endpoints ====================


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    credentials: CredentialStore = Depends(get_credential_store),
) -> HealthResponse:
    """Basic health check, including whether TikTok tokens are usable."""
    tiktok_api_status = "disconnected"
    account_ids = credentials.get_account_ids()
    if account_ids:
        try:
            await credentials.get_valid_access_token(account_ids[0])
            tiktok_api_status = "connected"
        except CarouselRelayError as e:
            logger.warning(f"TikTok API health check failed: {e}")
            tiktok_api_status = "error"

    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        uptime=int(_uptime_seconds(request)),
        tiktok_api_status=tiktok_api_status,
    )


@router.get("/health/detailed", dependencies=[Depends(require_admin)])
async def detailed_health(
    request: Request,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Service, TikTok account, job and configuration details."""
    settings = services.settings
    account_ids = services.credentials.get_account_ids()

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": {
            "service": "tiktok-carousel-relay",
            "version": __version__,
            "uptime": _uptime_seconds(request),
            "python_version": platform.python_version(),
            "system": {
                "platform": platform.system(),
                "machine": platform.machine(),
            },
            "tiktok": {
                "api_base_url": settings.tiktok_api_base_url,
                "accounts_configured": len(account_ids),
                "accounts": [
                    {"id": account_id, "has_credentials": services.credentials.has_credentials(account_id)}
                    for account_id in account_ids
                ],
            },
            "jobs": {
                "total": len(services.jobs.store),
                "by_status": services.jobs.count_by_status(),
                "background_tasks": len(services.carousel.background_tasks),
            },
            "configuration": {
                "port": settings.port,
                "host": settings.host,
                "max_file_size": f"{settings.max_file_size_mb}MB",
                "max_files_per_request": settings.max_files_per_request,
                "allowed_mime_types": settings.allowed_mime_type_list,
                "cors_origins": settings.cors_origin_list,
                "log_level": settings.log_level,
            },
        },
    }


# ==================== OAuth Endpoints ====================


@router.get(
    "/auth/tiktok/url",
    response_model=AuthUrlResponse,
    dependencies=[Depends(require_admin)],
)
async def get_auth_url(
    account_id: str = Query("default", min_length=1),
    credentials: CredentialStore = Depends(get_credential_store),
) -> AuthUrlResponse:
    """Build the TikTok authorization URL for an account."""
    return AuthUrlResponse(auth_url=credentials.generate_auth_url(account_id), account_id=account_id)


@router.get("/auth/tiktok/callback", response_model=AuthCallbackResponse)
async def auth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    credentials: CredentialStore = Depends(get_credential_store),
) -> AuthCallbackResponse:
    """
    OAuth redirect target. Exchanges the code for tokens for the account
    named in ``state``.
    """
    if error:
        raise InvalidRequestError(f"TikTok authorization failed: {error_description or error}")
    if not code:
        raise InvalidRequestError("Missing authorization code")

    account_id = state or "default"
    stored = await credentials.exchange_code_for_token(code, account_id)
    return AuthCallbackResponse(account_id=account_id, expires_at=stored.expires_at)


@router.delete("/auth/tiktok/{account_id}", dependencies=[Depends(require_admin)])
async def remove_account(
    account_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
) -> dict[str, Any]:
    """Forget the stored tokens for an account."""
    if not credentials.has_credentials(account_id):
        raise HTTPException(status_code=404, detail=f"No credentials for account: {account_id}")

    credentials.remove_credentials(account_id)
    return {"success": True, "account_id": account_id}
