"""Application settings from environment variables."""

from functools import lru_cache
from pathlib import Path
import tempfile

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings from environment."""

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: str = "http://localhost:5678"

    # TikTok app
    tiktok_client_id: str = ""
    tiktok_client_secret: str = ""
    tiktok_redirect_uri: str = ""
    tiktok_app_id: str = ""
    tiktok_api_base_url: str = "https://open.tiktokapis.com"
    tiktok_auth_url: str = "https://www.tiktok.com/v2/auth/authorize/"

    # Optional tokens for the "default" account, loaded at startup
    tiktok_access_token: str = ""
    tiktok_refresh_token: str = ""
    tiktok_token_expires_in: int = 86400

    # Security
    encryption_key: str = ""  # 64 hex characters (32 bytes)
    admin_api_key: str = ""

    # Configuration
    log_level: str = "INFO"
    max_retry_attempts: int = 3
    base_delay_seconds: float = 1.0
    request_timeout_seconds: float = 60.0

    # Jobs
    job_timeout_seconds: float = 5 * 60
    cleanup_jobs_after_hours: float = 24
    job_sweep_interval_seconds: float = 60 * 60

    # File upload
    max_file_size_mb: int = 10
    max_files_per_request: int = 10
    allowed_mime_types: str = "image/jpeg,image/png,image/webp"
    upload_dir: str = str(Path(tempfile.gettempdir()) / "tiktok-carousel-uploads")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def allowed_mime_type_list(self) -> list[str]:
        return [m.strip() for m in self.allowed_mime_types.split(",") if m.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
