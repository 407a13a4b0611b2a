"""Job tracking Pydantic models."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobState = Literal["pending", "processing", "completed", "failed"]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobDetails(BaseModel):
    """Per-job progress and results. Extra keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    total_images: int
    processed_images: int = 0
    media_ids: list[str] = Field(default_factory=list)
    tiktok_post_id: Optional[str] = None
    error: Optional[str] = None


class Job(BaseModel):
    """Status tracking for one carousel creation request."""

    id: str = Field(min_length=1)
    status: JobState = "pending"
    progress: float = 0
    details: JobDetails
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
