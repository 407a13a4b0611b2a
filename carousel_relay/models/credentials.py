"""Credential Pydantic models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TikTokCredentials(BaseModel):
    """OAuth credentials for one TikTok account. Tokens are stored encrypted."""

    client_id: str
    client_secret: str = Field(repr=False)
    redirect_uri: str
    app_id: str
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    """The ``data`` object of a TikTok OAuth token response."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    refresh_expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None
