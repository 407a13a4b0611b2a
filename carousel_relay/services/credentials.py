"""TikTok OAuth credential storage with proactive token refresh."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from carousel_relay.models.credentials import TikTokCredentials, TokenResponse
from carousel_relay.services.tiktok_api import TikTokAPIClient
from carousel_relay.utils.encryption import TokenCipher
from carousel_relay.utils.errors import CredentialError, TikTokAPIError

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "v2/oauth/token/"
REFRESH_HORIZON = timedelta(minutes=5)
DEFAULT_SCOPES = ("user.info.basic", "video.publish", "video.upload")


class CredentialStore:
    """
    Holds encrypted OAuth tokens per account and hands out valid access tokens.

    Tokens are decrypted only when a caller asks for one. Nothing here logs
    token values.
    """

    def __init__(
        self,
        api: TikTokAPIClient,
        cipher: TokenCipher,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        app_id: str,
        auth_url: str = "https://www.tiktok.com/v2/auth/authorize/",
    ) -> None:
        self.api = api
        self.cipher = cipher
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.app_id = app_id
        self.auth_url = auth_url
        self._credentials: dict[str, TikTokCredentials] = {}
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    # ==================== OAUTH FLOW ====================

    def generate_auth_url(
        self, account_id: str = "default", scopes: tuple[str, ...] = DEFAULT_SCOPES
    ) -> str:
        """Build the TikTok authorization URL. The account id travels in ``state``."""
        params = {
            "client_key": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": ",".join(scopes),
            "state": account_id,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code_for_token(
        self, code: str, account_id: str = "default"
    ) -> TikTokCredentials:
        """
        Exchange an authorization code for tokens and store them.

        Raises:
            CredentialError: If TikTok rejects the code
        """
        try:
            data = await self.api.request_json(
                "POST",
                TOKEN_ENDPOINT,
                context="TikTok auth error",
                json={
                    "client_key": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
            token = TokenResponse.model_validate(data)
        except (TikTokAPIError, ValueError) as e:
            logger.error(f"Failed to exchange code for token for account {account_id}: {e}")
            raise CredentialError(account_id, str(e)) from e

        credentials = self._build_credentials(
            token.access_token, token.refresh_token, self._expiry(token.expires_in)
        )
        self._credentials[account_id] = credentials
        logger.info(
            f"TikTok token obtained for account {account_id}, "
            f"expires {credentials.expires_at.isoformat()}, scopes: {token.scope}"
        )
        return credentials

    async def refresh_token(self, account_id: str = "default") -> TikTokCredentials:
        """
        Refresh the access token for an account.

        On failure the stored credentials are deleted, since they can no
        longer be trusted, and the error is raised.

        Raises:
            CredentialError: If there is nothing to refresh or TikTok refuses
        """
        credentials = self._credentials.get(account_id)
        if credentials is None or not credentials.refresh_token:
            raise CredentialError(
                account_id, f"No refresh token available for account: {account_id}"
            )

        try:
            data = await self.api.request_json(
                "POST",
                TOKEN_ENDPOINT,
                context="TikTok refresh token error",
                json={
                    "client_key": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self.cipher.decrypt(credentials.refresh_token),
                },
            )
            token = TokenResponse.model_validate(data)
        except (TikTokAPIError, ValueError) as e:
            logger.error(f"Failed to refresh token for account {account_id}: {e}")
            # Leave credentials replaced by someone else during the request alone
            if self._credentials.get(account_id) is credentials:
                self._credentials.pop(account_id, None)
            raise CredentialError(account_id, str(e)) from e

        # Re-read after the network wait; only replace what we refreshed
        current = self._credentials.get(account_id, credentials)
        refreshed = current.model_copy(
            update={
                "access_token": self.cipher.encrypt(token.access_token),
                "expires_at": self._expiry(token.expires_in),
            }
        )
        if token.refresh_token:
            refreshed.refresh_token = self.cipher.encrypt(token.refresh_token)

        self._credentials[account_id] = refreshed
        logger.info(
            f"TikTok token refreshed for account {account_id}, "
            f"expires {refreshed.expires_at.isoformat()}"
        )
        return refreshed

    async def get_valid_access_token(self, account_id: str = "default") -> str:
        """
        Return a decrypted access token, refreshing it first if it expires soon.

        Concurrent callers for one account share a single refresh: the first
        refreshes while the others wait and then reuse the new token.

        Raises:
            CredentialError: If the account is not authorized or refresh fails
        """
        credentials = self._require_credentials(account_id)

        if self._expires_soon(credentials):
            lock = self._refresh_locks.setdefault(account_id, asyncio.Lock())
            async with lock:
                credentials = self._require_credentials(account_id)
                if self._expires_soon(credentials):
                    logger.info(
                        f"Access token for account {account_id} expired or expiring soon "
                        f"({credentials.expires_at.isoformat()}), refreshing"
                    )
                    credentials = await self.refresh_token(account_id)

        if not credentials.access_token:
            raise CredentialError(account_id, f"No access token available for account: {account_id}")

        return self.cipher.decrypt(credentials.access_token)

    # ==================== STORAGE ====================

    def store_credentials(self, account_id: str, credentials: TikTokCredentials) -> None:
        self._credentials[account_id] = credentials
        logger.info(f"Credentials stored for account {account_id}")

    def store_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> TikTokCredentials:
        """Encrypt and store plaintext tokens obtained outside the OAuth flow."""
        credentials = self._build_credentials(access_token, refresh_token, expires_at)
        self.store_credentials(account_id, credentials)
        return credentials

    def has_credentials(self, account_id: str = "default") -> bool:
        return account_id in self._credentials

    def remove_credentials(self, account_id: str = "default") -> None:
        self._credentials.pop(account_id, None)
        logger.info(f"Credentials removed for account {account_id}")

    def get_account_ids(self) -> list[str]:
        return list(self._credentials)

    # ==================== PRIVATE METHODS ====================

    def _require_credentials(self, account_id: str) -> TikTokCredentials:
        credentials = self._credentials.get(account_id)
        if credentials is None:
            raise CredentialError(
                account_id,
                f"No credentials found for account: {account_id}. Please authorize first.",
            )
        return credentials

    @staticmethod
    def _expires_soon(credentials: TikTokCredentials) -> bool:
        return bool(
            credentials.expires_at
            and credentials.expires_at <= datetime.now(timezone.utc) + REFRESH_HORIZON
        )

    def _build_credentials(
        self,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> TikTokCredentials:
        return TikTokCredentials(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            app_id=self.app_id,
            access_token=self.cipher.encrypt(access_token),
            refresh_token=self.cipher.encrypt(refresh_token) if refresh_token else None,
            expires_at=expires_at,
        )

    @staticmethod
    def _expiry(expires_in: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=expires_in)
