"""Shared HTTP plumbing for the TikTok Open API."""

import logging
from typing import Any, Optional

import httpx

from carousel_relay.utils.errors import TikTokAPIError

logger = logging.getLogger(__name__)


def extract_error(response: httpx.Response, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    """
    Return error details from a TikTok response, or None if it succeeded.

    TikTok reports failures both through the HTTP status and through an
    ``error`` field in the JSON body. An ``error`` object whose code is
    ``"ok"`` means success.
    """
    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        if code and code != "ok":
            return error
    elif isinstance(error, str) and error and error != "ok":
        return {"code": error, "message": payload.get("error_description") or error}

    if not response.is_success:
        return error if isinstance(error, dict) else {}
    return None


def error_message(response: httpx.Response, payload: dict[str, Any], error: dict[str, Any]) -> str:
    """Pick the embedded error message, then ``message``, then the status line."""
    return (
        error.get("message")
        or payload.get("message")
        or f"HTTP {response.status_code}: {response.reason_phrase}"
    )


class TikTokAPIClient:
    """Sends requests to TikTok and turns failures into TikTokAPIError."""

    def __init__(
        self,
        api_base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the TikTokAPIClient.

        Args:
            api_base_url: Base URL of the TikTok Open API
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.api_base_url}/{endpoint.lstrip('/')}"

    async def send(
        self,
        method: str,
        endpoint: str,
        *,
        access_token: Optional[str] = None,
        json: Optional[dict[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send a request and return the raw response.

        Transport failures are raised as TikTokAPIError with messages that
        name the failure kind ("Request timeout", "Network error").
        """
        request_headers = dict(headers or {})
        if access_token:
            request_headers["Authorization"] = f"Bearer {access_token}"

        url = self.url(endpoint)
        logger.debug(f"TikTok API: {method} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(
                    method, url, json=json, content=content, headers=request_headers
                )
        except httpx.TimeoutException as e:
            raise TikTokAPIError(0, f"Request timeout calling TikTok: {e}")
        except httpx.TransportError as e:
            raise TikTokAPIError(0, f"Network error calling TikTok: {e}")

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        context: str,
        access_token: Optional[str] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Send a JSON request and return the response's ``data`` object.

        Args:
            context: Prefix for error messages, e.g. "Failed to commit upload"

        Raises:
            TikTokAPIError: On a non-success status or an embedded error
        """
        response = await self.send(method, endpoint, access_token=access_token, json=json)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        error = extract_error(response, payload)
        if error is not None:
            raise TikTokAPIError(
                response.status_code,
                f"{context}: {error_message(response, payload, error)}",
                error_code=error.get("code"),
                log_id=error.get("log_id"),
            )

        data = payload.get("data")
        return data if isinstance(data, dict) else {}
