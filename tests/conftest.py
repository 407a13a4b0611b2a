"""Pytest fixtures for Carousel Relay tests."""

import base64
import json
from typing import Any, Callable, Optional

import httpx
import pytest

from carousel_relay.config import Settings
from carousel_relay.services import Services, create_services
from carousel_relay.utils.encryption import TokenCipher

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
TEST_ADMIN_KEY = "test-admin-key"
UPLOAD_HOST = "upload.tiktok.test"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32
PNG_BASE64 = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
JPEG_BASE64 = base64.b64encode(JPEG_BYTES).decode("ascii")


class FakeTikTok:
    """
    In-process stand-in for the TikTok Open API, served through
    httpx.MockTransport.

    Failure knobs are plain attributes so tests can flip them per case.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.media_counter = 0
        self.init_failures: list[Exception] = []
        self.transfer_status = 200
        self.commit_status = "PROCESSING_UPLOAD"
        self.publish_response: Optional[tuple[int, dict[str, Any]]] = None
        self.token_response: Optional[tuple[int, dict[str, Any]]] = None

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def json_bodies(self, path: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == UPLOAD_HOST:
            return httpx.Response(self.transfer_status, text="" if self.transfer_status < 400 else "rejected")

        if path == "/v2/post/publish/content/init/":
            if self.init_failures:
                raise self.init_failures.pop(0)
            self.media_counter += 1
            media_id = f"media_{self.media_counter}"
            return httpx.Response(
                200,
                json={
                    "data": {
                        "publish_id": media_id,
                        "upload_url": f"https://{UPLOAD_HOST}/upload/{media_id}",
                    },
                    "error": {"code": "ok", "message": ""},
                },
            )

        if path == "/v2/post/publish/content/commit/":
            return httpx.Response(
                200,
                json={"data": {"status": self.commit_status}, "error": {"code": "ok"}},
            )

        if path == "/v2/post/publish/":
            if self.publish_response is not None:
                status, body = self.publish_response
                return httpx.Response(status, json=body)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "publish_id": "post_123",
                        "share_url": "https://www.tiktok.com/@creator/photo/123",
                        "status": "PROCESSING",
                    },
                    "error": {"code": "ok"},
                },
            )

        if path == "/v2/post/publish/status/get/":
            return httpx.Response(200, json={"data": {"status": "PUBLISH_COMPLETE"}, "error": {"code": "ok"}})

        if path == "/v2/oauth/token/":
            if self.token_response is not None:
                status, body = self.token_response
                return httpx.Response(status, json=body)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "access_token": "fresh-access-token",
                        "expires_in": 86400,
                        "refresh_token": "fresh-refresh-token",
                        "scope": "video.publish",
                        "token_type": "Bearer",
                    }
                },
            )

        return httpx.Response(404, json={"error": {"code": "not_found", "message": "Unknown endpoint"}})


@pytest.fixture
def fake_tiktok() -> FakeTikTok:
    return FakeTikTok()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for tests: a default account token, no backoff waits."""
    return Settings(
        encryption_key=TEST_ENCRYPTION_KEY,
        admin_api_key=TEST_ADMIN_KEY,
        tiktok_client_id="client-key",
        tiktok_client_secret="client-secret",
        tiktok_redirect_uri="https://relay.example.com/api/auth/tiktok/callback",
        tiktok_app_id="app-id",
        tiktok_access_token="initial-access-token",
        tiktok_refresh_token="initial-refresh-token",
        base_delay_seconds=0.0,
        upload_dir=str(tmp_path / "uploads"),
        cors_origins="http://localhost:5678",
    )


@pytest.fixture
def services(test_settings: Settings, fake_tiktok: FakeTikTok) -> Services:
    return create_services(test_settings, transport=httpx.MockTransport(fake_tiktok.handler))


@pytest.fixture
def image_file(tmp_path) -> Callable[[str], str]:
    """Factory writing a small PNG under tmp_path and returning its path."""

    def _make(name: str = "image.png") -> str:
        path = tmp_path / name
        path.write_bytes(PNG_BYTES)
        return str(path)

    return _make
