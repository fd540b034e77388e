"""Shared pytest fixtures for gdrive-mcp tests.

This module provides reusable fixtures for testing OAuth credentials,
token storage, the token endpoint, and the Drive/Sheets APIs.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest

from gdrive_mcp.auth.models import OAuthToken, StoredToken, TokenMetadata

FROZEN_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, now: datetime = FROZEN_NOW) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock frozen at FROZEN_NOW."""
    return FakeClock()


# =============================================================================
# Token Fixtures
# =============================================================================


def make_token(expires_at: datetime, **overrides: Any) -> OAuthToken:
    """Build an OAuthToken with test defaults."""
    values: dict[str, Any] = {
        "access_token": "test_access_token_abc123",
        "refresh_token": "test_refresh_token_xyz789",
        "expires_at": expires_at,
        "scopes": [
            "https://www.googleapis.com/auth/drive",
            "https://www.googleapis.com/auth/spreadsheets",
        ],
        "token_type": "Bearer",
    }
    values.update(overrides)
    return OAuthToken(**values)


@pytest.fixture
def valid_token(clock: FakeClock) -> OAuthToken:
    """Create a token that is well outside the refresh margin."""
    return make_token(clock() + timedelta(hours=1))


@pytest.fixture
def expiring_token(clock: FakeClock) -> OAuthToken:
    """Create a token inside the default 5 minute refresh margin."""
    return make_token(clock() + timedelta(minutes=2), access_token="expiring_access_token")


@pytest.fixture
def expired_token(clock: FakeClock) -> OAuthToken:
    """Create a token that expired one second ago."""
    return make_token(clock() - timedelta(seconds=1), access_token="expired_access_token")


@pytest.fixture
def token_metadata(clock: FakeClock) -> TokenMetadata:
    """Create token metadata for testing."""
    return TokenMetadata(
        service_name="gdrive-mcp",
        provider="google",
        created_at=clock() - timedelta(days=1),
    )


@pytest.fixture
def stored_token(valid_token: OAuthToken, token_metadata: TokenMetadata) -> StoredToken:
    """Create a complete stored record for testing."""
    return StoredToken(version=1, metadata=token_metadata, token=valid_token)


# =============================================================================
# Token Storage Fixtures
# =============================================================================


@pytest.fixture
def temp_token_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for token storage tests."""
    token_dir = tmp_path / ".gdrive-mcp"
    token_dir.mkdir(parents=True, mode=0o700)
    return token_dir


@pytest.fixture
def temp_token_path(temp_token_dir: Path) -> Path:
    """Get the path for a temporary tokens.json file."""
    return temp_token_dir / "tokens.json"


@pytest.fixture
def token_storage(temp_token_path: Path):
    """Create a TokenStorage instance with temporary storage."""
    from gdrive_mcp.auth.token_storage import TokenStorage

    return TokenStorage(token_path=temp_token_path)


# =============================================================================
# Fake Token Endpoint
# =============================================================================


class FakeTokenEndpoint:
    """In-process stand-in for https://oauth2.googleapis.com/token.

    Records every exchange and answers with a configurable status and body.
    """

    def __init__(
        self,
        status_code: int = 200,
        payload: dict[str, Any] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.status_code = status_code
        self.payload = payload or {
            "access_token": "refreshed_access_token",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.delay = delay
        self.fail_times = 0
        self.calls: list[dict[str, str]] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(dict(parse_qsl(request.content.decode())))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            return httpx.Response(500, content=b'{"error": "backend_error"}')
        return httpx.Response(self.status_code, content=json.dumps(self.payload).encode())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    """Create a fake token endpoint returning a one hour access token."""
    return FakeTokenEndpoint()


# =============================================================================
# OAuth Manager Fixtures
# =============================================================================


@pytest.fixture
def make_manager(token_storage, token_endpoint: FakeTokenEndpoint, clock: FakeClock):
    """Factory for OAuthManagers wired to temp storage, fake endpoint, and clock."""
    from gdrive_mcp.auth.oauth_manager import OAuthManager

    def _make(**kwargs: Any) -> OAuthManager:
        options: dict[str, Any] = {
            "client_id": "test_client_id",
            "client_secret": "test_client_secret",  # pragma: allowlist secret
            "http_client": token_endpoint.client(),
            "clock": clock,
        }
        options.update(kwargs)
        return OAuthManager(storage=token_storage, **options)

    return _make


@pytest.fixture
def oauth_manager(make_manager):
    """Create an OAuthManager with temporary storage and the fake endpoint."""
    return make_manager()


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Clear gdrive-mcp environment variables and run from an empty directory."""
    from gdrive_mcp.config import ENV_VARS

    # setenv first so teardown also removes values loaded from a .env file
    for var in ENV_VARS.values():
        monkeypatch.setenv(var, "unset")
        monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)
    return tmp_path
