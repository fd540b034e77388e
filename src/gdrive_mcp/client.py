"""Authenticated HTTP client for the Google Drive and Sheets REST APIs."""

import logging
from typing import Any

import httpx

from gdrive_mcp.auth.oauth_manager import OAuthManager

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
SHEETS_API_BASE = "https://sheets.googleapis.com/v4"


class GoogleApiClient:
    """Credential-bearing client shared by all tool handlers.

    Each request asks the OAuthManager for valid credentials, so an access
    token that entered the safety margin is refreshed before it is sent.

    Attributes:
        manager: OAuthManager supplying credentials.
    """

    def __init__(
        self,
        manager: OAuthManager,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            manager: OAuthManager supplying credentials.
            http_client: HTTP client to use. A pooled HTTP/2 client is
                created on first use if omitted.
        """
        self.manager = manager
        self._http_client = http_client
        self._owns_http_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
            self._owns_http_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _auth_headers(self) -> dict[str, str]:
        credentials = await self.manager.get_valid_credentials()
        headers: dict[str, str] = {}
        credentials.apply(headers)
        return headers

    async def request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and decode the JSON response.

        Args:
            method: HTTP method (GET, PUT, ...).
            url: Full URL to request.
            params: Optional query parameters.
            json_data: Optional JSON body data.

        Returns:
            JSON response as a dictionary.

        Raises:
            AuthError: If no valid credential can be obtained.
            httpx.HTTPStatusError: If the request fails.
        """
        headers = await self._auth_headers()
        headers["Accept"] = "application/json"
        client = await self._get_http_client()

        response = await client.request(
            method=method,
            url=url,
            params=params,
            json=json_data,
            headers=headers,
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def request_raw(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float = 60.0,
    ) -> httpx.Response:
        """Make an authenticated request returning the raw response.

        Used for file downloads and exports.

        Raises:
            AuthError: If no valid credential can be obtained.
            httpx.HTTPStatusError: If the request fails.
        """
        headers = await self._auth_headers()
        client = await self._get_http_client()

        response = await client.request(
            method=method,
            url=url,
            params=params,
            headers=headers,
            timeout=timeout,
        )
        response.raise_for_status()
        return response
