"""OAuth credential management for the Google Drive MCP server.

Quick Start:
    ```python
    from gdrive_mcp.auth import OAuthManager

    manager = OAuthManager(
        client_id="your-client-id",
        client_secret="your-client-secret",  # pragma: allowlist secret
        bootstrap_refresh_token="your-refresh-token",
    )

    # Always returns credentials with a non-expiring access token
    credentials = await manager.get_valid_credentials()

    # Keep the token fresh in the background
    manager.setup_token_refresh()
    ```
"""

from gdrive_mcp.auth.errors import (
    AuthError,
    NoCredentialsError,
    RefreshFailedError,
    StoreCorruptError,
    StoreWriteFailedError,
)
from gdrive_mcp.auth.models import (
    CredentialState,
    OAuthToken,
    StoredToken,
    TokenMetadata,
    TokenStatus,
)
from gdrive_mcp.auth.oauth_manager import GOOGLE_DRIVE_SCOPES, OAuthManager
from gdrive_mcp.auth.refresh_scheduler import TokenRefreshScheduler
from gdrive_mcp.auth.token_storage import TokenStorage

__all__ = [
    "OAuthManager",
    "TokenStorage",
    "TokenRefreshScheduler",
    "OAuthToken",
    "StoredToken",
    "TokenMetadata",
    "TokenStatus",
    "CredentialState",
    "AuthError",
    "NoCredentialsError",
    "RefreshFailedError",
    "StoreCorruptError",
    "StoreWriteFailedError",
    "GOOGLE_DRIVE_SCOPES",
]
