"""OAuth credential manager for Google Drive and Sheets.

Keeps a currently valid access token available to the server: loads the
persisted record, refreshes it shortly before expiry (on demand and from
a background scheduler), and bootstraps the first record either from a
configured refresh token or through the browser consent flow.

All refresh exchanges run under one asyncio.Lock, so concurrent callers
that all see an expiring token share a single round trip to the token
endpoint.

Environment Variables (see gdrive_mcp.config):
    GOOGLE_CLIENT_ID: Google OAuth client ID
    GOOGLE_CLIENT_SECRET: Google OAuth client secret
    GOOGLE_REFRESH_TOKEN: Refresh token used to bootstrap the first record
    GOOGLE_OAUTH_REDIRECT_URI: Redirect URI for `gdrive-mcp setup`
"""

import asyncio
import logging
import secrets
import sys
import webbrowser
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import httpx
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from gdrive_mcp.auth.errors import (
    AuthError,
    NoCredentialsError,
    RefreshFailedError,
    StoreWriteFailedError,
)
from gdrive_mcp.auth.models import (
    CredentialState,
    OAuthToken,
    StoredToken,
    TokenMetadata,
    TokenStatus,
    utcnow,
)
from gdrive_mcp.auth.refresh_scheduler import TokenRefreshScheduler
from gdrive_mcp.auth.token_storage import TokenStorage

if TYPE_CHECKING:
    from gdrive_mcp.config import Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "gdrive-mcp"

GOOGLE_DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/spreadsheets",
]

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint

DEFAULT_OAUTH_HOST = "127.0.0.1"
DEFAULT_OAUTH_PORT = 8789
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8789/callback"

DEFAULT_SAFETY_MARGIN_SECONDS = 300
DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_BACKOFF_SECONDS = 60.0
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
# Lifetime beyond the safety margin granted to tokens reported as shorter-lived
MIN_TOKEN_LIFETIME_SLACK_SECONDS = 60


def _parse_oauth_error(response: httpx.Response) -> tuple[str, str]:
    """Extract (error, error_description) from a token endpoint error response."""
    try:
        body = response.json()
    except ValueError:
        return "unknown_error", response.text[:200]
    if not isinstance(body, dict):
        return "unknown_error", str(body)[:200]
    error = body.get("error", "unknown_error")
    if isinstance(error, dict):
        # Some Google endpoints nest the error object
        return str(error.get("status", "unknown_error")), str(error.get("message", ""))
    return str(error), str(body.get("error_description", ""))


class OAuthManager:
    """Credential manager for Google Drive and Sheets access.

    Attributes:
        storage: Token storage holding the persisted record.
        client_id: OAuth client ID used for refresh and consent.
        client_secret: OAuth client secret used for refresh and consent.
        state: Current CredentialState of the managed credential.

    Example:
        ```python
        manager = OAuthManager(client_id="...", client_secret="...")

        credentials = await manager.get_valid_credentials()
        scheduler = manager.setup_token_refresh()
        ...
        await manager.aclose()
        ```
    """

    def __init__(
        self,
        storage: TokenStorage | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        *,
        bootstrap_refresh_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        token_uri: str = GOOGLE_TOKEN_URI,
        interactive: bool = False,
    ) -> None:
        """Initialize OAuth manager.

        Args:
            storage: Token storage instance. Creates default if not provided.
            client_id: Google OAuth client ID.
            client_secret: Google OAuth client secret.
            bootstrap_refresh_token: Refresh token used when no record is stored.
            http_client: Client for the token endpoint. Created lazily if omitted.
            clock: Callable returning the current aware UTC datetime.
            safety_margin_seconds: Lead time before expiry that triggers a refresh.
            refresh_timeout_seconds: Upper bound for one refresh exchange.
            retry_backoff_seconds: Delay before the scheduler retries a failed refresh.
            redirect_uri: Redirect URI for the interactive consent flow.
            token_uri: Token endpoint URL.
            interactive: Whether the browser consent flow may be started.
        """
        self.storage = storage or TokenStorage()
        self.client_id = client_id
        self.client_secret = client_secret
        self.bootstrap_refresh_token = bootstrap_refresh_token
        self.safety_margin_seconds = safety_margin_seconds
        self.refresh_timeout_seconds = refresh_timeout_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.redirect_uri = redirect_uri
        self.token_uri = token_uri
        self.interactive = interactive
        self.state = CredentialState.UNINITIALIZED

        self._service_name = SERVICE_NAME
        self._clock = clock or utcnow
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._refresh_lock = asyncio.Lock()
        self._pending_record: StoredToken | None = None
        self._scheduler: TokenRefreshScheduler | None = None

    @classmethod
    def from_settings(cls, settings: "Settings", **kwargs: Any) -> "OAuthManager":
        """Build a manager from application settings.

        Args:
            settings: Loaded Settings.
            **kwargs: Overrides passed through to the constructor.

        Returns:
            Configured OAuthManager.
        """
        options: dict[str, Any] = {
            "bootstrap_refresh_token": settings.refresh_token,
            "safety_margin_seconds": settings.safety_margin_seconds,
            "refresh_timeout_seconds": settings.refresh_timeout_seconds,
            "retry_backoff_seconds": settings.retry_backoff_seconds,
            "redirect_uri": settings.redirect_uri,
        }
        options.update(kwargs)
        return cls(
            TokenStorage(settings.token_path),
            settings.client_id,
            settings.client_secret,
            **options,
        )

    @property
    def token_path(self) -> Path:
        """Path to the persisted tokens.json file."""
        return self.storage.token_path

    @property
    def scheduler(self) -> TokenRefreshScheduler | None:
        return self._scheduler

    def now(self) -> datetime:
        """Current time according to the injected clock."""
        return self._clock()

    def needs_refresh(self, token: OAuthToken) -> bool:
        """Check whether a token is missing, expired, or inside the safety margin."""
        if not token.access_token:
            return True
        return token.is_expired(buffer_seconds=self.safety_margin_seconds, now=self.now())

    def has_valid_tokens(self) -> bool:
        """Check if a fresh token is stored.

        Returns:
            True if the stored access token is outside the safety margin.
        """
        token = self.load_credentials_quietly()
        return token is not None and not self.needs_refresh(token)

    def get_status(self) -> tuple[TokenStatus, StoredToken | None]:
        """Get the status of the stored record.

        Returns:
            Tuple of (TokenStatus, StoredToken or None).
        """
        status = self.storage.get_status(
            buffer_seconds=self.safety_margin_seconds, now=self.now()
        )
        stored = self.storage.load() if status != TokenStatus.MISSING else None
        return (status, stored)

    def load_credentials_quietly(self) -> OAuthToken | None:
        """Read the current token without refreshing or prompting.

        Never raises: a missing or corrupt record yields None. A token that
        is only held in memory because persisting it failed is preferred
        over the older record on disk.

        Returns:
            The current OAuthToken, or None.
        """
        if self._pending_record is not None:
            return self._pending_record.token
        stored = self.storage.load()
        return stored.token if stored else None

    # ------------------------------------------------------------------
    # Valid credential access
    # ------------------------------------------------------------------

    async def get_valid_credentials(self) -> Credentials:
        """Return credentials bound to an access token that is not expiring.

        Fresh stored tokens are returned without any network call. Tokens
        inside the safety margin are refreshed first. With no stored
        record, out-of-band authorization is attempted.

        Returns:
            google-auth Credentials carrying a valid access token.

        Raises:
            NoCredentialsError: If no record exists and authorization fails.
            RefreshFailedError: If the refresh exchange fails or times out.
        """
        record = self._current_record()
        if record is None:
            token = await self._authorize()
        elif self.needs_refresh(record.token):
            token = await self.refresh_if_needed()
        else:
            token = record.token
            self.state = CredentialState.VALID
        return self._token_to_credentials(token)

    async def refresh_if_needed(self, force: bool = False) -> OAuthToken:
        """Refresh the stored token if it is inside the safety margin.

        Callers that arrive while another refresh is running wait for it and
        reuse its result instead of starting a second exchange.

        Args:
            force: Refresh even if the token is still fresh.

        Returns:
            The current (possibly refreshed) token.

        Raises:
            NoCredentialsError: If no record is stored.
            RefreshFailedError: If the refresh exchange fails.
        """
        async with self._refresh_lock:
            record = self._current_record()
            if record is None:
                raise NoCredentialsError(
                    "No stored Google credentials. Run 'gdrive-mcp setup' "
                    "or set GOOGLE_REFRESH_TOKEN."
                )
            if not force and not self.needs_refresh(record.token):
                self.state = CredentialState.VALID
                return record.token
            return await self._refresh_record(record)

    def setup_token_refresh(self) -> TokenRefreshScheduler:
        """Start the background scheduler that refreshes before expiry.

        Must be called from a running event loop. Calling it again returns
        the already running scheduler.

        Returns:
            The started TokenRefreshScheduler.
        """
        if self._scheduler is None:
            self._scheduler = TokenRefreshScheduler(
                self, retry_backoff_seconds=self.retry_backoff_seconds
            )
        self._scheduler.start()
        return self._scheduler

    async def aclose(self) -> None:
        """Cancel the refresh scheduler and release the HTTP client."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------

    def _current_record(self) -> StoredToken | None:
        if self._pending_record is not None:
            self._retry_pending_persist()
            if self._pending_record is not None:
                return self._pending_record
        return self.storage.load()

    def _retry_pending_persist(self) -> None:
        record = self._pending_record
        if record is None:
            return
        try:
            self.storage.save(record)
        except StoreWriteFailedError as e:
            logger.error(f"Token record still not persisted: {e}")
            return
        logger.info("Persisted token record after an earlier write failure")
        self._pending_record = None

    def _persist(self, record: StoredToken) -> None:
        try:
            self.storage.save(record)
        except StoreWriteFailedError as e:
            logger.error(f"{e}; keeping token in memory and retrying on next access")
            self._pending_record = record
        else:
            self._pending_record = None

    async def _refresh_record(self, record: StoredToken) -> OAuthToken:
        # Caller holds self._refresh_lock.
        if not record.token.refresh_token:
            self.state = CredentialState.FAILED
            raise RefreshFailedError(
                "Stored credentials have no refresh token. Run 'gdrive-mcp setup' again."
            )

        self.state = CredentialState.REFRESHING
        logger.info("Refreshing Google access token...")
        try:
            new_token = await self._exchange_refresh_token(record.token)
        except RefreshFailedError as e:
            self.state = CredentialState.FAILED
            logger.error(f"Token refresh failed: {e}")
            raise

        metadata = record.metadata.model_copy(update={"last_refreshed": self.now()})
        self._persist(StoredToken(metadata=metadata, token=new_token))
        self.state = CredentialState.VALID
        logger.info(f"Access token refreshed, expires at {new_token.expires_at.isoformat()}")
        return new_token

    async def _authorize(self) -> OAuthToken:
        async with self._refresh_lock:
            record = self._current_record()
            if record is not None:
                # Another caller authorized while we waited for the lock
                if self.needs_refresh(record.token):
                    return await self._refresh_record(record)
                self.state = CredentialState.VALID
                return record.token

            self.state = CredentialState.AUTHORIZING
            try:
                token = await self._authorize_out_of_band()
            except AuthError:
                self.state = CredentialState.UNINITIALIZED
                raise
            except Exception as e:
                self.state = CredentialState.UNINITIALIZED
                raise NoCredentialsError(f"Authorization failed: {e}") from e

            self.state = CredentialState.VALID
            return token

    async def _authorize_out_of_band(self) -> OAuthToken:
        if self.bootstrap_refresh_token:
            logger.info("No stored token record, exchanging configured refresh token")
            seed = OAuthToken(
                access_token="",
                refresh_token=self.bootstrap_refresh_token,
                expires_at=self.now(),
                scopes=GOOGLE_DRIVE_SCOPES,
            )
            try:
                token = await self._exchange_refresh_token(seed)
            except RefreshFailedError as e:
                raise NoCredentialsError(f"Could not exchange GOOGLE_REFRESH_TOKEN: {e}") from e
            metadata = TokenMetadata(service_name=self._service_name, created_at=self.now())
            self._persist(StoredToken(metadata=metadata, token=token))
            return token

        if self.interactive:
            return await self.authenticate()

        raise NoCredentialsError(
            "No stored Google credentials. Run 'gdrive-mcp setup' or set GOOGLE_REFRESH_TOKEN."
        )

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.refresh_timeout_seconds)
            )
            self._owns_http_client = True
        return self._http_client

    async def _exchange_refresh_token(self, token: OAuthToken) -> OAuthToken:
        """Exchange a refresh token for a new access token.

        Args:
            token: Token whose refresh_token is exchanged.

        Returns:
            New OAuthToken. The refresh token is kept unless the provider
            rotated it.

        Raises:
            RefreshFailedError: On timeout, transport error, rejection, or a
                malformed response.
        """
        if not self.client_id or not self.client_secret:
            raise RefreshFailedError(
                "Client ID and secret required to refresh tokens. "
                "Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
            )

        client = self._get_http_client()
        data = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": token.refresh_token or "",
        }

        try:
            response = await asyncio.wait_for(
                client.post(self.token_uri, data=data),
                timeout=self.refresh_timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RefreshFailedError(
                f"Token refresh timed out after {self.refresh_timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise RefreshFailedError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            reason, description = _parse_oauth_error(response)
            raise RefreshFailedError(
                f"Token endpoint rejected refresh (HTTP {response.status_code} {reason}): "
                f"{description}",
                reason=reason,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RefreshFailedError("Token endpoint returned invalid JSON") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise RefreshFailedError("Token endpoint response did not include an access_token")

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS

        min_lifetime = self.safety_margin_seconds + MIN_TOKEN_LIFETIME_SLACK_SECONDS
        if expires_in < min_lifetime:
            logger.warning(
                f"Token endpoint returned expires_in={expires_in}, inside the "
                f"{self.safety_margin_seconds}s refresh margin; using {min_lifetime}s"
            )
            expires_in = min_lifetime

        scope = payload.get("scope")
        return OAuthToken(  # nosec B106 - "Bearer" is OAuth token type, not a password
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or token.refresh_token,
            expires_at=self.now() + timedelta(seconds=expires_in),
            scopes=scope.split() if scope else token.scopes,
            token_type=payload.get("token_type", "Bearer"),
        )

    # ------------------------------------------------------------------
    # google-auth conversion
    # ------------------------------------------------------------------

    def _credentials_to_token(self, credentials: Credentials, scopes: list[str]) -> OAuthToken:
        """Convert google-auth Credentials to OAuthToken.

        Args:
            credentials: Google OAuth2 credentials.
            scopes: List of granted scopes.

        Returns:
            OAuthToken with all credential data.
        """
        if credentials.expiry:
            expires_at = credentials.expiry
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            expires_at = self.now() + timedelta(seconds=DEFAULT_TOKEN_LIFETIME_SECONDS)

        return OAuthToken(  # nosec B106 - "Bearer" is OAuth token type, not a password
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            scopes=scopes,
            token_type="Bearer",
        )

    def _token_to_credentials(self, token: OAuthToken) -> Credentials:
        """Convert OAuthToken to google-auth Credentials.

        google-auth compares expiry against naive UTC datetimes.
        """
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=token.scopes or None,
            expiry=token.expires_at.astimezone(timezone.utc).replace(tzinfo=None),
        )

    # ------------------------------------------------------------------
    # Interactive consent
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        scopes: list[str] | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> OAuthToken:
        """Run the browser consent flow and store the resulting token.

        Args:
            scopes: OAuth scopes to request. Uses GOOGLE_DRIVE_SCOPES if not specified.
            client_id: Google OAuth client ID. Falls back to the manager's.
            client_secret: Google OAuth client secret. Falls back to the manager's.

        Returns:
            OAuthToken containing access and refresh tokens.

        Raises:
            ValueError: If client ID/secret not provided.
            RuntimeError: If the consent flow fails.
        """
        scopes = scopes or GOOGLE_DRIVE_SCOPES
        client_id = client_id or self.client_id
        client_secret = client_secret or self.client_secret

        if not client_id or not client_secret:
            raise ValueError(
                "Client ID and secret required. "
                "Pass as arguments or set GOOGLE_CLIENT_ID and "
                "GOOGLE_CLIENT_SECRET environment variables."
            )

        client_config = {
            "web": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }

        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(
            None, self._run_oauth_flow, client_config, scopes, self.redirect_uri
        )

        token = self._credentials_to_token(credentials, scopes)
        metadata = TokenMetadata(service_name=self._service_name, created_at=self.now())
        self._persist(StoredToken(metadata=metadata, token=token))
        self.state = CredentialState.VALID
        return token

    def _run_oauth_flow(
        self, client_config: dict, scopes: list[str], redirect_uri: str
    ) -> Credentials:
        """Run the consent flow (blocking).

        Opens the browser on the consent page and serves a single request
        on the redirect URI to receive the authorization code.

        Args:
            client_config: Google OAuth client configuration (web type).
            scopes: List of OAuth scopes.
            redirect_uri: Full redirect URI including path.

        Returns:
            Google OAuth2 credentials.
        """
        flow = Flow.from_client_config(client_config, scopes=scopes, redirect_uri=redirect_uri)
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=secrets.token_urlsafe(32),
        )

        parsed = urlparse(redirect_uri)
        host = parsed.hostname or DEFAULT_OAUTH_HOST
        port = parsed.port or DEFAULT_OAUTH_PORT
        callback_path = parsed.path or "/callback"
        result: dict[str, str] = {}

        class OAuthCallbackHandler(BaseHTTPRequestHandler):
            """Receives the OAuth redirect."""

            def log_message(self, format: str, *args: Any) -> None:
                pass

            def _respond(self, status: int, title: str, detail: str) -> None:
                self.send_response(status)
                self.send_header("Content-type", "text/html")
                self.end_headers()
                self.wfile.write(
                    f"<html><body><h1>{title}</h1><p>{detail}</p></body></html>".encode()
                )

            def do_GET(self) -> None:
                request_parsed = urlparse(self.path)
                if request_parsed.path != callback_path:
                    self._respond(404, "Not Found", "")
                    return

                query = parse_qs(request_parsed.query)
                if "error" in query:
                    result["error"] = query["error"][0]
                    self._respond(400, "Authentication Failed", "Close this window and retry.")
                elif "code" in query:
                    result["code"] = query["code"][0]
                    self._respond(
                        200,
                        "Authentication Successful!",
                        "You can close this window and return to the terminal.",
                    )
                else:
                    self._respond(400, "Authentication Failed", "No authorization code received.")

        server = HTTPServer((host, port), OAuthCallbackHandler)
        server.timeout = 300

        # stdout may be an MCP channel, so user-facing prompts go to stderr
        print("Opening browser for Google authorization...", file=sys.stderr)
        print(f"If browser doesn't open, visit: {auth_url}", file=sys.stderr)
        webbrowser.open(auth_url)

        try:
            server.handle_request()
        finally:
            server.server_close()

        if "error" in result:
            raise RuntimeError(f"OAuth authentication failed: {result['error']}")
        if "code" not in result:
            raise RuntimeError("No authorization code received from Google")

        flow.fetch_token(code=result["code"])
        return flow.credentials
