"""Runtime configuration for gdrive-mcp.

Settings come from the process environment, with a project-level .env
file loaded first (values already in the environment take precedence).
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from gdrive_mcp.auth.oauth_manager import (
    DEFAULT_REDIRECT_URI,
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SAFETY_MARGIN_SECONDS,
)

ENV_VARS = {
    "client_id": "GOOGLE_CLIENT_ID",
    "client_secret": "GOOGLE_CLIENT_SECRET",  # pragma: allowlist secret
    "refresh_token": "GOOGLE_REFRESH_TOKEN",
    "token_path": "GDRIVE_MCP_TOKEN_PATH",
    "redirect_uri": "GOOGLE_OAUTH_REDIRECT_URI",
    "log_level": "GDRIVE_MCP_LOG_LEVEL",
    "safety_margin_seconds": "GDRIVE_MCP_REFRESH_MARGIN",
    "refresh_timeout_seconds": "GDRIVE_MCP_REFRESH_TIMEOUT",
    "retry_backoff_seconds": "GDRIVE_MCP_RETRY_BACKOFF",
}


class Settings(BaseModel):
    """Server and credential settings.

    Attributes:
        client_id: Google OAuth client ID.
        client_secret: Google OAuth client secret.
        refresh_token: Refresh token used to bootstrap the first stored record.
        token_path: Override for the tokens.json location.
        redirect_uri: Redirect URI for the interactive consent flow.
        log_level: Root logging level name.
        safety_margin_seconds: Refresh lead time before expiry.
        refresh_timeout_seconds: Bound for one refresh exchange.
        retry_backoff_seconds: Scheduler wait after a failed refresh.
    """

    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    token_path: Path | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    log_level: str = "INFO"
    safety_margin_seconds: int = Field(default=DEFAULT_SAFETY_MARGIN_SECONDS, ge=0)
    refresh_timeout_seconds: float = Field(default=DEFAULT_REFRESH_TIMEOUT_SECONDS, gt=0)
    retry_backoff_seconds: float = Field(default=DEFAULT_RETRY_BACKOFF_SECONDS, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "Settings":
        """Load settings from the environment.

        Args:
            env_file: .env file to load first. Defaults to ./.env

        Returns:
            Settings populated from environment variables that are set and
            non-empty; everything else keeps its default.

        Raises:
            pydantic.ValidationError: If a numeric variable is malformed.
        """
        load_dotenv(env_file or Path.cwd() / ".env", override=False)
        values = {
            field: os.environ[var]
            for field, var in ENV_VARS.items()
            if os.environ.get(var, "").strip()
        }
        return cls.model_validate(values)
