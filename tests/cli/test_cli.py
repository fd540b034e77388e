"""CLI tests for the gdrive-mcp commands."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from gdrive_mcp.auth.errors import NoCredentialsError, RefreshFailedError
from gdrive_mcp.auth.models import OAuthToken, StoredToken, TokenMetadata, utcnow
from gdrive_mcp.auth.token_storage import TokenStorage
from gdrive_mcp.cli.main import main


@pytest.fixture
def mock_manager() -> MagicMock:
    """OAuthManager double returned by OAuthManager.from_settings()."""
    manager = MagicMock()
    manager.has_valid_tokens.return_value = False
    manager.authenticate = AsyncMock()
    manager.refresh_if_needed = AsyncMock()
    manager.aclose = AsyncMock()
    manager.token_path = "/tmp/.gdrive-mcp/tokens.json"
    return manager


@pytest.fixture
def patched_manager(mock_manager: MagicMock):
    with patch("gdrive_mcp.auth.OAuthManager") as mock_manager_class:
        mock_manager_class.from_settings.return_value = mock_manager
        yield mock_manager_class


def save_token(directory: Path, token: OAuthToken, metadata: TokenMetadata) -> None:
    TokenStorage(directory / ".gdrive-mcp" / "tokens.json").save(
        StoredToken(metadata=metadata, token=token)
    )


@pytest.mark.unit
class TestSetupCommand:
    """Tests for the setup command."""

    def test_should_show_error_without_credentials(
        self, cli_runner: CliRunner, clean_env: Path
    ) -> None:
        """Verify error shown when client ID/secret not provided."""
        result = cli_runner.invoke(main, ["setup"])

        assert result.exit_code == 1
        assert "OAuth client credentials required" in result.output

    def test_should_run_authentication_with_credentials(
        self, cli_runner: CliRunner, clean_env: Path, patched_manager, mock_manager
    ) -> None:
        """Verify the consent flow runs with the given client credentials."""
        result = cli_runner.invoke(
            main, ["setup", "--client-id=test_id", "--client-secret=test_secret"]
        )

        assert result.exit_code == 0
        mock_manager.authenticate.assert_awaited_once_with(
            client_id="test_id",
            client_secret="test_secret",  # pragma: allowlist secret
        )
        assert "Browser will open" in result.output
        assert "Authentication successful" in result.output
        _, kwargs = patched_manager.from_settings.call_args
        assert kwargs == {"interactive": True}

    def test_should_use_credentials_from_environment(
        self,
        cli_runner: CliRunner,
        clean_env: Path,
        monkeypatch: pytest.MonkeyPatch,
        patched_manager,
        mock_manager,
    ) -> None:
        """Verify GOOGLE_CLIENT_ID/SECRET are used when options are omitted."""
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "env_id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "env_secret")  # pragma: allowlist secret

        result = cli_runner.invoke(main, ["setup"])

        assert result.exit_code == 0
        mock_manager.authenticate.assert_awaited_once_with(
            client_id="env_id",
            client_secret="env_secret",  # pragma: allowlist secret
        )

    def test_should_report_authentication_failure(
        self, cli_runner: CliRunner, clean_env: Path, patched_manager, mock_manager
    ) -> None:
        """Verify a failed consent flow exits non-zero."""
        mock_manager.authenticate.side_effect = NoCredentialsError("access_denied")

        result = cli_runner.invoke(main, ["setup", "--client-id=a", "--client-secret=b"])

        assert result.exit_code == 1
        assert "Authentication failed: access_denied" in result.output

    def test_should_skip_when_already_authenticated(
        self, cli_runner: CliRunner, clean_env: Path, patched_manager, mock_manager
    ) -> None:
        """Verify declining re-authentication leaves the record alone."""
        mock_manager.has_valid_tokens.return_value = True

        result = cli_runner.invoke(
            main, ["setup", "--client-id=a", "--client-secret=b"], input="n\n"
        )

        assert result.exit_code == 0
        assert "Already authenticated" in result.output
        mock_manager.authenticate.assert_not_awaited()


@pytest.mark.unit
class TestRefreshCommand:
    """Tests for the refresh command."""

    def test_should_force_refresh(
        self,
        cli_runner: CliRunner,
        clean_env: Path,
        patched_manager,
        mock_manager,
        valid_token: OAuthToken,
    ) -> None:
        """Verify refresh forces a token exchange and reports the new expiry."""
        mock_manager.refresh_if_needed.return_value = valid_token

        result = cli_runner.invoke(main, ["refresh"])

        assert result.exit_code == 0
        mock_manager.refresh_if_needed.assert_awaited_once_with(force=True)
        mock_manager.aclose.assert_awaited_once()
        assert "Token refreshed" in result.output
        assert "2025-01-15 13:00:00 UTC" in result.output

    def test_should_report_refresh_failure(
        self, cli_runner: CliRunner, clean_env: Path, patched_manager, mock_manager
    ) -> None:
        """Verify a rejected refresh exits non-zero and still closes the manager."""
        mock_manager.refresh_if_needed.side_effect = RefreshFailedError(
            "Token refresh rejected: invalid_grant"
        )

        result = cli_runner.invoke(main, ["refresh"])

        assert result.exit_code == 1
        assert "Token refresh failed: Token refresh rejected: invalid_grant" in result.output
        mock_manager.aclose.assert_awaited_once()


@pytest.mark.unit
class TestMcpCommand:
    """Tests for the mcp command."""

    def test_should_start_server_with_settings(
        self, cli_runner: CliRunner, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify the server entry point receives the loaded settings."""
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        with patch("gdrive_mcp.server.main") as mock_server_main:
            result = cli_runner.invoke(main, ["mcp"])

        assert result.exit_code == 0
        [settings], _ = mock_server_main.call_args
        assert settings.client_id == "cid"

    def test_should_exit_when_credentials_unavailable(
        self, cli_runner: CliRunner, clean_env: Path
    ) -> None:
        """Verify startup without credentials exits with a hint."""
        with patch(
            "gdrive_mcp.server.main",
            side_effect=NoCredentialsError("No stored Google credentials"),
        ):
            result = cli_runner.invoke(main, ["mcp"])

        assert result.exit_code == 1
        assert "Authentication failed" in result.output
        assert "gdrive-mcp setup" in result.output

    def test_should_exit_on_server_error(self, cli_runner: CliRunner, clean_env: Path) -> None:
        """Verify unexpected server errors exit non-zero."""
        with patch("gdrive_mcp.server.main", side_effect=RuntimeError("stdio closed")):
            result = cli_runner.invoke(main, ["mcp"])

        assert result.exit_code == 1
        assert "Server error: stdio closed" in result.output

    def test_should_reject_invalid_configuration(
        self, cli_runner: CliRunner, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify malformed settings are reported before the server starts."""
        monkeypatch.setenv("GDRIVE_MCP_REFRESH_MARGIN", "soon")
        with patch("gdrive_mcp.server.main") as mock_server_main:
            result = cli_runner.invoke(main, ["mcp"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        mock_server_main.assert_not_called()


@pytest.mark.unit
class TestDoctorCommand:
    """Tests for the doctor command, run against real token files."""

    def test_should_report_missing_token(self, cli_runner: CliRunner, clean_env: Path) -> None:
        """Verify doctor fails when nothing is stored or configured."""
        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 1
        assert "✓ mcp installed" in result.output
        assert "Not authenticated" in result.output
        assert "gdrive-mcp setup" in result.output

    def test_should_accept_bootstrap_refresh_token(
        self, cli_runner: CliRunner, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify a configured refresh token counts as a usable setup."""
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "csecret")  # pragma: allowlist secret
        monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "rtoken")

        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 0
        assert "GOOGLE_REFRESH_TOKEN will be exchanged" in result.output

    def test_should_report_valid_token(
        self,
        cli_runner: CliRunner,
        clean_env: Path,
        valid_token: OAuthToken,
        token_metadata: TokenMetadata,
    ) -> None:
        """Verify a fresh stored token is reported as ready."""
        token = valid_token.model_copy(update={"expires_at": utcnow() + timedelta(hours=1)})
        save_token(clean_env, token, token_metadata)

        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 0
        assert "✓ Authenticated" in result.output
        assert "Scopes: 2 configured" in result.output
        assert "Refresh token: present" in result.output
        assert "Ready to use" in result.output

    def test_should_accept_expired_token_with_refresh_token(
        self,
        cli_runner: CliRunner,
        clean_env: Path,
        expired_token: OAuthToken,
        token_metadata: TokenMetadata,
    ) -> None:
        """Verify an expired but refreshable token is a warning only."""
        save_token(clean_env, expired_token, token_metadata)

        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 0
        assert "Token expired (can be refreshed)" in result.output

    def test_should_fail_for_expired_token_without_refresh_token(
        self,
        cli_runner: CliRunner,
        clean_env: Path,
        expired_token: OAuthToken,
        token_metadata: TokenMetadata,
    ) -> None:
        """Verify an expired token that cannot be refreshed fails."""
        token = expired_token.model_copy(update={"refresh_token": None})
        save_token(clean_env, token, token_metadata)

        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 1
        assert "Refresh token: missing" in result.output
        assert "cannot be refreshed" in result.output

    def test_should_report_corrupted_token_file(
        self, cli_runner: CliRunner, clean_env: Path
    ) -> None:
        """Verify an unparseable token file is reported."""
        token_dir = clean_env / ".gdrive-mcp"
        token_dir.mkdir()
        (token_dir / "tokens.json").write_text("{not json")

        result = cli_runner.invoke(main, ["doctor"])

        assert result.exit_code == 1
        assert "Token file corrupted" in result.output
