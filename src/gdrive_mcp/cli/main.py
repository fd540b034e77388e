"""Command-line interface for gdrive-mcp."""

import asyncio
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from gdrive_mcp.__version__ import __version__
from gdrive_mcp.config import Settings


def _load_settings(ctx: click.Context) -> Settings:
    env_file = ctx.obj.get("env_file") if ctx.obj else None
    try:
        return Settings.from_env(env_file)
    except ValidationError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to a .env file (default: ./.env)",
)
@click.pass_context
def main(ctx: click.Context, env_file: Path | None) -> None:
    """Google Drive MCP Server - Connect Claude to Google Drive and Sheets.

    This tool provides 4 tools:
    - gdrive_search: Search files by name
    - gdrive_read_file: Read file contents
    - gsheets_read: Read spreadsheet ranges
    - gsheets_update_cell: Update a spreadsheet cell
    """
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


@main.command()
@click.option("--client-id", help="Google OAuth client ID")
@click.option("--client-secret", help="Google OAuth client secret")
@click.pass_context
def setup(ctx: click.Context, client_id: str | None, client_secret: str | None) -> None:
    """Set up Google Drive OAuth authentication.

    This will:
    1. Open browser for OAuth2 consent flow
    2. Store the token record at ./.gdrive-mcp/tokens.json

    Requires:
    - GOOGLE_CLIENT_ID environment variable or --client-id option
    - GOOGLE_CLIENT_SECRET environment variable or --client-secret option
    """
    from gdrive_mcp.auth import OAuthManager

    settings = _load_settings(ctx)
    manager = OAuthManager.from_settings(settings, interactive=True)

    # Check if already authenticated
    if manager.has_valid_tokens():
        click.echo("✓ Already authenticated!")
        click.echo(f"Token stored at: {manager.token_path}")
        click.echo("")

        if not click.confirm("Re-authenticate?"):
            return

    client_id = client_id or settings.client_id
    client_secret = client_secret or settings.client_secret
    if not client_id or not client_secret:
        click.echo("❌ Error: OAuth client credentials required")
        click.echo("")
        click.echo("Set environment variables (or add them to .env):")
        click.echo("  export GOOGLE_CLIENT_ID='your-client-id'")
        click.echo("  export GOOGLE_CLIENT_SECRET='your-client-secret'")
        click.echo("")
        click.echo("Or pass as options:")
        click.echo("  gdrive-mcp setup --client-id=... --client-secret=...")
        sys.exit(1)

    click.echo("Starting OAuth authentication flow...")
    click.echo("Browser will open for Google consent...")
    click.echo("")

    try:
        asyncio.run(manager.authenticate(client_id=client_id, client_secret=client_secret))
        click.echo("✓ Authentication successful!")
        click.echo(f"Token stored at: {manager.token_path}")
        click.echo("")
        click.echo("Run 'gdrive-mcp doctor' to verify setup.")
    except Exception as e:
        click.echo(f"❌ Authentication failed: {e}")
        sys.exit(1)


@main.command()
@click.pass_context
def mcp(ctx: click.Context) -> None:
    """Start the MCP server over stdio.

    A valid credential is obtained before the server starts: the stored
    token record is used (and refreshed if needed), or GOOGLE_REFRESH_TOKEN
    is exchanged when nothing is stored yet.

    This command is typically invoked by an MCP client such as Claude Desktop.
    """
    from gdrive_mcp.auth import AuthError
    from gdrive_mcp.server import main as server_main

    settings = _load_settings(ctx)

    try:
        click.echo("Starting Google Drive MCP server...", err=True)
        server_main(settings)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except AuthError as e:
        click.echo(f"❌ Authentication failed: {e}", err=True)
        click.echo("Run 'gdrive-mcp setup' or set GOOGLE_REFRESH_TOKEN.", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"❌ Server error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Force a token refresh and store the result."""
    from gdrive_mcp.auth import AuthError, OAuthManager

    settings = _load_settings(ctx)
    manager = OAuthManager.from_settings(settings)

    async def _refresh():
        try:
            return await manager.refresh_if_needed(force=True)
        finally:
            await manager.aclose()

    try:
        token = asyncio.run(_refresh())
    except AuthError as e:
        click.echo(f"❌ Token refresh failed: {e}")
        sys.exit(1)

    click.echo("✓ Token refreshed")
    click.echo(f"  Token expires: {token.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Token stored at: {manager.token_path}")


@main.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check installation, configuration, and authentication status.

    Verifies:
    1. Python dependencies installed
    2. OAuth client configured
    3. Stored token validity (without refreshing it)
    """
    from gdrive_mcp.auth import OAuthManager, TokenStatus

    click.echo("Google Drive MCP Status:")
    click.echo("")

    click.echo("Dependencies:")
    try:
        import google.auth  # noqa: F401
        import google_auth_oauthlib  # noqa: F401
        import httpx  # noqa: F401
        import mcp  # noqa: F401

        click.echo("  ✓ google-auth installed")
        click.echo("  ✓ google-auth-oauthlib installed")
        click.echo("  ✓ httpx installed")
        click.echo("  ✓ mcp installed")
    except ImportError as e:
        click.echo(f"  ❌ Missing dependency: {e}")
        sys.exit(1)

    click.echo("")

    settings = _load_settings(ctx)
    click.echo("Configuration:")
    if settings.has_client_credentials:
        click.echo("  ✓ GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET set")
    else:
        click.echo("  ❌ GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set (needed to refresh)")
    if settings.refresh_token:
        click.echo("  ✓ GOOGLE_REFRESH_TOKEN set (used when no token is stored)")

    click.echo("")

    manager = OAuthManager.from_settings(settings)
    status, _ = manager.get_status()
    token = manager.load_credentials_quietly()

    click.echo("Authentication:")
    click.echo(f"  Token file: {manager.token_path}")

    if status in (TokenStatus.MISSING, TokenStatus.INVALID):
        if status == TokenStatus.MISSING:
            click.echo("  ❌ Not authenticated")
        else:
            click.echo("  ❌ Token file corrupted")
        click.echo("")
        if settings.refresh_token and settings.has_client_credentials:
            click.echo("⚠️  GOOGLE_REFRESH_TOKEN will be exchanged when the server starts.")
            return
        click.echo("Run 'gdrive-mcp setup' to authenticate.")
        sys.exit(1)
    elif status == TokenStatus.EXPIRED:
        click.echo("  ⚠️  Token expired (can be refreshed)")
    elif status == TokenStatus.VALID:
        click.echo("  ✓ Authenticated")

    if token is not None:
        click.echo(f"  Token expires: {token.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        click.echo(f"  Scopes: {len(token.scopes)} configured")
        click.echo(f"  Refresh token: {'present' if token.refresh_token else 'missing'}")

    click.echo("")

    if token is not None and not token.refresh_token and status == TokenStatus.EXPIRED:
        click.echo("❌ Token cannot be refreshed. Run 'gdrive-mcp setup' to re-authenticate.")
        sys.exit(1)
    click.echo("✓ Ready to use!")


if __name__ == "__main__":
    main()
