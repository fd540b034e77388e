"""Google Drive MCP server.

Exposes Drive search, file reading, and Sheets read/update tools over the
MCP stdio transport. A valid credential is obtained before the transport
is opened, and a background scheduler keeps the access token fresh for
the lifetime of the process.
"""

import asyncio
import logging
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from gdrive_mcp.__version__ import __version__
from gdrive_mcp.auth import OAuthManager
from gdrive_mcp.client import GoogleApiClient
from gdrive_mcp.config import Settings
from gdrive_mcp.server.dispatcher import ToolDispatcher, ToolExecutionError

logger = logging.getLogger(__name__)

SERVER_NAME = "gdrive-mcp"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging. Records go to stderr; stdout carries MCP."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class GoogleDriveServer:
    """MCP server for Google Drive and Google Sheets.

    Attributes:
        server: MCP Server instance.
        manager: OAuthManager providing credentials.
        dispatcher: ToolDispatcher routing tool calls.
        client: GoogleApiClient, available once start() succeeded.
    """

    def __init__(
        self,
        manager: OAuthManager | None = None,
        settings: Settings | None = None,
        dispatcher: ToolDispatcher | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            manager: Credential manager. Built from settings if omitted.
            settings: Settings used to build the manager. Loaded from the
                environment if both are omitted.
            dispatcher: Tool dispatcher. Defaults to the four Drive/Sheets tools.
            http_client: HTTP client for API calls, mainly for tests.
        """
        if manager is None:
            manager = OAuthManager.from_settings(settings or Settings.from_env())
        self.manager = manager
        self.dispatcher = dispatcher or ToolDispatcher()
        self.client: GoogleApiClient | None = None
        self._http_client = http_client
        self.server = Server(SERVER_NAME, version=__version__)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.dispatcher.list_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self.call_tool(name, arguments)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Handle a tool call.

        Raises:
            ToolExecutionError: If the tool reported an error; the MCP
                server turns it into an error result.
            McpError: For an unknown tool or before start().
        """
        result = await self.dispatcher.dispatch(name, arguments, self.client)
        if result.is_error:
            raise ToolExecutionError(result.text)
        return result.to_content()

    async def start(self) -> None:
        """Obtain a valid credential and start background refresh.

        Raises:
            AuthError: If no valid credential can be obtained.
        """
        await self.manager.get_valid_credentials()
        self.client = GoogleApiClient(self.manager, http_client=self._http_client)
        self.manager.setup_token_refresh()
        logger.info("Google Drive credentials ready, background refresh started")

    async def close(self) -> None:
        """Stop background refresh and close HTTP clients."""
        if self.client is not None:
            await self.client.close()
            self.client = None
        await self.manager.aclose()

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        try:
            await self.start()
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.close()


def main(settings: Settings | None = None) -> None:
    """Entry point for the Google Drive MCP server."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    server = GoogleDriveServer(settings=settings)
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
