"""Routes MCP tool calls to their handlers."""

import logging
from typing import Any

from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, METHOD_NOT_FOUND, ErrorData, Tool

from gdrive_mcp.client import GoogleApiClient
from gdrive_mcp.server.tools import TOOL_DEFINITIONS, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """Raised from the MCP call_tool handler to report an error result."""


class ToolDispatcher:
    """Name-keyed registry of tool definitions.

    Attributes:
        definitions: Registered tools keyed by name.
    """

    def __init__(self, definitions: list[ToolDefinition] | None = None) -> None:
        self.definitions = {
            definition.name: definition
            for definition in (TOOL_DEFINITIONS if definitions is None else definitions)
        }

    def list_tools(self) -> list[Tool]:
        return [definition.tool for definition in self.definitions.values()]

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        client: GoogleApiClient | None,
    ) -> ToolResult:
        """Run the named tool.

        Args:
            name: Tool name.
            arguments: Tool arguments from the MCP request.
            client: Authenticated API client; None before the server started.

        Returns:
            The handler's ToolResult. Unexpected handler failures are
            returned as error results.

        Raises:
            McpError: INTERNAL_ERROR without a client, METHOD_NOT_FOUND for
                an unknown tool.
        """
        if client is None:
            raise McpError(
                ErrorData(code=INTERNAL_ERROR, message="Google Drive client not initialized.")
            )

        definition = self.definitions.get(name)
        if definition is None:
            raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=f"Tool '{name}' not found."))

        try:
            return await definition.handler(arguments or {}, client)
        except Exception as e:
            logger.exception(f"Error calling tool {name}")
            return ToolResult.error(f"Error: {e}")
