"""MCP server implementation for Google Drive and Google Sheets.

Tools (4):
- gdrive_search: Search files by name
- gdrive_read_file: Read file contents (Docs, Sheets, Slides, Drawings exported)
- gsheets_update_cell: Update a single cell
- gsheets_read: Read ranges with A1 cell locations

Transport: Stdio
Authentication: OAuth 2.0 with background token refresh
"""

from gdrive_mcp.server.drive_server import GoogleDriveServer, main


def create_server(**kwargs) -> GoogleDriveServer:
    """Create and configure a Google Drive MCP server.

    Returns:
        GoogleDriveServer: Configured server instance ready to run.

    Example:
        >>> server = create_server()
        >>> asyncio.run(server.run())
    """
    return GoogleDriveServer(**kwargs)


__all__ = ["create_server", "GoogleDriveServer", "main"]
