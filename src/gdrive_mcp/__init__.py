"""Google Drive MCP Server.

Exposes Google Drive search/read and Google Sheets read/update as MCP tools,
with OAuth credentials that are refreshed before they expire.
"""

from gdrive_mcp.__version__ import __version__

__all__ = ["__version__"]
