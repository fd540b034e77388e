"""MCP tools for Google Drive and Google Sheets.

Tools (4):
- gdrive_search: Search Drive files by name
- gdrive_read_file: Read a Drive file, exporting Google Docs/Sheets/Slides/Drawings
- gsheets_update_cell: Write a single value into a spreadsheet range
- gsheets_read: Read spreadsheet ranges with per-cell A1 locations

Handlers are stateless: they take the tool arguments and a GoogleApiClient
and always return a ToolResult. Remote and credential failures come back
as error results rather than exceptions.
"""

import base64
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from mcp.types import TextContent, Tool

from gdrive_mcp.auth.errors import AuthError
from gdrive_mcp.client import DRIVE_API_BASE, SHEETS_API_BASE, GoogleApiClient

logger = logging.getLogger(__name__)

GOOGLE_APPS_PREFIX = "application/vnd.google-apps"
GOOGLE_SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"

# Export formats for Google-native files; other Google types are rejected
EXPORT_MIME_TYPES = {
    "application/vnd.google-apps.document": "text/markdown",
    "application/vnd.google-apps.spreadsheet": "text/csv",
    "application/vnd.google-apps.presentation": "text/plain",
    "application/vnd.google-apps.drawing": "image/png",
}

MAX_BINARY_BYTES = 1_000_000
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
DEFAULT_SHEET_NAME = "Sheet1"
DEFAULT_READ_RANGE = "A:ZZ"


class UnsupportedFileError(ValueError):
    """The file cannot be returned through the read tool."""


class SheetNotFoundError(ValueError):
    """No sheet with the requested sheetId exists in the spreadsheet."""


@dataclass
class ToolResult:
    """Result envelope shared by all tools."""

    text: str
    is_error: bool = False

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(text=text, is_error=True)

    def to_content(self) -> list[TextContent]:
        return [TextContent(type="text", text=self.text)]


ToolHandler = Callable[[dict[str, Any], GoogleApiClient], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """An MCP tool declaration bound to its handler."""

    tool: Tool
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.tool.name


def describe_error(error: Exception) -> str:
    """Turn an API or credential error into a short message.

    Google APIs return ``{"error": {"message": ...}}`` bodies; that message
    is preferred over httpx's generic status text.
    """
    if isinstance(error, httpx.HTTPStatusError):
        try:
            body = error.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message")
            if message:
                return f"{message} (HTTP {error.response.status_code})"
        return f"HTTP {error.response.status_code} from {error.request.url}"
    return str(error)


def _require(arguments: dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value is None or value == "":
        raise ValueError(f"Missing required argument: {key}")
    return value


# -------------------- gdrive_search --------------------


def build_search_query(user_query: str) -> str:
    """Build a Drive API ``q`` expression from free text.

    Args:
        user_query: Text typed by the user. Blank lists all files.

    Returns:
        Drive query limited to non-trashed files.
    """
    user_query = (user_query or "").strip()
    if not user_query:
        return "trashed = false"

    escaped = user_query.replace("\\", "\\\\").replace("'", "\\'")
    conditions = [f"name contains '{escaped}'"]
    if "sheet" in user_query.lower():
        conditions.append(f"mimeType = '{GOOGLE_SPREADSHEET_MIME}'")
    return f"({' or '.join(conditions)}) and trashed = false"


def _page_size(value: Any) -> int:
    if value is None or value == "":
        return DEFAULT_PAGE_SIZE
    try:
        size = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"pageSize must be a number, got {value!r}") from None
    return max(1, min(size, MAX_PAGE_SIZE))


async def gdrive_search(arguments: dict[str, Any], client: GoogleApiClient) -> ToolResult:
    """Search Google Drive files by name.

    Args:
        arguments: query, optional pageToken and pageSize.
        client: Authenticated API client.

    Returns:
        Matching file names and IDs, plus the next page token if any.
    """
    try:
        params: dict[str, Any] = {
            "q": build_search_query(arguments.get("query", "")),
            "pageSize": _page_size(arguments.get("pageSize")),
            "orderBy": "modifiedTime desc",
            "fields": "nextPageToken, files(id, name, mimeType, modifiedTime, size)",
        }
        if arguments.get("pageToken"):
            params["pageToken"] = arguments["pageToken"]

        response = await client.request_json("GET", f"{DRIVE_API_BASE}/files", params=params)
    except (AuthError, httpx.HTTPError, ValueError) as e:
        return ToolResult.error(f"Error searching Google Drive: {describe_error(e)}")

    files = response.get("files", [])
    text = f"Found {len(files)} files:\n"
    text += "\n---\n".join(f"Name: {f.get('name')}\nID: {f.get('id')}" for f in files)

    next_page = response.get("nextPageToken")
    if next_page:
        text += f"\n\nMore results available. Use pageToken: {next_page}"

    return ToolResult(text=text)


# -------------------- gdrive_read_file --------------------


@dataclass
class FileContents:
    """Decoded file body: text for textual types, base64 otherwise."""

    name: str
    mime_type: str
    text: str | None = None
    blob: str | None = None

    @property
    def body(self) -> str:
        return self.text if self.text is not None else (self.blob or "")


def _is_text_mime(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type == "application/json"


def _encode_blob(content: bytes) -> str:
    if len(content) > MAX_BINARY_BYTES:
        raise UnsupportedFileError(
            f"File is too large to display here ({len(content)} bytes). "
            "Please download it from the Google Drive web interface."
        )
    return base64.b64encode(content).decode("ascii")


async def read_drive_file(file_id: str, client: GoogleApiClient) -> FileContents:
    """Fetch a Drive file's contents.

    Google-native files are exported (see EXPORT_MIME_TYPES); regular files
    are downloaded. Non-text content is base64-encoded and capped at
    MAX_BINARY_BYTES.

    Raises:
        UnsupportedFileError: For non-exportable Google types or oversized binaries.
        AuthError: If no valid credential can be obtained.
        httpx.HTTPStatusError: If a request fails.
    """
    file_url = f"{DRIVE_API_BASE}/files/{quote(file_id, safe='')}"
    metadata = await client.request_json("GET", file_url, params={"fields": "mimeType,name,size"})
    name = metadata.get("name") or file_id
    mime_type = metadata.get("mimeType") or "application/octet-stream"

    if mime_type.startswith(GOOGLE_APPS_PREFIX):
        export_mime = EXPORT_MIME_TYPES.get(mime_type)
        if export_mime is None:
            raise UnsupportedFileError(
                f"Cannot export this Google file type ({mime_type}). "
                "Only Docs, Sheets, Slides, and Drawings are supported."
            )
        response = await client.request_raw(
            "GET", f"{file_url}/export", params={"mimeType": export_mime}
        )
        if _is_text_mime(export_mime):
            return FileContents(name=name, mime_type=export_mime, text=response.text)
        return FileContents(name=name, mime_type=export_mime, blob=_encode_blob(response.content))

    is_text = _is_text_mime(mime_type)
    declared_size = metadata.get("size")
    if not is_text and declared_size and int(declared_size) > MAX_BINARY_BYTES:
        raise UnsupportedFileError(
            f"File is too large to display here ({declared_size} bytes). "
            "Please download it from the Google Drive web interface."
        )

    response = await client.request_raw("GET", file_url, params={"alt": "media"})
    if is_text:
        return FileContents(
            name=name,
            mime_type=mime_type,
            text=response.content.decode("utf-8", errors="replace"),
        )
    return FileContents(name=name, mime_type=mime_type, blob=_encode_blob(response.content))


async def gdrive_read_file(arguments: dict[str, Any], client: GoogleApiClient) -> ToolResult:
    """Read the contents of a Google Drive file."""
    try:
        contents = await read_drive_file(_require(arguments, "fileId"), client)
    except (AuthError, httpx.HTTPError, ValueError) as e:
        return ToolResult.error(f"Error reading Google Drive file: {describe_error(e)}")

    return ToolResult(text=f"Contents of {contents.name}:\n\n{contents.body}")


# -------------------- gsheets_update_cell --------------------


async def gsheets_update_cell(arguments: dict[str, Any], client: GoogleApiClient) -> ToolResult:
    """Update a cell value in a Google Spreadsheet.

    The value is written as-is (valueInputOption=RAW), so formulas are not
    evaluated.
    """
    try:
        file_id = _require(arguments, "fileId")
        cell_range = _require(arguments, "range")
        value = arguments.get("value")
        if value is None:
            raise ValueError("Missing required argument: value")

        url = (
            f"{SHEETS_API_BASE}/spreadsheets/{quote(file_id, safe='')}"
            f"/values/{quote(cell_range, safe='')}"
        )
        await client.request_json(
            "PUT",
            url,
            params={"valueInputOption": "RAW"},
            json_data={"values": [[value]]},
        )
    except (AuthError, httpx.HTTPError, ValueError) as e:
        return ToolResult.error(f"Error updating Google Sheet cell: {describe_error(e)}")

    return ToolResult(text=f"Updated cell {cell_range} to value: {value}")


# -------------------- gsheets_read --------------------


def column_letter(column: int) -> str:
    """Convert a 1-based column number to letters (1 -> A, 27 -> AA)."""
    letters = ""
    while column > 0:
        column, remainder = divmod(column - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def a1_notation(row_index: int, column_index: int) -> str:
    """A1 reference for 0-based row and column indexes."""
    return f"{column_letter(column_index + 1)}{row_index + 1}"


def sheet_name_from_range(range_ref: str | None) -> str:
    """Extract the sheet title from a range like ``'My Sheet'!A1:B2``."""
    if not range_ref or "!" not in range_ref:
        return DEFAULT_SHEET_NAME
    name = range_ref.rsplit("!", 1)[0]
    if len(name) >= 2 and name.startswith("'") and name.endswith("'"):
        name = name[1:-1].replace("''", "'")
    return name or DEFAULT_SHEET_NAME


def quote_sheet_name(title: str) -> str:
    """Quote a sheet title for use in A1 notation."""
    return "'" + title.replace("'", "''") + "'"


def process_sheet_data(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Annotate every cell with its A1 location.

    Accepts either a ``values.get`` response or a ``values.batchGet``
    response. Empty ranges are skipped. The first row of each range is
    reported as ``columnHeaders`` and the remaining rows as ``data``.
    """
    value_ranges = payload["valueRanges"] if "valueRanges" in payload else [payload]
    results = []

    for value_range in value_ranges:
        values = value_range.get("values") or []
        if not values:
            continue

        sheet_name = sheet_name_from_range(value_range.get("range"))
        cells = [
            [
                {"value": cell, "location": f"{sheet_name}!{a1_notation(row_index, col_index)}"}
                for col_index, cell in enumerate(row)
            ]
            for row_index, row in enumerate(values)
        ]
        headers = cells[0]
        results.append(
            {
                "sheetName": sheet_name,
                "data": cells[1:],
                "totalRows": len(values),
                "totalColumns": len(headers),
                "columnHeaders": headers,
            }
        )

    return results


async def _resolve_sheet_title(
    spreadsheet_url: str, sheet_id: int, client: GoogleApiClient
) -> str:
    metadata = await client.request_json(
        "GET", spreadsheet_url, params={"fields": "sheets.properties"}
    )
    for sheet in metadata.get("sheets", []):
        props = sheet.get("properties", {})
        if props.get("sheetId") == sheet_id and props.get("title"):
            return str(props["title"])
    raise SheetNotFoundError(f"Sheet ID {sheet_id} not found")


async def gsheets_read(arguments: dict[str, Any], client: GoogleApiClient) -> ToolResult:
    """Read data from a Google Spreadsheet.

    Reads the given A1 ranges, or the whole sheet with the given sheetId,
    or the first sheet when neither is provided.
    """
    try:
        spreadsheet_id = _require(arguments, "spreadsheetId")
        spreadsheet_url = f"{SHEETS_API_BASE}/spreadsheets/{quote(spreadsheet_id, safe='')}"
        ranges = arguments.get("ranges")
        sheet_id = arguments.get("sheetId")

        if ranges:
            payload = await client.request_json(
                "GET", f"{spreadsheet_url}/values:batchGet", params={"ranges": list(ranges)}
            )
        elif sheet_id is not None:
            title = await _resolve_sheet_title(spreadsheet_url, sheet_id, client)
            payload = await client.request_json(
                "GET", f"{spreadsheet_url}/values/{quote(quote_sheet_name(title), safe='')}"
            )
        else:
            payload = await client.request_json(
                "GET", f"{spreadsheet_url}/values/{quote(DEFAULT_READ_RANGE, safe='')}"
            )
    except (AuthError, httpx.HTTPError, ValueError) as e:
        return ToolResult.error(f"Error reading spreadsheet: {describe_error(e)}")

    return ToolResult(text=json.dumps(process_sheet_data(payload), indent=2))


# -------------------- Registry --------------------


TOOL_DEFINITIONS: list[ToolDefinition] = [
    ToolDefinition(
        tool=Tool(
            name="gdrive_search",
            description="Search for files in Google Drive",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Name of the file to be searched for",
                    },
                    "pageToken": {
                        "type": "string",
                        "description": "Token for the next page of results (optional)",
                    },
                    "pageSize": {
                        "type": "integer",
                        "description": "Number of results per page (default: 10, max 100)",
                    },
                },
                "required": ["query"],
            },
        ),
        handler=gdrive_search,
    ),
    ToolDefinition(
        tool=Tool(
            name="gdrive_read_file",
            description="Read contents of a file from Google Drive",
            inputSchema={
                "type": "object",
                "properties": {
                    "fileId": {
                        "type": "string",
                        "description": "ID of the file to read",
                    },
                },
                "required": ["fileId"],
            },
        ),
        handler=gdrive_read_file,
    ),
    ToolDefinition(
        tool=Tool(
            name="gsheets_update_cell",
            description="Update a cell value in a Google Spreadsheet",
            inputSchema={
                "type": "object",
                "properties": {
                    "fileId": {
                        "type": "string",
                        "description": "ID of the spreadsheet",
                    },
                    "range": {
                        "type": "string",
                        "description": "Cell range in A1 notation (e.g. 'Sheet1!A1')",
                    },
                    "value": {
                        "type": "string",
                        "description": "New cell value",
                    },
                },
                "required": ["fileId", "range", "value"],
            },
        ),
        handler=gsheets_update_cell,
    ),
    ToolDefinition(
        tool=Tool(
            name="gsheets_read",
            description=(
                "Read data from a Google Spreadsheet with flexible options for ranges "
                "and formatting"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "spreadsheetId": {
                        "type": "string",
                        "description": "The ID of the spreadsheet to read",
                    },
                    "ranges": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": (
                            "Optional array of A1 notation ranges like ['Sheet1!A1:B10']. "
                            "If not provided, reads entire sheet."
                        ),
                    },
                    "sheetId": {
                        "type": "integer",
                        "description": (
                            "Optional specific sheet ID to read. "
                            "If not provided with ranges, reads first sheet."
                        ),
                    },
                },
                "required": ["spreadsheetId"],
            },
        ),
        handler=gsheets_read,
    ),
]
