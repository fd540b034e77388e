"""OAuth token persistence for the Google Drive MCP server.

One record per deployment, stored as versioned JSON. Writes go to a
temporary file in the same directory and are moved into place with
os.replace, so a crash mid-write leaves either the old record or the
new one, never a truncated file.

Storage Location: ./.gdrive-mcp/tokens.json (override with GDRIVE_MCP_TOKEN_PATH)
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from gdrive_mcp.auth.errors import StoreCorruptError, StoreWriteFailedError
from gdrive_mcp.auth.models import StoredToken, TokenStatus

logger = logging.getLogger(__name__)

CREDENTIALS_DIR_NAME = ".gdrive-mcp"
TOKEN_FILE_NAME = "tokens.json"


def get_token_path() -> Path:
    """Get the default project-level token storage path.

    Returns:
        Path to tokens.json in ./.gdrive-mcp/
    """
    return Path.cwd() / CREDENTIALS_DIR_NAME / TOKEN_FILE_NAME


class TokenStorage:
    """JSON file storage for a single OAuth token record.

    Attributes:
        token_path: Path to the tokens.json file.

    Example:
        ```python
        storage = TokenStorage()

        record = StoredToken(
            metadata=TokenMetadata(service_name="gdrive-mcp"),
            token=OAuthToken(
                access_token="abc123",
                refresh_token="xyz789",
                expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            ),
        )
        storage.save(record)

        stored = storage.load()
        if stored:
            print(f"Token expires at: {stored.token.expires_at}")
        ```
    """

    def __init__(self, token_path: Path | None = None) -> None:
        """Initialize token storage.

        Args:
            token_path: Custom path for tokens.json.
                Defaults to ./.gdrive-mcp/tokens.json
        """
        self.token_path = Path(token_path) if token_path else get_token_path()

    @property
    def credentials_dir(self) -> Path:
        return self.token_path.parent

    def _ensure_credentials_dir(self) -> None:
        """Create credentials directory with secure permissions if needed.

        Only a directory created here or the dedicated .gdrive-mcp directory
        is restricted to 0700. Any other existing parent of an overridden
        path is left alone; the token file itself is always 0600.
        """
        creds_dir = self.credentials_dir
        if not creds_dir.exists():
            creds_dir.mkdir(parents=True, mode=0o700)
        elif creds_dir.name == CREDENTIALS_DIR_NAME:
            creds_dir.chmod(0o700)

    def read(self) -> StoredToken | None:
        """Read and validate the token record.

        Returns:
            The stored record, or None if no file exists.

        Raises:
            StoreCorruptError: If the file exists but cannot be parsed.
        """
        if not self.token_path.exists():
            return None

        try:
            raw = self.token_path.read_text(encoding="utf-8")
            return StoredToken.model_validate(json.loads(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise StoreCorruptError(f"Token file {self.token_path} is unreadable: {e}") from e

    def load(self) -> StoredToken | None:
        """Load the token record without ever raising.

        Returns:
            StoredToken if present and valid, None if absent or corrupt.
        """
        try:
            return self.read()
        except StoreCorruptError as e:
            logger.warning(f"Ignoring corrupt token record: {e}")
            return None

    def save(self, record: StoredToken) -> None:
        """Atomically write the token record.

        Args:
            record: Record to persist. Replaces any existing record.

        Raises:
            StoreWriteFailedError: If the record could not be written.
                The previous file, if any, is left untouched.
        """
        payload = record.model_dump_json(indent=2)
        tmp_path: str | None = None
        try:
            self._ensure_credentials_dir()
            fd, tmp_path = tempfile.mkstemp(
                dir=self.credentials_dir, prefix=".tokens-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.token_path)
            tmp_path = None
        except OSError as e:
            raise StoreWriteFailedError(
                f"Could not write token file {self.token_path}: {e}"
            ) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug(f"Could not remove temporary token file {tmp_path}")

    def delete(self) -> bool:
        """Delete the token record.

        Returns:
            True if a record was deleted, False if none existed.
        """
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        return True

    def get_status(self, buffer_seconds: int = 60, now: datetime | None = None) -> TokenStatus:
        """Get the status of the stored token.

        Args:
            buffer_seconds: Lead time before expiry counted as expired.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            TokenStatus indicating the record's current state.
        """
        try:
            stored = self.read()
        except StoreCorruptError:
            return TokenStatus.INVALID

        if stored is None:
            return TokenStatus.MISSING

        if stored.token.is_expired(buffer_seconds=buffer_seconds, now=now):
            return TokenStatus.EXPIRED

        return TokenStatus.VALID
