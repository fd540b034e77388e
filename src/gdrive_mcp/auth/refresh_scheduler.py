"""Background refresh of the access token ahead of expiry."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from gdrive_mcp.auth.errors import AuthError

if TYPE_CHECKING:
    from gdrive_mcp.auth.oauth_manager import OAuthManager

logger = logging.getLogger(__name__)

MIN_DELAY_SECONDS = 1.0


class TokenRefreshScheduler:
    """Refreshes the managed token shortly before it expires.

    Runs as a single asyncio task. Every successful refresh schedules the
    next one relative to the new expiry; a failed refresh is logged and
    retried after a fixed backoff. Request-triggered refreshes and the
    scheduler share OAuthManager's refresh lock, so they never run two
    exchanges at once.

    Attributes:
        next_refresh_at: When the next refresh attempt is due, if scheduled.
    """

    def __init__(
        self,
        manager: "OAuthManager",
        retry_backoff_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            manager: Manager whose token is kept fresh.
            retry_backoff_seconds: Wait after a failed refresh.
            sleep: Coroutine function used to wait. Defaults to asyncio.sleep.
        """
        self._manager = manager
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self.next_refresh_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the refresh loop. No-op if it is already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="gdrive-mcp-token-refresh"
        )

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to finish."""
        task, self._task = self._task, None
        self.next_refresh_at = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def delay_until_refresh(self) -> float:
        """Seconds until the current token enters the safety margin."""
        token = self._manager.load_credentials_quietly()
        if token is None:
            return self._retry_backoff_seconds
        remaining = token.seconds_until_expiry(now=self._manager.now())
        return max(remaining - self._manager.safety_margin_seconds, MIN_DELAY_SECONDS)

    async def _run(self) -> None:
        delay = self.delay_until_refresh()
        while True:
            self.next_refresh_at = self._manager.now() + timedelta(seconds=delay)
            logger.debug(f"Next token refresh in {delay:.0f}s")
            await self._sleep(delay)

            try:
                await self._manager.refresh_if_needed()
            except AuthError as e:
                logger.warning(
                    f"Scheduled token refresh failed: {e}; "
                    f"retrying in {self._retry_backoff_seconds:.0f}s"
                )
                delay = self._retry_backoff_seconds
                continue
            except Exception:
                logger.exception(
                    f"Unexpected error in token refresh, retrying in "
                    f"{self._retry_backoff_seconds:.0f}s"
                )
                delay = self._retry_backoff_seconds
                continue

            delay = self.delay_until_refresh()
