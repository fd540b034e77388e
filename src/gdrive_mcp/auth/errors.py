"""Authentication errors raised by the credential store and manager."""


class AuthError(Exception):
    """Base class for credential failures."""


class NoCredentialsError(AuthError):
    """No usable credential exists and none could be obtained."""


class RefreshFailedError(AuthError):
    """The refresh exchange failed, timed out, or was rejected.

    Attributes:
        reason: OAuth error code returned by the provider (e.g. ``invalid_grant``).
        status_code: HTTP status of the token endpoint response, if any.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class StoreCorruptError(AuthError):
    """The persisted token record could not be parsed."""


class StoreWriteFailedError(AuthError):
    """The token record could not be written to disk."""
