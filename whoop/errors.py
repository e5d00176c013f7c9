"""
Error taxonomy for the credential manager and API client.

Every failure the core surfaces is a ``WhoopError`` tagged with an
``ErrorKind``.  Callers branch on ``err.kind`` rather than on exception
subclasses.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


DEFAULT_RETRY_AFTER_SECONDS = 60


class ErrorKind(str, Enum):
    AUTH_MISSING = "auth_missing"            # no credential anywhere
    AUTH_ERROR = "auth_error"                # server rejected even the refreshed token
    NO_REFRESH_TOKEN = "no_refresh_token"
    EXCHANGE_FAILED = "exchange_failed"      # status
    REFRESH_FAILED = "refresh_failed"        # status
    RATE_LIMITED = "rate_limited"            # retry_after_seconds
    API_ERROR = "api_error"                  # status
    NETWORK_ERROR = "network_error"


_DEFAULT_MESSAGES = {
    ErrorKind.AUTH_MISSING: "Not authenticated. Set WHOOP_ACCESS_TOKEN or complete the OAuth flow.",
    ErrorKind.AUTH_ERROR: "Re-authorization required: Whoop rejected the refreshed token.",
    ErrorKind.NO_REFRESH_TOKEN: "No refresh token stored. Re-authorization required.",
    ErrorKind.EXCHANGE_FAILED: "Authorization code exchange failed",
    ErrorKind.REFRESH_FAILED: "Token refresh failed",
    ErrorKind.RATE_LIMITED: "Rate limited by Whoop API",
    ErrorKind.API_ERROR: "Whoop API error",
    ErrorKind.NETWORK_ERROR: "Cannot reach Whoop API",
}


class WhoopError(Exception):
    """
    Single error type for the whole core.

    Parameters
    ----------
    kind : ErrorKind
        Discriminator callers switch on.
    message : str, optional
        Overrides the stable default message for ``kind``.
    status : int, optional
        HTTP status for EXCHANGE_FAILED / REFRESH_FAILED / API_ERROR.
    retry_after_seconds : int, optional
        Only set for RATE_LIMITED.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        *,
        status: Optional[int] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        self.kind = kind
        self.status = status
        self.retry_after_seconds = retry_after_seconds
        if message is None:
            message = _DEFAULT_MESSAGES[kind]
            if status is not None:
                message = f"{message} ({status})"
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Short text a front end can show as-is."""
        if self.kind is ErrorKind.RATE_LIMITED:
            return f"Rate limited. Retry in {self.retry_after_seconds} seconds."
        if self.kind in (ErrorKind.AUTH_ERROR, ErrorKind.NO_REFRESH_TOKEN):
            return "Re-authorization required. Run the OAuth flow again."
        return str(self)

    def __repr__(self) -> str:
        return (
            f"WhoopError(kind={self.kind.value!r}, status={self.status!r}, "
            f"retry_after_seconds={self.retry_after_seconds!r})"
        )


def parse_retry_after(value: Optional[str]) -> int:
    """
    Parse a ``Retry-After`` header given in whole seconds.

    Missing, negative or unparsable values (including HTTP-dates) fall back
    to 60 seconds.
    """
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = int(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS
    if seconds < 0:
        return DEFAULT_RETRY_AFTER_SECONDS
    return seconds
