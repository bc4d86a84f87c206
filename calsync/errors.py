"""Error taxonomy for the calendar subsystem."""

from enum import Enum
from typing import Optional


class OAuthErrorCode(str, Enum):
    """Stable error codes surfaced to the browser / API caller."""

    ACCESS_DENIED = "access_denied"
    INVALID_SCOPE = "invalid_scope"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    MISSING_PARAMS = "missing_params"
    INVALID_STATE = "invalid_state"
    POPUP_BLOCKED = "popup_blocked"
    NETWORK_ERROR = "network_error"


class CalendarSyncError(Exception):
    """Base class for calendar subsystem errors."""


class AuthError(CalendarSyncError):
    """Credentials are missing, expired or were rejected by the provider."""

    def __init__(self, message: str, code: OAuthErrorCode = OAuthErrorCode.INVALID_GRANT):
        super().__init__(message)
        self.message = message
        self.code = code


class ProviderError(CalendarSyncError):
    """Non-2xx response from the calendar provider, with status and body verbatim."""

    def __init__(self, status: int, body: str = "", operation: Optional[str] = None):
        self.status = status
        self.body = body
        self.operation = operation
        prefix = f"{operation} failed" if operation else "Provider request failed"
        super().__init__(f"{prefix}: HTTP {status} {body}".strip())

    @property
    def is_gone(self) -> bool:
        """True for 404/410, which delete paths treat as already deleted."""
        return self.status in (404, 410)


class PartialSyncError(CalendarSyncError):
    """One calendar of a multi-calendar sync failed."""

    def __init__(self, calendar_id: str, message: str):
        super().__init__(f"Calendar {calendar_id}: {message}")
        self.calendar_id = calendar_id
        self.message = message
