"""Error taxonomy shared by the schema adapter, the cloud sync client and the proxy.

Every network-facing failure resolves to exactly one of these kinds:

- ``InvalidCredential``: provider token rejected, the user must re-enter it
- ``SessionExpired``: backend session stale and refresh failed, re-authenticate
- ``NetworkError``: transport failure or timeout, safe to retry manually
- ``SyncFailed``: the server rejected the call for another reason
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    SESSION_EXPIRED = "session_expired"
    NETWORK_ERROR = "network_error"
    SYNC_FAILED = "sync_failed"


INVALID_TOKEN_MESSAGE = "Invalid token. Please check your integration token."
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign out and sign in again."

# Detail the proxy answers with when the session bearer itself is rejected
SESSION_UNAUTHORIZED_DETAIL = "Unauthorized"


class LinkaError(Exception):
    """Base error with structured context for callers that render toasts/banners."""

    code: ErrorCode = ErrorCode.SYNC_FAILED
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details or {}

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.code.value} ({self.status}): {self.message}"
        return f"{self.code.value}: {self.message}"


class InvalidCredential(LinkaError):
    code = ErrorCode.INVALID_CREDENTIAL

    def __init__(self, message: str = INVALID_TOKEN_MESSAGE, **kwargs: Any) -> None:
        kwargs.setdefault("status", 401)
        super().__init__(message, **kwargs)


class SessionExpired(LinkaError):
    code = ErrorCode.SESSION_EXPIRED

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE, **kwargs: Any) -> None:
        kwargs.setdefault("status", 401)
        super().__init__(message, **kwargs)


class NetworkError(LinkaError):
    code = ErrorCode.NETWORK_ERROR
    retryable = True


class SyncFailed(LinkaError):
    code = ErrorCode.SYNC_FAILED

    @classmethod
    def from_response(cls, status: int, body: str, prefix: str = "Sync failed") -> "SyncFailed":
        return cls(f"{prefix} ({status}): {body}", status=status, details={"body": body})
