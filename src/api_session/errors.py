from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Base error for every failure surfaced to callers."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
        error_code: str | None = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.error_code = error_code
        self.is_retryable = is_retryable


class NetworkError(ApiError):
    """No response was received (connection refused, DNS, timeout)."""

    def __init__(self, message: str = "network error", *, timeout: bool = False):
        super().__init__(
            message,
            error_code="TIMEOUT" if timeout else "NETWORK_ERROR",
            is_retryable=True,
        )


class HttpError(ApiError):
    """The server answered with an error status."""

    def __init__(self, message: str, *, status_code: int, body: Any = None, url: str | None = None):
        super().__init__(
            message,
            status_code=status_code,
            body=body,
            error_code="UNAUTHORIZED" if status_code == 401 else None,
            is_retryable=status_code >= 500 or status_code == 429,
        )
        self.url = url

    @classmethod
    def from_response(cls, response) -> "HttpError":
        try:
            body = response.json()
        except ValueError:
            body = response.text
        message = None
        if isinstance(body, dict):
            message = body.get("message")
        if not message:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
        return cls(
            str(message),
            status_code=response.status_code,
            body=body,
            url=str(response.request.url),
        )


class RefreshFailure(ApiError):
    """
    The session could not be renewed; callers should force a new login.

    `original_error` is the 401 that started the refresh cycle (None for a
    proactive refresh). The lower-level cause, when there is one, is chained.
    """

    MISSING_REFRESH_TOKEN = "missing_refresh_token"
    NETWORK = "network"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    MALFORMED = "malformed"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"

    def __init__(
        self,
        message: str = "session expired",
        *,
        reason: str,
        original_error: HttpError | None = None,
        status_code: int | None = None,
    ):
        super().__init__(
            message,
            status_code=status_code,
            error_code="SESSION_EXPIRED",
            is_retryable=False,
        )
        self.reason = reason
        self.original_error = original_error


class MalformedRefreshResponse(ApiError):
    def __init__(self, message: str = "malformed token response"):
        super().__init__(message, error_code="MALFORMED_TOKEN_RESPONSE")


class AuthError(ApiError):
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, status_code=401, error_code="AUTH_FAILED")


def is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.is_retryable
