from __future__ import annotations

from typing import Optional


class ClientError(Exception):
    """Base class for errors raised to callers of the API client.

    Each subclass carries a stable ``error_code`` so UI code can branch on
    the kind of failure without string matching:
    - network_error: server unreachable
    - timeout: request deadline exceeded
    - auth_expired: session could not be refreshed, user must sign in again
    - auth_invalid: credentials rejected
    - api_error: any other non-2xx response
    """

    status_code: Optional[int] = None
    error_code: str = "client_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        # Server-side code from the response body, e.g. INVALID_REFRESH_TOKEN
        self.code = code
        self.detail = detail or {}


class NetworkError(ClientError):
    """Transport or connectivity failure."""
    error_code = "network_error"
    retryable = True


class RequestTimeoutError(NetworkError):
    """Request exceeded its deadline."""
    error_code = "timeout"


class AuthExpiredError(ClientError):
    """Access token expired and the refresh attempt failed."""
    status_code = 401
    error_code = "auth_expired"


class AuthInvalidError(ClientError):
    """Credentials rejected without an expiry code; never refreshed."""
    status_code = 401
    error_code = "auth_invalid"


class ApiError(ClientError):
    """Non-2xx response from the API."""
    error_code = "api_error"


__all__ = [
    "ClientError",
    "NetworkError",
    "RequestTimeoutError",
    "AuthExpiredError",
    "AuthInvalidError",
    "ApiError",
]
