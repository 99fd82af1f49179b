"""
Data-access layer exceptions.

Every failed call surfaces as a RequestError subclass so callers can
tell "try again" apart from "the server said no" and "log in again".
"""

TIMEOUT_MESSAGE = "Request timeout - please try again"
NETWORK_MESSAGE = "Network error - please check your connection"
SESSION_EXPIRED_MESSAGE = "Session is inactive or expired. Please login again."
REFRESH_FAILED_MESSAGE = "Session expired. Please login again."


class RequestError(Exception):
    """Base exception for any failed request."""

    recoverable: bool = False

    def __init__(self, message: str, status: int | None = None):
        self.message = message
        self.status = status
        super().__init__(message)


class RequestTimeoutError(RequestError):
    """Request exceeded the fixed deadline."""

    recoverable = True

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(TIMEOUT_MESSAGE)


class NetworkError(RequestError):
    """Transport-level failure, e.g. unreachable host."""

    recoverable = True

    def __init__(self, message: str = NETWORK_MESSAGE):
        super().__init__(message)


class ApplicationError(RequestError):
    """Non-2xx response carrying the server's own message."""

    pass


class SessionExpiredError(RequestError):
    """The server terminated the session; credentials have been cleared."""

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE, status: int = 401):
        super().__init__(message, status=status)


class RefreshFailedError(SessionExpiredError):
    """Credential renewal failed; treated as session-fatal."""

    def __init__(self, message: str = REFRESH_FAILED_MESSAGE):
        super().__init__(message)
