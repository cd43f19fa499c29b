"""
Exception classes for the NPM to Cloudflare sync service.

All exceptions inherit from SyncError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all sync service errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SyncError):
    """Raised when required settings are missing or invalid."""

    pass


class NetworkError(SyncError):
    """Raised when a request fails at the transport level (refused, timeout)."""

    pass


class ProtocolError(SyncError):
    """Raised when a response cannot be parsed."""

    pass


class APIError(SyncError):
    """Raised when a remote API answers with an error status or payload."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: Optional[dict] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(code, message, details)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class AuthenticationError(APIError):
    """Raised on authentication failures (Cloudflare 530, NPM login)."""

    pass


class AuthorizationError(APIError):
    """Raised when the credentials lack permission (HTTP 403)."""

    pass


class RateLimitError(APIError):
    """Raised when the remote API rate-limits us (HTTP 429)."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 429,
        retry_after: Optional[float] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(code, message, status_code, details)


class ServerError(APIError):
    """Raised on 5xx responses."""

    pass


class PublicIPError(SyncError):
    """Raised when no public IP could be determined."""

    pass


class MonitorHaltedError(SyncError):
    """Raised when the NPM monitor stops itself after repeated failures."""

    pass
