"""Core exceptions for the proxy."""

from typing import Any, Optional


class ProxyError(Exception):
    """Base exception for proxy errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UpstreamError(ProxyError):
    """The NIM backend failed or answered with an error status.

    ``status_code`` is the upstream HTTP status when one was received, or the
    status the proxy reports for a transport failure.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        body: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code


def error_envelope(message: str, code: Any, error_type: str = "invalid_request_error") -> dict:
    """Build the OpenAI-style error body returned to callers."""
    return {
        "error": {
            "message": message,
            "type": error_type,
            "code": code,
        }
    }
