from __future__ import annotations

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised when the gateway is started with an invalid configuration."""


class AuthenticationError(Exception):
    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)
        self.message = message


class SessionStoreError(RuntimeError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UpstreamError(Exception):
    """Base class for failures talking to the provider."""


class UpstreamStatusError(UpstreamError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: Any, path: str) -> None:
        super().__init__(f"upstream returned {status_code} for {path}")
        self.status_code = status_code
        self.body = body
        self.path = path

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class UpstreamUnavailableError(UpstreamError):
    """No usable response: connection failure, timeout, protocol error."""

    def __init__(
        self,
        operation: str,
        path: str,
        error_type: str,
        is_timeout: bool = False,
    ) -> None:
        super().__init__(f"could not {operation} via {path} ({error_type})")
        self.operation = operation
        self.path = path
        self.error_type = error_type
        self.is_timeout = is_timeout
