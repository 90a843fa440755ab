"""Core exceptions for the gateway."""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UpstreamTransportError(GatewayError):
    """The upstream could not be reached or its body could not be read."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class StreamLineTooLongError(GatewayError):
    """A single upstream SSE line exceeded the configured size allowance."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"upstream line exceeds {limit} bytes")
        self.limit = limit


class CredentialRefreshError(GatewayError):
    """Raised when every token refresh attempt failed."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class ConfigurationError(GatewayError):
    """Raised when there's an issue with the configuration."""
    pass
