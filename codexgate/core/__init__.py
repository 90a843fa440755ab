"""Core value types, exceptions and settings.

The executor lives in ``codexgate.core.executor`` and is re-exported from the
top-level package.
"""

from .contracts import Credential, Options, Request, Response, StreamChunk
from .exceptions import (
    ConfigurationError,
    CredentialRefreshError,
    GatewayError,
    StreamLineTooLongError,
    UpstreamTransportError,
)
from .settings import CodexSettings, GatewaySettings, LoggingSettings, OAuthSettings

__all__ = [
    "CodexSettings",
    "ConfigurationError",
    "Credential",
    "CredentialRefreshError",
    "GatewayError",
    "GatewaySettings",
    "LoggingSettings",
    "OAuthSettings",
    "Options",
    "Request",
    "Response",
    "StreamChunk",
    "StreamLineTooLongError",
    "UpstreamTransportError",
]
