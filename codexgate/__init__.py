"""codexgate - Claude Messages gateway for the Codex Responses upstream

Lets a client speaking the Claude Messages API drive the ChatGPT Codex
backend, translating requests, buffered replies and SSE streams in both
directions.

This module provides:
- CodexExecutor: one-shot, streaming, token counting and credential refresh
- Format translation registry (claude <-> codex)
- Conversation cache for upstream prompt caching
- YAML configuration with .env substitution

Example:
    >>> from codexgate import CodexExecutor, Credential, Request, load_settings
    >>> executor = CodexExecutor(load_settings())
    >>> response = await executor.execute(credential, Request(model, payload))
"""

from .config_loader import load_config, load_settings
from .core import (
    Credential,
    CredentialRefreshError,
    GatewayError,
    GatewaySettings,
    Options,
    Request,
    Response,
    StreamChunk,
    UpstreamTransportError,
)
from .core.executor import ChunkStream, CodexExecutor
from .logging import logger, setup_logging
from .translation import (
    FORMAT_CLAUDE,
    FORMAT_CODEX,
    translate_non_stream,
    translate_request,
    translate_stream,
)

__all__ = [
    "ChunkStream",
    "CodexExecutor",
    "Credential",
    "CredentialRefreshError",
    "FORMAT_CLAUDE",
    "FORMAT_CODEX",
    "GatewayError",
    "GatewaySettings",
    "Options",
    "Request",
    "Response",
    "StreamChunk",
    "UpstreamTransportError",
    "load_config",
    "load_settings",
    "logger",
    "setup_logging",
    "translate_non_stream",
    "translate_request",
    "translate_stream",
]
