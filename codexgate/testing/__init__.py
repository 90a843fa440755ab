"""Testing utilities for in-process Codex upstream simulations."""

from .fake_upstream import FakeCodexUpstream, StreamError, UpstreamResponse
from .response_builders import (
    build_claude_request,
    build_codex_response,
    build_codex_stream_events,
    build_codex_usage,
    build_responses_request,
    encode_codex_events,
)

__all__ = [
    "FakeCodexUpstream",
    "StreamError",
    "UpstreamResponse",
    "build_claude_request",
    "build_codex_response",
    "build_codex_stream_events",
    "build_codex_usage",
    "build_responses_request",
    "encode_codex_events",
]
