"""Claude Messages API translation helpers.

Provides translation between the Claude Messages API format and the Codex
Responses API format, in both request and response direction.
"""

from .translator import codex_body_to_message, messages_to_responses, response_to_message
from .stream_adapter import (
    ClaudeStreamState,
    adapt_codex_stream_to_messages,
    translate_codex_line,
)
from .tool_names import build_reverse_name_map, build_short_name_map, shorten_tool_name

__all__ = [
    "ClaudeStreamState",
    "adapt_codex_stream_to_messages",
    "build_reverse_name_map",
    "build_short_name_map",
    "codex_body_to_message",
    "messages_to_responses",
    "response_to_message",
    "shorten_tool_name",
    "translate_codex_line",
]
