"""Wire type definitions for both sides of the gateway."""

from .claude import (
    ClaudeContentBlock,
    ClaudeError,
    ClaudeMessage,
    ClaudeStreamEvent,
    ClaudeUsage,
    MessagesRequest,
)
from .codex import (
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
    ResponseObject,
    ResponseRequest,
    ResponseUsage,
    StreamEvent,
)

__all__ = [
    "ClaudeContentBlock",
    "ClaudeError",
    "ClaudeMessage",
    "ClaudeStreamEvent",
    "ClaudeUsage",
    "FunctionCallItem",
    "FunctionCallOutputItem",
    "MessageItem",
    "MessagesRequest",
    "ResponseObject",
    "ResponseRequest",
    "ResponseUsage",
    "StreamEvent",
]
