"""Types for the Claude Messages API wire format.

Used on the client side of the gateway: incoming requests are parsed as
``MessagesRequest`` and responses are emitted as ``ClaudeMessage`` or as a
sequence of ``ClaudeStreamEvent`` SSE records.
"""

from typing import Any, Literal, Union
from typing_extensions import TypedDict


StopReason = Literal["end_turn", "max_tokens", "tool_use", "stop_sequence", "refusal"]


class ClaudeContentBlock(TypedDict, total=False):
    """A content block in a Claude message.

    Attributes:
        type: "text", "thinking", "tool_use", "tool_result" or "image".
        text: Text content (for "text" blocks).
        thinking: Thinking content (for "thinking" blocks).
        id: Block identifier (for "tool_use" blocks).
        name: Tool name (for "tool_use" blocks).
        input: Tool arguments (for "tool_use" blocks).
        tool_use_id: Referenced tool call (for "tool_result" blocks).
        content: Result content (for "tool_result" blocks).
        source: Image source (for "image" blocks).
    """
    type: str
    text: str
    thinking: str
    signature: str
    id: str
    name: str
    input: dict[str, Any]
    tool_use_id: str
    content: Union[str, list[dict[str, Any]]]
    is_error: bool
    source: dict[str, Any]


class ClaudeInputMessage(TypedDict, total=False):
    role: Literal["user", "assistant"]
    content: Union[str, list[ClaudeContentBlock]]


class ClaudeTool(TypedDict, total=False):
    name: str
    description: str
    input_schema: dict[str, Any]
    type: str


class ThinkingConfig(TypedDict, total=False):
    type: Literal["enabled", "disabled"]
    budget_tokens: int


class MessagesRequest(TypedDict, total=False):
    """A Claude ``/v1/messages`` request body."""
    model: str
    max_tokens: int
    system: Union[str, list[ClaudeContentBlock]]
    messages: list[ClaudeInputMessage]
    tools: list[ClaudeTool]
    tool_choice: dict[str, Any]
    thinking: ThinkingConfig
    metadata: dict[str, Any]
    stream: bool
    temperature: float
    top_p: float


class ClaudeUsage(TypedDict, total=False):
    """Token usage reported to Claude clients.

    Attributes:
        input_tokens: Uncached input tokens.
        output_tokens: Generated tokens.
        cache_read_input_tokens: Input tokens served from prompt cache.
    """
    input_tokens: int
    output_tokens: int
    cache_read_input_tokens: int


class ClaudeMessage(TypedDict, total=False):
    """A complete (non-streaming) Claude response."""
    id: str
    type: Literal["message"]
    role: Literal["assistant"]
    model: str
    content: list[ClaudeContentBlock]
    stop_reason: StopReason | None
    stop_sequence: str | None
    usage: ClaudeUsage


class ClaudeError(TypedDict):
    """Error body returned to clients in place of a message."""
    type: Literal["error"]
    message: str


class ClaudeStreamEvent(TypedDict, total=False):
    """One Claude SSE record payload; ``type`` matches the ``event:`` name."""
    type: str
    index: int
    message: ClaudeMessage
    content_block: ClaudeContentBlock
    delta: dict[str, Any]
    usage: ClaudeUsage


# Stream event names
EVENT_MESSAGE_START = "message_start"
EVENT_CONTENT_BLOCK_START = "content_block_start"
EVENT_CONTENT_BLOCK_DELTA = "content_block_delta"
EVENT_CONTENT_BLOCK_STOP = "content_block_stop"
EVENT_MESSAGE_DELTA = "message_delta"
EVENT_MESSAGE_STOP = "message_stop"
EVENT_ERROR = "error"
