"""Types for the Codex (OpenAI Responses) wire format.

The upstream accepts ``ResponseRequest`` bodies on ``POST {base}/responses``
and always answers with an SSE stream of ``StreamEvent`` records, ending in
``response.completed`` on success.
"""

from typing import Any, Literal, Union
from typing_extensions import TypedDict


Role = Literal["user", "assistant", "system", "developer"]

ReasoningEffort = Literal["minimal", "none", "low", "medium", "high", "xhigh"]
"""Reasoning effort levels understood by Codex models."""


# =============================================================================
# Input Items
# =============================================================================

class InputText(TypedDict):
    type: Literal["input_text"]
    text: str


class OutputText(TypedDict, total=False):
    type: Literal["output_text"]
    text: str
    annotations: list[Any]


class InputImage(TypedDict, total=False):
    type: Literal["input_image"]
    image_url: str
    detail: str


class MessageItem(TypedDict, total=False):
    """A conversational message.

    Attributes:
        type: Always "message".
        role: user, assistant, system or developer.
        content: A plain string or a list of content parts.
    """
    type: Literal["message"]
    id: str
    role: Role
    content: Union[str, list[Union[InputText, OutputText, InputImage]]]
    status: str


class FunctionCallItem(TypedDict, total=False):
    """A tool call issued by the model.

    Attributes:
        call_id: Identifier pairing the call with its output.
        name: Function name.
        arguments: JSON-encoded argument object.
    """
    type: Literal["function_call"]
    id: str
    call_id: str
    name: str
    arguments: str
    status: str


class FunctionCallOutputItem(TypedDict, total=False):
    type: Literal["function_call_output"]
    call_id: str
    output: str


class SummaryText(TypedDict):
    type: Literal["summary_text"]
    text: str


class ReasoningItem(TypedDict, total=False):
    type: Literal["reasoning"]
    id: str
    summary: list[SummaryText]
    encrypted_content: str


InputItem = Union[MessageItem, FunctionCallItem, FunctionCallOutputItem, ReasoningItem]


# =============================================================================
# Request
# =============================================================================

class FunctionTool(TypedDict, total=False):
    type: Literal["function"]
    name: str
    description: str
    parameters: dict[str, Any]
    strict: bool


class ReasoningConfig(TypedDict, total=False):
    effort: ReasoningEffort
    summary: str


class ResponseRequest(TypedDict, total=False):
    """A Codex ``/responses`` request body."""
    model: str
    instructions: str
    input: Union[str, list[InputItem]]
    tools: list[FunctionTool]
    tool_choice: Union[str, dict[str, Any]]
    parallel_tool_calls: bool
    reasoning: ReasoningConfig
    include: list[str]
    store: bool
    stream: bool
    max_output_tokens: int
    prompt_cache_key: str
    previous_response_id: str


# =============================================================================
# Response
# =============================================================================

class InputTokensDetails(TypedDict, total=False):
    cached_tokens: int


class OutputTokensDetails(TypedDict, total=False):
    reasoning_tokens: int


class ResponseUsage(TypedDict, total=False):
    """Token usage carried by the terminal event."""
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_tokens_details: InputTokensDetails
    output_tokens_details: OutputTokensDetails


class IncompleteDetails(TypedDict, total=False):
    reason: str


class ResponseObject(TypedDict, total=False):
    id: str
    object: Literal["response"]
    created_at: int
    status: str
    model: str
    output: list[InputItem]
    usage: ResponseUsage
    incomplete_details: IncompleteDetails | None
    error: dict[str, Any] | None


class StreamEvent(TypedDict, total=False):
    """One upstream SSE ``data:`` payload, discriminated by ``type``."""
    type: str
    sequence_number: int
    response: ResponseObject
    item: InputItem
    item_id: str
    output_index: int
    content_index: int
    summary_index: int
    part: dict[str, Any]
    delta: str
    arguments: str
    message: str
    error: dict[str, Any]


# =============================================================================
# Streaming Event Types
# =============================================================================

EVENT_RESPONSE_CREATED = "response.created"
EVENT_RESPONSE_IN_PROGRESS = "response.in_progress"
EVENT_RESPONSE_COMPLETED = "response.completed"
EVENT_RESPONSE_FAILED = "response.failed"
EVENT_RESPONSE_INCOMPLETE = "response.incomplete"

EVENT_OUTPUT_ITEM_ADDED = "response.output_item.added"
EVENT_OUTPUT_ITEM_DONE = "response.output_item.done"
EVENT_CONTENT_PART_ADDED = "response.content_part.added"
EVENT_CONTENT_PART_DONE = "response.content_part.done"
EVENT_OUTPUT_TEXT_DELTA = "response.output_text.delta"
EVENT_OUTPUT_TEXT_DONE = "response.output_text.done"
EVENT_FUNCTION_CALL_ARGS_DELTA = "response.function_call_arguments.delta"
EVENT_FUNCTION_CALL_ARGS_DONE = "response.function_call_arguments.done"
EVENT_REASONING_SUMMARY_PART_ADDED = "response.reasoning_summary_part.added"
EVENT_REASONING_SUMMARY_TEXT_DELTA = "response.reasoning_summary_text.delta"
EVENT_REASONING_SUMMARY_PART_DONE = "response.reasoning_summary_part.done"
EVENT_ERROR = "error"
