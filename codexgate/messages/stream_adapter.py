"""Stream translation from Codex Responses SSE to Claude Messages SSE.

Each upstream line is translated independently against a per-stream
``ClaudeStreamState``, so the executor can forward records as soon as the
line that produced them is read.

Codex Responses Events:
    data: {"type":"response.created","response":{...}}
    data: {"type":"response.content_part.added","part":{"type":"output_text"}}
    data: {"type":"response.output_text.delta","delta":"Hello"}
    data: {"type":"response.function_call_arguments.delta","item_id":"fc_1","delta":"{\\"a\\""}
    data: {"type":"response.completed","response":{"usage":{...}}}

Claude Messages Events:
    event: message_start
    data: {"type":"message_start","message":{...}}

    event: content_block_start
    data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hello"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{...}}

    event: message_stop
    data: {"type":"message_stop"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Optional

from ..core.sse import format_sse_event, load_json_object, parse_data_line
from ..types import claude as claude_events
from ..types import codex as codex_events
from .tool_names import build_reverse_name_map
from .translator import _convert_stop_reason, convert_usage, generate_message_id

logger = logging.getLogger("codexgate")


class BlockKind(str, Enum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"


@dataclass
class PendingToolCall:
    """Function call whose arguments are still arriving."""

    item_id: str
    call_id: str
    name: str
    arguments: list[str] = field(default_factory=list)
    emitted: bool = False

    @property
    def joined_arguments(self) -> str:
        return "".join(self.arguments)


@dataclass
class ClaudeStreamState:
    """Per-stream translation state. Owned by exactly one stream.

    Attributes:
        block_index: Index of the open block, or of the next block to open.
        open_block: Kind of the currently open block, if any.
        message_started: Whether message_start has been emitted.
        finished: Whether message_stop (or a terminal error) has been emitted.
        has_tool_call: Whether any tool_use block was produced.
        tool_calls: Pending function calls keyed by upstream item id.
        sequence_number: Count of records emitted so far.
        tool_names: Short-to-original tool name map, built on first use.
    """

    block_index: int = 0
    open_block: Optional[BlockKind] = None
    message_started: bool = False
    finished: bool = False
    has_tool_call: bool = False
    tool_calls: dict[str, PendingToolCall] = field(default_factory=dict)
    sequence_number: int = 0
    tool_names: Optional[dict[str, str]] = None


def _emit(state: ClaudeStreamState, event_type: str, data: dict[str, Any]) -> bytes:
    state.sequence_number += 1
    return format_sse_event(event_type, data)


def _emit_message_start(
    state: ClaudeStreamState, model: str, response: Mapping[str, Any]
) -> bytes:
    state.message_started = True
    usage = convert_usage(response.get("usage"))
    return _emit(state, claude_events.EVENT_MESSAGE_START, {
        "type": "message_start",
        "message": {
            "id": response.get("id") or generate_message_id(),
            "type": "message",
            "role": "assistant",
            "model": response.get("model") or model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": usage,
        },
    })


def _emit_block_start(
    state: ClaudeStreamState, kind: BlockKind, content_block: dict[str, Any]
) -> list[bytes]:
    records = _close_open_block(state)
    state.open_block = kind
    records.append(_emit(state, claude_events.EVENT_CONTENT_BLOCK_START, {
        "type": "content_block_start",
        "index": state.block_index,
        "content_block": content_block,
    }))
    return records


def _emit_block_delta(state: ClaudeStreamState, delta: dict[str, Any]) -> bytes:
    return _emit(state, claude_events.EVENT_CONTENT_BLOCK_DELTA, {
        "type": "content_block_delta",
        "index": state.block_index,
        "delta": delta,
    })


def _emit_block_stop(state: ClaudeStreamState) -> bytes:
    record = _emit(state, claude_events.EVENT_CONTENT_BLOCK_STOP, {
        "type": "content_block_stop",
        "index": state.block_index,
    })
    state.block_index += 1
    state.open_block = None
    return record


def _close_open_block(state: ClaudeStreamState) -> list[bytes]:
    if state.open_block is None:
        return []
    return [_emit_block_stop(state)]


def _emit_tool_call(state: ClaudeStreamState, call: PendingToolCall) -> list[bytes]:
    """Emit one fully assembled tool_use block (start, input, stop)."""
    call.emitted = True
    state.has_tool_call = True
    records = _emit_block_start(state, BlockKind.TOOL_USE, {
        "type": "tool_use",
        "id": call.call_id,
        "name": (state.tool_names or {}).get(call.name, call.name),
        "input": {},
    })
    arguments = call.joined_arguments
    if arguments:
        records.append(_emit_block_delta(state, {
            "type": "input_json_delta",
            "partial_json": arguments,
        }))
    records.append(_emit_block_stop(state))
    return records


def _pending_call(state: ClaudeStreamState, event: Mapping[str, Any]) -> PendingToolCall:
    """Find the pending call an event refers to, tolerating a missing added event."""
    item = event.get("item") if isinstance(event.get("item"), Mapping) else {}
    item_id = event.get("item_id") or item.get("id") or item.get("call_id") or ""
    call = state.tool_calls.get(item_id)
    if call is None:
        call = PendingToolCall(
            item_id=item_id,
            call_id=item.get("call_id") or item_id,
            name=item.get("name", ""),
        )
        state.tool_calls[item_id] = call
    return call


def _handle_terminal(
    state: ClaudeStreamState, event: Mapping[str, Any]
) -> list[bytes]:
    records: list[bytes] = []
    for call in state.tool_calls.values():
        if not call.emitted:
            records.extend(_emit_tool_call(state, call))

    response = event.get("response") if isinstance(event.get("response"), Mapping) else {}
    records.append(_emit(state, claude_events.EVENT_MESSAGE_DELTA, {
        "type": "message_delta",
        "delta": {
            "stop_reason": _convert_stop_reason(response, state.has_tool_call),
            "stop_sequence": None,
        },
        "usage": convert_usage(response.get("usage")),
    }))
    records.append(_emit(state, claude_events.EVENT_MESSAGE_STOP, {"type": "message_stop"}))
    state.finished = True
    return records


def _handle_error(state: ClaudeStreamState, event: Mapping[str, Any]) -> list[bytes]:
    message = event.get("message")
    if not message:
        error = event.get("error")
        response = event.get("response")
        if not isinstance(error, Mapping) and isinstance(response, Mapping):
            error = response.get("error")
        if isinstance(error, Mapping):
            message = error.get("message") or error.get("code")
    state.finished = True
    return [_emit(state, claude_events.EVENT_ERROR, {
        "type": "error",
        "message": str(message or "upstream error"),
    })]


def translate_codex_event(
    model: str,
    event: codex_events.StreamEvent,
    state: ClaudeStreamState,
) -> list[bytes]:
    """Translate one parsed upstream event into zero or more Claude records."""
    event_type = event.get("type")

    if event_type == codex_events.EVENT_RESPONSE_CREATED:
        if state.message_started:
            return []
        response = event.get("response")
        return [_emit_message_start(state, model, response if isinstance(response, Mapping) else {})]

    if event_type == codex_events.EVENT_CONTENT_PART_ADDED:
        part = event.get("part")
        part_type = part.get("type") if isinstance(part, Mapping) else None
        if part_type not in (None, "output_text", "refusal"):
            return []
        return _emit_block_start(state, BlockKind.TEXT, {"type": "text", "text": ""})

    if event_type == codex_events.EVENT_OUTPUT_TEXT_DELTA:
        delta = event.get("delta")
        if not isinstance(delta, str):
            return []
        if state.open_block is None:
            state.open_block = BlockKind.TEXT
        return [_emit_block_delta(state, {"type": "text_delta", "text": delta})]

    if event_type in (
        codex_events.EVENT_CONTENT_PART_DONE,
        codex_events.EVENT_REASONING_SUMMARY_PART_DONE,
    ):
        return _close_open_block(state)

    if event_type == codex_events.EVENT_REASONING_SUMMARY_PART_ADDED:
        return _emit_block_start(
            state, BlockKind.THINKING, {"type": "thinking", "thinking": ""}
        )

    if event_type == codex_events.EVENT_REASONING_SUMMARY_TEXT_DELTA:
        delta = event.get("delta")
        if not isinstance(delta, str):
            return []
        if state.open_block is None:
            state.open_block = BlockKind.THINKING
        return [_emit_block_delta(state, {"type": "thinking_delta", "thinking": delta})]

    if event_type == codex_events.EVENT_OUTPUT_ITEM_ADDED:
        item = event.get("item")
        if isinstance(item, Mapping) and item.get("type") == "function_call":
            _pending_call(state, event)
        return []

    if event_type == codex_events.EVENT_FUNCTION_CALL_ARGS_DELTA:
        delta = event.get("delta")
        call = _pending_call(state, event)
        if isinstance(delta, str) and not call.emitted:
            call.arguments.append(delta)
        return []

    if event_type == codex_events.EVENT_FUNCTION_CALL_ARGS_DONE:
        call = _pending_call(state, event)
        if call.emitted:
            return []
        if isinstance(event.get("arguments"), str):
            call.arguments = [event["arguments"]]
        return _emit_tool_call(state, call)

    if event_type == codex_events.EVENT_OUTPUT_ITEM_DONE:
        item = event.get("item")
        if not isinstance(item, Mapping) or item.get("type") != "function_call":
            return []
        call = _pending_call(state, event)
        if call.emitted:
            return []
        if item.get("name"):
            call.name = item["name"]
        if item.get("call_id"):
            call.call_id = item["call_id"]
        if item.get("arguments"):
            call.arguments = [item["arguments"]]
        return _emit_tool_call(state, call)

    if event_type in (
        codex_events.EVENT_RESPONSE_COMPLETED,
        codex_events.EVENT_RESPONSE_INCOMPLETE,
    ):
        return _handle_terminal(state, event)

    if event_type in (codex_events.EVENT_ERROR, codex_events.EVENT_RESPONSE_FAILED):
        return _handle_error(state, event)

    return []


def translate_codex_line(
    model: str,
    original_request: Any,
    line: bytes | str,
    state: ClaudeStreamState,
) -> list[bytes]:
    """Translate one raw upstream line. Non-data and unknown lines yield nothing."""
    event = parse_data_line(line)
    if event is None:
        return []
    if state.tool_names is None:
        state.tool_names = build_reverse_name_map(load_json_object(original_request))
    return translate_codex_event(model, event, state)


async def adapt_codex_stream_to_messages(
    lines: AsyncIterator[bytes],
    model: str,
    original_request: Optional[Mapping[str, Any]] = None,
) -> AsyncIterator[bytes]:
    """Translate an upstream line stream into Claude SSE records.

    Args:
        lines: Upstream SSE lines without terminators.
        model: Model name reported when the upstream omits one.
        original_request: Client request, used to restore tool names.

    Yields:
        Claude Messages SSE records as bytes.
    """
    state = ClaudeStreamState()
    async for line in lines:
        for record in translate_codex_line(model, original_request, line, state):
            yield record
    if not state.finished:
        logger.warning("Codex stream ended without a terminal event")
