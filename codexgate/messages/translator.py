"""Claude Messages <-> Codex Responses translation.

This module translates Claude Messages API requests into Codex (OpenAI
Responses) requests, and complete Codex responses back into Claude messages,
enabling Claude clients to drive the Codex backend.

Key mappings:
- Claude system (top-level) -> Codex instructions
- Claude messages -> flattened Codex input items
- Claude tool_use / tool_result -> function_call / function_call_output
- Claude tools (input_schema) -> Codex function tools (parameters)
- Claude thinking budget -> Codex reasoning effort
- Claude max_tokens -> Codex max_output_tokens

Reference:
- Claude Messages API: https://docs.anthropic.com/en/api/messages
- OpenAI Responses API: https://platform.openai.com/docs/api-reference/responses
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Mapping, Optional

from ..core.sse import load_json_object
from ..types.claude import ClaudeError, ClaudeMessage, ClaudeUsage, MessagesRequest
from ..types.codex import ResponseObject, ResponseRequest
from ..types.codex import EVENT_RESPONSE_COMPLETED, EVENT_RESPONSE_INCOMPLETE
from ..usage_metrics import token_count
from .tool_names import build_reverse_name_map, build_short_name_map, shorten_tool_name

logger = logging.getLogger("codexgate")

DISCONNECTED_MESSAGE = "stream disconnected before completion"
REASONING_INCLUDE = "reasoning.encrypted_content"


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def _convert_image_block(block: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a Claude image block to a Codex input_image part.

    Claude format:
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "..."}}
        {"type": "image", "source": {"type": "url", "url": "https://..."}}

    Codex format:
        {"type": "input_image", "image_url": "data:image/png;base64,..."}
    """
    source = block.get("source", {})
    if source.get("type") == "base64":
        media_type = source.get("media_type", "image/png")
        url = f"data:{media_type};base64,{source.get('data', '')}"
    else:
        url = source.get("url", source.get("data", ""))
    return {"type": "input_image", "image_url": url}


def _serialize_tool_input(tool_input: Any) -> str:
    if isinstance(tool_input, str):
        return tool_input
    try:
        return json.dumps(tool_input if tool_input is not None else {}, ensure_ascii=False)
    except (TypeError, ValueError):
        return "{}"


def _tool_result_output(block: Mapping[str, Any]) -> str:
    """Flatten tool_result content into the string Codex expects."""
    content = block.get("content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, Mapping) and part.get("type") == "text":
                texts.append(part.get("text", ""))
            elif isinstance(part, str):
                texts.append(part)
        return "\n".join(texts)
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False)


def _convert_system_to_instructions(system: Any) -> str:
    """Claude system may be a string or a list of text blocks."""
    if isinstance(system, str):
        return system
    if isinstance(system, list):
        parts = [
            block.get("text", "")
            for block in system
            if isinstance(block, Mapping) and block.get("type") == "text"
        ]
        return "\n\n".join(part for part in parts if part)
    return ""


def _convert_message(
    message: Mapping[str, Any],
    short_names: Mapping[str, str],
) -> list[dict[str, Any]]:
    """Convert one Claude message into one or more Codex input items.

    Text and images accumulate into a message item. A tool_use or
    tool_result block flushes the pending message so item order follows
    block order.
    """
    role = message.get("role", "user")
    part_type = "output_text" if role == "assistant" else "input_text"
    content = message.get("content", "")

    if isinstance(content, str):
        return [{
            "type": "message",
            "role": role,
            "content": [{"type": part_type, "text": content}],
        }]

    items: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []

    def flush() -> None:
        if parts:
            items.append({"type": "message", "role": role, "content": list(parts)})
            parts.clear()

    for block in content if isinstance(content, list) else []:
        if not isinstance(block, Mapping):
            continue
        block_type = block.get("type", "")

        if block_type == "text":
            parts.append({"type": part_type, "text": block.get("text", "")})

        elif block_type == "image":
            parts.append(_convert_image_block(block))

        elif block_type == "tool_use":
            flush()
            name = block.get("name", "")
            items.append({
                "type": "function_call",
                "call_id": block.get("id") or f"call_{uuid.uuid4().hex[:24]}",
                "name": short_names.get(name) or shorten_tool_name(name),
                "arguments": _serialize_tool_input(block.get("input", {})),
            })

        elif block_type == "tool_result":
            flush()
            items.append({
                "type": "function_call_output",
                "call_id": block.get("tool_use_id", ""),
                "output": _tool_result_output(block),
            })

        elif block_type in ("thinking", "redacted_thinking"):
            # Reasoning is carried upstream as encrypted content, not text
            logger.debug("Dropping %s block during translation", block_type)

        elif "text" in block:
            parts.append({"type": part_type, "text": block["text"]})

        else:
            logger.debug(f"Dropping unsupported content block type: {block_type}")

    flush()
    return items


def _convert_tools(
    tools: list[Mapping[str, Any]],
    short_names: Mapping[str, str],
) -> list[dict[str, Any]]:
    """Convert Claude tools to Codex function tools.

    Claude format:
        {"name": "get_weather", "description": "...", "input_schema": {...}}

    Codex format:
        {"type": "function", "name": "get_weather", "description": "...", "parameters": {...}}
    """
    converted: list[dict[str, Any]] = []
    for tool in tools:
        if not isinstance(tool, Mapping):
            continue
        tool_type = str(tool.get("type") or "")
        if tool_type.startswith("web_search"):
            converted.append({"type": "web_search"})
            continue
        name = tool.get("name", "")
        parameters = tool.get("input_schema") or {"type": "object", "properties": {}}
        entry: dict[str, Any] = {
            "type": "function",
            "name": short_names.get(name) or shorten_tool_name(name),
            "parameters": dict(parameters),
            "strict": False,
        }
        if tool.get("description"):
            entry["description"] = tool["description"]
        converted.append(entry)
    return converted


def _convert_tool_choice(
    tool_choice: Any,
    short_names: Mapping[str, str],
) -> Optional[Any]:
    """Convert Claude tool_choice to Codex format.

    Claude: {"type": "auto"}, {"type": "any"}, {"type": "none"},
            {"type": "tool", "name": "..."}
    Codex: "auto", "required", "none", {"type": "function", "name": "..."}
    """
    if not isinstance(tool_choice, Mapping):
        return None
    choice_type = tool_choice.get("type")
    if choice_type == "auto":
        return "auto"
    if choice_type == "any":
        return "required"
    if choice_type == "none":
        return "none"
    if choice_type == "tool":
        name = tool_choice.get("name", "")
        return {"type": "function", "name": short_names.get(name) or shorten_tool_name(name)}
    return None


def thinking_to_effort(thinking: Any) -> Optional[str]:
    """Map a Claude thinking config to a Codex reasoning effort."""
    if not isinstance(thinking, Mapping) or thinking.get("type") != "enabled":
        return None
    budget = thinking.get("budget_tokens")
    if not isinstance(budget, int):
        return "medium"
    if budget <= 2048:
        return "low"
    if budget <= 16384:
        return "medium"
    return "high"


def messages_to_responses(
    model: str,
    payload: MessagesRequest,
    stream: bool,
) -> ResponseRequest:
    """Translate a Claude Messages request into a Codex Responses request."""
    short_names = build_short_name_map(
        tool.get("name", "")
        for tool in payload.get("tools") or []
        if isinstance(tool, Mapping)
    )

    input_items: list[dict[str, Any]] = []
    for message in payload.get("messages") or []:
        if isinstance(message, Mapping):
            input_items.extend(_convert_message(message, short_names))

    result: dict[str, Any] = {
        "model": model,
        "instructions": _convert_system_to_instructions(payload.get("system")),
        "input": input_items,
        "stream": stream,
        "store": False,
        "parallel_tool_calls": True,
        "include": [REASONING_INCLUDE],
    }

    tools = payload.get("tools")
    if isinstance(tools, list) and tools:
        result["tools"] = _convert_tools(tools, short_names)

    tool_choice = _convert_tool_choice(payload.get("tool_choice"), short_names)
    if tool_choice is not None:
        result["tool_choice"] = tool_choice
    if isinstance(payload.get("tool_choice"), Mapping) and payload["tool_choice"].get(
        "disable_parallel_tool_use"
    ):
        result["parallel_tool_calls"] = False

    effort = thinking_to_effort(payload.get("thinking"))
    if effort:
        result["reasoning"] = {"effort": effort, "summary": "auto"}

    if isinstance(payload.get("max_tokens"), int):
        result["max_output_tokens"] = payload["max_tokens"]

    for key in ("temperature", "top_p"):
        if payload.get(key) is not None:
            result[key] = payload[key]

    return result


# =============================================================================
# Codex response -> Claude message
# =============================================================================


def _convert_stop_reason(response: Mapping[str, Any], has_tool_call: bool) -> str:
    """Derive the Claude stop_reason for a finished Codex response."""
    if has_tool_call:
        return "tool_use"
    details = response.get("incomplete_details")
    if isinstance(details, Mapping) and details.get("reason") == "max_output_tokens":
        return "max_tokens"
    return "end_turn"


def convert_usage(usage: Any) -> ClaudeUsage:
    """Convert Codex usage to Claude usage.

    Claude reports input tokens net of prompt-cache reads.
    """
    if not isinstance(usage, Mapping):
        return {"input_tokens": 0, "output_tokens": 0}
    input_tokens = token_count(usage.get("input_tokens"))
    output_tokens = token_count(usage.get("output_tokens"))
    details = usage.get("input_tokens_details")
    cached = token_count(details.get("cached_tokens")) if isinstance(details, Mapping) else 0
    result = {
        "input_tokens": max(input_tokens - cached, 0),
        "output_tokens": output_tokens,
    }
    if cached > 0:
        result["cache_read_input_tokens"] = cached
    return result


def _parse_arguments(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (json.JSONDecodeError, TypeError):
        return {"raw": arguments}
    return parsed if isinstance(parsed, dict) else {"raw": arguments}


def response_to_message(
    model: str,
    response: ResponseObject,
    reverse_names: Optional[Mapping[str, str]] = None,
) -> ClaudeMessage:
    """Convert a complete Codex response object to a Claude message.

    Codex output items:
        [{"type": "reasoning", "summary": [...]},
         {"type": "message", "content": [{"type": "output_text", "text": "..."}]},
         {"type": "function_call", "call_id": "...", "name": "...", "arguments": "..."}]

    Claude content:
        [{"type": "thinking", ...}, {"type": "text", ...}, {"type": "tool_use", ...}]
    """
    reverse_names = reverse_names or {}
    content: list[dict[str, Any]] = []
    has_tool_call = False

    for item in response.get("output") or []:
        if not isinstance(item, Mapping):
            continue
        item_type = item.get("type")

        if item_type == "reasoning":
            summary = item.get("summary") or []
            text = "".join(
                part.get("text", "") for part in summary if isinstance(part, Mapping)
            )
            if text:
                content.append({"type": "thinking", "thinking": text, "signature": ""})

        elif item_type == "message":
            for part in item.get("content") or []:
                if not isinstance(part, Mapping):
                    continue
                if part.get("type") in ("output_text", "input_text"):
                    content.append({"type": "text", "text": part.get("text", "")})
                elif part.get("type") == "refusal":
                    content.append({"type": "text", "text": part.get("refusal", "")})

        elif item_type == "function_call":
            has_tool_call = True
            name = item.get("name", "")
            content.append({
                "type": "tool_use",
                "id": item.get("call_id") or item.get("id") or f"toolu_{uuid.uuid4().hex[:24]}",
                "name": reverse_names.get(name, name),
                "input": _parse_arguments(item.get("arguments")),
            })

    return {
        "id": response.get("id") or generate_message_id(),
        "type": "message",
        "role": "assistant",
        "model": response.get("model") or model,
        "content": content,
        "stop_reason": _convert_stop_reason(response, has_tool_call),
        "stop_sequence": None,
        "usage": convert_usage(response.get("usage")),
    }


def build_error(message: str) -> ClaudeError:
    return {"type": "error", "message": message}


def _error_message(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the message of an error-shaped object, or None."""
    error = payload.get("error")
    if payload.get("type") == "error":
        if isinstance(payload.get("message"), str):
            return payload["message"]
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        return "upstream error"
    if isinstance(error, Mapping):
        return str(error.get("message") or error.get("type") or "upstream error")
    return None


def codex_body_to_message(
    model: str,
    body: bytes | str,
    original_request: Any = None,
) -> dict[str, Any]:
    """Translate one complete upstream JSON object into a Claude body.

    Accepts a ``response.completed`` event, a bare response object, or an
    error-shaped object. Anything else, including unparsable text, becomes
    ``{"type": "error", "message": ...}``.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return build_error(text.strip() or DISCONNECTED_MESSAGE)
    if not isinstance(payload, Mapping):
        return build_error(text.strip())

    message = _error_message(payload)
    if message is not None:
        return build_error(message)

    event_type = payload.get("type")
    if event_type in (EVENT_RESPONSE_COMPLETED, EVENT_RESPONSE_INCOMPLETE):
        response = payload.get("response")
    elif payload.get("object") == "response" or "output" in payload:
        response = payload
    else:
        logger.warning(f"Unexpected upstream body type for non-stream translation: {event_type}")
        return build_error(DISCONNECTED_MESSAGE)

    if not isinstance(response, Mapping):
        return build_error(DISCONNECTED_MESSAGE)
    reverse_names = build_reverse_name_map(load_json_object(original_request))
    return response_to_message(model, response, reverse_names)
