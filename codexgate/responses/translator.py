"""Codex Responses -> Claude Messages request translation.

Lets a Responses-speaking client be served through the Claude wire format.

Key mappings:
- Codex instructions and system/developer input messages -> Claude system
- Codex input items -> alternating Claude messages
- function_call / function_call_output -> tool_use / tool_result blocks
- Codex function tools (parameters) -> Claude tools (input_schema)
- Codex reasoning.effort -> Claude thinking budget
- Codex max_output_tokens -> Claude max_tokens
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from ..types.claude import MessagesRequest
from ..types.codex import ResponseRequest

logger = logging.getLogger("codexgate")

DEFAULT_MAX_TOKENS = 32000
MIN_THINKING_BUDGET = 1024

EFFORT_BUDGETS = {
    "low": 4096,
    "medium": 8192,
    "high": 16384,
    "xhigh": 32768,
}


def _content_to_blocks(content: Any, role: str) -> list[dict[str, Any]]:
    """Convert Codex message content to Claude content blocks."""
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    blocks: list[dict[str, Any]] = []
    for part in content if isinstance(content, list) else []:
        if not isinstance(part, Mapping):
            continue
        part_type = part.get("type")
        if part_type in ("input_text", "output_text", "text"):
            blocks.append({"type": "text", "text": part.get("text", "")})
        elif part_type == "refusal":
            blocks.append({"type": "text", "text": part.get("refusal", "")})
        elif part_type == "input_image":
            image = _convert_image(part)
            if image is not None:
                blocks.append(image)
        else:
            logger.debug(f"Dropping unsupported {role} content part type: {part_type}")
    return blocks


def _convert_image(part: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    """Convert a Codex input_image part to a Claude image block.

    Codex format:
        {"type": "input_image", "image_url": "data:image/png;base64,..."}

    Claude format:
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "..."}}
    """
    url = part.get("image_url")
    if isinstance(url, Mapping):
        url = url.get("url")
    if not isinstance(url, str) or not url:
        return None
    if url.startswith("data:") and ";base64," in url:
        header, data = url.split(";base64,", 1)
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": header[len("data:"):] or "image/png",
                "data": data,
            },
        }
    return {"type": "image", "source": {"type": "url", "url": url}}


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


def _append_blocks(
    messages: list[dict[str, Any]], role: str, blocks: list[dict[str, Any]]
) -> None:
    """Append blocks, merging into the previous message when roles match."""
    if not blocks:
        return
    if messages and messages[-1]["role"] == role:
        previous = messages[-1]
        if isinstance(previous["content"], str):
            previous["content"] = [{"type": "text", "text": previous["content"]}]
        previous["content"].extend(blocks)
        return
    messages.append({"role": role, "content": list(blocks)})


def _simplify(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Collapse single text blocks to plain strings."""
    for message in messages:
        content = message["content"]
        if (
            isinstance(content, list)
            and len(content) == 1
            and content[0].get("type") == "text"
        ):
            message["content"] = content[0]["text"]
    return messages


def _convert_tools(tools: list[Any]) -> list[dict[str, Any]]:
    """Convert Codex function tools to Claude tools.

    Codex format:
        {"type": "function", "name": "get_weather", "parameters": {...}}

    Claude format:
        {"name": "get_weather", "input_schema": {...}}
    """
    converted: list[dict[str, Any]] = []
    for tool in tools:
        if not isinstance(tool, Mapping):
            continue
        tool_type = tool.get("type", "function")
        if tool_type == "web_search" or tool_type == "web_search_preview":
            converted.append({"type": "web_search_20250305", "name": "web_search"})
            continue
        if tool_type != "function":
            logger.debug(f"Dropping unsupported tool type: {tool_type}")
            continue
        entry: dict[str, Any] = {
            "name": tool.get("name", ""),
            "input_schema": tool.get("parameters") or {"type": "object", "properties": {}},
        }
        if tool.get("description"):
            entry["description"] = tool["description"]
        converted.append(entry)
    return converted


def _convert_tool_choice(tool_choice: Any) -> Optional[dict[str, Any]]:
    if tool_choice == "auto":
        return {"type": "auto"}
    if tool_choice == "required":
        return {"type": "any"}
    if tool_choice == "none":
        return {"type": "none"}
    if isinstance(tool_choice, Mapping) and tool_choice.get("type") == "function":
        return {"type": "tool", "name": tool_choice.get("name", "")}
    return None


def effort_to_thinking(effort: Any, max_tokens: int) -> Optional[dict[str, Any]]:
    """Map a Codex reasoning effort onto a Claude thinking config.

    Returns None when the effort disables reasoning or the token budget is
    too small to hold the minimum thinking budget.
    """
    budget = EFFORT_BUDGETS.get(str(effort).lower()) if effort else None
    if budget is None:
        return None
    if budget >= max_tokens:
        budget = max_tokens - 1
    if budget < MIN_THINKING_BUDGET:
        return None
    return {"type": "enabled", "budget_tokens": budget}


def responses_to_messages(
    model: str,
    payload: ResponseRequest,
    stream: bool,
) -> MessagesRequest:
    """Translate a Codex Responses request into a Claude Messages request."""
    max_tokens = payload.get("max_output_tokens")
    if not isinstance(max_tokens, int) or max_tokens <= 0:
        max_tokens = DEFAULT_MAX_TOKENS

    system_parts: list[str] = []
    instructions = payload.get("instructions")
    if isinstance(instructions, str) and instructions:
        system_parts.append(instructions)

    messages: list[dict[str, Any]] = []
    raw_input = payload.get("input")
    if isinstance(raw_input, str):
        _append_blocks(messages, "user", [{"type": "text", "text": raw_input}])
        raw_input = []

    for item in raw_input or []:
        if not isinstance(item, Mapping):
            continue
        item_type = item.get("type") or ("message" if "role" in item else None)

        if item_type == "message":
            role = item.get("role", "user")
            if role in ("system", "developer"):
                text = "".join(
                    block["text"] for block in _content_to_blocks(item.get("content"), role)
                    if block.get("type") == "text"
                )
                if text:
                    system_parts.append(text)
                continue
            role = "assistant" if role == "assistant" else "user"
            _append_blocks(messages, role, _content_to_blocks(item.get("content"), role))

        elif item_type == "function_call":
            _append_blocks(messages, "assistant", [{
                "type": "tool_use",
                "id": item.get("call_id") or item.get("id", ""),
                "name": item.get("name", ""),
                "input": _parse_arguments(item.get("arguments")),
            }])

        elif item_type == "function_call_output":
            output = item.get("output", "")
            if not isinstance(output, str):
                output = json.dumps(output, ensure_ascii=False)
            _append_blocks(messages, "user", [{
                "type": "tool_result",
                "tool_use_id": item.get("call_id", ""),
                "content": output,
            }])

        elif item_type == "reasoning":
            # Encrypted reasoning cannot be replayed to Claude
            continue

        else:
            logger.debug(f"Dropping unsupported input item type: {item_type}")

    result: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": _simplify(messages),
        "stream": stream,
    }

    if system_parts:
        result["system"] = "\n\n".join(system_parts)

    tools = payload.get("tools")
    if isinstance(tools, list) and tools:
        converted = _convert_tools(tools)
        if converted:
            result["tools"] = converted

    tool_choice = _convert_tool_choice(payload.get("tool_choice"))
    if tool_choice is not None:
        if payload.get("parallel_tool_calls") is False and tool_choice["type"] != "none":
            tool_choice["disable_parallel_tool_use"] = True
        result["tool_choice"] = tool_choice

    reasoning = payload.get("reasoning")
    if isinstance(reasoning, Mapping):
        thinking = effort_to_thinking(reasoning.get("effort"), max_tokens)
        if thinking is not None:
            result["thinking"] = thinking

    for key in ("temperature", "top_p"):
        if payload.get(key) is not None:
            result[key] = payload[key]

    user = payload.get("user")
    if isinstance(user, str) and user:
        result["metadata"] = {"user_id": user}

    return result
