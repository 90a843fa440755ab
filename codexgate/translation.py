"""Translator registry keyed by wire format pair.

Request translators are registered per ``(client format, upstream format)``
pair and response translators per ``(upstream format, client format)``.
Pairs without a registered translator pass payloads through untouched, which
is what happens when client and upstream already speak the same format.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .core.sse import dump_json, load_json_object
from .messages.stream_adapter import ClaudeStreamState, translate_codex_line
from .messages.translator import codex_body_to_message, messages_to_responses
from .responses.translator import responses_to_messages

logger = logging.getLogger("codexgate")

FORMAT_CLAUDE = "claude"
FORMAT_CODEX = "codex"

_FORMAT_ALIASES = {
    "anthropic": FORMAT_CLAUDE,
    "messages": FORMAT_CLAUDE,
    "openai-response": FORMAT_CODEX,
    "openai-responses": FORMAT_CODEX,
    "responses": FORMAT_CODEX,
}

RequestTransform = Callable[[str, dict[str, Any], bool], dict[str, Any]]


@dataclass(frozen=True)
class ResponseTranslator:
    """Response-direction translation for one format pair.

    Attributes:
        non_stream: ``(model, original_request, body) -> dict``.
        stream: ``(model, original_request, line, state) -> list[bytes]``.
        new_state: Factory for the per-stream state object.
    """

    non_stream: Callable[[str, Any, bytes], dict[str, Any]]
    stream: Callable[[str, Any, bytes, Any], list[bytes]]
    new_state: Callable[[], Any]


_REQUEST_TRANSLATORS: dict[tuple[str, str], RequestTransform] = {}
_RESPONSE_TRANSLATORS: dict[tuple[str, str], ResponseTranslator] = {}


def normalize_format(name: str) -> str:
    """Map a format tag or one of its aliases to the canonical tag."""
    key = (name or "").strip().lower()
    return _FORMAT_ALIASES.get(key, key)


def register_request_translator(
    client_format: str, upstream_format: str, transform: RequestTransform
) -> None:
    _REQUEST_TRANSLATORS[(normalize_format(client_format), normalize_format(upstream_format))] = transform


def register_response_translator(
    upstream_format: str, client_format: str, translator: ResponseTranslator
) -> None:
    _RESPONSE_TRANSLATORS[(normalize_format(upstream_format), normalize_format(client_format))] = translator


def _response_translator(upstream_format: str, client_format: str) -> Optional[ResponseTranslator]:
    return _RESPONSE_TRANSLATORS.get(
        (normalize_format(upstream_format), normalize_format(client_format))
    )


def translate_request(
    client_format: str,
    upstream_format: str,
    model: str,
    payload: bytes,
    stream: bool,
) -> bytes:
    """Translate a client request body into the upstream schema."""
    transform = _REQUEST_TRANSLATORS.get(
        (normalize_format(client_format), normalize_format(upstream_format))
    )
    if transform is None:
        return payload
    data = load_json_object(payload)
    if data is None:
        logger.warning("Request payload is not a JSON object; translating an empty request")
        data = {}
    return dump_json(transform(model, data, stream)).encode("utf-8")


def new_stream_state(upstream_format: str, client_format: str) -> Any:
    """Create the state object threaded through ``translate_stream`` calls."""
    translator = _response_translator(upstream_format, client_format)
    if translator is None:
        return None
    return translator.new_state()


def translate_non_stream(
    upstream_format: str,
    client_format: str,
    model: str,
    original_request: Any,
    body: bytes,
) -> bytes:
    """Translate one complete upstream JSON body into one client JSON body."""
    translator = _response_translator(upstream_format, client_format)
    if translator is None:
        return body
    return dump_json(translator.non_stream(model, original_request, body)).encode("utf-8")


def translate_stream(
    upstream_format: str,
    client_format: str,
    model: str,
    original_request: Any,
    line: bytes,
    state: Any,
) -> list[bytes]:
    """Translate one upstream line into zero or more client SSE records."""
    translator = _response_translator(upstream_format, client_format)
    if translator is None:
        return [bytes(line) + b"\n"]
    return translator.stream(model, original_request, line, state)


def translate_token_count(client_format: str, count: int) -> bytes:
    """Token count body in the client's format.

    Claude and Codex clients share the ``{"input_tokens": N}`` shape.
    """
    return json.dumps({"input_tokens": int(count)}, separators=(",", ":")).encode("utf-8")


def _claude_non_stream(model: str, original_request: Any, body: bytes) -> dict[str, Any]:
    return codex_body_to_message(model, body, original_request)


register_request_translator(FORMAT_CLAUDE, FORMAT_CODEX, messages_to_responses)
register_request_translator(FORMAT_CODEX, FORMAT_CLAUDE, responses_to_messages)
register_response_translator(
    FORMAT_CODEX,
    FORMAT_CLAUDE,
    ResponseTranslator(
        non_stream=_claude_non_stream,
        stream=translate_codex_line,
        new_state=ClaudeStreamState,
    ),
)
