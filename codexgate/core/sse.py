"""SSE (Server-Sent Events) line handling and record formatting."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

from .exceptions import StreamLineTooLongError


DATA_PREFIX = b"data:"
EVENT_PREFIX = b"event:"

# Single SSE records carrying whole responses can be very large
DEFAULT_MAX_LINE_BYTES = 20_971_520


def dump_json(data: Any) -> str:
    """Serialize to the compact JSON used on the wire."""
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def parse_data_line(line: bytes | str) -> Optional[dict[str, Any]]:
    """Return the JSON object carried by a ``data:`` line, or None.

    Blank lines, comments, ``event:`` lines, ``[DONE]`` markers and
    payloads that are not JSON objects all yield None.
    """
    if isinstance(line, str):
        line = line.encode("utf-8")
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    raw = line[len(DATA_PREFIX):].strip()
    if not raw or raw == b"[DONE]":
        return None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def format_sse_event(event_type: str, data: dict[str, Any]) -> bytes:
    """Format one ``event:``/``data:`` record."""
    return f"event: {event_type}\ndata: {dump_json(data)}\n\n".encode("utf-8")


def format_error_event(message: str) -> bytes:
    """Synthetic error record sent when the upstream failed before streaming."""
    return format_sse_event("error", {"type": "error", "message": message})


async def iter_sse_lines(
    chunks: AsyncIterator[bytes],
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> AsyncIterator[bytes]:
    """Split a byte stream into lines without their terminators.

    Empty lines are yielded too, so callers see record boundaries.

    Raises:
        StreamLineTooLongError: a line grew past ``max_line_bytes``.
    """
    buffer = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        buffer.extend(chunk)
        while True:
            newline = buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(buffer[:newline])
            del buffer[: newline + 1]
            if line.endswith(b"\r"):
                line = line[:-1]
            if len(line) > max_line_bytes:
                raise StreamLineTooLongError(max_line_bytes)
            yield line
        if len(buffer) > max_line_bytes:
            raise StreamLineTooLongError(max_line_bytes)
    if buffer:
        tail = bytes(buffer)
        if tail.endswith(b"\r"):
            tail = tail[:-1]
        yield tail


def load_json_object(data: Any) -> Optional[dict[str, Any]]:
    """Return ``data`` as a dict, decoding JSON bytes or text if needed."""
    if data is None:
        return None
    if isinstance(data, dict):
        return data
    if isinstance(data, (bytes, bytearray, str)):
        if not data:
            return None
        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return parsed if isinstance(parsed, dict) else None
    return None
