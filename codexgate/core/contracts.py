"""Value types exchanged between callers and the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


@dataclass
class Credential:
    """Opaque auth record owned by the caller.

    ``attributes`` holds static string settings (``api_key``, ``base_url``,
    ``header:<Name>`` custom headers). ``metadata`` holds OAuth state
    (``access_token``, ``refresh_token``, ``account_id``, ``email``,
    ``expired``) and is the only part the executor mutates, during refresh.
    """

    id: str = ""
    provider: str = "codex"
    label: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Request:
    """One client call, already parsed just enough to route it."""

    model: str
    payload: bytes
    format: str = "claude"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Options:
    """Per-call parameters.

    ``original_request`` is used for translation context (tool name maps,
    diagnostics) and is never re-sent upstream. ``headers`` are the inbound
    client headers, consulted for negotiated protocol markers. An empty
    ``source_format`` defers to ``Request.format``.
    """

    source_format: str = ""
    original_request: Optional[bytes] = None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """One-shot executor result. Always client-format bytes."""

    payload: bytes
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamChunk:
    """A complete client-format SSE record or a terminal error."""

    payload: bytes = b""
    error: Optional[BaseException] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
