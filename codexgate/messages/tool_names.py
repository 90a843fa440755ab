"""Tool name shortening for the Codex upstream.

Codex rejects function names longer than 64 characters, while Claude
clients (MCP servers in particular) routinely send longer ones. Names are
shortened deterministically per request, and a reverse map built from the
same tool list restores the client's names in responses.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

MAX_TOOL_NAME_LENGTH = 64
MCP_PREFIX = "mcp__"


def shorten_tool_name(name: str) -> str:
    """Shorten one name, keeping the ``mcp__`` prefix and the last segment."""
    if len(name) <= MAX_TOOL_NAME_LENGTH:
        return name
    if name.startswith(MCP_PREFIX):
        idx = name.rfind("__")
        if idx > 0:
            candidate = MCP_PREFIX + name[idx + 2:]
            return candidate[:MAX_TOOL_NAME_LENGTH]
    return name[:MAX_TOOL_NAME_LENGTH]


def build_short_name_map(names: Iterable[str]) -> dict[str, str]:
    """Map each original name to a unique short name.

    Collisions after shortening get a ``~N`` suffix, trimmed so the result
    still fits the limit.
    """
    used: set[str] = set()
    mapping: dict[str, str] = {}
    for name in names:
        if not name or name in mapping:
            continue
        candidate = shorten_tool_name(name)
        if candidate in used:
            counter = 1
            while True:
                suffix = f"~{counter}"
                allowed = MAX_TOOL_NAME_LENGTH - len(suffix)
                trial = candidate[:max(allowed, 0)] + suffix
                if trial not in used:
                    candidate = trial
                    break
                counter += 1
        used.add(candidate)
        mapping[name] = candidate
    return mapping


def collect_claude_tool_names(request: Optional[Mapping[str, Any]]) -> list[str]:
    """Names declared in a Claude request's ``tools`` array, in order."""
    if not isinstance(request, Mapping):
        return []
    tools = request.get("tools")
    if not isinstance(tools, list):
        return []
    names: list[str] = []
    for tool in tools:
        if isinstance(tool, Mapping):
            name = tool.get("name")
            if isinstance(name, str) and name:
                names.append(name)
    return names


def build_reverse_name_map(request: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Map short names back to the names the client sent."""
    forward = build_short_name_map(collect_claude_tool_names(request))
    return {short: original for original, short in forward.items()}


def restore_tool_name(name: str, reverse_map: Mapping[str, str]) -> str:
    return reverse_map.get(name, name)
