"""Codex Responses API request translation."""

from .translator import effort_to_thinking, responses_to_messages

__all__ = ["effort_to_thinking", "responses_to_messages"]
