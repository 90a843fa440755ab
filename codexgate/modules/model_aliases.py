"""Declarative model alias table for the Codex upstream.

Aliases are plain data: ``alias -> (base model, reasoning effort)``. The
default table covers every known Codex base model combined with every
effort level (``gpt-5.2-xhigh`` -> ``("gpt-5.2", "xhigh")``); config can add
or override entries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

CODEX_BASE_MODELS = (
    "gpt-5",
    "gpt-5-codex",
    "gpt-5-codex-mini",
    "gpt-5.1",
    "gpt-5.1-codex",
    "gpt-5.1-codex-mini",
    "gpt-5.1-codex-max",
    "gpt-5.2",
    "gpt-5.2-codex",
)

REASONING_EFFORTS = ("minimal", "none", "low", "medium", "high", "xhigh")

DEFAULT_CODEX_MODEL = "gpt-5.2"

# Claude family substring -> Codex model (alias allowed)
DEFAULT_CLAUDE_MODEL_MAPPING = {
    "opus": "gpt-5.2-xhigh",
    "sonnet": "gpt-5.2-high",
}

# Request metadata keys carrying values resolved by the caller
METADATA_ORIGINAL_MODEL = "thinking_original_model"
METADATA_REASONING_EFFORT = "reasoning_effort"

_PAREN_SUFFIX = re.compile(r"^(?P<base>[^()]+)\((?P<effort>[A-Za-z]+)\)$")


def _build_default_aliases() -> dict[str, tuple[str, str]]:
    return {
        f"{base}-{effort}": (base, effort)
        for base in CODEX_BASE_MODELS
        for effort in REASONING_EFFORTS
    }


DEFAULT_MODEL_ALIASES = _build_default_aliases()


@dataclass(frozen=True)
class ResolvedModel:
    """Outcome of alias resolution for one request."""

    model: str
    effort: Optional[str] = None
    original: str = ""


def parse_thinking_suffix(model: str) -> tuple[str, Optional[str]]:
    """Split a thinking suffix off a model name.

    Handles ``gpt-5.2-xhigh`` and ``gpt-5.2(xhigh)``. Names outside the
    ``gpt-`` family (``claude-*`` included) only honour the parenthesized
    form.
    """
    match = _PAREN_SUFFIX.match(model.strip())
    if match and match.group("effort").lower() in REASONING_EFFORTS:
        return match.group("base").strip(), match.group("effort").lower()
    lowered = model.lower()
    if lowered.startswith("gpt-"):
        for effort in REASONING_EFFORTS:
            suffix = f"-{effort}"
            if lowered.endswith(suffix) and len(lowered) > len(suffix):
                return model[: -len(suffix)], effort
    return model, None


class ModelAliasTable:
    """Pure lookups over the alias table and Claude model mapping."""

    def __init__(
        self,
        aliases: Optional[Mapping[str, tuple[str, str]]] = None,
        claude_mapping: Optional[Mapping[str, str]] = None,
        default_model: str = DEFAULT_CODEX_MODEL,
    ) -> None:
        self.aliases: dict[str, tuple[str, str]] = dict(DEFAULT_MODEL_ALIASES)
        self.aliases.update({k.lower(): v for k, v in (aliases or {}).items()})
        self.claude_mapping = dict(DEFAULT_CLAUDE_MODEL_MAPPING)
        self.claude_mapping.update({k.lower(): v for k, v in (claude_mapping or {}).items()})
        self.default_model = default_model

    def target_has_model(self, model: str) -> bool:
        """Whether the Codex upstream serves this name (directly or by alias)."""
        lowered = model.lower()
        if lowered in self.aliases or lowered in CODEX_BASE_MODELS:
            return True
        base, effort = parse_thinking_suffix(model)
        return effort is not None and base.lower() in CODEX_BASE_MODELS

    def ensure_model_for_target(self, model: str) -> tuple[str, bool]:
        """Map a model the upstream does not serve onto one it does.

        Returns the model to use and whether it changed.
        """
        if self.target_has_model(model) or model.lower().startswith("gpt-"):
            return model, False
        lowered = model.lower()
        if lowered.startswith("claude"):
            for family, target in self.claude_mapping.items():
                if family in lowered:
                    return target, True
        return self.default_model, True

    def resolve(self, model: str) -> ResolvedModel:
        """Resolve an alias to its base model and reasoning effort."""
        entry = self.aliases.get(model.lower())
        if entry is not None:
            base, effort = entry
            return ResolvedModel(model=base, effort=effort or None, original=model)
        base, effort = parse_thinking_suffix(model)
        return ResolvedModel(model=base, effort=effort, original=model)

    def resolve_for_request(
        self, model: str, metadata: Optional[Mapping[str, Any]] = None
    ) -> ResolvedModel:
        """Resolve once per request, preferring values the caller already resolved."""
        metadata = metadata or {}
        mapped, _ = self.ensure_model_for_target(model)
        resolved = self.resolve(mapped)
        effort = metadata.get(METADATA_REASONING_EFFORT)
        if not (isinstance(effort, str) and effort):
            effort = resolved.effort
        return ResolvedModel(
            model=resolved.model,
            effort=effort.lower() if effort else None,
            original=resolve_original_model(model, metadata),
        )


def resolve_original_model(model: str, metadata: Optional[Mapping[str, Any]] = None) -> str:
    """The model name the client asked for, before any suffix was stripped."""
    if metadata:
        original = metadata.get(METADATA_ORIGINAL_MODEL)
        if isinstance(original, str) and original:
            return original
    return model
