"""Request module pipeline that prepares translated payloads for Codex."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..core.settings import CodexSettings
from .model_aliases import ModelAliasTable, ResolvedModel

logger = logging.getLogger("codexgate")

REASONING_INCLUDE = "reasoning.encrypted_content"


@dataclass
class NormalizationContext:
    """Per-request inputs shared by every module in the pipeline."""

    model: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    source_format: str = "claude"
    resolved: Optional[ResolvedModel] = None


class RequestModule:
    name = "base"

    def apply_request(
        self, payload: Mapping[str, Any], ctx: NormalizationContext
    ) -> Mapping[str, Any] | None:
        return payload


class ModelResolutionModule(RequestModule):
    """Resolve the requested name to a concrete upstream model id."""

    name = "model_resolution"

    def __init__(self, aliases: ModelAliasTable) -> None:
        self.aliases = aliases

    def apply_request(self, payload, ctx):
        resolved = self.aliases.resolve_for_request(ctx.model, ctx.metadata)
        ctx.resolved = resolved
        if resolved.model != ctx.model:
            logger.debug(f"Resolved model '{ctx.model}' -> '{resolved.model}' (effort={resolved.effort})")
        updated = dict(payload)
        updated["model"] = resolved.model
        return updated


class ReasoningModule(RequestModule):
    """Set ``reasoning`` to the resolved effort with automatic summaries.

    Precedence: resolved alias/metadata effort, then the effort already in
    the payload, then the configured default.
    """

    name = "reasoning"

    def __init__(self, default_effort: str) -> None:
        self.default_effort = default_effort

    def apply_request(self, payload, ctx):
        existing = payload.get("reasoning")
        existing = dict(existing) if isinstance(existing, Mapping) else {}
        effort = None
        if ctx.resolved is not None:
            effort = ctx.resolved.effort
        effort = effort or existing.get("effort") or self.default_effort
        updated = dict(payload)
        updated["reasoning"] = {
            **existing,
            "effort": effort,
            "summary": existing.get("summary") or "auto",
        }
        include = updated.get("include")
        include = list(include) if isinstance(include, (list, tuple)) else []
        if REASONING_INCLUDE not in include:
            include.append(REASONING_INCLUDE)
        updated["include"] = include
        return updated


class RequiredFieldsModule(RequestModule):
    """Fields the upstream insists on, whatever the client asked for."""

    name = "required_fields"

    def apply_request(self, payload, ctx):
        updated = dict(payload)
        # The upstream only answers in SSE; one-shot calls scan for completion
        updated["stream"] = True
        updated["store"] = False
        if not isinstance(updated.get("instructions"), str):
            updated["instructions"] = ""
        return updated


class StripFieldsModule(RequestModule):
    name = "strip_fields"

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = tuple(fields)

    def apply_request(self, payload, ctx):
        updated = dict(payload)
        for key in self.fields:
            updated.pop(key, None)
        return updated


@dataclass
class RequestNormalizer:
    modules: list[RequestModule] = field(default_factory=list)

    def normalize(
        self, payload: Mapping[str, Any], ctx: NormalizationContext
    ) -> dict[str, Any]:
        updated: Mapping[str, Any] = dict(payload)
        for module in self.modules:
            result = module.apply_request(updated, ctx)
            if result is None:
                continue
            if not isinstance(result, Mapping):
                logger.warning(
                    "Request module '%s' returned non-mapping payload; skipping",
                    module.name,
                )
                continue
            updated = dict(result)
        return dict(updated)


def build_request_normalizer(
    settings: Optional[CodexSettings] = None,
    aliases: Optional[ModelAliasTable] = None,
) -> RequestNormalizer:
    """Standard pipeline: resolve model, reasoning, required fields, strip."""
    settings = settings or CodexSettings()
    if aliases is None:
        aliases = ModelAliasTable(settings.model_aliases, settings.model_mapping)
    return RequestNormalizer([
        ModelResolutionModule(aliases),
        ReasoningModule(settings.default_reasoning_effort),
        RequiredFieldsModule(),
        StripFieldsModule(settings.strip_fields),
    ])


__all__ = [
    "ModelResolutionModule",
    "NormalizationContext",
    "ReasoningModule",
    "RequestModule",
    "RequestNormalizer",
    "RequiredFieldsModule",
    "StripFieldsModule",
    "build_request_normalizer",
]
