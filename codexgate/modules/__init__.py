"""Upstream payload normalization and model alias resolution."""

from .model_aliases import ModelAliasTable, ResolvedModel, parse_thinking_suffix
from .request_normalizer import NormalizationContext, RequestNormalizer, build_request_normalizer

__all__ = [
    "ModelAliasTable",
    "NormalizationContext",
    "RequestNormalizer",
    "ResolvedModel",
    "build_request_normalizer",
    "parse_thinking_suffix",
]
