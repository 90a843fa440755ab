"""Token estimation for the token-count endpoint.

The Codex upstream has no counting endpoint, so counts are estimated
locally with tiktoken.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import tiktoken

logger = logging.getLogger("codexgate")

FALLBACK_ENCODINGS = ("o200k_base", "cl100k_base")


@lru_cache(maxsize=32)
def _tiktoken_for_model(model: str) -> Optional[tiktoken.Encoding]:
    """Best-effort encoding for a model; None if no encoding can be loaded."""
    name = (model or "").split("/", 1)[-1]
    try:
        return tiktoken.encoding_for_model(name)
    except Exception as exc:
        logger.debug(f"No tiktoken mapping for model '{name}': {exc}")
    for encoding in FALLBACK_ENCODINGS:
        try:
            return tiktoken.get_encoding(encoding)
        except Exception as exc:
            # Encodings are fetched on first use and may be unreachable
            logger.debug(f"tiktoken encoding '{encoding}' unavailable: {exc}")
    logger.warning(f"No tiktoken encoding available for model '{model}'; using length heuristic")
    return None


def estimate_tokens_for_model(model: str, content: bytes | str) -> int:
    """Estimate the token count of a request body.

    Deterministic for identical ``(model, content)``. Empty content is 0.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    if not text:
        return 0
    encoding = _tiktoken_for_model(model)
    if encoding is None:
        return len(text) // 4
    return len(encoding.encode(text, disallowed_special=()))
