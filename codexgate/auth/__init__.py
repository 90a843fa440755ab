"""Credential refresh for the Codex upstream."""

from .codex import CodexAuth, CodexTokenData, decode_jwt_claims, extract_chatgpt_account_id

__all__ = ["CodexAuth", "CodexTokenData", "decode_jwt_claims", "extract_chatgpt_account_id"]
