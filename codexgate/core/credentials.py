"""Credential adapter: bearer token, base URL and upstream headers."""

from __future__ import annotations

from typing import Mapping, Optional

from .contracts import Credential
from .settings import CodexSettings

CUSTOM_HEADER_PREFIX = "header:"

# Custom headers may not replace auth, body type or conversation correlation
PROTECTED_HEADERS = {"authorization", "content-type", "session_id", "conversation_id"}


def codex_credentials(credential: Optional[Credential]) -> tuple[str, str]:
    """Return ``(token, base_url)``.

    A static ``api_key`` attribute wins; otherwise the OAuth access token
    from metadata is used. ``base_url`` may be empty.
    """
    if credential is None:
        return "", ""
    token = (credential.attributes.get("api_key") or "").strip()
    base_url = (credential.attributes.get("base_url") or "").strip()
    if not token:
        access_token = credential.metadata.get("access_token")
        if isinstance(access_token, str):
            token = access_token.strip()
    return token, base_url


def uses_api_key(credential: Optional[Credential]) -> bool:
    if credential is None:
        return False
    return bool((credential.attributes.get("api_key") or "").strip())


def custom_headers(credential: Optional[Credential]) -> dict[str, str]:
    """Headers configured as ``header:<Name>`` credential attributes."""
    if credential is None:
        return {}
    headers: dict[str, str] = {}
    for key, value in credential.attributes.items():
        if not key.lower().startswith(CUSTOM_HEADER_PREFIX):
            continue
        name = key[len(CUSTOM_HEADER_PREFIX):].strip()
        if name and value is not None:
            headers[name] = str(value)
    return headers


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing spelling of the same name."""
    for existing in [key for key in headers if key.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def _inbound(inbound: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in inbound.items():
        if key.lower() == name.lower() and value:
            return value
    return None


def build_codex_headers(
    credential: Optional[Credential],
    token: str,
    session_id: str,
    settings: CodexSettings,
    inbound: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build headers for one upstream ``/responses`` call."""
    inbound = inbound or {}
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
        "Version": _inbound(inbound, "Version") or settings.version,
        "Openai-Beta": _inbound(inbound, "Openai-Beta") or settings.openai_beta,
        "Session_id": session_id,
        "Conversation_id": session_id,
        "Accept": "text/event-stream",
        "Connection": "Keep-Alive",
    }

    if not uses_api_key(credential):
        headers["Originator"] = settings.originator
        account_id = credential.metadata.get("account_id") if credential else None
        if isinstance(account_id, str) and account_id:
            headers["Chatgpt-Account-Id"] = account_id

    for name, value in custom_headers(credential).items():
        if name.lower() in PROTECTED_HEADERS:
            continue
        _set_header(headers, name, value)
    return headers
