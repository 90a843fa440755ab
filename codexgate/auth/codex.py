"""OAuth token refresh for ChatGPT-backed Codex credentials."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from ..core.exceptions import CredentialRefreshError
from ..core.settings import OAuthSettings
from ..core.upstream_transport import build_upstream_client, format_httpx_error

logger = logging.getLogger("codexgate")

AUTH_CLAIM = "https://api.openai.com/auth"
REFRESH_SCOPE = "openid profile email"


@dataclass(frozen=True)
class CodexTokenData:
    """Tokens returned by one successful refresh."""

    id_token: str
    access_token: str
    refresh_token: str
    account_id: str
    email: str
    expire: str


def decode_jwt_claims(token: Optional[str]) -> dict[str, Any]:
    """Decode a JWT payload without verifying it. Malformed tokens yield {}."""
    if not token:
        return {}
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    payload_b64 = parts[1]
    padding = "=" * ((4 - len(payload_b64) % 4) % 4)
    try:
        payload_raw = base64.urlsafe_b64decode(payload_b64 + padding)
        payload = json.loads(payload_raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def extract_chatgpt_account_id(claims: dict[str, Any]) -> str:
    auth_claim = claims.get(AUTH_CLAIM)
    if isinstance(auth_claim, dict):
        account_id = auth_claim.get("chatgpt_account_id")
        if isinstance(account_id, str):
            return account_id.strip()
    return ""


class CodexAuth:
    """Exchanges refresh tokens at the OpenAI token endpoint."""

    def __init__(self, settings: Optional[OAuthSettings] = None, connect_timeout: float = 30.0):
        self.settings = settings or OAuthSettings()
        self.connect_timeout = connect_timeout

    async def refresh_tokens(self, refresh_token: str) -> CodexTokenData:
        """One refresh attempt. Raises CredentialRefreshError on any failure."""
        url = self.settings.token_url
        payload = {
            "client_id": self.settings.client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": REFRESH_SCOPE,
        }
        async with build_upstream_client(url, connect_timeout=self.connect_timeout) as client:
            try:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise CredentialRefreshError(
                    f"token refresh request failed: {format_httpx_error(exc, url)}"
                ) from exc

        if response.status_code != 200:
            raise CredentialRefreshError(
                f"token refresh failed with status {response.status_code}: {response.text.strip()}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CredentialRefreshError("token refresh returned invalid JSON") from exc

        access_token = str(body.get("access_token") or "").strip()
        if not access_token:
            raise CredentialRefreshError("token refresh response has no access_token")

        id_token = str(body.get("id_token") or "")
        claims = decode_jwt_claims(id_token)
        expires_in = body.get("expires_in")
        expire = ""
        if isinstance(expires_in, (int, float)):
            expire = (
                datetime.now(timezone.utc) + timedelta(seconds=expires_in)
            ).isoformat(timespec="seconds")

        return CodexTokenData(
            id_token=id_token,
            access_token=access_token,
            refresh_token=str(body.get("refresh_token") or ""),
            account_id=extract_chatgpt_account_id(claims),
            email=str(claims.get("email") or ""),
            expire=expire,
        )

    async def refresh_tokens_with_retry(
        self, refresh_token: str, max_attempts: Optional[int] = None
    ) -> CodexTokenData:
        """Refresh with bounded retries, waiting ``retry_delay * attempt`` between tries."""
        attempts = max_attempts or self.settings.max_attempts
        last_error: Optional[CredentialRefreshError] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self.refresh_tokens(refresh_token)
            except CredentialRefreshError as exc:
                last_error = exc
                logger.warning(f"Token refresh attempt {attempt}/{attempts} failed: {exc}")
            if attempt < attempts and self.settings.retry_delay > 0:
                await asyncio.sleep(self.settings.retry_delay * attempt)
        raise CredentialRefreshError(
            f"token refresh failed after {attempts} attempts: {last_error}",
            attempts=attempts,
        ) from last_error
