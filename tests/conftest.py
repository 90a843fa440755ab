"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
from typing import Any, Generator

import httpx
import pytest

from codexgate.core.contracts import Credential
from codexgate.core.conversation_cache import ConversationCache
from codexgate.core.executor import CodexExecutor
from codexgate.core.settings import GatewaySettings
from codexgate.usage_metrics import UsageRecord

UPSTREAM_HOST = "codex.local"
UPSTREAM_BASE_URL = f"http://{UPSTREAM_HOST}/backend-api/codex"
TOKEN_URL = f"http://{UPSTREAM_HOST}/oauth/token"


# =============================================================================
# Transport Registry Fixtures
# =============================================================================


@pytest.fixture
def clear_transport_registry() -> Generator[None, None, None]:
    """Clear upstream transport registry after test.

    Use this fixture in tests that register fake transports.
    """
    from codexgate.core.upstream_transport import clear_upstream_transports

    yield
    clear_upstream_transports()


@pytest.fixture
def fake_upstream(clear_transport_registry: None):
    """A FakeCodexUpstream served for ``codex.local`` through ASGITransport.

    Usage:
        async def test_x(fake_upstream, executor):
            fake_upstream.enqueue_codex_response("Hello")
    """
    from codexgate.core.upstream_transport import register_upstream_transport
    from codexgate.testing import FakeCodexUpstream

    upstream = FakeCodexUpstream(route="/backend-api/codex/responses")
    register_upstream_transport(UPSTREAM_HOST, httpx.ASGITransport(app=upstream.app))
    return upstream


# =============================================================================
# Executor Fixtures
# =============================================================================


def build_settings(**overrides: Any) -> GatewaySettings:
    """Gateway settings pointing at the fake upstream.

    Keyword overrides are applied on top of the ``codex`` section.
    """
    codex_cfg: dict[str, Any] = {"base_url": UPSTREAM_BASE_URL}
    codex_cfg.update(overrides)
    return GatewaySettings.from_mapping(
        {
            "codex": codex_cfg,
            "oauth": {"token_url": TOKEN_URL, "retry_delay": 0},
        }
    )


@pytest.fixture
def usage_records() -> list[UsageRecord]:
    return []


@pytest.fixture
def executor(usage_records: list[UsageRecord]) -> CodexExecutor:
    """Executor wired to the fake upstream with a capturing usage sink."""
    return CodexExecutor(
        build_settings(),
        conversation_cache=ConversationCache(),
        usage_sink=usage_records.append,
    )


@pytest.fixture
def oauth_credential() -> Credential:
    return Credential(
        id="cred-1",
        label="test",
        metadata={
            "access_token": "oauth-access-token",
            "refresh_token": "refresh-token-1",
            "account_id": "acct_123",
        },
    )


@pytest.fixture
def api_key_credential() -> Credential:
    return Credential(id="cred-key", attributes={"api_key": "sk-test-key"})


# =============================================================================
# Helper Functions for Tests
# =============================================================================


def parse_sse_records(payloads: list[bytes]) -> list[dict[str, Any]]:
    """Parse Claude SSE records into ``{"event": ..., "data": ...}`` dicts."""
    events = []
    for raw in payloads:
        lines = [line for line in raw.decode("utf-8").split("\n") if line]
        event_line = next((line for line in lines if line.startswith("event: ")), None)
        data_line = next((line for line in lines if line.startswith("data: ")), None)
        if event_line and data_line:
            events.append({
                "event": event_line[len("event: "):],
                "data": json.loads(data_line[len("data: "):]),
            })
    return events


def encode_request(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")
