"""Tests for the Codex executor against a fake upstream."""

from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from codexgate.core.contracts import Credential, Options, Request
from codexgate.core.conversation_cache import ConversationCache
from codexgate.core.exceptions import (
    CredentialRefreshError,
    GatewayError,
    StreamLineTooLongError,
    UpstreamTransportError,
)
from codexgate.core.executor import (
    ChunkStream,
    CodexExecutor,
    find_terminal_event,
    stream_error_record,
    upstream_error_message,
)
from codexgate.core.contracts import StreamChunk
from codexgate.core.upstream_transport import register_upstream_transport
from codexgate.testing import (
    UpstreamResponse,
    build_claude_request,
    build_codex_stream_events,
    build_codex_usage,
    build_responses_request,
    encode_codex_events,
)

from conftest import UPSTREAM_HOST, build_settings, encode_request, parse_sse_records


def _claude_request(**kwargs) -> Request:
    payload = build_claude_request(**kwargs)
    return Request(model=payload["model"], payload=encode_request(payload))


def _jwt(claims: dict) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJub25lIn0.{body}.sig"


class _FailingStream(httpx.AsyncByteStream):
    """Yields some bytes, then fails like a dropped connection."""

    def __init__(self, prefix: bytes) -> None:
        self.prefix = prefix

    async def __aiter__(self):
        yield self.prefix
        raise httpx.ReadError("connection reset by peer")

    async def aclose(self) -> None:
        pass


def _register_handler(handler) -> None:
    register_upstream_transport(UPSTREAM_HOST, httpx.MockTransport(handler))


class TestUpstreamErrorMessage:
    """Tests for non-2xx body message extraction."""

    def test_json_error_keeps_code(self):
        """Test that error.message from a JSON body keeps the error code."""
        body = b'{"error":{"type":"usage_limit_reached","message":"Insufficient credits"}}'
        assert upstream_error_message(body, 429) == "usage_limit_reached: Insufficient credits"
        body = b'{"error":{"type":"x","code":"rate_limit_exceeded","message":"Slow down"}}'
        assert upstream_error_message(body, 429) == "rate_limit_exceeded: Slow down"

    def test_json_error_without_code(self):
        """Test that a bare error.message is used as-is."""
        assert upstream_error_message(b'{"error":{"message":"Insufficient credits"}}', 429) == "Insufficient credits"

    def test_uses_detail_field(self):
        """Test that a ChatGPT-style detail message is used."""
        assert upstream_error_message(b'{"detail":"Unauthorized"}', 401) == "Unauthorized"

    def test_falls_back_to_trimmed_text(self):
        """Test that a plain-text body is returned as-is."""
        assert upstream_error_message(b"  bad gateway \n", 502) == "bad gateway"

    def test_empty_body_uses_status(self):
        """Test that an empty body becomes 'upstream <status>'."""
        assert upstream_error_message(b"", 500) == "upstream 500"

    def test_stream_error_record_forwards_event_shaped_body(self):
        """Test that an SSE-shaped error body is forwarded verbatim."""
        body = b'event: error\ndata: {"type":"error","message":"nope"}'
        assert stream_error_record(body, 400) == body + b"\n\n"

    def test_stream_error_record_synthesizes_error_event(self):
        """Test that other bodies become a synthetic error event."""
        record = stream_error_record(b"", 503)
        assert record.startswith(b"event: error\n")
        data = json.loads(record.split(b"data: ", 1)[1])
        assert data == {"type": "error", "message": "upstream 503"}

    def test_find_terminal_event_skips_other_lines(self):
        """Test that only response.completed / incomplete count as terminal."""
        body = encode_codex_events(build_codex_stream_events("hi"))
        raw, event = find_terminal_event(body)
        assert event["type"] == "response.completed"
        assert json.loads(raw)["type"] == "response.completed"
        assert find_terminal_event(b"data: {\"type\":\"response.created\"}\n\n") is None


class TestExecute:
    """Tests for one-shot execution."""

    @pytest.mark.asyncio
    async def test_translates_completed_response(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that a streamed upstream reply becomes one Claude message."""
        fake_upstream.enqueue_codex_response(
            "Hello there",
            usage=build_codex_usage(100, 7, cached_tokens=40),
        )

        response = await executor.execute(oauth_credential, _claude_request())

        body = json.loads(response.payload)
        assert body["type"] == "message"
        assert body["role"] == "assistant"
        assert body["content"] == [{"type": "text", "text": "Hello there"}]
        assert body["stop_reason"] == "end_turn"
        assert body["usage"] == {
            "input_tokens": 60,
            "output_tokens": 7,
            "cache_read_input_tokens": 40,
        }
        assert len(usage_records) == 1
        assert usage_records[0].failed is False
        assert usage_records[0].detail.input_tokens == 100
        assert usage_records[0].auth_id == "cred-1"

    @pytest.mark.asyncio
    async def test_sends_codex_request_and_headers(self, fake_upstream, executor, oauth_credential):
        """Test upstream URL, body normalization and headers."""
        fake_upstream.enqueue_codex_response("ok")
        request = _claude_request(system="Be brief", user_id="user-7")

        await executor.execute(oauth_credential, request)

        received = fake_upstream.received[0]
        assert received["path"] == "/backend-api/codex/responses"
        sent = received["json"]
        assert sent["model"] == "gpt-5.2"
        assert sent["reasoning"] == {"effort": "high", "summary": "auto"}
        assert sent["instructions"] == "Be brief"
        assert sent["stream"] is True
        assert sent["store"] is False
        assert "reasoning.encrypted_content" in sent["include"]
        assert sent["input"][0]["content"][0] == {"type": "input_text", "text": "Hello"}

        headers = received["headers"]
        assert headers["authorization"] == "Bearer oauth-access-token"
        assert headers["version"] == "0.21.0"
        assert headers["openai-beta"] == "responses=experimental"
        assert headers["originator"] == "codex_cli_rs"
        assert headers["chatgpt-account-id"] == "acct_123"
        assert headers["accept"] == "text/event-stream"
        assert headers["session_id"] == sent["prompt_cache_key"]
        assert headers["conversation_id"] == sent["prompt_cache_key"]

    @pytest.mark.asyncio
    async def test_same_user_reuses_prompt_cache_key(self, fake_upstream, executor, oauth_credential):
        """Test that one user/model pair keeps the same cache id across calls."""
        fake_upstream.enqueue_codex_response("one")
        fake_upstream.enqueue_codex_response("two")
        request = _claude_request(user_id="user-7")

        await executor.execute(oauth_credential, request)
        await executor.execute(oauth_credential, request)

        first, second = (r["json"]["prompt_cache_key"] for r in fake_upstream.received)
        assert first == second

    @pytest.mark.asyncio
    async def test_api_key_credential_skips_chatgpt_headers(self, fake_upstream, executor, api_key_credential):
        """Test that API-key auth omits Originator and account headers."""
        fake_upstream.enqueue_codex_response("ok")

        await executor.execute(api_key_credential, _claude_request())

        headers = fake_upstream.received[0]["headers"]
        assert headers["authorization"] == "Bearer sk-test-key"
        assert "originator" not in headers
        assert "chatgpt-account-id" not in headers

    @pytest.mark.asyncio
    async def test_codex_client_passthrough(self, fake_upstream, executor, oauth_credential):
        """Test that Codex-format clients get the terminal event untranslated."""
        fake_upstream.enqueue_codex_response("raw")
        payload = build_responses_request(prompt_cache_key="client-key")
        request = Request(model="gpt-5.2", payload=encode_request(payload), format="codex")

        response = await executor.execute(
            oauth_credential, request, Options(source_format="codex")
        )

        body = json.loads(response.payload)
        assert body["type"] == "response.completed"
        assert fake_upstream.received[0]["json"]["prompt_cache_key"] == "client-key"

    @pytest.mark.asyncio
    async def test_request_format_used_without_options(self, fake_upstream, executor, oauth_credential):
        """Test that Request.format selects the client format when no Options are given."""
        fake_upstream.enqueue_codex_response("raw")
        payload = build_responses_request("Ping", prompt_cache_key="client-key")
        request = Request(model="gpt-5.2", payload=encode_request(payload), format="codex")

        response = await executor.execute(oauth_credential, request)

        sent = fake_upstream.received[0]["json"]
        assert sent["prompt_cache_key"] == "client-key"
        assert sent["input"][0]["content"][0]["text"] == "Ping"
        assert json.loads(response.payload)["type"] == "response.completed"

    @pytest.mark.asyncio
    async def test_options_source_format_overrides_request(self, fake_upstream, executor, oauth_credential):
        """Test that an explicit Options.source_format wins over Request.format."""
        fake_upstream.enqueue_codex_response("Hello")
        request = Request(
            model="claude-sonnet-4-5",
            payload=encode_request(build_claude_request("Hi")),
            format="codex",
        )

        response = await executor.execute(oauth_credential, request, Options(source_format="claude"))

        assert json.loads(response.payload)["type"] == "message"
        assert fake_upstream.received[0]["json"]["input"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_malformed_usage_counts_as_zero(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that non-numeric usage values do not break a one-shot reply."""
        fake_upstream.enqueue_codex_response("Hi", usage={"input_tokens": "n/a", "output_tokens": None})

        response = await executor.execute(oauth_credential, _claude_request())

        body = json.loads(response.payload)
        assert body["type"] == "message"
        assert body["usage"] == {"input_tokens": 0, "output_tokens": 0}
        assert [r.failed for r in usage_records] == [False]

    @pytest.mark.asyncio
    async def test_non_2xx_returns_error_body(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that an upstream 429 becomes a successful error-shaped result."""
        fake_upstream.enqueue(UpstreamResponse(status_code=429, body="Insufficient credits", media_type="text/plain"))

        response = await executor.execute(oauth_credential, _claude_request())

        assert json.loads(response.payload) == {"type": "error", "message": "Insufficient credits"}
        assert len(usage_records) == 1
        assert usage_records[0].failed is True

    @pytest.mark.asyncio
    async def test_non_2xx_json_error_keeps_code(self, fake_upstream, executor, oauth_credential):
        """Test that the upstream error code survives in the client error message."""
        fake_upstream.enqueue_error_response(429, "The usage limit has been reached", error_type="usage_limit_reached")

        response = await executor.execute(oauth_credential, _claude_request())

        assert json.loads(response.payload) == {
            "type": "error",
            "message": "usage_limit_reached: The usage limit has been reached",
        }

    @pytest.mark.asyncio
    async def test_missing_terminal_event_reports_disconnect(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that a body without response.completed becomes a disconnect error."""
        events = build_codex_stream_events("cut short")[:-1]
        fake_upstream.enqueue(UpstreamResponse(stream_events=events))

        response = await executor.execute(oauth_credential, _claude_request())

        assert json.loads(response.payload) == {
            "type": "error",
            "message": "stream disconnected before completion",
        }
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, clear_transport_registry, executor, oauth_credential, usage_records):
        """Test that connection failures raise UpstreamTransportError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        _register_handler(handler)

        with pytest.raises(UpstreamTransportError) as exc_info:
            await executor.execute(oauth_credential, _claude_request())

        assert "ConnectError" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_tool_names_restored(self, fake_upstream, executor, oauth_credential):
        """Test that shortened tool names are restored in the reply."""
        long_name = "mcp__" + "server_" * 12 + "__lookup_customer"
        fake_upstream.enqueue_codex_response(
            tool_calls=[{"name": "mcp__lookup_customer", "arguments": {"id": 4}, "call_id": "call_1"}]
        )
        request = _claude_request(
            tools=[{"name": long_name, "input_schema": {"type": "object"}}],
        )

        response = await executor.execute(oauth_credential, request)

        sent_tools = fake_upstream.received[0]["json"]["tools"]
        assert sent_tools[0]["name"] == "mcp__lookup_customer"
        body = json.loads(response.payload)
        assert body["stop_reason"] == "tool_use"
        assert body["content"] == [
            {"type": "tool_use", "id": "call_1", "name": long_name, "input": {"id": 4}}
        ]


class TestExecuteStream:
    """Tests for streaming execution."""

    @pytest.mark.asyncio
    async def test_stream_event_order(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test the exact Claude event sequence for a text reply."""
        fake_upstream.enqueue_codex_response("Hi there", usage=build_codex_usage(12, 3))

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert all(not chunk.is_error for chunk in chunks)
        events = parse_sse_records([chunk.payload for chunk in chunks])
        assert [e["event"] for e in events] == [
            "message_start",
            "content_block_start",
            "content_block_delta",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]
        deltas = [e["data"]["delta"]["text"] for e in events if e["event"] == "content_block_delta"]
        assert "".join(deltas) == "Hi there"
        assert events[-2]["data"]["delta"]["stop_reason"] == "end_turn"
        assert events[-2]["data"]["usage"] == {"input_tokens": 12, "output_tokens": 3}
        assert len(usage_records) == 1
        assert usage_records[0].failed is False
        assert usage_records[0].detail.output_tokens == 3

    @pytest.mark.asyncio
    async def test_stream_malformed_usage_still_completes(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that non-numeric usage values still end the stream with message_stop."""
        fake_upstream.enqueue_codex_response("Hi", usage={"input_tokens": "n/a", "output_tokens": 2})

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert all(not chunk.is_error for chunk in chunks)
        events = parse_sse_records([chunk.payload for chunk in chunks])
        assert [e["event"] for e in events][-2:] == ["message_delta", "message_stop"]
        assert events[-2]["data"]["usage"] == {"input_tokens": 0, "output_tokens": 2}
        assert usage_records[0].detail.input_tokens == 0
        assert usage_records[0].failed is False

    @pytest.mark.asyncio
    async def test_stream_translation_failure_ends_with_error(self, fake_upstream, executor, oauth_credential, usage_records, monkeypatch):
        """Test that an unexpected translation error becomes the terminal error chunk."""
        import codexgate.core.executor as executor_module

        def failing_translate(*args, **kwargs):
            raise ValueError("bad record")

        monkeypatch.setattr(executor_module, "translate_stream", failing_translate)
        fake_upstream.enqueue_codex_response("Hi")

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert len(chunks) == 1
        assert isinstance(chunks[0].error, GatewayError)
        assert "bad record" in chunks[0].error.message
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_stream_thinking_then_tool_call(self, fake_upstream, executor, oauth_credential):
        """Test that reasoning and tool calls become ordered blocks."""
        fake_upstream.enqueue_codex_response(
            reasoning="Need the weather",
            tool_calls=[{"name": "get_weather", "arguments": {"city": "Oslo"}, "call_id": "call_w"}],
        )
        request = _claude_request(
            stream=True,
            tools=[{"name": "get_weather", "input_schema": {"type": "object"}}],
        )

        stream = await executor.execute_stream(oauth_credential, request)
        events = parse_sse_records([c.payload for c in await stream.collect()])

        starts = [e["data"] for e in events if e["event"] == "content_block_start"]
        assert [s["content_block"]["type"] for s in starts] == ["thinking", "tool_use"]
        assert [s["index"] for s in starts] == [0, 1]
        assert starts[1]["content_block"]["name"] == "get_weather"
        assert starts[1]["content_block"]["id"] == "call_w"
        json_deltas = [
            e["data"]["delta"]["partial_json"]
            for e in events
            if e["event"] == "content_block_delta" and e["data"]["delta"]["type"] == "input_json_delta"
        ]
        assert json.loads("".join(json_deltas)) == {"city": "Oslo"}
        message_delta = next(e for e in events if e["event"] == "message_delta")
        assert message_delta["data"]["delta"]["stop_reason"] == "tool_use"

    @pytest.mark.asyncio
    async def test_stream_non_2xx_yields_single_error_record(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that an empty 500 reply becomes one synthetic error record."""
        fake_upstream.enqueue(UpstreamResponse(status_code=500, body=b""))

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert len(chunks) == 1
        assert not chunks[0].is_error
        assert b"upstream 500" in chunks[0].payload
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_stream_forwards_event_shaped_error(self, fake_upstream, executor, oauth_credential):
        """Test that an SSE-shaped error body is forwarded untouched."""
        body = 'event: error\ndata: {"type":"error","message":"quota"}'
        fake_upstream.enqueue(UpstreamResponse(status_code=429, body=body, media_type="text/event-stream"))

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert [c.payload for c in chunks] == [body.encode() + b"\n\n"]

    @pytest.mark.asyncio
    async def test_mid_stream_read_error_is_terminal_chunk(self, clear_transport_registry, executor, oauth_credential, usage_records):
        """Test that a dropped connection ends the stream with an error chunk."""
        prefix = encode_codex_events(build_codex_stream_events("partial answer")[:4])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                stream=_FailingStream(prefix),
            )

        _register_handler(handler)

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert chunks[-1].is_error
        assert isinstance(chunks[-1].error, UpstreamTransportError)
        assert "ReadError" in chunks[-1].error.message
        assert all(not chunk.is_error for chunk in chunks[:-1])
        events = parse_sse_records([c.payload for c in chunks[:-1]])
        assert events[0]["event"] == "message_start"
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_oversized_line_is_terminal_chunk(self, fake_upstream, oauth_credential, usage_records):
        """Test that a line over max_line_bytes ends the stream with an error."""
        executor = CodexExecutor(
            build_settings(max_line_bytes=64),
            conversation_cache=ConversationCache(),
            usage_sink=usage_records.append,
        )
        fake_upstream.enqueue_codex_response("x" * 200)

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert chunks[-1].is_error
        assert isinstance(chunks[-1].error, StreamLineTooLongError)
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_stream_without_terminal_event_ends_with_error(self, fake_upstream, executor, oauth_credential):
        """Test that an upstream EOF before completion is reported."""
        events = build_codex_stream_events("cut")[:-1]
        fake_upstream.enqueue(UpstreamResponse(stream_events=events))

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        chunks = await stream.collect()

        assert chunks[-1].is_error
        assert isinstance(chunks[-1].error, GatewayError)
        assert chunks[-1].error.message == "stream disconnected before completion"

    @pytest.mark.asyncio
    async def test_stream_connect_failure_raises(self, clear_transport_registry, executor, oauth_credential, usage_records):
        """Test that stream setup failures raise before any chunk."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        _register_handler(handler)

        with pytest.raises(UpstreamTransportError):
            await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        assert [r.failed for r in usage_records] == [True]

    @pytest.mark.asyncio
    async def test_aclose_stops_reader(self, fake_upstream, executor, oauth_credential, usage_records):
        """Test that closing early cancels the reader and still reports usage once."""
        fake_upstream.enqueue_codex_response("one two three four five", chunk_delay_s=0.05)

        stream = await executor.execute_stream(oauth_credential, _claude_request(stream=True))
        async with stream:
            first = await stream.__anext__()
            assert not first.is_error

        assert [chunk async for chunk in stream] == []
        await asyncio.sleep(0)
        assert len(usage_records) == 1

    @pytest.mark.asyncio
    async def test_codex_client_stream_passthrough(self, fake_upstream, executor, oauth_credential):
        """Test that Codex-format clients receive upstream lines unchanged."""
        fake_upstream.enqueue_codex_response("same")
        request = Request(
            model="gpt-5.2",
            payload=encode_request(build_responses_request(stream=True)),
            format="codex",
        )

        stream = await executor.execute_stream(oauth_credential, request, Options(source_format="codex"))
        chunks = await stream.collect()

        raw = b"".join(c.payload for c in chunks)
        assert raw.startswith(b"event: response.created\n")
        assert b'"type": "response.completed"' in raw


class TestChunkStream:
    """Tests for the chunk stream handoff."""

    @pytest.mark.asyncio
    async def test_from_chunks_yields_then_ends(self):
        """Test that a prebuilt stream yields its chunks once."""
        stream = ChunkStream.from_chunks([StreamChunk(payload=b"a"), StreamChunk(payload=b"b")])
        assert [c.payload for c in await stream.collect()] == [b"a", b"b"]
        assert await stream.collect() == []

    @pytest.mark.asyncio
    async def test_producer_backpressure(self):
        """Test that the producer waits while the buffer is full."""
        produced: list[int] = []

        async def producer(out: ChunkStream) -> None:
            for i in range(5):
                await out.send(StreamChunk(payload=str(i).encode()))
                produced.append(i)

        stream = ChunkStream(maxsize=1)
        stream.start(producer)
        await asyncio.sleep(0.01)
        assert len(produced) <= 2

        payloads = [c.payload for c in await stream.collect()]
        assert payloads == [b"0", b"1", b"2", b"3", b"4"]


class TestCountTokens:
    """Tests for local token counting."""

    @pytest.mark.asyncio
    async def test_counts_original_request(self, executor, oauth_credential):
        """Test that the estimate covers the original request bytes."""
        seen: list[bytes] = []

        def estimator(model: str, content: bytes) -> int:
            seen.append(content)
            return 42

        executor.token_estimator = estimator
        original = b'{"messages":[{"role":"user","content":"hi"}]}'
        request = _claude_request()

        response = await executor.count_tokens(
            oauth_credential, request, Options(original_request=original)
        )

        assert json.loads(response.payload) == {"input_tokens": 42}
        assert seen == [original]

    @pytest.mark.asyncio
    async def test_counts_codex_request_by_request_format(self, executor, oauth_credential):
        """Test that a Codex-format request is counted as sent, not as a Claude body."""
        seen: list[bytes] = []
        executor.token_estimator = lambda model, content: seen.append(content) or 7
        payload = build_responses_request("count these words")
        request = Request(model="gpt-5.2", payload=encode_request(payload), format="codex")

        response = await executor.count_tokens(oauth_credential, request)

        assert json.loads(response.payload) == {"input_tokens": 7}
        counted = json.loads(seen[0])
        assert counted["input"][0]["content"][0]["text"] == "count these words"

    @pytest.mark.asyncio
    async def test_non_positive_estimate_falls_back(self, executor, oauth_credential):
        """Test the character-based fallback when the estimate is zero."""
        executor.token_estimator = lambda model, content: 0
        original = b"x" * 40

        response = await executor.count_tokens(
            oauth_credential, _claude_request(), Options(original_request=original)
        )

        assert json.loads(response.payload) == {"input_tokens": 10}

    @pytest.mark.asyncio
    async def test_counts_translated_payload_without_original(self, executor, oauth_credential):
        """Test that the normalized upstream body is counted without an original."""
        seen: list[bytes] = []
        executor.token_estimator = lambda model, content: seen.append(content) or 5

        response = await executor.count_tokens(oauth_credential, _claude_request(content="count me"))

        assert json.loads(response.payload) == {"input_tokens": 5}
        assert b"count me" in seen[0]
        assert b'"input_text"' in seen[0]


class TestRefresh:
    """Tests for OAuth credential refresh."""

    @pytest.mark.asyncio
    async def test_no_refresh_token_is_noop(self, executor):
        """Test that a credential without a refresh token is returned unchanged."""
        credential = Credential(metadata={"access_token": "a"})
        result = await executor.refresh(credential)
        assert result is credential
        assert result.metadata == {"access_token": "a"}

    @pytest.mark.asyncio
    async def test_refresh_updates_metadata(self, fake_upstream, executor, oauth_credential):
        """Test that a successful refresh rewrites tokens and claims."""
        id_token = _jwt({
            "email": "dev@example.com",
            "https://api.openai.com/auth": {"chatgpt_account_id": "acct_new"},
        })
        fake_upstream.enqueue_token(
            UpstreamResponse(json_body={
                "id_token": id_token,
                "access_token": "new-access",
                "refresh_token": "new-refresh",
                "expires_in": 3600,
            })
        )

        result = await executor.refresh(oauth_credential)

        assert result is oauth_credential
        metadata = result.metadata
        assert metadata["access_token"] == "new-access"
        assert metadata["refresh_token"] == "new-refresh"
        assert metadata["id_token"] == id_token
        assert metadata["account_id"] == "acct_new"
        assert metadata["email"] == "dev@example.com"
        assert metadata["type"] == "codex"
        assert metadata["expired"]
        assert metadata["last_refresh"].endswith("+00:00")
        sent = fake_upstream.token_requests[0]["json"]
        assert sent["grant_type"] == "refresh_token"
        assert sent["refresh_token"] == "refresh-token-1"

    @pytest.mark.asyncio
    async def test_refresh_fails_after_all_attempts(self, fake_upstream, executor, oauth_credential):
        """Test that three failed attempts raise CredentialRefreshError."""
        for _ in range(3):
            fake_upstream.enqueue_token(UpstreamResponse(status_code=401, json_body={"error": "invalid_grant"}))

        with pytest.raises(CredentialRefreshError) as exc_info:
            await executor.refresh(oauth_credential)

        assert exc_info.value.attempts == 3
        assert len(fake_upstream.token_requests) == 3
        assert oauth_credential.metadata["access_token"] == "oauth-access-token"
