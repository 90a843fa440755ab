"""Codex executor: drives the Codex Responses upstream for any client format.

Contract notes:

- Upstream application errors (non-2xx, or a body without a terminal event)
  are returned as *successful* results carrying an error-shaped body in the
  client's wire format, ``{"type": "error", "message": ...}``. Callers must
  not treat them as failed executor calls.
- Transport failures (connect, TLS, DNS, protocol) raise
  ``UpstreamTransportError`` and produce no payload.
- Every call emits exactly one usage signal, success or failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import httpx

from ..auth.codex import CodexAuth
from ..logging.recorder import UpstreamExchangeRecorder
from ..messages.translator import DISCONNECTED_MESSAGE, build_error
from ..modules.request_normalizer import (
    NormalizationContext,
    RequestNormalizer,
    build_request_normalizer,
)
from ..tokenizer import estimate_tokens_for_model
from ..translation import (
    FORMAT_CODEX,
    new_stream_state,
    normalize_format,
    translate_non_stream,
    translate_request,
    translate_stream,
    translate_token_count,
)
from ..types import codex as codex_events
from ..usage_metrics import UsageDetail, UsageReporter, UsageSink
from .contracts import Credential, Options, Request, Response, StreamChunk
from .conversation_cache import ConversationCache
from .credentials import build_codex_headers, codex_credentials
from .exceptions import GatewayError, StreamLineTooLongError, UpstreamTransportError
from .settings import GatewaySettings
from .sse import (
    EVENT_PREFIX,
    dump_json,
    format_error_event,
    iter_sse_lines,
    load_json_object,
    parse_data_line,
)
from .upstream_transport import build_upstream_client, format_httpx_error

logger = logging.getLogger("codexgate")

TERMINAL_EVENTS = (
    codex_events.EVENT_RESPONSE_COMPLETED,
    codex_events.EVENT_RESPONSE_INCOMPLETE,
)
FAILURE_EVENTS = (
    codex_events.EVENT_RESPONSE_FAILED,
    codex_events.EVENT_ERROR,
)

TokenEstimator = Callable[[str, bytes], int]

_END = object()


class ChunkStream:
    """Bounded handoff from the upstream reader task to the caller.

    Iterate with ``async for``; iteration ends once, after the last chunk or
    the terminal error chunk. ``aclose()`` (or leaving ``async with``) stops
    the reader and releases the upstream connection.
    """

    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task[None]] = None
        self._done = False
        self._closed = False

    @classmethod
    def from_chunks(cls, chunks: Iterable[StreamChunk]) -> "ChunkStream":
        """A finished stream that yields the given chunks and ends."""
        items = list(chunks)
        stream = cls(maxsize=len(items) + 1)
        for chunk in items:
            stream._queue.put_nowait(chunk)
        stream._queue.put_nowait(_END)
        stream._done = True
        return stream

    def start(self, producer: Callable[["ChunkStream"], Awaitable[None]]) -> None:
        self._task = asyncio.create_task(self._run(producer))

    async def _run(self, producer: Callable[["ChunkStream"], Awaitable[None]]) -> None:
        try:
            await producer(self)
        finally:
            self._done = True
            try:
                self._queue.put_nowait(_END)
            except asyncio.QueueFull:
                # Consumer drains the rest and sees _done
                pass

    async def send(self, chunk: StreamChunk) -> None:
        """Hand one chunk to the consumer, waiting while the buffer is full."""
        await self._queue.put(chunk)

    def __aiter__(self) -> "ChunkStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            if self._done:
                self._closed = True
                raise StopAsyncIteration
            item = await self._queue.get()
        if item is _END:
            self._closed = True
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "ChunkStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def collect(self) -> list[StreamChunk]:
        """Drain the stream (tests and buffered callers)."""
        return [chunk async for chunk in self]


@dataclass(frozen=True)
class PreparedCall:
    url: str
    headers: dict[str, str]
    body: bytes
    source_format: str
    upstream_model: str
    original_request: bytes


def upstream_error_message(body: bytes, status: int) -> str:
    """Human-readable message for a non-2xx upstream body.

    JSON bodies contribute their ``error.message`` prefixed with the error
    ``code`` or ``type`` (``usage_limit_reached: ...``), or else their
    ``message`` / ``detail``. Other bodies are used as-is. An empty body
    becomes ``upstream <status>``.
    """
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return f"upstream {status}"
    data = load_json_object(text)
    if data is not None:
        error = data.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            kind = error.get("code") or error.get("type")
            if isinstance(kind, str) and kind:
                return f"{kind}: {error['message']}"
            return str(error["message"])
        for key in ("message", "detail"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
    return text


def find_terminal_event(body: bytes) -> Optional[tuple[bytes, dict[str, Any]]]:
    """Locate the terminal ``data:`` record in a buffered SSE body."""
    for line in body.splitlines():
        event = parse_data_line(line)
        if event is not None and event.get("type") in TERMINAL_EVENTS:
            return line.strip()[len(b"data:"):].strip(), event
    return None


def _usage_of(event: Mapping[str, Any]) -> UsageDetail:
    response = event.get("response")
    if not isinstance(response, Mapping):
        return UsageDetail()
    return UsageDetail.from_codex_usage(response.get("usage"))


def stream_error_record(body: bytes, status: int) -> bytes:
    """The single record sent to streaming clients for a non-2xx upstream."""
    text = body.decode("utf-8", errors="replace").strip()
    if text.startswith(EVENT_PREFIX.decode()):
        return (text + "\n\n").encode("utf-8")
    return format_error_event(upstream_error_message(body, status))


class CodexExecutor:
    """Executes client requests against the Codex ``/responses`` endpoint."""

    identifier = "codex"

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        *,
        conversation_cache: Optional[ConversationCache] = None,
        normalizer: Optional[RequestNormalizer] = None,
        usage_sink: Optional[UsageSink] = None,
        token_estimator: Optional[TokenEstimator] = None,
        auth: Optional[CodexAuth] = None,
    ) -> None:
        self.settings = settings or GatewaySettings()
        self.conversation_cache = conversation_cache or ConversationCache(
            ttl_seconds=self.settings.cache_ttl_seconds
        )
        self.normalizer = normalizer or build_request_normalizer(self.settings.codex)
        self.usage_sink = usage_sink
        self.token_estimator = token_estimator or estimate_tokens_for_model
        self.auth = auth or CodexAuth(self.settings.oauth, self.settings.codex.connect_timeout)

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _prepare(
        self,
        credential: Optional[Credential],
        request: Request,
        options: Options,
        stream: bool,
    ) -> PreparedCall:
        token, base_url = codex_credentials(credential)
        base_url = (base_url or self.settings.codex.base_url).rstrip("/")
        source_format = normalize_format(options.source_format or request.format)

        translated = translate_request(
            source_format, FORMAT_CODEX, request.model, request.payload, stream
        )
        body = load_json_object(translated) or {}
        ctx = NormalizationContext(
            model=request.model,
            metadata=request.metadata,
            source_format=source_format,
        )
        body = self.normalizer.normalize(body, ctx)

        session_id = self.conversation_cache.get_or_create(
            source_format, request.payload, request.model
        )
        body["prompt_cache_key"] = session_id

        headers = build_codex_headers(
            credential, token, session_id, self.settings.codex, options.headers
        )
        return PreparedCall(
            url=f"{base_url}/responses",
            headers=headers,
            body=dump_json(body).encode("utf-8"),
            source_format=source_format,
            upstream_model=str(body.get("model") or request.model),
            original_request=options.original_request or request.payload,
        )

    def _client(self, url: str) -> httpx.AsyncClient:
        return build_upstream_client(
            url,
            connect_timeout=self.settings.codex.connect_timeout,
            proxy_url=self.settings.codex.proxy_url,
        )

    def _recorder(self, model: str, is_stream: bool) -> UpstreamExchangeRecorder:
        log_settings = self.settings.logging
        return UpstreamExchangeRecorder(
            model,
            is_stream,
            log_settings.upstream_log_dir,
            enabled=log_settings.upstream_log_enabled,
        )

    def _reporter(self, credential: Optional[Credential], model: str) -> UsageReporter:
        return UsageReporter(self.identifier, model, credential, sink=self.usage_sink)

    def _client_error(self, call: PreparedCall, model: str, message: str) -> bytes:
        return translate_non_stream(
            FORMAT_CODEX,
            call.source_format,
            model,
            call.original_request,
            dump_json(build_error(message)).encode("utf-8"),
        )

    # ------------------------------------------------------------------
    # One-shot
    # ------------------------------------------------------------------

    async def execute(
        self,
        credential: Optional[Credential],
        request: Request,
        options: Optional[Options] = None,
    ) -> Response:
        """One-shot call. Upstream errors come back as client-format bodies."""
        options = options or Options()
        reporter = self._reporter(credential, request.model)
        recorder = self._recorder(request.model, False)
        outcome = "error"
        try:
            with reporter.track_failure():
                call = self._prepare(credential, request, options, stream=False)
                recorder.record_request(call.url, call.headers, call.body)
                logger.info(
                    f"Codex request: model={call.upstream_model} stream=False url={call.url}"
                )

                async with self._client(call.url) as client:
                    try:
                        resp = await client.post(call.url, headers=call.headers, content=call.body)
                    except httpx.HTTPError as exc:
                        message = format_httpx_error(exc, call.url)
                        logger.error(f"Codex upstream transport error: {message}")
                        recorder.record_error(message)
                        outcome = "transport_error"
                        raise UpstreamTransportError(message, url=call.url) from exc

                body = resp.content
                recorder.record_response(resp.status_code, resp.headers, body)

                if not 200 <= resp.status_code < 300:
                    message = upstream_error_message(body, resp.status_code)
                    logger.warning(f"Codex upstream returned {resp.status_code}: {message}")
                    outcome = f"upstream_{resp.status_code}"
                    return Response(payload=self._client_error(call, request.model, message))

                terminal = find_terminal_event(body)
                if terminal is None:
                    logger.warning("Codex upstream body has no terminal event")
                    outcome = "incomplete"
                    return Response(
                        payload=self._client_error(call, request.model, DISCONNECTED_MESSAGE)
                    )

                raw_event, event = terminal
                reporter.publish(_usage_of(event))
                outcome = "success"
                return Response(
                    payload=translate_non_stream(
                        FORMAT_CODEX,
                        call.source_format,
                        request.model,
                        call.original_request,
                        raw_event,
                    )
                )
        finally:
            await recorder.finalize(outcome)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def execute_stream(
        self,
        credential: Optional[Credential],
        request: Request,
        options: Optional[Options] = None,
    ) -> ChunkStream:
        """Streaming call.

        Raises ``UpstreamTransportError`` if the upstream cannot be reached.
        A non-2xx upstream yields a stream of exactly one error record.
        """
        options = options or Options()
        reporter = self._reporter(credential, request.model)
        recorder = self._recorder(request.model, True)

        try:
            call = self._prepare(credential, request, options, stream=True)
            recorder.record_request(call.url, call.headers, call.body)
            logger.info(
                f"Codex request: model={call.upstream_model} stream=True url={call.url}"
            )
            client, resp = await self._open_stream(call)
        except BaseException as exc:
            reporter.publish_failure()
            recorder.record_error(str(exc))
            await recorder.finalize("transport_error")
            raise

        if not 200 <= resp.status_code < 300:
            try:
                body = await resp.aread()
            except httpx.HTTPError as exc:
                logger.warning(f"Failed to read Codex error body: {format_httpx_error(exc, call.url)}")
                body = b""
            finally:
                await resp.aclose()
                await client.aclose()
            recorder.record_response(resp.status_code, resp.headers, body)
            logger.warning(
                f"Codex upstream returned {resp.status_code}: "
                f"{upstream_error_message(body, resp.status_code)}"
            )
            reporter.publish_failure()
            await recorder.finalize(f"upstream_{resp.status_code}")
            return ChunkStream.from_chunks(
                [StreamChunk(payload=stream_error_record(body, resp.status_code))]
            )

        recorder.record_response(resp.status_code, resp.headers)
        stream = ChunkStream(self.settings.codex.stream_queue_size)

        async def _produce(out: ChunkStream) -> None:
            await self._pump(out, call, request, client, resp, reporter, recorder)

        stream.start(_produce)
        return stream

    async def _open_stream(
        self, call: PreparedCall
    ) -> tuple[httpx.AsyncClient, httpx.Response]:
        client = self._client(call.url)
        try:
            upstream_request = client.build_request(
                "POST", call.url, headers=call.headers, content=call.body
            )
            resp = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            message = format_httpx_error(exc, call.url)
            logger.error(f"Codex upstream transport error: {message}")
            raise UpstreamTransportError(message, url=call.url) from exc
        except BaseException:
            await client.aclose()
            raise
        return client, resp

    async def _pump(
        self,
        out: ChunkStream,
        call: PreparedCall,
        request: Request,
        client: httpx.AsyncClient,
        resp: httpx.Response,
        reporter: UsageReporter,
        recorder: UpstreamExchangeRecorder,
    ) -> None:
        """Reader task: upstream lines in, translated chunks out, in order."""
        state = new_stream_state(FORMAT_CODEX, call.source_format)
        outcome = "cancelled"
        saw_terminal = False
        try:
            with reporter.track_failure():
                try:
                    lines = iter_sse_lines(resp.aiter_bytes(), self.settings.codex.max_line_bytes)
                    async for line in lines:
                        event = parse_data_line(line)
                        if event is not None:
                            event_type = event.get("type")
                            if event_type in TERMINAL_EVENTS:
                                saw_terminal = True
                                reporter.publish(_usage_of(event))
                            elif event_type in FAILURE_EVENTS:
                                saw_terminal = True
                        for chunk in translate_stream(
                            FORMAT_CODEX,
                            call.source_format,
                            request.model,
                            call.original_request,
                            line,
                            state,
                        ):
                            recorder.record_stream_chunk(chunk)
                            await out.send(StreamChunk(payload=chunk))
                except httpx.HTTPError as exc:
                    message = format_httpx_error(exc, call.url)
                    logger.error(f"Codex stream read failed: {message}")
                    await self._fail_stream(
                        out, reporter, recorder, UpstreamTransportError(message, url=call.url)
                    )
                    outcome = "read_error"
                    return
                except StreamLineTooLongError as exc:
                    logger.error(f"Codex stream line rejected: {exc.message}")
                    await self._fail_stream(out, reporter, recorder, exc)
                    outcome = "read_error"
                    return
                except Exception as exc:
                    logger.exception("Codex stream translation failed")
                    await self._fail_stream(
                        out,
                        reporter,
                        recorder,
                        GatewayError(f"stream translation failed: {exc.__class__.__name__}: {exc}"),
                    )
                    outcome = "translation_error"
                    return

                if not saw_terminal:
                    logger.warning("Codex stream ended before a terminal event")
                    await self._fail_stream(
                        out, reporter, recorder, GatewayError(DISCONNECTED_MESSAGE)
                    )
                    outcome = "incomplete"
                    return
                outcome = "success"
        finally:
            await resp.aclose()
            await client.aclose()
            await recorder.finalize(outcome)

    @staticmethod
    async def _fail_stream(
        out: ChunkStream,
        reporter: UsageReporter,
        recorder: UpstreamExchangeRecorder,
        error: GatewayError,
    ) -> None:
        reporter.publish_failure()
        recorder.record_error(error.message)
        await out.send(StreamChunk(error=error))

    # ------------------------------------------------------------------
    # Token counting and refresh
    # ------------------------------------------------------------------

    async def count_tokens(
        self,
        credential: Optional[Credential],
        request: Request,
        options: Optional[Options] = None,
    ) -> Response:
        """Estimate input tokens locally; the upstream has no counting endpoint."""
        options = options or Options()
        source_format = normalize_format(options.source_format or request.format)
        content = options.original_request
        if not content:
            translated = translate_request(
                source_format, FORMAT_CODEX, request.model, request.payload, False
            )
            content = dump_json(
                self.normalizer.normalize(
                    load_json_object(translated) or {},
                    NormalizationContext(
                        model=request.model,
                        metadata=request.metadata,
                        source_format=source_format,
                    ),
                )
            ).encode("utf-8")

        count = self.token_estimator(request.model, content)
        if count <= 0:
            count = max(1, len(content.decode("utf-8", errors="replace")) // 4)
        return Response(payload=translate_token_count(source_format, count))

    async def refresh(self, credential: Credential) -> Credential:
        """Exchange the refresh token and update ``credential.metadata`` in place.

        A credential without a refresh token is returned unchanged.
        """
        refresh_token = credential.metadata.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            return credential

        logger.info(f"Refreshing Codex credential '{credential.id or credential.label}'")
        tokens = await self.auth.refresh_tokens_with_retry(
            refresh_token, self.settings.oauth.max_attempts
        )
        metadata = credential.metadata
        metadata["id_token"] = tokens.id_token
        metadata["access_token"] = tokens.access_token
        if tokens.refresh_token:
            metadata["refresh_token"] = tokens.refresh_token
        if tokens.account_id:
            metadata["account_id"] = tokens.account_id
        metadata["email"] = tokens.email
        metadata["expired"] = tokens.expire
        metadata["type"] = "codex"
        metadata["last_refresh"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        return credential
