"""Diagnostic log of upstream exchanges, one file per executor call."""

import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger("codexgate")


class UpstreamExchangeRecorder:
    """Capture the upstream request, response and stream chunks of one call.

    Nothing is buffered or written when disabled, so the executor can call
    the ``record_*`` methods unconditionally.
    """

    def __init__(
        self,
        model_name: str,
        is_stream: bool,
        log_dir: str | Path,
        enabled: bool = False,
    ) -> None:
        self.enabled = enabled
        self.model_name = model_name or "unknown"
        self.is_stream = is_stream
        self._buffer = bytearray()
        self._finalized = False
        self._stream_chunks = 0
        self._started = datetime.now(timezone.utc)

        timestamp = self._started.strftime("%Y%m%d_%H%M%S")
        short_id = uuid.uuid4().hex[:4]
        filename = f"{timestamp}-{short_id}_{self._safe_fragment(self.model_name)}.log"
        self.log_path = Path(log_dir) / filename

        if self.enabled:
            self._append_text(f"log_start={self._started.isoformat()}\nstream={is_stream}\n")

    def _active(self) -> bool:
        return self.enabled and not self._finalized

    def _append_text(self, text: str) -> None:
        self._buffer.extend(text.encode("utf-8"))

    def record_request(self, url: str, headers: Mapping[str, str], body: bytes) -> None:
        if not self._active():
            return
        self._append_text(
            f"=== UPSTREAM REQUEST ===\nurl={url}\nheaders={self._safe_json_dict(headers)}\n"
        )
        self._append_text(f"body_len={len(body)}\n-- REQUEST BODY START --\n")
        self._append_text(self._format_payload(body))
        self._append_text("-- REQUEST BODY END --\n")

    def record_response(
        self, status: int, headers: Mapping[str, str], body: Optional[bytes] = None
    ) -> None:
        if not self._active():
            return
        self._append_text(
            f"=== UPSTREAM RESPONSE ===\nstatus={status}\n"
            f"response_headers={self._safe_json_dict(headers)}\n"
        )
        if body is not None:
            self._append_text(f"body_len={len(body)}\n-- RESPONSE BODY START --\n")
            self._append_text(self._format_payload(body))
            self._append_text("-- RESPONSE BODY END --\n")

    def record_stream_chunk(self, chunk: bytes) -> None:
        if not self._active():
            return
        self._stream_chunks += 1
        self._append_text(f"-- STREAM CHUNK {self._stream_chunks} len={len(chunk)} --\n")
        self._append_text(self._format_payload(chunk))

    def record_error(self, message: str) -> None:
        if not self._active():
            return
        self._append_text(f"ERROR: {message}\n")

    async def finalize(self, outcome: str) -> None:
        """Append the outcome and write the log atomically off the event loop."""
        if not self._active():
            self._finalized = True
            return
        self._finalized = True
        finished = datetime.now(timezone.utc)
        duration_ms = int((finished - self._started).total_seconds() * 1000)
        self._append_text(
            f"=== FINAL STATUS: {outcome} at {finished.isoformat()} "
            f"duration_ms={duration_ms} ===\n"
        )
        data = bytes(self._buffer)
        path = self.log_path

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            with tmp_path.open("wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.warning(f"Failed to write upstream log {path}: {exc}")

    @property
    def finalized(self) -> bool:
        return self._finalized

    @staticmethod
    def _safe_json_dict(data: Mapping[str, str]) -> str:
        return json.dumps(UpstreamExchangeRecorder._safe_headers(data), sort_keys=True)

    @staticmethod
    def _safe_headers(data: Mapping[str, str]) -> dict[str, str]:
        masked: dict[str, str] = {}
        for key, value in ((str(k), str(v)) for k, v in data.items()):
            key_lower = key.lower()
            if key_lower in {"authorization", "proxy-authorization"}:
                # Mask authorization headers: first 4 chars + ****
                if value.startswith("Bearer "):
                    token = value[7:]
                    masked[key] = f"Bearer {token[:4]}****" if token else value
                else:
                    masked[key] = value[:4] + "****" if len(value) > 4 else "****"
            elif key_lower == "chatgpt-account-id":
                masked[key] = value[:4] + "****" if len(value) > 4 else "****"
            else:
                masked[key] = value
        return masked

    @staticmethod
    def _safe_fragment(text: str) -> str:
        filtered = [ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in text.strip()]
        collapsed = "".join(filtered).strip("-") or "model"
        return collapsed[:48]

    @staticmethod
    def _format_payload(data: bytes) -> str:
        if not data:
            return ""
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return "<non-utf8 binary data omitted>\n"
        stripped = text.strip()
        if stripped and stripped[0] in "{[":
            try:
                text = json.dumps(json.loads(stripped), ensure_ascii=False, indent=2)
            except json.JSONDecodeError:
                pass
        return text if text.endswith("\n") else text + "\n"

