"""Per-request usage reporting with exactly-once semantics."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Iterator, Mapping, Optional

from .core.contracts import Credential

logger = logging.getLogger("codexgate")


def token_count(value: Any) -> int:
    """A usage counter as int; missing or malformed values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass(frozen=True)
class UsageDetail:
    """Token counts taken from the upstream terminal event."""

    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_codex_usage(cls, usage: Any) -> "UsageDetail":
        if not isinstance(usage, Mapping):
            return cls()
        input_tokens = token_count(usage.get("input_tokens"))
        output_tokens = token_count(usage.get("output_tokens"))
        input_details = usage.get("input_tokens_details")
        if not isinstance(input_details, Mapping):
            input_details = {}
        output_details = usage.get("output_tokens_details")
        if not isinstance(output_details, Mapping):
            output_details = {}
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            reasoning_tokens=token_count(output_details.get("reasoning_tokens")),
            cached_tokens=token_count(input_details.get("cached_tokens")),
            total_tokens=token_count(usage.get("total_tokens")) or input_tokens + output_tokens,
        )


@dataclass(frozen=True)
class UsageRecord:
    provider: str
    model: str
    auth_id: str
    failed: bool
    detail: UsageDetail
    requested_at: str


UsageSink = Callable[[UsageRecord], None]


@dataclass
class UsageCounters:
    """Thread-safe in-process totals fed by the default sink."""

    _lock: Lock = field(default_factory=Lock, repr=False)
    _started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    _succeeded: int = 0
    _failed: int = 0
    _input_tokens: int = 0
    _output_tokens: int = 0

    def record(self, record: UsageRecord) -> None:
        with self._lock:
            if record.failed:
                self._failed += 1
                return
            self._succeeded += 1
            self._input_tokens += record.detail.input_tokens
            self._output_tokens += record.detail.output_tokens

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "started_at": self._started_at,
                "succeeded": self._succeeded,
                "failed": self._failed,
                "input_tokens": self._input_tokens,
                "output_tokens": self._output_tokens,
            }


USAGE_COUNTERS = UsageCounters()


def default_usage_sink(record: UsageRecord) -> None:
    USAGE_COUNTERS.record(record)
    if record.failed:
        logger.info(f"Usage: {record.provider}/{record.model} failed (auth={record.auth_id or '-'})")
    else:
        logger.info(
            f"Usage: {record.provider}/{record.model} in={record.detail.input_tokens} "
            f"out={record.detail.output_tokens} cached={record.detail.cached_tokens}"
        )


class UsageReporter:
    """Emit exactly one usage signal, success or failure, for one request."""

    def __init__(
        self,
        provider: str,
        model: str,
        credential: Optional[Credential] = None,
        sink: Optional[UsageSink] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.auth_id = credential.id if credential is not None else ""
        self._sink = sink or default_usage_sink
        self._requested_at = datetime.now(timezone.utc).isoformat()
        self._lock = Lock()
        self._reported = False

    @property
    def reported(self) -> bool:
        return self._reported

    def publish(self, detail: UsageDetail) -> bool:
        """Report success. Returns False if a signal was already sent."""
        return self._emit(failed=False, detail=detail)

    def publish_failure(self) -> bool:
        """Report failure. Returns False if a signal was already sent."""
        return self._emit(failed=True, detail=UsageDetail())

    @contextmanager
    def track_failure(self) -> Iterator["UsageReporter"]:
        """Report failure if the block exits, normally or not, without a signal."""
        try:
            yield self
        finally:
            if not self._reported:
                self.publish_failure()

    def _emit(self, *, failed: bool, detail: UsageDetail) -> bool:
        with self._lock:
            if self._reported:
                return False
            self._reported = True
        record = UsageRecord(
            provider=self.provider,
            model=self.model,
            auth_id=self.auth_id,
            failed=failed,
            detail=detail,
            requested_at=self._requested_at,
        )
        try:
            self._sink(record)
        except Exception as exc:
            # Usage is a side channel and never masks the call's result
            logger.warning(f"Usage sink failed for {self.provider}/{self.model}: {exc}")
        return True
