"""Conversation cache mapping logical conversations to upstream session ids.

Repeated turns of one conversation must reach the upstream with the same
``prompt_cache_key`` and session headers to hit its prompt cache. Entries
live for one hour from minting; an expired entry is replaced by a fresh id.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .sse import load_json_object

logger = logging.getLogger("codexgate")

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_MAX_ENTRIES = 10_000


@dataclass(frozen=True)
class ConversationCacheEntry:
    id: str
    expire: float


class ConversationCache:
    """Get-or-create store of session ids with expiry checked on read.

    Shared by every request an executor serves. One lock serializes the
    read-check-mint-write sequence so concurrent turns of the same
    conversation agree on a single id.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._id_factory = id_factory
        self._entries: OrderedDict[str, ConversationCacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get_or_create(self, source_format: str, payload: Any, model: str) -> str:
        """Return the session id for this request.

        Codex-format callers that send ``prompt_cache_key`` keep their key.
        Claude callers are keyed by ``model + "-" + metadata.user_id``.
        Requests with neither get a fresh id that is not stored.
        """
        data = load_json_object(payload) or {}

        if source_format == "codex":
            client_key = data.get("prompt_cache_key")
            if isinstance(client_key, str) and client_key:
                return client_key

        user_id = None
        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            user_id = metadata.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            return self._id_factory()

        return self.lookup(f"{model}-{user_id}")

    def lookup(self, key: str) -> str:
        """Get-or-create the id for a cache key, resetting expired entries."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and entry.expire > now:
                self._entries.move_to_end(key)
                return entry.id

            entry = ConversationCacheEntry(id=self._id_factory(), expire=now + self.ttl_seconds)
            self._entries[key] = entry
            self._entries.move_to_end(key)
            self._evict(now)
            logger.debug(f"Minted conversation id for cache key '{key}'")
            return entry.id

    def _evict(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expire <= now]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def get(self, key: str) -> Optional[ConversationCacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expire <= self._clock():
                return None
            return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
            }
