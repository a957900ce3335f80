"""
Response Cache for validated completion payloads.

Keys are SHA-256 digests of the fully rendered prompt (system prompt, user
prompt and request options), so identical context always maps to the same
entry. Entries expire after a TTL; an expired entry is a miss on read and is
evicted at that moment.

The cache is a process-wide shared service. Reads and writes are guarded by
a threading.Lock and ages are measured on a monotonic clock.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from game_insights.models.schemas import CacheStats, CompletionRequest


logger = logging.getLogger(__name__)


# 30 minutes
DEFAULT_TTL_SECONDS: float = 1800.0


@dataclass
class CacheEntry:
    contentHash: str
    serializedResponse: str
    createdAt: float
    tokenCost: int = 0


def cache_key(request: CompletionRequest) -> str:
    """SHA-256 of the rendered prompt plus the options that shape the answer."""
    material = json.dumps(
        {
            'system': request.systemPrompt,
            'user': request.userPrompt,
            'temperature': request.temperature,
            'maxResponseTokens': request.maxResponseTokens,
            'responseFormat': request.responseFormat.value,
        },
        sort_keys=True,
    )
    return hashlib.sha256(material.encode('utf-8')).hexdigest()


class ResponseCache:
    """
    TTL cache of serialized provider responses.

    Args:
        ttl_seconds: Entry lifetime.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.createdAt >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, serialized_response: str, token_cost: int = 0) -> CacheEntry:
        entry = CacheEntry(
            contentHash=key,
            serializedResponse=serialized_response,
            createdAt=self._clock(),
            tokenCost=token_cost,
        )
        with self._lock:
            self._entries[key] = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Response cache cleared (%d entries)", count)

    def stats(self) -> CacheStats:
        """Counts only live entries; stale ones are pruned first."""
        with self._lock:
            now = self._clock()
            stale = [k for k, e in self._entries.items() if now - e.createdAt >= self.ttl_seconds]
            for key in stale:
                del self._entries[key]
            return CacheStats(
                entries=len(self._entries),
                totalTokens=sum(e.tokenCost for e in self._entries.values()),
            )
