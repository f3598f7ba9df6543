"""Content-addressed cache for generated replies."""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    response: str
    created_at: float
    expires_at: float
    hits: int = 0


class CacheStats(BaseModel):
    entries: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def cache_key(intent: str, fingerprint: dict) -> str:
    """sha256 over the intent and a key-sorted patient fingerprint."""
    payload = json.dumps({"intent": intent, "context": fingerprint}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResponseCache:
    """Thread-safe LRU cache with per-entry TTL."""

    def __init__(
        self,
        ttl_hours: float = 24,
        max_entries: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_hours * 3600
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, intent: str, fingerprint: dict) -> Optional[str]:
        key = cache_key(intent, fingerprint)
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            self._entries.move_to_end(key)
            logger.debug(f"Cache hit for intent={intent} key={key[:8]}")
            return entry.response

    def set(self, intent: str, fingerprint: dict, response: str, ttl_hours: Optional[float] = None):
        key = cache_key(intent, fingerprint)
        now = self.clock()
        ttl = ttl_hours * 3600 if ttl_hours is not None else self.ttl_seconds
        with self._lock:
            self._entries[key] = CacheEntry(response=response, created_at=now, expires_at=now + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        logger.debug(f"Cached response for intent={intent} key={key[:8]}")

    def cleanup_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(entries=len(self._entries), hits=self._hits, misses=self._misses)
