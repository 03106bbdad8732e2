"""In-memory Oracle response cache.

Answers are keyed by the normalized question (lowercased, trimmed). Lookups
treat entries older than the TTL as misses without removing them; inserts keep
only the newest ``max_entries`` answers.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class CachedAnswer:
    key: str
    response: str
    cached_at_ms: int


def normalize_question(question: str) -> str:
    return question.strip().lower()


class ResponseCache:
    def __init__(
        self,
        ttl_seconds: int = 300,
        max_entries: int = 50,
        time_func: Callable[[], float] = time.time,
    ):
        self._store: "OrderedDict[str, CachedAnswer]" = OrderedDict()
        self._lock = threading.RLock()
        self._time_func = time_func
        self._ttl_ms = ttl_seconds * 1000
        self._max_entries = max_entries

    def _now_ms(self) -> int:
        return int(self._time_func() * 1000)

    def get_cached_response(self, question: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(normalize_question(question))
            if entry is None:
                return None
            if self._now_ms() - entry.cached_at_ms >= self._ttl_ms:
                return None
            return entry.response

    def set_cached_response(self, question: str, response: str) -> None:
        key = normalize_question(question)
        with self._lock:
            # re-setting a key makes it the newest entry
            self._store.pop(key, None)
            self._store[key] = CachedAnswer(key=key, response=response, cached_at_ms=self._now_ms())
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
