"""
Per-process token buckets used while Redis is unreachable.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class LocalBucket:
    tokens: int
    last_refill: int


class LocalFallbackBucket:
    """
    In-memory buckets for one limiter, keyed by identity.

    Never shared with other processes, so during an outage every process
    enforces its own budget. Refill snaps straight back to ``max_tokens``
    once a full window has passed instead of adding per elapsed window.
    """

    def __init__(self, max_tokens: int, refill_window_seconds: int):
        self.max_tokens = max_tokens
        self.refill_window_seconds = refill_window_seconds
        self._buckets: Dict[str, LocalBucket] = {}
        self._lock = threading.Lock()

    def consume(self, identity: str, now: int) -> Optional[int]:
        """Take one token; return what is left, or None if the bucket is empty."""
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = LocalBucket(tokens=self.max_tokens, last_refill=now)
                self._buckets[identity] = bucket

            if now - bucket.last_refill >= self.refill_window_seconds:
                bucket.tokens = self.max_tokens
                bucket.last_refill = now

            if bucket.tokens > 0:
                bucket.tokens -= 1
                return bucket.tokens
            return None

    def get(self, identity: str) -> Optional[LocalBucket]:
        """
        Return a copy of the bucket for ``identity``, if one exists.

        Introspection only; the limiter itself never reads buckets back.
        """
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                return None
            return LocalBucket(tokens=bucket.tokens, last_refill=bucket.last_refill)

    def __len__(self) -> int:
        return len(self._buckets)
