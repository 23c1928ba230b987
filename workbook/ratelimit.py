from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional

log = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
GENERATION_COST = 1000 + 500 + 500


class RateLimitError(RuntimeError):
    pass


class TokenBucket:
    """Daily token budget for requests paid for with the server's own API keys.

    Refills continuously at ``tokens_per_day / DAY_SECONDS`` per second.
    """

    def __init__(self, tokens_per_day: int):
        self.max_tokens = float(tokens_per_day)
        self.tokens = float(tokens_per_day)
        self.refill_rate = tokens_per_day / DAY_SECONDS
        self.last_refill = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.max_tokens, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now

    def add(self, tokens: int) -> None:
        with self._lock:
            self._refill()
            log.info("Rate limiter: tokens=%.0f, adding=%d", self.tokens, tokens)
            if self.tokens < tokens:
                raise RateLimitError("Rate limit exceeded")
            self.tokens -= tokens


def validation_cost(raw_request: str) -> int:
    return len(raw_request.split(" ")) * 3


_bucket: Optional[TokenBucket] = None
_bucket_lock = threading.Lock()


def bucket(tokens_per_day: int) -> TokenBucket:
    global _bucket
    with _bucket_lock:
        if _bucket is None:
            _bucket = TokenBucket(tokens_per_day)
        return _bucket


def _reset() -> None:
    """Used by tests to clear state."""
    global _bucket
    with _bucket_lock:
        _bucket = None
